import argparse
import json
import time
import uuid
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional

from pelico.config import ReconcilerSettings
from pelico.core import LibraryService


def run_once(src: Path, workers: int, db_dir: Optional[Path]) -> float:
    db_path: Optional[Path] = None
    if db_dir:
        db_dir.mkdir(parents=True, exist_ok=True)
        db_path = db_dir / f"bench_{uuid.uuid4().hex}.db"

    settings = ReconcilerSettings(hash_workers=workers)
    try:
        with LibraryService(db_path or ":memory:", settings=settings) as service:
            t0 = time.perf_counter()
            service.start_scan(src)
            return time.perf_counter() - t0
    finally:
        if db_path:
            for suffix in ("", "-wal", "-shm"):
                leftover = Path(f"{db_path}{suffix}")
                try:
                    leftover.unlink(missing_ok=True)
                except OSError:
                    pass  # best effort cleanup


def benchmark(src: Path, workers: Iterable[int], repeats: int, db_dir: Optional[Path], out_file: Path):
    worker_list = list(workers)
    results = []
    for w in worker_list:
        warm_avg: Optional[float] = None
        times: List[float] = [run_once(src, w, db_dir) for _ in range(repeats)]
        cold = times[0]
        warm_runs = times[1:]
        if warm_runs:
            warm_avg = sum(warm_runs) / len(warm_runs)
            print(f"{w} workers: {cold:.2f}s (cold), avg warm over {len(warm_runs)} runs: {warm_avg:.2f}s")
        else:
            print(f"{w} workers: {cold:.2f}s (single run)")
        results.append(
            {
                "workers": w,
                "times": times,
                "cold": cold,
                "warm_avg": warm_avg,
            }
        )

    out_file.parent.mkdir(parents=True, exist_ok=True)
    payload = {
        "timestamp": datetime.now().isoformat(),
        "src": str(src),
        "repeats": repeats,
        "workers": worker_list,
        "results": results,
    }
    out_file.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    print(f"Wrote results to {out_file}")
    return payload


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Benchmark library scans with different hashing worker counts.")
    p.add_argument("src", type=Path, help="Library root to scan")
    p.add_argument("--workers", type=int, nargs="+", default=[1, 2, 4, 8], help="Worker counts to test")
    p.add_argument("--repeats", type=int, default=3, help="Runs per worker; first is treated as cold")
    p.add_argument("--db-dir", type=Path, default=None, help="Directory to create per-run temp SQLite DB (default: in memory)")
    p.add_argument("--output", type=Path, default=Path("bench_scan_results.json"), help="Path to write JSON results")
    return p.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    benchmark(args.src, args.workers, args.repeats, args.db_dir, args.output)


if __name__ == "__main__":
    main()

import argparse
import logging
import sys
import threading
from pathlib import Path
from typing import List, Optional

from .catalog.igdb import IGDBCatalog
from .catalog.offline import OfflineCatalog
from .config import ReconcilerSettings
from .core import LibraryService
from .exceptions import CatalogConfigurationError, InvalidRootError, ScanInProgressError
from .reporting import ReportGenerator
from . import config


def setup_logging(log_dir: Path, verbose: bool):
    """Sets up logging to both console and a file next to the database."""
    log_level = logging.DEBUG if verbose else logging.INFO

    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "pelico-scan.log"

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[
            logging.FileHandler(log_file, encoding='utf-8'),
            logging.StreamHandler(sys.stdout)
        ]
    )

    # Silence chatty libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def parse_args(argv: Optional[List[str]] = None):
    p = argparse.ArgumentParser(description="Pelico: reconcile a ROM library against the collection")

    p.add_argument("root", type=Path, help="Library directory to scan")

    p.add_argument("--db", type=Path, default=None, help="Custom path for SQLite DB (default: root/pelico.db)")
    p.add_argument("--ext", nargs="+", default=None, help="Extensions to scan (default: known ROM extensions)")
    p.add_argument("--platform", default=None, help="Platform of every file under root (e.g. SNES)")
    p.add_argument("--server", default=config.DEFAULT_SERVER_LOCATION, help="Label of the storage server holding root")
    p.add_argument("--skip-dirs-file", type=Path, default=None, help="File containing paths to ignore")

    p.add_argument("--workers", type=int, default=None, help="Parallel hashing workers")
    p.add_argument("--catalog-workers", type=int, default=None, help="Concurrent catalog requests")
    p.add_argument("--threshold", type=float, default=None, help="Confidence needed to auto-accept a match")
    p.add_argument("--no-catalog", action="store_true", help="Identify and deduplicate only; skip IGDB")
    p.add_argument("--refresh", action="store_true", help="Also fetch metadata for games still missing it")
    p.add_argument("--progress", action="store_true", help="Show progress bars")

    p.add_argument("--report-csv", type=Path, default=None, help="Write a per-file CSV report")
    p.add_argument("--report-json", type=Path, default=None, help="Write a JSON report")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    return p.parse_args(argv)


def load_skip_dirs(skip_file: Optional[Path]) -> set[Path]:
    if not skip_file or not skip_file.exists():
        return set()

    skips = set()
    with skip_file.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith("#"):
                skips.add(Path(line))
    return skips


def build_settings(args) -> ReconcilerSettings:
    if args.threshold is not None and not 0.0 <= args.threshold <= 1.0:
        raise ValueError("--threshold must be between 0 and 1")
    return ReconcilerSettings.from_env().with_overrides(
        hash_workers=args.workers,
        catalog_workers=args.catalog_workers,
        confidence_threshold=args.threshold,
        show_progress=True if args.progress else None,
    )


def build_catalog(no_catalog: bool, timeout: float):
    if no_catalog:
        return OfflineCatalog()
    return IGDBCatalog(config.TWITCH_CLIENT_ID, config.TWITCH_CLIENT_SECRET, timeout=timeout)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    root = args.root.resolve()
    db_path = args.db if args.db else root / "pelico.db"

    setup_logging(Path(db_path).resolve().parent, args.verbose)

    logging.info("=== Pelico Scan Started ===")
    logging.info(f"Root:   {root}")
    logging.info(f"DB:     {db_path}")

    try:
        settings = build_settings(args)
        catalog = build_catalog(args.no_catalog, settings.catalog_timeout)
    except (ValueError, CatalogConfigurationError) as e:
        logging.error(str(e))
        return 2

    cancel_event = threading.Event()
    extensions = args.ext if args.ext else None
    skip_dirs = load_skip_dirs(args.skip_dirs_file)

    with LibraryService(db_path, catalog=catalog, settings=settings) as service:
        try:
            result = service.start_scan(
                root,
                extensions=extensions,
                cancel_event=cancel_event,
                platform=args.platform,
                server_location=args.server,
                skip_dirs=skip_dirs,
            )
            if args.refresh and not cancel_event.is_set():
                service.refresh_metadata(cancel_event=cancel_event)
        except KeyboardInterrupt:
            cancel_event.set()
            logging.warning("Operation cancelled by user.")
            return 1
        except (InvalidRootError, ScanInProgressError) as e:
            logging.error(str(e))
            return 2
        except Exception:
            logging.exception("Fatal error during scan.")
            return 1

        stats = service.cache_stats()
        logging.info(f"Catalog cache: {stats.hits} hits, {stats.misses} misses, {stats.entries} entries")

    reporter = ReportGenerator(result)
    if args.report_csv:
        reporter.generate_csv(args.report_csv)
    if args.report_json:
        reporter.generate_json(args.report_json)

    for key, value in result.summary().items():
        logging.info(f"  {key}: {value}")
    return 1 if result.cancelled else 0


if __name__ == "__main__":
    sys.exit(main())

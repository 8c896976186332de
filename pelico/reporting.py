import csv
import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterator, List, Union

from .models import ReconciliationResult


class ReportGenerator:
    HEADERS = [
        "Path",
        "Status",
        "Game ID",
        "Title",
        "Confidence",
        "Notes",
    ]

    def __init__(self, result: ReconciliationResult):
        self.result = result

    def generate_csv(self, output_csv: Union[Path, str]):
        """
        Writes one row per file of the run, so every walked file can be
        accounted for (registered, duplicate, unresolved or error).
        """
        logging.info(f"Writing scan report for {self.result.root} -> {output_csv}")
        count = 0
        with open(output_csv, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(self.HEADERS)
            for row in self.iter_rows():
                writer.writerow(row)
                count += 1
        logging.info(f"Report complete. {count} rows written.")

    def generate_json(self, output_json: Union[Path, str]):
        payload = self.to_dict()
        Path(output_json).write_text(json.dumps(payload, indent=2), encoding="utf-8")
        logging.info(f"Wrote JSON report to {output_json}")

    def iter_rows(self) -> Iterator[List[Any]]:
        applied = {str(u.location.path): u for u in self.result.applied_updates}

        for path in self.result.registered:
            update = applied.get(str(path))
            if update:
                yield [str(path), "Registered", update.game_id, update.candidate.title,
                       update.candidate.confidence, "Metadata applied"]
            else:
                yield [str(path), "Already Indexed", "", "", "", ""]

        group_of = {}
        for group in self.result.duplicates:
            for loc in group.locations:
                group_of[str(loc.path)] = group
        for path in self.result.duplicate_paths:
            group = group_of.get(str(path))
            others = [str(p) for p in group.paths if str(p) != str(path)] if group else []
            yield [str(path), "Duplicate", "", "", "",
                   f"Same content as: {'; '.join(others)}" if others else ""]

        for item in self.result.unresolved:
            top = item.candidates[0] if item.candidates else None
            yield [
                str(item.location.path),
                f"Unresolved ({item.reason.value})",
                "",
                top.title if top else "",
                top.confidence if top else "",
                item.error or "",
            ]

        for err in self.result.errors:
            yield [str(err.path), f"Error ({err.stage})", "", "", "", err.message]

    def to_dict(self) -> Dict[str, Any]:
        r = self.result
        return {
            "summary": r.summary(),
            "registered": [str(p) for p in r.registered],
            "applied_updates": [
                {
                    "path": str(u.location.path),
                    "game_id": u.game_id,
                    "title": u.candidate.title,
                    "platform": u.candidate.platform,
                    "confidence": u.candidate.confidence,
                    "igdb_id": u.candidate.external_id,
                }
                for u in r.applied_updates
            ],
            "duplicates": [
                {
                    "identity": g.identity.key,
                    "game_ids": sorted(g.game_ids),
                    "locations": [
                        {"path": str(loc.path), "server": loc.server_location, "game_id": loc.game_id}
                        for loc in g.locations
                    ],
                }
                for g in r.duplicates
            ],
            "unresolved": [
                {
                    "path": str(u.location.path),
                    "reason": u.reason.value,
                    "error": u.error,
                    "candidates": [
                        {"title": c.title, "platform": c.platform, "confidence": c.confidence,
                         "igdb_id": c.external_id}
                        for c in u.candidates
                    ],
                }
                for u in r.unresolved
            ],
            "errors": [
                {"path": str(e.path), "stage": e.stage, "message": e.message}
                for e in r.errors
            ],
            "skipped": list(r.skipped),
        }

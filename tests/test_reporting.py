import csv
import json
from pathlib import Path

from pelico.models import (
    AppliedUpdate, ContentIdentity, DuplicateGroup, FileError, FileLocation,
    MetadataCandidate, ReconciliationResult, UnresolvedFile, UnresolvedReason,
)
from pelico.reporting import ReportGenerator


def build_result() -> ReconciliationResult:
    shared = ContentIdentity("aa" * 32, 10)
    a = FileLocation(Path("/lib/a.rom"), shared)
    b = FileLocation(Path("/lib/b.rom"), shared)
    new = FileLocation(Path("/lib/doom.rom"), ContentIdentity("bb" * 32, 20), game_id=5)
    old = Path("/lib/known.rom")
    lost = FileLocation(Path("/lib/zeldo.rom"), ContentIdentity("cc" * 32, 30))

    result = ReconciliationResult(root=Path("/lib"), walked=6)
    result.registered = [old, new.path]
    result.applied_updates = [AppliedUpdate(new, 5, MetadataCandidate(title="Doom", confidence=0.95))]
    result.duplicates = [DuplicateGroup(shared, [a, b])]
    result.duplicate_paths = [a.path, b.path]
    result.unresolved = [UnresolvedFile(lost, UnresolvedReason.LOW_CONFIDENCE,
                                        candidates=[MetadataCandidate(title="Zelda", confidence=0.4)])]
    result.errors = [FileError(Path("/lib/bad.rom"), "identify", "device removed")]
    return result


def test_csv_has_one_row_per_file(tmp_path):
    out = tmp_path / "report.csv"
    ReportGenerator(build_result()).generate_csv(out)

    with open(out, newline="", encoding="utf-8") as f:
        rows = list(csv.reader(f))

    assert rows[0] == ReportGenerator.HEADERS
    by_path = {r[0]: r for r in rows[1:]}
    assert len(by_path) == 6
    assert by_path[str(Path("/lib/doom.rom"))][1] == "Registered"
    assert by_path[str(Path("/lib/doom.rom"))][3] == "Doom"
    assert by_path[str(Path("/lib/known.rom"))][1] == "Already Indexed"
    assert by_path[str(Path("/lib/a.rom"))][1] == "Duplicate"
    assert str(Path("/lib/b.rom")) in by_path[str(Path("/lib/a.rom"))][5]
    assert by_path[str(Path("/lib/zeldo.rom"))][1] == "Unresolved (low_confidence)"
    assert by_path[str(Path("/lib/bad.rom"))][1] == "Error (identify)"


def test_json_report(tmp_path):
    out = tmp_path / "report.json"
    ReportGenerator(build_result()).generate_json(out)
    payload = json.loads(out.read_text(encoding="utf-8"))

    assert payload["summary"]["walked"] == 6
    assert payload["summary"]["new_files_registered"] == 1
    assert payload["summary"]["duplicate_groups"] == 1
    assert payload["duplicates"][0]["identity"] == f"{'aa' * 32}:10"
    assert payload["unresolved"][0]["reason"] == "low_confidence"
    assert payload["unresolved"][0]["candidates"][0]["title"] == "Zelda"
    assert payload["errors"][0]["stage"] == "identify"

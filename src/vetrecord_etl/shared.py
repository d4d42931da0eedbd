"""vetrecord_etl.shared

Shared pieces used by every record kind: the error taxonomy, the per-row
context, batch counters and report, RejectWriter, and run-report writing.
"""

from __future__ import annotations

import csv
import json
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any

from vetrecord_etl.enums import EnumTable
from vetrecord_etl.fields import AliasTable
from vetrecord_etl.store import RecordStore


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class FileError(Exception):
    """The uploaded file cannot be read as a table; aborts the whole batch."""


class RowValidationError(Exception):
    """A row cannot become a valid record; `field` names the offending input."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.message = message
        super().__init__(message)


# ---------------------------------------------------------------------------
# RejectWriter
# ---------------------------------------------------------------------------

class RejectWriter:
    """Lazy-open CSV writer for rejected rows."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._fh = None
        self._writer = None

    def write(self, row: dict[str, Any], field_name: str, reason: str) -> None:
        if self._fh is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self._path, "w", newline="", encoding="utf-8")
            fieldnames = list(row.keys()) + ["_reject_field", "_reject_reason"]
            self._writer = csv.DictWriter(
                self._fh, fieldnames=fieldnames, extrasaction="ignore"
            )
            self._writer.writeheader()
        out = dict(row)
        out["_reject_field"] = field_name
        out["_reject_reason"] = reason
        self._writer.writerow(out)
        self._fh.flush()

    def close(self) -> None:
        if self._fh:
            self._fh.close()


# ---------------------------------------------------------------------------
# Counters / report
# ---------------------------------------------------------------------------

@dataclass
class BatchCounters:
    rows_read: int = 0
    rows_succeeded: int = 0
    rows_failed: int = 0
    rows_not_attempted: int = 0
    clients_inserted: int = 0
    clients_matched_existing: int = 0
    clients_enriched: int = 0
    villages_inserted: int = 0
    villages_matched_existing: int = 0
    holding_codes_inserted: int = 0
    holding_codes_matched_existing: int = 0
    holding_code_ambiguities: int = 0
    duplicate_key_refetches: int = 0
    records_inserted: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class RowError:
    row: int
    field: str
    message: str


@dataclass
class ImportOutcome:
    """Result of one row: a record id on success, a RowError otherwise."""

    row: int
    record_id: int | None = None
    error: RowError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BatchReport:
    total_rows: int = 0
    success_rows: int = 0
    error_rows: int = 0
    errors: list[RowError] = field(default_factory=list)
    imported_record_ids: list[int] = field(default_factory=list)
    not_attempted_rows: list[int] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    timed_out: bool = False
    state: str = "received"
    counters: BatchCounters = field(default_factory=BatchCounters)

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalRows": self.total_rows,
            "successRows": self.success_rows,
            "errorRows": self.error_rows,
            "errors": [asdict(e) for e in self.errors],
            "importedRecordIds": list(self.imported_record_ids),
            "notAttemptedRows": list(self.not_attempted_rows),
            "warnings": list(self.warnings),
            "timedOut": self.timed_out,
            "state": self.state,
            "counters": self.counters.to_dict(),
        }


# ---------------------------------------------------------------------------
# Row context
# ---------------------------------------------------------------------------

@dataclass
class RowContext:
    """Everything a row processor needs besides the row itself."""

    store: RecordStore
    acting_user_id: str
    aliases: AliasTable
    enums: EnumTable
    counters: BatchCounters
    warnings: list[str]
    today: date

    def warn(self, row_number: int, message: str) -> None:
        self.warnings.append(f"row {row_number}: {message}")


# ---------------------------------------------------------------------------
# Run report
# ---------------------------------------------------------------------------

def write_run_report(
    run_id: str,
    started_at: str,
    kind: str,
    dry_run: bool,
    source_paths: dict[str, str],
    report: BatchReport,
    report_dir: Path = Path("./artifacts/reports"),
) -> Path:
    payload = {
        "run_id": run_id,
        "kind": kind,
        "started_at": started_at,
        "finished_at": datetime.utcnow().isoformat(),
        "dry_run": dry_run,
        **source_paths,
        "report": report.to_dict(),
    }
    report_path = report_dir / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(payload, indent=2, default=str, ensure_ascii=False))
    return report_path

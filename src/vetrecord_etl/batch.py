"""vetrecord_etl.batch

Batch import orchestration.

A batch moves through received -> parsing -> validating -> processing ->
completed. Rows are processed in fixed-size groups: rows inside a group run
concurrently, groups run strictly in file order, and every row ends with an
ImportOutcome. Only an unreadable file (FileError) aborts the batch; an
overall timeout stops it early and reports unstarted rows as not attempted.

Usage:
    report = await import_batch(
        buffer, "vaccination.xlsx", "user-42",
        kind="vaccination", store=MemoryRecordStore(),
    )
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping

from vetrecord_etl.enums import EnumTable, default_enum_table
from vetrecord_etl.fields import AliasTable, default_alias_table
from vetrecord_etl.import_equine_health import process_equine_health_row
from vetrecord_etl.import_laboratory import process_laboratory_row
from vetrecord_etl.import_mobile_clinic import process_mobile_clinic_row
from vetrecord_etl.import_parasite_control import process_parasite_control_row
from vetrecord_etl.import_vaccination import process_vaccination_row
from vetrecord_etl.shared import (
    BatchReport,
    FileError,
    ImportOutcome,
    RowContext,
    RowError,
    RowValidationError,
)
from vetrecord_etl.store import RecordStore, StoreError
from vetrecord_etl.tabular import SourceRow, parse_tabular

log = logging.getLogger(__name__)

DEFAULT_GROUP_SIZE = 5

RowProcessor = Callable[[RowContext, int, Mapping[str, Any]], Awaitable[int]]

ROW_PROCESSORS: dict[str, RowProcessor] = {
    "vaccination": process_vaccination_row,
    "parasite_control": process_parasite_control_row,
    "mobile_clinic": process_mobile_clinic_row,
    "laboratory": process_laboratory_row,
    "equine_health": process_equine_health_row,
}


class BatchState(str, Enum):
    RECEIVED = "received"
    PARSING = "parsing"
    VALIDATING = "validating"
    PROCESSING = "processing"
    COMPLETED = "completed"


# ---------------------------------------------------------------------------
# Per-row execution
# ---------------------------------------------------------------------------

async def run_row(
    processor: RowProcessor,
    ctx: RowContext,
    row_number: int,
    row: Mapping[str, Any],
) -> ImportOutcome:
    """Run one row to an outcome; failures are returned, never raised."""
    try:
        record_id = await processor(ctx, row_number, row)
    except RowValidationError as e:
        return ImportOutcome(row=row_number, error=RowError(row_number, e.field, e.message))
    except StoreError as e:
        log.warning("Row %d persistence failure: %s", row_number, e)
        return ImportOutcome(row=row_number, error=RowError(row_number, "persistence", str(e)))
    except Exception as e:
        log.exception("Row %d failed unexpectedly", row_number)
        return ImportOutcome(row=row_number, error=RowError(row_number, "processing", f"{type(e).__name__}: {e}"))
    return ImportOutcome(row=row_number, record_id=record_id)


def _record(report: BatchReport, outcome: ImportOutcome) -> None:
    if outcome.ok:
        report.success_rows += 1
        report.imported_record_ids.append(outcome.record_id)
    else:
        report.error_rows += 1
        report.errors.append(outcome.error)


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

def validate_columns(rows: list[SourceRow], aliases: AliasTable) -> None:
    """FileError when not a single column maps to a known field."""
    headers = {key for row in rows for key in row.values.keys()}
    if not any(aliases.is_mapped(h) for h in headers):
        raise FileError(f"no recognizable columns in file (found: {sorted(headers)[:10]})")


async def process_rows(
    rows: list[SourceRow],
    processor: RowProcessor,
    ctx: RowContext,
    report: BatchReport,
    group_size: int = DEFAULT_GROUP_SIZE,
    timeout: float | None = None,
) -> None:
    """Run `rows` in ordered groups of `group_size`, recording outcomes on `report`.

    Outcomes are numbered by file position; blank rows leave gaps.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout if timeout is not None else None
    total_groups = (len(rows) + group_size - 1) // group_size

    for group_index, start in enumerate(range(0, len(rows), group_size)):
        group = rows[start:start + group_size]
        remaining = deadline - loop.time() if deadline is not None else None
        if remaining is not None and remaining <= 0:
            report.timed_out = True
            report.not_attempted_rows.extend(r.number for r in rows[start:])
            log.warning("Batch timed out; %d rows not attempted", len(rows) - start)
            return

        tasks = [
            asyncio.ensure_future(run_row(processor, ctx, r.number, r.values))
            for r in group
        ]
        done, pending = await asyncio.wait(tasks, timeout=remaining)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        for r, task in zip(group, tasks):
            if task in done:
                _record(report, task.result())
            else:
                _record(report, ImportOutcome(
                    row=r.number,
                    error=RowError(r.number, "processing", "row did not finish before the batch timeout"),
                ))
        log.debug("Group %d/%d done", group_index + 1, total_groups)

        if pending:
            report.timed_out = True
            report.not_attempted_rows.extend(r.number for r in rows[start + len(group):])
            log.warning("Batch timed out; %d rows not attempted", len(report.not_attempted_rows))
            return


async def import_batch(
    file_buffer: bytes,
    file_name: str,
    acting_user_id: str,
    *,
    kind: str,
    store: RecordStore,
    group_size: int = DEFAULT_GROUP_SIZE,
    timeout: float | None = None,
    aliases: AliasTable | None = None,
    enums: EnumTable | None = None,
    today: date | None = None,
) -> BatchReport:
    """Import one file of `kind` records and return its BatchReport.

    Raises:
        FileError: the file cannot be parsed or has no usable columns.
        ValueError: unknown kind, missing acting user, or group_size < 1.
    """
    if kind not in ROW_PROCESSORS:
        raise ValueError(f"unknown record kind {kind!r}; expected one of {sorted(ROW_PROCESSORS)}")
    if not acting_user_id:
        raise ValueError("acting_user_id is required")
    if group_size < 1:
        raise ValueError("group_size must be at least 1")

    report = BatchReport(state=BatchState.RECEIVED.value)
    aliases = aliases or default_alias_table()
    enums = enums or default_enum_table()

    report.state = BatchState.PARSING.value
    rows = parse_tabular(file_buffer, file_name)
    report.total_rows = len(rows)
    report.counters.rows_read = len(rows)

    report.state = BatchState.VALIDATING.value
    validate_columns(rows, aliases)

    report.state = BatchState.PROCESSING.value
    ctx = RowContext(
        store=store,
        acting_user_id=acting_user_id,
        aliases=aliases,
        enums=enums,
        counters=report.counters,
        warnings=report.warnings,
        today=today or date.today(),
    )
    log.info("Importing %d %s rows from %s in groups of %d", len(rows), kind, file_name, group_size)
    await process_rows(rows, ROW_PROCESSORS[kind], ctx, report, group_size, timeout)

    report.counters.rows_succeeded = report.success_rows
    report.counters.rows_failed = report.error_rows
    report.counters.rows_not_attempted = len(report.not_attempted_rows)
    report.state = BatchState.COMPLETED.value
    return report

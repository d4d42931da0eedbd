"""Command-line entry point for field-form imports.

    vetrecord-import --kind vaccination --file campaign.xlsx \
        --acting-user-id 64f1c2 --db-dsn postgresql://...
    python -m vetrecord_etl.cli --kind laboratory --file samples.csv \
        --acting-user-id 64f1c2 --dry-run
"""

from __future__ import annotations

import asyncio
import logging
import sys
import uuid
from datetime import datetime
from pathlib import Path

import click
import psycopg

from vetrecord_etl.batch import DEFAULT_GROUP_SIZE, ROW_PROCESSORS, import_batch
from vetrecord_etl.enums import EnumTableValidationError, load_enum_table
from vetrecord_etl.fields import AliasTableValidationError, load_alias_table
from vetrecord_etl.shared import BatchReport, FileError, RejectWriter, write_run_report
from vetrecord_etl.store import MemoryRecordStore, PgRecordStore
from vetrecord_etl.tabular import parse_tabular


def build_summary(report: BatchReport, dry_run: bool) -> str:
    c = report.counters
    lines = [
        f"Import summary (dry_run={dry_run}, state={report.state})",
        f"  rows:           {report.total_rows} total / {report.success_rows} imported / "
        f"{report.error_rows} failed / {len(report.not_attempted_rows)} not attempted",
        f"  clients:        {c.clients_inserted} inserted / {c.clients_matched_existing} matched "
        f"/ {c.clients_enriched} enriched",
        f"  villages:       {c.villages_inserted} inserted / {c.villages_matched_existing} matched",
        f"  holding codes:  {c.holding_codes_inserted} inserted / {c.holding_codes_matched_existing} matched "
        f"/ {c.holding_code_ambiguities} ambiguous",
        f"  conflicts:      {c.duplicate_key_refetches} resolved by re-fetch",
    ]
    if report.timed_out:
        lines.append("  TIMED OUT before all rows were attempted")
    for warning in report.warnings:
        lines.append(f"  warning: {warning}")
    return "\n".join(lines)


async def _run(
    buffer: bytes,
    file_name: str,
    kind: str,
    acting_user_id: str,
    db_dsn: str | None,
    dry_run: bool,
    group_size: int,
    timeout_seconds: float | None,
    aliases_file: str | None,
    enums_file: str | None,
) -> BatchReport:
    aliases = load_alias_table(Path(aliases_file)) if aliases_file else None
    enums = load_enum_table(Path(enums_file)) if enums_file else None
    kwargs = dict(
        kind=kind,
        group_size=group_size,
        timeout=timeout_seconds,
        aliases=aliases,
        enums=enums,
    )
    if dry_run:
        return await import_batch(buffer, file_name, acting_user_id, store=MemoryRecordStore(), **kwargs)
    async with await psycopg.AsyncConnection.connect(db_dsn, autocommit=True) as conn:
        return await import_batch(buffer, file_name, acting_user_id, store=PgRecordStore(conn), **kwargs)


@click.command()
@click.option("--kind", required=True, type=click.Choice(sorted(ROW_PROCESSORS)), help="Record kind in the file")
@click.option("--file", "file_path", required=True, type=click.Path(exists=True, dir_okay=False), help="CSV or XLSX export")
@click.option("--acting-user-id", required=True, help="User recorded as creator of every imported row")
@click.option("--db-dsn", default=None, envvar="VETRECORD_DB_DSN", help="PostgreSQL DSN (or $VETRECORD_DB_DSN)")
@click.option("--dry-run", is_flag=True, default=False, help="Run against an in-memory store; nothing is written")
@click.option("--group-size", default=DEFAULT_GROUP_SIZE, type=click.IntRange(min=1), show_default=True,
              help="Rows processed concurrently per group")
@click.option("--timeout-seconds", default=None, type=float, help="Overall batch time budget")
@click.option("--max-reject-rate", default=1.0, type=float, show_default=True,
              help="Exit non-zero when failed/total exceeds this fraction")
@click.option("--rejects-path", default="./artifacts/rejects/import_rejects.csv", type=click.Path(), show_default=True)
@click.option("--aliases-file", default=None, type=click.Path(exists=True, dir_okay=False), help="Override field alias YAML")
@click.option("--enums-file", default=None, type=click.Path(exists=True, dir_okay=False), help="Override enum synonym YAML")
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option("--log-level", default="WARNING", type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]), show_default=True)
def main(
    kind: str,
    file_path: str,
    acting_user_id: str,
    db_dsn: str | None,
    dry_run: bool,
    group_size: int,
    timeout_seconds: float | None,
    max_reject_rate: float,
    rejects_path: str,
    aliases_file: str | None,
    enums_file: str | None,
    run_id: str | None,
    log_level: str,
) -> None:
    """Import a livestock-health field-form export into the record store."""
    logging.basicConfig(level=log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.utcnow().isoformat()

    if not dry_run and not db_dsn:
        click.echo(f"[{run_id}] ERROR: --db-dsn (or VETRECORD_DB_DSN) is required unless --dry-run", err=True)
        sys.exit(1)

    click.echo(f"[{run_id}] Starting {kind} import of {file_path} (dry_run={dry_run})")
    path = Path(file_path)
    buffer = path.read_bytes()

    try:
        report = asyncio.run(_run(
            buffer, path.name, kind, acting_user_id, db_dsn, dry_run,
            group_size, timeout_seconds, aliases_file, enums_file,
        ))
    except FileError as e:
        click.echo(f"[{run_id}] FATAL: {e}", err=True)
        sys.exit(1)
    except (AliasTableValidationError, EnumTableValidationError) as e:
        click.echo(f"[{run_id}] FATAL: invalid configuration: {e}", err=True)
        sys.exit(1)
    except psycopg.OperationalError as e:
        click.echo(f"[{run_id}] FATAL: cannot connect to database: {e}", err=True)
        sys.exit(1)

    if report.errors:
        rows = {r.number: r.values for r in parse_tabular(buffer, path.name)}
        rejects = RejectWriter(Path(rejects_path))
        try:
            for error in report.errors:
                rejects.write(rows[error.row], error.field, error.message)
        finally:
            rejects.close()
        click.echo(f"[{run_id}] Rejected rows written to {rejects_path}")

    click.echo(build_summary(report, dry_run))
    report_path = write_run_report(
        run_id, started_at, kind, dry_run, {"file_path": str(path)}, report,
    )
    click.echo(f"[{run_id}] Run report: {report_path}")

    reject_rate = report.error_rows / report.total_rows if report.total_rows else 0.0
    if reject_rate > max_reject_rate:
        click.echo(
            f"[{run_id}] Reject rate {reject_rate:.1%} exceeds {max_reject_rate:.1%} — exiting non-zero",
            err=True,
        )
        sys.exit(1)
    if report.timed_out:
        click.echo(f"[{run_id}] Batch timed out — exiting non-zero", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()

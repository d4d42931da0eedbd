"""vetrecord_etl.import_laboratory

Row processor for laboratory sample submissions. The owner is resolved like
every other kind and also embedded as a snapshot, since lab reports are read
without joining back to the client table.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Mapping

from vetrecord_etl.normalize import parse_count
from vetrecord_etl.records import (
    ANIMAL_FIELDS,
    CLIENT_FIELDS,
    ClientSnapshot,
    Coordinates,
    collect_custom_data,
    resolve_animal_counts,
    resolve_client_refs,
    resolve_coordinates,
    resolve_event_dates,
    resolve_serial_no,
    text,
    to_row,
)
from vetrecord_etl.shared import RowContext, RowValidationError

TABLE = "lab_sample"
SERIAL_PREFIX = "LAB"
# No request sub-record is kept for samples, so only the event date is consumed.
CONSUMED_FIELDS = CLIENT_FIELDS + ANIMAL_FIELDS + (
    "event_date",
    "serial_no",
    "remarks",
    "latitude",
    "longitude",
    "other_species",
    "positive_cases",
    "negative_cases",
    "sample_number",
    "sample_code",
    "collector",
    "sample_type",
    "test_results",
)


@dataclass
class LabSample:
    serial_no: str
    sample_code: str
    event_date: date
    client_id: int
    village_id: int | None
    holding_code_id: int | None
    client: ClientSnapshot
    collector: str | None
    sample_type: str
    sample_number: int
    species_counts: dict[str, int]
    positive_cases: int
    negative_cases: int
    test_results: str | None
    coordinates: Coordinates | None
    remarks: str | None
    created_by: str
    custom_data: dict[str, Any] = field(default_factory=dict)


async def process_laboratory_row(ctx: RowContext, row_number: int, row: Mapping[str, Any]) -> int:
    dates = resolve_event_dates(ctx, row)
    aliases = ctx.aliases

    species_counts = resolve_animal_counts(ctx, row)
    species_counts["other"] = parse_count(aliases.resolve(row, "other_species"))
    positive = parse_count(aliases.resolve(row, "positive_cases"))
    negative = parse_count(aliases.resolve(row, "negative_cases"))
    sample_number = parse_count(aliases.resolve(row, "sample_number")) or max(positive + negative, 1)
    if positive + negative > sample_number:
        raise RowValidationError(
            "Positive Cases",
            f"positive ({positive}) + negative ({negative}) cases exceed samples number ({sample_number})",
        )

    refs = await resolve_client_refs(ctx, row_number, row)
    serial_no = resolve_serial_no(ctx, row, SERIAL_PREFIX)
    record = LabSample(
        serial_no=serial_no,
        sample_code=text(ctx, row, "sample_code") or serial_no,
        event_date=dates.event_date,
        client_id=refs.client_id,
        village_id=refs.village_id,
        holding_code_id=refs.holding_code_id,
        client=refs.snapshot,
        collector=text(ctx, row, "collector"),
        sample_type=ctx.enums.normalize("sample_type", aliases.resolve(row, "sample_type")),
        sample_number=sample_number,
        species_counts=species_counts,
        positive_cases=positive,
        negative_cases=negative,
        test_results=text(ctx, row, "test_results"),
        coordinates=resolve_coordinates(ctx, row),
        remarks=text(ctx, row, "remarks"),
        created_by=ctx.acting_user_id,
        custom_data=collect_custom_data(ctx, row, CONSUMED_FIELDS),
    )
    created = await ctx.store.create(TABLE, to_row(record))
    ctx.counters.records_inserted += 1
    return created["id"]

"""vetrecord_etl.import_equine_health

Row processor for equine health visits.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Mapping

from vetrecord_etl.normalize import parse_bool, parse_count
from vetrecord_etl.records import (
    COMMON_FIELDS,
    ClientSnapshot,
    Coordinates,
    RequestRecord,
    collect_custom_data,
    resolve_client_refs,
    resolve_coordinates,
    resolve_event_dates,
    resolve_serial_no,
    text,
    to_row,
)
from vetrecord_etl.shared import RowContext

TABLE = "equine_health_visit"
SERIAL_PREFIX = "EH"
UNSPECIFIED = "غير محدد"
CONSUMED_FIELDS = COMMON_FIELDS + (
    "farm_location",
    "supervisor",
    "vehicle_no",
    "horse_count",
    "horse_total",
    "intervention_category",
    "diagnosis",
    "treatment",
    "follow_up_required",
    "follow_up_date",
)


@dataclass
class EquineHealthVisit:
    serial_no: str
    event_date: date
    client_id: int
    village_id: int | None
    holding_code_id: int | None
    client: ClientSnapshot
    farm_location: str | None
    supervisor: str | None
    vehicle_no: str | None
    coordinates: Coordinates | None
    horse_count: int
    intervention_category: str
    intervention_categories: list[str]
    diagnosis: str
    treatment: str
    request: RequestRecord
    follow_up_required: bool
    follow_up_date: date | None
    remarks: str | None
    created_by: str
    custom_data: dict[str, Any] = field(default_factory=dict)


async def process_equine_health_row(ctx: RowContext, row_number: int, row: Mapping[str, Any]) -> int:
    dates = resolve_event_dates(ctx, row)
    refs = await resolve_client_refs(ctx, row_number, row)
    aliases = ctx.aliases
    categories = ctx.enums.normalize_list(
        "equine_intervention_category", aliases.resolve(row, "intervention_category")
    )
    horse_count = (
        parse_count(aliases.resolve(row, "horse_count"))
        or parse_count(aliases.resolve(row, "horse_total"))
        or 1
    )

    record = EquineHealthVisit(
        serial_no=resolve_serial_no(ctx, row, SERIAL_PREFIX),
        event_date=dates.event_date,
        client_id=refs.client_id,
        village_id=refs.village_id,
        holding_code_id=refs.holding_code_id,
        client=refs.snapshot,
        farm_location=text(ctx, row, "farm_location") or refs.snapshot.village,
        supervisor=text(ctx, row, "supervisor"),
        vehicle_no=text(ctx, row, "vehicle_no"),
        coordinates=resolve_coordinates(ctx, row),
        horse_count=horse_count,
        intervention_category=categories.primary,
        intervention_categories=list(categories.values),
        diagnosis=text(ctx, row, "diagnosis", UNSPECIFIED),
        treatment=text(ctx, row, "treatment", UNSPECIFIED),
        request=dates.request,
        follow_up_required=parse_bool(aliases.resolve(row, "follow_up_required")) or dates.follow_up_date is not None,
        follow_up_date=dates.follow_up_date,
        remarks=text(ctx, row, "remarks"),
        created_by=ctx.acting_user_id,
        custom_data=collect_custom_data(ctx, row, CONSUMED_FIELDS),
    )
    created = await ctx.store.create(TABLE, to_row(record))
    ctx.counters.records_inserted += 1
    return created["id"]

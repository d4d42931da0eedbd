"""vetrecord_etl.import_vaccination

Row processor for vaccination campaign forms.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Mapping

from vetrecord_etl.records import (
    COMMON_FIELDS,
    HERD_FIELDS,
    Coordinates,
    HerdCount,
    RequestRecord,
    collect_custom_data,
    resolve_client_refs,
    resolve_coordinates,
    resolve_event_dates,
    resolve_herd_counts,
    resolve_serial_no,
    text,
    to_row,
)
from vetrecord_etl.shared import RowContext

TABLE = "vaccination_event"
SERIAL_PREFIX = "VAC"
CONSUMED_FIELDS = COMMON_FIELDS + HERD_FIELDS + (
    "farm_location",
    "supervisor",
    "team",
    "vehicle_no",
    "vaccine_type",
    "vaccine_category",
    "herd_health",
    "animals_handling",
    "labours",
    "reachable_location",
)


@dataclass
class VaccinationEvent:
    serial_no: str
    event_date: date
    client_id: int
    village_id: int | None
    holding_code_id: int | None
    farm_location: str | None
    supervisor: str | None
    team: str | None
    vehicle_no: str | None
    vaccine_type: str | None
    vaccine_category: str
    coordinates: Coordinates | None
    herd_counts: dict[str, HerdCount]
    herd_health: str
    animals_handling: str
    labours: str
    reachable_location: str
    request: RequestRecord
    remarks: str | None
    created_by: str
    custom_data: dict[str, Any] = field(default_factory=dict)


async def process_vaccination_row(ctx: RowContext, row_number: int, row: Mapping[str, Any]) -> int:
    dates = resolve_event_dates(ctx, row)
    herd_counts = resolve_herd_counts(ctx, row, treated_label="vaccinated")
    refs = await resolve_client_refs(ctx, row_number, row)
    enums, aliases = ctx.enums, ctx.aliases

    record = VaccinationEvent(
        serial_no=resolve_serial_no(ctx, row, SERIAL_PREFIX),
        event_date=dates.event_date,
        client_id=refs.client_id,
        village_id=refs.village_id,
        holding_code_id=refs.holding_code_id,
        farm_location=text(ctx, row, "farm_location") or refs.snapshot.village,
        supervisor=text(ctx, row, "supervisor"),
        team=text(ctx, row, "team"),
        vehicle_no=text(ctx, row, "vehicle_no"),
        vaccine_type=text(ctx, row, "vaccine_type"),
        vaccine_category=enums.normalize("vaccine_category", aliases.resolve(row, "vaccine_category")),
        coordinates=resolve_coordinates(ctx, row),
        herd_counts=herd_counts,
        herd_health=enums.normalize("herd_health", aliases.resolve(row, "herd_health")),
        animals_handling=enums.normalize("animals_handling", aliases.resolve(row, "animals_handling")),
        labours=enums.normalize("labours", aliases.resolve(row, "labours")),
        reachable_location=enums.normalize("reachable_location", aliases.resolve(row, "reachable_location")),
        request=dates.request,
        remarks=text(ctx, row, "remarks"),
        created_by=ctx.acting_user_id,
        custom_data=collect_custom_data(ctx, row, CONSUMED_FIELDS),
    )
    created = await ctx.store.create(TABLE, to_row(record))
    ctx.counters.records_inserted += 1
    return created["id"]

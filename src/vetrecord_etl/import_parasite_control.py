"""vetrecord_etl.import_parasite_control

Row processor for parasite control (spraying / treatment) forms.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Mapping

from vetrecord_etl.normalize import parse_float
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

TABLE = "parasite_control_event"
SERIAL_PREFIX = "PAR"
CONSUMED_FIELDS = COMMON_FIELDS + HERD_FIELDS + (
    "herd_location",
    "supervisor",
    "vehicle_no",
    "insecticide_type",
    "insecticide_method",
    "insecticide_volume_ml",
    "insecticide_status",
    "insecticide_category",
    "animal_barn_size_sqm",
    "breeding_sites",
    "parasite_control_volume",
    "parasite_control_status",
    "herd_health",
    "compliance",
)


@dataclass
class Insecticide:
    type: str | None
    method: str | None
    volume_ml: float | None
    status: str
    category: str | None


@dataclass
class ParasiteControlEvent:
    serial_no: str
    event_date: date
    client_id: int
    village_id: int | None
    holding_code_id: int | None
    herd_location: str | None
    supervisor: str | None
    vehicle_no: str | None
    coordinates: Coordinates | None
    herd_counts: dict[str, HerdCount]
    insecticide: Insecticide
    animal_barn_size_sqm: float | None
    breeding_sites: str | None
    parasite_control_volume: float | None
    parasite_control_status: str | None
    herd_health_status: str
    complying_to_instructions: str
    request: RequestRecord
    remarks: str | None
    created_by: str
    custom_data: dict[str, Any] = field(default_factory=dict)


async def process_parasite_control_row(ctx: RowContext, row_number: int, row: Mapping[str, Any]) -> int:
    dates = resolve_event_dates(ctx, row)
    herd_counts = resolve_herd_counts(ctx, row)
    refs = await resolve_client_refs(ctx, row_number, row)
    enums, aliases = ctx.enums, ctx.aliases

    volume_ml = parse_float(aliases.resolve(row, "insecticide_volume_ml"))
    insecticide = Insecticide(
        type=text(ctx, row, "insecticide_type"),
        method=text(ctx, row, "insecticide_method"),
        volume_ml=volume_ml,
        status=enums.normalize("insecticide_status", aliases.resolve(row, "insecticide_status")),
        category=text(ctx, row, "insecticide_category"),
    )
    control_volume = parse_float(aliases.resolve(row, "parasite_control_volume"))

    record = ParasiteControlEvent(
        serial_no=resolve_serial_no(ctx, row, SERIAL_PREFIX),
        event_date=dates.event_date,
        client_id=refs.client_id,
        village_id=refs.village_id,
        holding_code_id=refs.holding_code_id,
        herd_location=text(ctx, row, "herd_location") or refs.snapshot.village,
        supervisor=text(ctx, row, "supervisor"),
        vehicle_no=text(ctx, row, "vehicle_no"),
        coordinates=resolve_coordinates(ctx, row),
        herd_counts=herd_counts,
        insecticide=insecticide,
        animal_barn_size_sqm=parse_float(aliases.resolve(row, "animal_barn_size_sqm")),
        breeding_sites=text(ctx, row, "breeding_sites"),
        parasite_control_volume=control_volume if control_volume is not None else volume_ml,
        parasite_control_status=text(ctx, row, "parasite_control_status") or insecticide.type,
        herd_health_status=enums.normalize("parasite_herd_health", aliases.resolve(row, "herd_health")),
        complying_to_instructions=enums.normalize("compliance", aliases.resolve(row, "compliance")),
        request=dates.request,
        remarks=text(ctx, row, "remarks"),
        created_by=ctx.acting_user_id,
        custom_data=collect_custom_data(ctx, row, CONSUMED_FIELDS),
    )
    created = await ctx.store.create(TABLE, to_row(record))
    ctx.counters.records_inserted += 1
    return created["id"]

"""vetrecord_etl.import_mobile_clinic

Row processor for mobile clinic visit forms.

Intervention categories may be multi-valued ("Clinical Examination, Lab
Analysis"); the first value is kept as `intervention_category` and the full
list as `intervention_categories`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Mapping

from vetrecord_etl.enums import split_values
from vetrecord_etl.normalize import normalize_space, parse_bool
from vetrecord_etl.records import (
    ANIMAL_FIELDS,
    COMMON_FIELDS,
    Coordinates,
    RequestRecord,
    collect_custom_data,
    resolve_animal_counts,
    resolve_client_refs,
    resolve_coordinates,
    resolve_event_dates,
    resolve_serial_no,
    text,
    to_row,
)
from vetrecord_etl.shared import RowContext

TABLE = "mobile_clinic_visit"
SERIAL_PREFIX = "MC"
CONSUMED_FIELDS = COMMON_FIELDS + ANIMAL_FIELDS + (
    "farm_location",
    "supervisor",
    "vehicle_no",
    "diagnosis",
    "intervention_category",
    "treatment",
    "medications_used",
    "follow_up_required",
    "follow_up_date",
)


@dataclass
class MobileClinicVisit:
    serial_no: str
    event_date: date
    client_id: int
    village_id: int | None
    holding_code_id: int | None
    farm_location: str | None
    supervisor: str | None
    vehicle_no: str | None
    coordinates: Coordinates | None
    animal_counts: dict[str, int]
    diagnosis: str | None
    intervention_category: str
    intervention_categories: list[str]
    treatment: str | None
    medications_used: list[str]
    request: RequestRecord
    follow_up_required: bool
    follow_up_date: date | None
    remarks: str | None
    created_by: str
    custom_data: dict[str, Any] = field(default_factory=dict)


def parse_medications(raw: Any) -> list[str]:
    """Medication names from a JSON list or a delimited string, first spelling kept."""
    names: list[str] = []
    seen: set[str] = set()
    for part in split_values(raw):
        name = normalize_space(part)
        if name is None or name.casefold() in seen:
            continue
        seen.add(name.casefold())
        names.append(name)
    return names


async def process_mobile_clinic_row(ctx: RowContext, row_number: int, row: Mapping[str, Any]) -> int:
    dates = resolve_event_dates(ctx, row)
    refs = await resolve_client_refs(ctx, row_number, row)
    aliases = ctx.aliases
    categories = ctx.enums.normalize_list("intervention_category", aliases.resolve(row, "intervention_category"))
    follow_up_required = parse_bool(aliases.resolve(row, "follow_up_required")) or dates.follow_up_date is not None

    record = MobileClinicVisit(
        serial_no=resolve_serial_no(ctx, row, SERIAL_PREFIX),
        event_date=dates.event_date,
        client_id=refs.client_id,
        village_id=refs.village_id,
        holding_code_id=refs.holding_code_id,
        farm_location=text(ctx, row, "farm_location") or refs.snapshot.village,
        supervisor=text(ctx, row, "supervisor"),
        vehicle_no=text(ctx, row, "vehicle_no"),
        coordinates=resolve_coordinates(ctx, row),
        animal_counts=resolve_animal_counts(ctx, row),
        diagnosis=text(ctx, row, "diagnosis"),
        intervention_category=categories.primary,
        intervention_categories=list(categories.values),
        treatment=text(ctx, row, "treatment"),
        medications_used=parse_medications(aliases.resolve(row, "medications_used")),
        request=dates.request,
        follow_up_required=follow_up_required,
        follow_up_date=dates.follow_up_date,
        remarks=text(ctx, row, "remarks"),
        created_by=ctx.acting_user_id,
        custom_data=collect_custom_data(ctx, row, CONSUMED_FIELDS),
    )
    created = await ctx.store.create(TABLE, to_row(record))
    ctx.counters.records_inserted += 1
    return created["id"]

"""vetrecord_etl.records

Canonical record building blocks shared by the five row processors:
dates and the request sub-record, coordinates, herd and animal counts,
serial numbers, the client/village/holding-code bundle, and the residual
custom-data bag.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Iterable, Mapping

from vetrecord_etl.entities import (
    extract_client_fields,
    resolve_client,
    resolve_holding_code,
    resolve_village,
)
from vetrecord_etl.fields import is_blank, render_value
from vetrecord_etl.normalize import normalize_space, parse_count, parse_date, parse_float
from vetrecord_etl.shared import RowContext, RowValidationError

SPECIES = ("sheep", "goats", "camel", "cattle", "horse")
HERD_SUBCOUNTS = ("young", "female", "treated")

# Canonical fields each shared helper reads; processors list the ones they
# consume so the remaining columns land in custom_data.
CLIENT_FIELDS = (
    "client_name",
    "client_national_id",
    "client_phone",
    "client_birth_date",
    "client_village",
    "client_address",
    "sector",
    "holding_code",
)
REQUEST_FIELDS = ("event_date", "request_date", "request_situation", "request_fulfilling_date")
COMMON_FIELDS = CLIENT_FIELDS + REQUEST_FIELDS + ("serial_no", "remarks", "latitude", "longitude")
ANIMAL_FIELDS = tuple(f"{species}_total" for species in SPECIES)
HERD_FIELDS = ANIMAL_FIELDS + tuple(
    f"{species}_{part}" for species in SPECIES for part in HERD_SUBCOUNTS
)


# ---------------------------------------------------------------------------
# Dates / request
# ---------------------------------------------------------------------------

@dataclass
class RequestRecord:
    date: date
    situation: str
    fulfilling_date: date | None = None


@dataclass
class EventDates:
    event_date: date
    request: RequestRecord
    follow_up_date: date | None = None


def _parse_required_date(ctx: RowContext, raw: Any) -> date:
    parsed = parse_date(raw, ctx.today)
    if parsed is None:
        raise RowValidationError("Date", f"unrecognized date value {render_value(raw)!r}")
    return parsed


def resolve_event_dates(ctx: RowContext, row: Mapping[str, Any]) -> EventDates:
    """Event date, request sub-record and follow-up date for one row.

    The event date falls back to the request date column; a value that is
    present but not a date fails the row rather than defaulting to today.
    """
    aliases = ctx.aliases
    raw_event = aliases.resolve(row, "event_date")
    raw_request = aliases.resolve(row, "request_date")
    if raw_event is None and raw_request is None:
        raise RowValidationError("Date", "date is required")
    event_date = _parse_required_date(ctx, raw_event if raw_event is not None else raw_request)

    request_date = parse_date(raw_request, ctx.today) or event_date
    situation = ctx.enums.normalize("request_situation", aliases.resolve(row, "request_situation"))
    fulfilling = parse_date(aliases.resolve(row, "request_fulfilling_date"), ctx.today)
    if fulfilling is not None and fulfilling < request_date:
        fulfilling = request_date
    if fulfilling is None and situation == "Closed":
        fulfilling = request_date

    return EventDates(
        event_date=event_date,
        request=RequestRecord(date=request_date, situation=situation, fulfilling_date=fulfilling),
        follow_up_date=parse_date(aliases.resolve(row, "follow_up_date"), ctx.today),
    )


# ---------------------------------------------------------------------------
# Coordinates
# ---------------------------------------------------------------------------

@dataclass
class Coordinates:
    latitude: float | None
    longitude: float | None


def resolve_coordinates(ctx: RowContext, row: Mapping[str, Any]) -> Coordinates | None:
    """Coordinates or None; missing values are never stored as (0, 0)."""
    lat = parse_float(ctx.aliases.resolve(row, "latitude"))
    lng = parse_float(ctx.aliases.resolve(row, "longitude"))
    if lat is not None and not -90 <= lat <= 90:
        lat = None
    if lng is not None and not -180 <= lng <= 180:
        lng = None
    if lat is None and lng is None:
        return None
    return Coordinates(latitude=lat, longitude=lng)


# ---------------------------------------------------------------------------
# Herd / animal counts
# ---------------------------------------------------------------------------

@dataclass
class HerdCount:
    total: int = 0
    young: int = 0
    female: int = 0
    treated: int = 0

    @property
    def is_empty(self) -> bool:
        return not (self.total or self.young or self.female or self.treated)


def resolve_herd_counts(
    ctx: RowContext,
    row: Mapping[str, Any],
    treated_label: str = "treated",
) -> dict[str, HerdCount]:
    """Per-species herd counts; every sub-count must stay within the total.

    `treated_label` names the treated count in error messages ("vaccinated"
    on vaccination forms).
    """
    counts: dict[str, HerdCount] = {}
    for species in SPECIES:
        herd = HerdCount(
            total=parse_count(ctx.aliases.resolve(row, f"{species}_total")),
            young=parse_count(ctx.aliases.resolve(row, f"{species}_young")),
            female=parse_count(ctx.aliases.resolve(row, f"{species}_female")),
            treated=parse_count(ctx.aliases.resolve(row, f"{species}_treated")),
        )
        for sub in HERD_SUBCOUNTS:
            value = getattr(herd, sub)
            if value > herd.total:
                label = treated_label if sub == "treated" else sub
                raise RowValidationError(
                    f"{species}.{label}",
                    f"{species}: {label} count ({value}) exceeds total ({herd.total})",
                )
        counts[species] = herd
    return counts


def resolve_animal_counts(ctx: RowContext, row: Mapping[str, Any]) -> dict[str, int]:
    return {
        species: parse_count(ctx.aliases.resolve(row, f"{species}_total"))
        for species in SPECIES
    }


# ---------------------------------------------------------------------------
# Serial number / custom data / text
# ---------------------------------------------------------------------------

def resolve_serial_no(ctx: RowContext, row: Mapping[str, Any], prefix: str) -> str:
    """Serial from the file, or PREFIX-XXXXXXXX."""
    given = ctx.aliases.resolve_str(row, "serial_no")
    if given:
        return given
    return f"{prefix}-{uuid.uuid4().hex[:8].upper()}"


def collect_custom_data(
    ctx: RowContext, row: Mapping[str, Any], consumed: Iterable[str]
) -> dict[str, Any]:
    """Non-blank columns the `consumed` fields did not read, under their original header.

    A column that aliases some other kind's field (a vaccine type on a clinic
    row) is kept here rather than dropped.
    """
    used = ctx.aliases.consumed_columns(row, consumed)
    return {
        key: value
        for key, value in row.items()
        if key and key not in used and not is_blank(value)
    }


def text(ctx: RowContext, row: Mapping[str, Any], name: str, default: str | None = None) -> str | None:
    value = normalize_space(ctx.aliases.resolve_str(row, name))
    return value if value is not None else default


# ---------------------------------------------------------------------------
# Client / village / holding code bundle
# ---------------------------------------------------------------------------

@dataclass
class ClientSnapshot:
    name: str | None
    national_id: str
    phone: str | None
    village: str | None
    birth_date: date | None = None


@dataclass
class ClientRefs:
    client_id: int
    village_id: int | None
    holding_code_id: int | None
    snapshot: ClientSnapshot = field(repr=False)


async def resolve_client_refs(ctx: RowContext, row_number: int, row: Mapping[str, Any]) -> ClientRefs:
    """Resolve village, client and holding code for one row, in that order."""
    fields = extract_client_fields(ctx, row)
    village_id = await resolve_village(ctx, fields.village, text(ctx, row, "sector"))
    client = await resolve_client(ctx, fields, village_id)
    holding_code_id = await resolve_holding_code(
        ctx, row_number, ctx.aliases.resolve(row, "holding_code"), village_id
    )
    return ClientRefs(
        client_id=client["id"],
        village_id=village_id,
        holding_code_id=holding_code_id,
        snapshot=ClientSnapshot(
            name=client.get("name") or fields.name,
            national_id=client["national_id"],
            phone=client.get("phone"),
            village=fields.village,
            birth_date=client.get("birth_date") or fields.birth_date,
        ),
    )


def to_row(record: Any) -> dict[str, Any]:
    """Flatten a record dataclass into store columns (nested parts stay as dicts)."""
    return asdict(record)

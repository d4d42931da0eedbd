"""vetrecord_etl.entities

Find-or-create resolution for the shared entities every record references:
Client, Village and HoldingCode.

Each resolver follows the same sequence: look up by natural key, create when
absent, and on DuplicateKeyError re-fetch the row a concurrent sibling just
inserted. Existing entities only gain missing fields, except that a client's
generated phone or national ID gives way to a real one from a later row.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Mapping

from vetrecord_etl.normalize import (
    digits_only,
    normalize_name,
    normalize_phone,
    normalize_space,
    parse_date,
    stable_digits,
    stable_hex,
)
from vetrecord_etl.shared import RowContext, RowValidationError
from vetrecord_etl.store import DuplicateKeyError, PersistenceError

log = logging.getLogger(__name__)

_NATIONAL_ID_RE = re.compile(r"^\d{10,14}$")
_ARABIC_RE = re.compile(r"[\u0600-\u06FF]")


# ---------------------------------------------------------------------------
# Client input
# ---------------------------------------------------------------------------

@dataclass
class ClientFields:
    name: str | None
    national_id: str | None
    phone: str | None
    birth_date: date | None
    village: str | None
    address: str | None


def extract_client_fields(ctx: RowContext, row: Mapping[str, Any]) -> ClientFields:
    aliases = ctx.aliases
    national_id = digits_only(aliases.resolve(row, "client_national_id"))
    if national_id is not None and not _NATIONAL_ID_RE.match(national_id):
        national_id = None
    return ClientFields(
        name=normalize_space(aliases.resolve(row, "client_name")),
        national_id=national_id,
        phone=normalize_phone(aliases.resolve(row, "client_phone")),
        birth_date=parse_date(aliases.resolve(row, "client_birth_date"), ctx.today),
        village=normalize_space(aliases.resolve(row, "client_village")),
        address=normalize_space(aliases.resolve(row, "client_address")),
    )


def synthesize_national_id(name_norm: str, phone: str | None) -> str:
    """10-digit identifier derived from (name, phone); always starts with 9."""
    return "9" + stable_digits(f"{name_norm}|{phone or ''}", 9)


def placeholder_phone(national_id: str) -> str:
    """Well-formed Saudi mobile number derived from the national id."""
    return "+9665" + stable_digits(f"phone|{national_id}", 8)


# ---------------------------------------------------------------------------
# Village
# ---------------------------------------------------------------------------

async def resolve_village(ctx: RowContext, raw_name: str | None, sector: str | None = None) -> int | None:
    """Return the village id for a free-text name (either script), creating it if needed."""
    name = normalize_space(raw_name)
    norm = normalize_name(name)
    if name is None or norm is None:
        return None

    store = ctx.store
    found = await store.find_one("village", {"normalized_name": norm})
    if found is None:
        found = await store.find_one("village", {"normalized_name_en": norm})
    if found is not None:
        ctx.counters.villages_matched_existing += 1
        return found["id"]

    data = {
        "name": name,
        "name_en": None if _ARABIC_RE.search(name) else name,
        "normalized_name": norm,
        "normalized_name_en": None if _ARABIC_RE.search(name) else norm,
        "serial": f"VLG-{stable_hex(norm)}",
        "sector": sector,
        "created_by": ctx.acting_user_id,
    }
    try:
        created = await store.create("village", data)
    except DuplicateKeyError:
        ctx.counters.duplicate_key_refetches += 1
        log.debug("Village %r created concurrently; re-fetching", name)
        found = await store.find_one("village", {"normalized_name": norm})
        if found is None:
            raise PersistenceError(f"village {name!r} conflicted on create but cannot be re-fetched")
        ctx.counters.villages_matched_existing += 1
        return found["id"]
    ctx.counters.villages_inserted += 1
    return created["id"]


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

def _client_enrichment(fields: ClientFields, village_id: int | None) -> dict[str, Any]:
    return {
        "name": fields.name,
        "normalized_name": normalize_name(fields.name),
        "phone": fields.phone,
        "birth_date": fields.birth_date,
        "village_id": village_id,
        "detailed_address": fields.address,
    }


def _generated_replacements(client: dict[str, Any], fields: ClientFields) -> dict[str, Any]:
    """Real row values for columns the client only holds generated values in."""
    replacements: dict[str, Any] = {}
    if fields.phone is not None and client.get("phone_generated"):
        replacements["phone"] = fields.phone
        replacements["phone_generated"] = False
    if fields.national_id is not None and client.get("national_id_generated"):
        replacements["national_id"] = fields.national_id
        replacements["national_id_generated"] = False
    return replacements


async def _replace_generated(
    ctx: RowContext, client: dict[str, Any], fields: ClientFields
) -> dict[str, Any]:
    replacements = _generated_replacements(client, fields)
    if not replacements:
        return client
    try:
        client = await ctx.store.replace("client", client["id"], replacements)
    except DuplicateKeyError:
        if "national_id" not in replacements:
            raise
        # The real national ID already belongs to another client row.
        log.warning(
            "Client %s keeps generated national ID; %s is taken",
            client["id"], fields.national_id,
        )
        replacements.pop("national_id")
        replacements.pop("national_id_generated")
        if not replacements:
            return client
        client = await ctx.store.replace("client", client["id"], replacements)
    ctx.counters.clients_enriched += 1
    return client


async def _matched_client(
    ctx: RowContext,
    client: dict[str, Any],
    fields: ClientFields,
    village_id: int | None,
) -> dict[str, Any]:
    ctx.counters.clients_matched_existing += 1
    client = await _replace_generated(ctx, client, fields)
    enrichment = _client_enrichment(fields, village_id)
    if any(client.get(k) in (None, "") and v not in (None, "") for k, v in enrichment.items()):
        client = await ctx.store.fill_missing("client", client["id"], enrichment)
        ctx.counters.clients_enriched += 1
    return client


async def resolve_client(
    ctx: RowContext,
    fields: ClientFields,
    village_id: int | None,
) -> dict[str, Any]:
    """Return the stored client row for the row's owner.

    Lookup order: national id, then (normalized name, phone), then a
    same-name client whose phone is still a placeholder. A matched client
    swaps its generated phone or national ID for the row's real one. A row
    with neither a name nor an identifier cannot be attributed and fails on
    Name.
    """
    store = ctx.store
    name_norm = normalize_name(fields.name)

    if fields.national_id is None and name_norm is None:
        raise RowValidationError("Name", "client name or national ID is required")

    if fields.national_id is not None:
        found = await store.find_one("client", {"national_id": fields.national_id})
        if found is not None:
            return await _matched_client(ctx, found, fields, village_id)

    if name_norm is not None and fields.phone is not None:
        found = await store.find_one("client", {"normalized_name": name_norm, "phone": fields.phone})
        if found is not None:
            return await _matched_client(ctx, found, fields, village_id)

    if name_norm is not None:
        where: dict[str, Any] = {"normalized_name": name_norm, "phone_generated": True}
        if fields.national_id is not None:
            # never merge two different real identifiers
            where["national_id_generated"] = True
        found = await store.find_one("client", where)
        if found is not None:
            return await _matched_client(ctx, found, fields, village_id)

    national_id = fields.national_id or synthesize_national_id(name_norm or "", fields.phone)
    data = {
        "national_id": national_id,
        "national_id_generated": fields.national_id is None,
        "name": fields.name,
        "normalized_name": name_norm,
        "phone": fields.phone or placeholder_phone(national_id),
        "phone_generated": fields.phone is None,
        "birth_date": fields.birth_date,
        "village_id": village_id,
        "detailed_address": fields.address,
        "status": "active",
        "created_by": ctx.acting_user_id,
    }
    try:
        created = await store.create("client", data)
    except DuplicateKeyError:
        ctx.counters.duplicate_key_refetches += 1
        log.debug("Client %s created concurrently; re-fetching", national_id)
        found = await store.find_one("client", {"national_id": national_id})
        if found is None:
            raise PersistenceError(
                f"client {national_id} conflicted on create but cannot be re-fetched"
            )
        if fields.national_id is None and found.get("normalized_name") != name_norm:
            raise PersistenceError(
                f"generated national ID {national_id} already belongs to another client"
            )
        return await _matched_client(ctx, found, fields, village_id)
    ctx.counters.clients_inserted += 1
    return created


# ---------------------------------------------------------------------------
# HoldingCode
# ---------------------------------------------------------------------------

async def resolve_holding_code(
    ctx: RowContext,
    row_number: int,
    raw_code: Any,
    village_id: int | None,
) -> int | None:
    """Return the id of the (code, village) pairing; None when no code is given.

    A code already registered under a different village keeps that pairing;
    the new pairing is registered alongside it and a warning is recorded.
    """
    code = normalize_space(raw_code)
    if code is None:
        return None
    if isinstance(raw_code, float) and raw_code.is_integer():
        code = str(int(raw_code))

    store = ctx.store
    if village_id is None:
        found = await store.find_one("holding_code", {"code": code})
    else:
        found = await store.find_one("holding_code", {"code": code, "village_id": village_id})
    if found is not None:
        ctx.counters.holding_codes_matched_existing += 1
        return found["id"]

    if village_id is not None:
        other = await store.find_one("holding_code", {"code": code})
        if other is not None and other.get("village_id") != village_id:
            ctx.counters.holding_code_ambiguities += 1
            ctx.warn(
                row_number,
                f"holding code {code!r} is already registered for village id "
                f"{other.get('village_id')}; registered it for village id {village_id} as well",
            )
            log.warning("Holding code %s reused across villages %s and %s",
                        code, other.get("village_id"), village_id)

    data = {
        "code": code,
        "village_id": village_id,
        "is_active": True,
        "created_by": ctx.acting_user_id,
    }
    try:
        created = await store.create("holding_code", data)
    except DuplicateKeyError:
        ctx.counters.duplicate_key_refetches += 1
        found = await store.find_one("holding_code", {"code": code, "village_id": village_id})
        if found is None:
            raise PersistenceError(f"holding code {code!r} conflicted on create but cannot be re-fetched")
        ctx.counters.holding_codes_matched_existing += 1
        return found["id"]
    ctx.counters.holding_codes_inserted += 1
    return created["id"]

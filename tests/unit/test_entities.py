"""Unit tests for vetrecord_etl.entities against the in-memory store."""

import asyncio
import re

import pytest

from vetrecord_etl.entities import (
    ClientFields,
    extract_client_fields,
    placeholder_phone,
    resolve_client,
    resolve_holding_code,
    resolve_village,
    synthesize_national_id,
)
from vetrecord_etl.shared import RowValidationError
from vetrecord_etl.store import DuplicateKeyError, MemoryRecordStore, PersistenceError


def _fields(**kw) -> ClientFields:
    base = dict(name=None, national_id=None, phone=None, birth_date=None, village=None, address=None)
    base.update(kw)
    return ClientFields(**base)


# ---------------------------------------------------------------------------
# extract_client_fields
# ---------------------------------------------------------------------------

class TestExtractClientFields:
    def test_bilingual_columns(self, ctx):
        row = {"اسم المربي": " سعد  الحربي ", "رقم الهوية": "١٠٢٣٤٥٦٧٨٩", "جوال": "0501234567"}
        fields = extract_client_fields(ctx, row)
        assert fields.name == "سعد الحربي"
        assert fields.national_id == "1023456789"
        assert fields.phone == "+966501234567"

    def test_short_identifier_is_ignored(self, ctx):
        fields = extract_client_fields(ctx, {"Name": "Saad", "ID": "12345"})
        assert fields.national_id is None

    def test_spreadsheet_float_identifier(self, ctx):
        fields = extract_client_fields(ctx, {"ID": 1023456789.0})
        assert fields.national_id == "1023456789"


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------

class TestSynthesizedIdentifiers:
    def test_ten_numeric_digits(self):
        nid = synthesize_national_id("saad alharbi", "+966501234567")
        assert re.fullmatch(r"\d{10}", nid)

    def test_deterministic(self):
        assert synthesize_national_id("saad", None) == synthesize_national_id("saad", None)

    def test_differs_by_phone(self):
        assert synthesize_national_id("saad", "+966501234567") != synthesize_national_id("saad", "+966501234568")

    def test_placeholder_phone_format(self):
        assert re.fullmatch(r"\+9665\d{8}", placeholder_phone("1023456789"))


# ---------------------------------------------------------------------------
# Village
# ---------------------------------------------------------------------------

class TestResolveVillage:
    def test_creates_then_matches(self, ctx, store):
        first = asyncio.run(resolve_village(ctx, "Al Khabra"))
        second = asyncio.run(resolve_village(ctx, "  al   KHABRA "))
        assert first == second
        assert len(store.rows("village")) == 1
        assert ctx.counters.villages_inserted == 1
        assert ctx.counters.villages_matched_existing == 1

    def test_serial_is_generated(self, ctx, store):
        asyncio.run(resolve_village(ctx, "الخبراء"))
        village = store.rows("village")[0]
        assert re.fullmatch(r"VLG-[0-9A-F]{8}", village["serial"])
        assert village["name_en"] is None
        assert village["created_by"] == "user-42"

    def test_blank_name(self, ctx):
        assert asyncio.run(resolve_village(ctx, "  ")) is None

    def test_concurrent_creation_yields_one_village(self, ctx, store):
        async def run():
            return await asyncio.gather(*(resolve_village(ctx, "Uyun") for _ in range(5)))

        ids = asyncio.run(run())
        assert len(set(ids)) == 1
        assert len(store.rows("village")) == 1
        assert ctx.counters.duplicate_key_refetches == 4


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class TestResolveClient:
    def test_creates_with_generated_identity_and_phone(self, ctx, store):
        client = asyncio.run(resolve_client(ctx, _fields(name="Saad"), None))
        assert re.fullmatch(r"\d{10}", client["national_id"])
        assert client["national_id_generated"] is True
        assert re.fullmatch(r"\+9665\d{8}", client["phone"])
        assert client["phone_generated"] is True
        assert client["created_by"] == "user-42"

    def test_same_name_and_phone_twice_creates_one_client(self, ctx, store):
        fields = _fields(name="Saad Alharbi", phone="+966501234567")
        a = asyncio.run(resolve_client(ctx, fields, None))
        b = asyncio.run(resolve_client(ctx, fields, None))
        assert a["id"] == b["id"]
        assert len(store.rows("client")) == 1

    def test_same_name_without_phone_twice_creates_one_client(self, ctx, store):
        a = asyncio.run(resolve_client(ctx, _fields(name="Saad"), None))
        b = asyncio.run(resolve_client(ctx, _fields(name="saad"), None))
        assert a["id"] == b["id"]
        assert len(store.rows("client")) == 1

    def test_lookup_by_national_id(self, ctx, store):
        a = asyncio.run(resolve_client(ctx, _fields(name="Saad", national_id="1023456789"), None))
        b = asyncio.run(resolve_client(ctx, _fields(national_id="1023456789"), None))
        assert a["id"] == b["id"]
        assert ctx.counters.clients_matched_existing == 1

    def test_existing_client_gains_missing_fields_only(self, ctx, store):
        asyncio.run(resolve_client(ctx, _fields(national_id="1023456789"), None))
        updated = asyncio.run(resolve_client(
            ctx, _fields(name="Saad", national_id="1023456789", phone="+966501234567"), 7,
        ))
        assert updated["name"] == "Saad"
        assert updated["village_id"] == 7
        assert updated["phone"] == "+966501234567"
        assert updated["phone_generated"] is False
        again = asyncio.run(resolve_client(ctx, _fields(name="Other Name", national_id="1023456789"), None))
        assert again["name"] == "Saad"

    def test_real_phone_replaces_placeholder(self, ctx, store):
        first = asyncio.run(resolve_client(ctx, _fields(name="Saad Alharbi"), None))
        second = asyncio.run(resolve_client(ctx, _fields(name="saad alharbi", phone="+966501234567"), None))
        assert second["id"] == first["id"]
        assert second["phone"] == "+966501234567"
        assert second["phone_generated"] is False
        assert len(store.rows("client")) == 1
        third = asyncio.run(resolve_client(ctx, _fields(name="Saad Alharbi", phone="+966501234567"), None))
        assert third["id"] == first["id"]

    def test_nameless_row_after_phone_replacement_reuses_client(self, ctx, store):
        first = asyncio.run(resolve_client(ctx, _fields(name="Saad"), None))
        asyncio.run(resolve_client(ctx, _fields(name="Saad", phone="+966501234567"), None))
        again = asyncio.run(resolve_client(ctx, _fields(name="Saad"), None))
        assert again["id"] == first["id"]
        assert again["phone"] == "+966501234567"
        assert len(store.rows("client")) == 1

    def test_real_national_id_replaces_generated(self, ctx, store):
        first = asyncio.run(resolve_client(ctx, _fields(name="Saad", phone="+966501234567"), None))
        assert first["national_id_generated"] is True
        second = asyncio.run(resolve_client(
            ctx, _fields(name="Saad", phone="+966501234567", national_id="1023456789"), None,
        ))
        assert second["id"] == first["id"]
        assert second["national_id"] == "1023456789"
        assert second["national_id_generated"] is False
        assert len(store.rows("client")) == 1

    def test_real_national_ids_never_merge_by_name(self, ctx, store):
        asyncio.run(resolve_client(ctx, _fields(name="Saad", national_id="1023456789"), None))
        asyncio.run(resolve_client(ctx, _fields(name="Saad", national_id="1098765432"), None))
        assert sorted(c["national_id"] for c in store.rows("client")) == ["1023456789", "1098765432"]

    def test_taken_national_id_keeps_generated_one(self, ctx):
        class TakenIdStore(MemoryRecordStore):
            async def replace(self, table, record_id, data):
                if "national_id" in data:
                    raise DuplicateKeyError(table, ("national_id",))
                return await super().replace(table, record_id, data)

        ctx.store = TakenIdStore()
        first = asyncio.run(resolve_client(ctx, _fields(name="Saad"), None))
        second = asyncio.run(resolve_client(
            ctx, _fields(name="Saad", phone="+966501234567", national_id="1023456789"), None,
        ))
        assert second["id"] == first["id"]
        assert second["national_id"] == first["national_id"]
        assert second["national_id_generated"] is True
        assert second["phone"] == "+966501234567"

    def test_no_name_no_identifier(self, ctx):
        with pytest.raises(RowValidationError) as exc:
            asyncio.run(resolve_client(ctx, _fields(phone="+966501234567"), None))
        assert exc.value.field == "Name"

    def test_concurrent_rows_share_one_client(self, ctx, store):
        async def run():
            return await asyncio.gather(
                resolve_client(ctx, _fields(name="Saad", national_id="1023456789"), None),
                resolve_client(ctx, _fields(national_id="1023456789"), None),
                resolve_client(ctx, _fields(name="Saad", national_id="1023456789"), None),
            )

        clients = asyncio.run(run())
        assert len({c["id"] for c in clients}) == 1
        rows = store.rows("client")
        assert len(rows) == 1
        assert rows[0]["name"] == "Saad"

    def test_conflict_without_refetchable_row_is_persistence_error(self, ctx):
        class FlakyStore(MemoryRecordStore):
            async def create(self, table, data):
                raise DuplicateKeyError(table, ("national_id",))

        ctx.store = FlakyStore()
        with pytest.raises(PersistenceError):
            asyncio.run(resolve_client(ctx, _fields(name="Saad", national_id="1023456789"), None))


# ---------------------------------------------------------------------------
# Holding code
# ---------------------------------------------------------------------------

class TestResolveHoldingCode:
    def test_absent_code(self, ctx, store):
        assert asyncio.run(resolve_holding_code(ctx, 1, None, 3)) is None
        assert store.rows("holding_code") == []

    def test_same_code_same_village_reused(self, ctx, store):
        a = asyncio.run(resolve_holding_code(ctx, 1, "HC-1", 3))
        b = asyncio.run(resolve_holding_code(ctx, 2, " HC-1 ", 3))
        assert a == b
        assert len(store.rows("holding_code")) == 1
        assert ctx.warnings == []

    def test_same_code_other_village_keeps_both_and_warns(self, ctx, store):
        a = asyncio.run(resolve_holding_code(ctx, 1, "HC-1", 3))
        b = asyncio.run(resolve_holding_code(ctx, 2, "HC-1", 4))
        assert a != b
        pairs = {(r["code"], r["village_id"]) for r in store.rows("holding_code")}
        assert pairs == {("HC-1", 3), ("HC-1", 4)}
        assert len(ctx.warnings) == 1
        assert ctx.warnings[0].startswith("row 2:")
        assert ctx.counters.holding_code_ambiguities == 1

    def test_numeric_code_from_spreadsheet(self, ctx, store):
        asyncio.run(resolve_holding_code(ctx, 1, 6820030001295.0, None))
        assert store.rows("holding_code")[0]["code"] == "6820030001295"

    def test_without_village_reuses_any_existing_pairing(self, ctx, store):
        a = asyncio.run(resolve_holding_code(ctx, 1, "HC-9", 3))
        b = asyncio.run(resolve_holding_code(ctx, 2, "HC-9", None))
        assert a == b

    def test_concurrent_same_pair(self, ctx, store):
        async def run():
            return await asyncio.gather(*(resolve_holding_code(ctx, n, "HC-2", 5) for n in range(1, 4)))

        ids = asyncio.run(run())
        assert len(set(ids)) == 1
        assert len(store.rows("holding_code")) == 1

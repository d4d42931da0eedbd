"""Unit test fixtures: in-memory store and row context factory."""

from __future__ import annotations

import csv
import io
from datetime import date

import pytest

from vetrecord_etl.enums import default_enum_table
from vetrecord_etl.fields import default_alias_table
from vetrecord_etl.shared import BatchCounters, RowContext
from vetrecord_etl.store import MemoryRecordStore

TODAY = date(2025, 9, 1)
USER_ID = "user-42"


@pytest.fixture
def store() -> MemoryRecordStore:
    return MemoryRecordStore()


@pytest.fixture
def make_ctx(store):
    def _make(**overrides) -> RowContext:
        values = dict(
            store=store,
            acting_user_id=USER_ID,
            aliases=default_alias_table(),
            enums=default_enum_table(),
            counters=BatchCounters(),
            warnings=[],
            today=TODAY,
        )
        values.update(overrides)
        return RowContext(**values)
    return _make


@pytest.fixture
def ctx(make_ctx) -> RowContext:
    return make_ctx()


def _csv_bytes(rows: list[dict[str, str]]) -> bytes:
    """Render rows as a UTF-8 CSV with a BOM, the way spreadsheet tools export it."""
    fieldnames: list[str] = []
    for row in rows:
        for key in row:
            if key not in fieldnames:
                fieldnames.append(key)
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=fieldnames)
    writer.writeheader()
    writer.writerows(rows)
    return buf.getvalue().encode("utf-8-sig")


@pytest.fixture
def csv_bytes():
    return _csv_bytes

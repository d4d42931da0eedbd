"""vetrecord_etl.store

Record store backends used by entity resolution and the row processors.

Every backend exposes the same four async operations (see RecordStore):
equality lookup, insert that reports uniqueness violations as
DuplicateKeyError, a fill-only update that never overwrites populated
columns, and an overwriting update used to swap generated client values
for real ones. Backends:

  - MemoryRecordStore: in-process tables with declared unique keys; used by
    --dry-run and the unit tests.
  - PgRecordStore: psycopg async connection (autocommit) against the schema
    in migrations/.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
from functools import partial
from typing import Any, Mapping, Protocol

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

log = logging.getLogger(__name__)

TABLES = frozenset({
    "client",
    "village",
    "holding_code",
    "vaccination_event",
    "parasite_control_event",
    "mobile_clinic_visit",
    "lab_sample",
    "equine_health_visit",
})

# Mirrors the unique constraints in migrations/0001_core_entities.sql.
UNIQUE_KEYS: dict[str, tuple[tuple[str, ...], ...]] = {
    "client": (("national_id",),),
    "village": (("normalized_name",), ("serial",)),
    "holding_code": (("code", "village_id"),),
    "vaccination_event": (("serial_no",),),
    "parasite_control_event": (("serial_no",),),
    "mobile_clinic_visit": (("serial_no",),),
    "lab_sample": (("serial_no",),),
    "equine_health_visit": (("serial_no",),),
}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class StoreError(Exception):
    """Base class for record store failures."""


class DuplicateKeyError(StoreError):
    """Raised when an insert violates a uniqueness constraint."""

    def __init__(self, table: str, key: tuple[str, ...] | str, message: str | None = None) -> None:
        self.table = table
        self.key = key
        super().__init__(message or f"duplicate key on {table} {key}")


class PersistenceError(StoreError):
    """Raised when the store rejects a write for any other reason."""


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------

class RecordStore(Protocol):
    async def find_one(self, table: str, where: Mapping[str, Any]) -> dict[str, Any] | None: ...

    async def create(self, table: str, data: Mapping[str, Any]) -> dict[str, Any]: ...

    async def fill_missing(
        self, table: str, record_id: int, data: Mapping[str, Any]
    ) -> dict[str, Any]: ...

    async def replace(
        self, table: str, record_id: int, data: Mapping[str, Any]
    ) -> dict[str, Any]: ...


def _check_table(table: str) -> None:
    if table not in TABLES:
        raise PersistenceError(f"unknown table {table!r}")


def _is_missing(value: Any) -> bool:
    return value is None or value == ""


# ---------------------------------------------------------------------------
# MemoryRecordStore
# ---------------------------------------------------------------------------

class MemoryRecordStore:
    """Dict-backed store enforcing UNIQUE_KEYS like the database does.

    Each operation yields to the event loop first, so rows running in the
    same group interleave between their lookup and their insert.
    """

    def __init__(self, unique_keys: Mapping[str, tuple[tuple[str, ...], ...]] | None = None) -> None:
        self.unique_keys = dict(UNIQUE_KEYS if unique_keys is None else unique_keys)
        self.tables: dict[str, list[dict[str, Any]]] = {t: [] for t in TABLES}
        self._next_id: dict[str, int] = {t: 1 for t in TABLES}

    def rows(self, table: str) -> list[dict[str, Any]]:
        return [copy.deepcopy(r) for r in self.tables[table]]

    def _check_unique(self, table: str, data: Mapping[str, Any], record_id: int | None = None) -> None:
        for key in self.unique_keys.get(table, ()):
            values = tuple(data.get(col) for col in key)
            if len(key) == 1 and values[0] is None:
                continue
            for row in self.tables[table]:
                if row["id"] != record_id and tuple(row.get(col) for col in key) == values:
                    raise DuplicateKeyError(table, key)

    async def find_one(self, table: str, where: Mapping[str, Any]) -> dict[str, Any] | None:
        _check_table(table)
        await asyncio.sleep(0)
        for row in self.tables[table]:
            if all(row.get(k) == v for k, v in where.items()):
                return copy.deepcopy(row)
        return None

    async def create(self, table: str, data: Mapping[str, Any]) -> dict[str, Any]:
        _check_table(table)
        await asyncio.sleep(0)
        self._check_unique(table, data)
        row = copy.deepcopy(dict(data))
        row["id"] = self._next_id[table]
        self._next_id[table] += 1
        self.tables[table].append(row)
        return copy.deepcopy(row)

    async def fill_missing(
        self, table: str, record_id: int, data: Mapping[str, Any]
    ) -> dict[str, Any]:
        _check_table(table)
        await asyncio.sleep(0)
        for row in self.tables[table]:
            if row["id"] == record_id:
                for col, value in data.items():
                    if _is_missing(row.get(col)) and not _is_missing(value):
                        row[col] = value
                return copy.deepcopy(row)
        raise PersistenceError(f"{table} id={record_id} not found")

    async def replace(
        self, table: str, record_id: int, data: Mapping[str, Any]
    ) -> dict[str, Any]:
        _check_table(table)
        await asyncio.sleep(0)
        for row in self.tables[table]:
            if row["id"] == record_id:
                self._check_unique(table, {**row, **data}, record_id)
                row.update(copy.deepcopy(dict(data)))
                return copy.deepcopy(row)
        raise PersistenceError(f"{table} id={record_id} not found")


# ---------------------------------------------------------------------------
# PgRecordStore
# ---------------------------------------------------------------------------

_dumps = partial(json.dumps, default=str, ensure_ascii=False)


def _adapt(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return Jsonb(value, dumps=_dumps)
    return value


class PgRecordStore:
    """RecordStore over one psycopg AsyncConnection in autocommit mode.

    Each statement commits on its own, so a failing row never rolls back
    work done by its siblings.
    """

    def __init__(self, conn: psycopg.AsyncConnection) -> None:
        self.conn = conn
        self._lock = asyncio.Lock()

    async def _execute(self, query: sql.Composable, params: list[Any]) -> dict[str, Any] | None:
        # A single connection runs one statement at a time.
        async with self._lock:
            async with self.conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(query, params)
                return await cur.fetchone()

    async def find_one(self, table: str, where: Mapping[str, Any]) -> dict[str, Any] | None:
        _check_table(table)
        conditions = [
            sql.SQL("{} IS NULL").format(sql.Identifier(col)) if value is None
            else sql.SQL("{} = %s").format(sql.Identifier(col))
            for col, value in where.items()
        ]
        query = sql.SQL("SELECT * FROM {} WHERE {} ORDER BY id ASC LIMIT 1").format(
            sql.Identifier(table),
            sql.SQL(" AND ").join(conditions) if conditions else sql.SQL("TRUE"),
        )
        params = [_adapt(v) for v in where.values() if v is not None]
        try:
            return await self._execute(query, params)
        except psycopg.Error as e:
            raise PersistenceError(f"{table} lookup failed: {e}") from e

    async def create(self, table: str, data: Mapping[str, Any]) -> dict[str, Any]:
        _check_table(table)
        cols = list(data.keys())
        query = sql.SQL("INSERT INTO {} ({}) VALUES ({}) RETURNING *").format(
            sql.Identifier(table),
            sql.SQL(", ").join(sql.Identifier(c) for c in cols),
            sql.SQL(", ").join(sql.Placeholder() for _ in cols),
        )
        try:
            row = await self._execute(query, [_adapt(data[c]) for c in cols])
        except psycopg.errors.UniqueViolation as e:
            constraint = e.diag.constraint_name or "unique"
            log.debug("Unique violation on %s (%s)", table, constraint)
            raise DuplicateKeyError(table, constraint, str(e)) from e
        except psycopg.Error as e:
            raise PersistenceError(f"{table} insert failed: {e}") from e
        if row is None:
            raise PersistenceError(f"{table} insert returned no row")
        return row

    async def fill_missing(
        self, table: str, record_id: int, data: Mapping[str, Any]
    ) -> dict[str, Any]:
        _check_table(table)
        cols = [c for c, v in data.items() if not _is_missing(v)]
        if not cols:
            row = await self.find_one(table, {"id": record_id})
            if row is None:
                raise PersistenceError(f"{table} id={record_id} not found")
            return row
        assignments = [
            sql.SQL("{col} = CASE WHEN {col} IS NULL OR {col}::text = '' THEN %s ELSE {col} END").format(
                col=sql.Identifier(c)
            )
            for c in cols
        ]
        query = sql.SQL("UPDATE {} SET {} WHERE id = %s RETURNING *").format(
            sql.Identifier(table),
            sql.SQL(", ").join(assignments),
        )
        try:
            row = await self._execute(query, [_adapt(data[c]) for c in cols] + [record_id])
        except psycopg.Error as e:
            raise PersistenceError(f"{table} update failed: {e}") from e
        if row is None:
            raise PersistenceError(f"{table} id={record_id} not found")
        return row

    async def replace(
        self, table: str, record_id: int, data: Mapping[str, Any]
    ) -> dict[str, Any]:
        _check_table(table)
        cols = list(data.keys())
        query = sql.SQL("UPDATE {} SET {} WHERE id = %s RETURNING *").format(
            sql.Identifier(table),
            sql.SQL(", ").join(sql.SQL("{} = %s").format(sql.Identifier(c)) for c in cols),
        )
        try:
            row = await self._execute(query, [_adapt(data[c]) for c in cols] + [record_id])
        except psycopg.errors.UniqueViolation as e:
            constraint = e.diag.constraint_name or "unique"
            log.debug("Unique violation on %s (%s)", table, constraint)
            raise DuplicateKeyError(table, constraint, str(e)) from e
        except psycopg.Error as e:
            raise PersistenceError(f"{table} update failed: {e}") from e
        if row is None:
            raise PersistenceError(f"{table} id={record_id} not found")
        return row

"""
base.py - Shared plumbing for domain repositories.

Every mutation runs in one local transaction together with the outbox
entries it produces, so both commit or neither does.
"""

import sqlite3
from typing import Any

from fieldsync.db.store import LocalStore
from fieldsync.errors import NotFoundError
from fieldsync.sync.keys import compose_key
from fieldsync.sync.outbox import Operation, Outbox
from fieldsync.utils.timestamps import Clock, now_timestamp, utc_now


class Repository:
    def __init__(self, store: LocalStore, outbox: Outbox, clock: Clock = utc_now):
        self._store = store
        self._outbox = outbox
        self._clock = clock

    def _now(self) -> str:
        return now_timestamp(self._clock)

    def _require(self, table: str, record_id: int, entity: str) -> sqlite3.Row:
        row = self._store.query_one(
            f"SELECT * FROM {table} WHERE id = ? AND deleted_at IS NULL", (record_id,)
        )
        if row is None:
            raise NotFoundError(f"{entity.capitalize()} {record_id} not found", entity=entity, entity_id=record_id)
        return row

    def _insert(self, table: str, values: dict[str, Any]) -> int:
        columns = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        cursor = self._store.execute(
            f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", list(values.values())
        )
        return cursor.lastrowid

    def _soft_delete(self, table: str, record_id: int, extra: dict[str, Any] | None = None) -> None:
        """Set deleted_at on a single-key row and enqueue the DELETE."""
        now = self._now()
        values = {"deleted_at": now, "updated_at": now, **(extra or {})}
        assignments = ", ".join(f"{c} = ?" for c in values)
        self._store.execute(
            f"UPDATE {table} SET {assignments} WHERE id = ?", [*values.values(), record_id]
        )
        self._outbox.enqueue(table, record_id, Operation.DELETE, values)

    def _link(self, table: str, first_col: str, first: int, second_col: str, second: int) -> None:
        """Insert a junction row and enqueue its INSERT."""
        now = self._now()
        row = {first_col: first, second_col: second, "created_at": now, "updated_at": now}
        self._insert(table, row)
        self._outbox.enqueue(table, compose_key(first, second), Operation.INSERT, row)

    def _unlink(self, table: str, first_col: str, first: int, second_col: str, second: int) -> None:
        """Physically remove a junction row and enqueue its DELETE."""
        self._store.execute(
            f"DELETE FROM {table} WHERE {first_col} = ? AND {second_col} = ?", (first, second)
        )
        self._outbox.enqueue(table, compose_key(first, second), Operation.DELETE, {"deleted_at": self._now()})

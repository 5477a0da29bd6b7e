"""
outbox.py - Durable log of local mutations awaiting upload.

Rows live in the sync_queue table:
- enqueue() appends inside the caller's transaction and never touches the network
- drain_pending() returns uploadable rows in FIFO order
- mark_synced()/mark_failed() record each upload outcome
- purge_old() deletes synced or quarantined rows past an age threshold
"""

import json
import logging
import sqlite3
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Callable

from fieldsync.config import MAX_RETRY, PURGE_AGE, SYNCABLE_TABLES
from fieldsync.db.store import LocalStore
from fieldsync.errors import ValidationError
from fieldsync.observability import outbox_entries_total
from fieldsync.utils.timestamps import Clock, format_timestamp, now_timestamp, utc_now

logger = logging.getLogger(__name__)


class Operation(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class OutboxEntry:
    """
    One pending (or settled) mutation.

    Attributes:
        id: Local auto-increment id, doubles as FIFO tie-breaker
        table_name: Syncable table the mutation applies to
        record_id: Decimal id or "<a>,<b>" for junction tables
        operation: INSERT, UPDATE or DELETE
        payload: Snapshot of the changed or deleted fields
        synced: True once the remote accepted it
        retry_count: Failed upload attempts so far
        error: Last upload error text
        created_at: UTC timestamp of the mutation
    """
    id: int
    table_name: str
    record_id: str
    operation: Operation
    payload: dict[str, Any]
    synced: bool
    retry_count: int
    error: str | None
    created_at: str

    @property
    def quarantined(self) -> bool:
        return not self.synced and self.retry_count >= MAX_RETRY

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "OutboxEntry":
        return cls(
            id=row["id"],
            table_name=row["table_name"],
            record_id=row["record_id"],
            operation=Operation(row["operation"]),
            payload=json.loads(row["data"]),
            synced=bool(row["synced"]),
            retry_count=row["retry_count"],
            error=row["error"],
            created_at=row["created_at"],
        )


OutboxListener = Callable[[OutboxEntry], None]


class Outbox:
    """Append-only queue of mutations, backed by sync_queue."""

    def __init__(self, store: LocalStore, clock: Clock = utc_now):
        self._store = store
        self._clock = clock
        self._listeners: list[OutboxListener] = []

    def add_listener(self, callback: OutboxListener) -> Callable[[], None]:
        """Register a callback fired after each enqueue. Returns a remover."""
        self._listeners.append(callback)

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    def enqueue(
        self,
        table_name: str,
        record_id: str | int,
        operation: Operation | str,
        payload: dict[str, Any],
    ) -> OutboxEntry:
        """
        Append a mutation to the outbox.

        Call inside the transaction of the local write it records; any
        failure raises DatabaseError so that transaction rolls back.

        Args:
            table_name: Syncable table name
            record_id: Single id or composite "<a>,<b>" identity
            operation: Operation kind
            payload: JSON-serialisable snapshot

        Returns:
            The stored entry
        """
        if table_name not in SYNCABLE_TABLES:
            raise ValidationError(f"Table is not syncable: {table_name}", field="table_name", value=table_name)
        operation = Operation(operation)
        created_at = now_timestamp(self._clock)
        data = json.dumps(payload, default=str)
        cursor = self._store.execute(
            "INSERT INTO sync_queue (table_name, record_id, operation, data, synced, retry_count, created_at) "
            "VALUES (?, ?, ?, ?, 0, 0, ?)",
            (table_name, str(record_id), operation.value, data, created_at),
        )
        entry = OutboxEntry(
            id=cursor.lastrowid,
            table_name=table_name,
            record_id=str(record_id),
            operation=operation,
            payload=json.loads(data),
            synced=False,
            retry_count=0,
            error=None,
            created_at=created_at,
        )
        outbox_entries_total.inc(table=table_name, operation=operation.value)
        logger.debug(f"Enqueued {operation.value} {table_name}:{entry.record_id}")

        for listener in list(self._listeners):
            try:
                listener(entry)
            except Exception as e:
                logger.error(f"Outbox listener failed: {e}")
        return entry

    def drain_pending(
        self, max_retry: int = MAX_RETRY, tables: tuple[str, ...] | None = None
    ) -> list[OutboxEntry]:
        """Unsynced entries below the retry cap, oldest first."""
        sql = "SELECT * FROM sync_queue WHERE synced = 0 AND retry_count < ?"
        params: list[Any] = [max_retry]
        if tables:
            sql += f" AND table_name IN ({', '.join('?' for _ in tables)})"
            params.extend(tables)
        sql += " ORDER BY created_at, id"
        return [OutboxEntry.from_row(row) for row in self._store.query(sql, params)]

    def get(self, entry_id: int) -> OutboxEntry | None:
        row = self._store.query_one("SELECT * FROM sync_queue WHERE id = ?", (entry_id,))
        return None if row is None else OutboxEntry.from_row(row)

    def mark_synced(self, entry_id: int) -> None:
        self._store.execute(
            "UPDATE sync_queue SET synced = 1, error = NULL WHERE id = ?", (entry_id,)
        )

    def mark_failed(self, entry_id: int, error_text: str) -> None:
        self._store.execute(
            "UPDATE sync_queue SET retry_count = retry_count + 1, error = ? WHERE id = ?",
            (error_text, entry_id),
        )

    def purge_old(self, max_age: timedelta = PURGE_AGE, max_retry: int = MAX_RETRY) -> int:
        """
        Delete settled entries older than max_age.

        Settled means synced, or quarantined after max_retry failures.

        Returns:
            Number of rows deleted
        """
        threshold = format_timestamp(self._clock() - max_age)
        cursor = self._store.execute(
            "DELETE FROM sync_queue WHERE (synced = 1 OR retry_count >= ?) AND created_at < ?",
            (max_retry, threshold),
        )
        if cursor.rowcount:
            logger.info(f"Purged {cursor.rowcount} settled outbox entries")
        return cursor.rowcount

    def pending_count(self) -> int:
        """Unsynced entries, quarantined ones included."""
        return self._store.scalar("SELECT COUNT(*) FROM sync_queue WHERE synced = 0")

    def pending_by_table(self) -> dict[str, int]:
        rows = self._store.query(
            "SELECT table_name, COUNT(*) AS count FROM sync_queue "
            "WHERE synced = 0 GROUP BY table_name ORDER BY table_name"
        )
        return {row["table_name"]: row["count"] for row in rows}

    def quarantined(self, max_retry: int = MAX_RETRY) -> list[OutboxEntry]:
        rows = self._store.query(
            "SELECT * FROM sync_queue WHERE synced = 0 AND retry_count >= ? ORDER BY created_at, id",
            (max_retry,),
        )
        return [OutboxEntry.from_row(row) for row in rows]

"""
download.py - Download engine.

Pulls the active rows of every syncable table and reconciles them into
the local store:

1. Fetch every table, in dependency order, before touching anything
   local. A failed fetch leaves the store as it was.
2. Apply everything in one transaction with foreign keys suspended.
   Replace tables are emptied first; every row is then upserted by
   primary key with all of its columns, nulls included.
3. Records with unsynced outbox entries keep their local version: their
   rows are read before the apply and written back after it.
4. Any failure rolls the transaction back and raises DownloadError.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from fieldsync.config import SETTING_LAST_DOWNLOAD, SyncConfig
from fieldsync.db.settings import SettingsStore
from fieldsync.db.store import LocalStore
from fieldsync.errors import DownloadError, ValidationError
from fieldsync.observability import SyncLogger
from fieldsync.remote.base import RemoteStore
from fieldsync.remote.connectivity import ConnectivityProbe
from fieldsync.sync.keys import key_filters
from fieldsync.sync.locks import SyncLock
from fieldsync.sync.upload import SKIPPED_BUSY, SKIPPED_OFFLINE
from fieldsync.utils.timestamps import Clock, now_timestamp, utc_now

logger = logging.getLogger(__name__)


@dataclass
class DownloadResult:
    """Outcome of one download pass."""
    counts: dict[str, int] = field(default_factory=dict)
    skipped: str | None = None
    cancelled: bool = False
    duration_ms: float = 0.0

    @property
    def total(self) -> int:
        return sum(self.counts.values())


class DownloadEngine:
    """
    Reconciles the local store with the remote active set.

    Args:
        store: Local store gateway
        remote: Remote backend
        probe: Connectivity probe asked before every pass
        lock: Lock shared with the upload engine and form sync
        config: Table order and replace tables
        clock: Time source for the download checkpoint
    """

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteStore,
        probe: ConnectivityProbe,
        lock: SyncLock | None = None,
        config: SyncConfig | None = None,
        clock: Clock = utc_now,
    ):
        self._store = store
        self._remote = remote
        self._probe = probe
        self._lock = lock or SyncLock()
        self._config = config or SyncConfig()
        self._clock = clock
        self._settings = SettingsStore(store)
        self._sync_logger = SyncLogger()

    @property
    def lock(self) -> SyncLock:
        return self._lock

    async def download_all(self, should_cancel: Callable[[], bool] | None = None) -> DownloadResult:
        """
        Download every syncable table.

        Args:
            should_cancel: Checked after the fetch phase; when it returns
                True nothing is applied

        Returns:
            DownloadResult, skipped when offline or busy

        Raises:
            DownloadError: If any fetch or the apply transaction fails
        """
        if not await self._probe.is_online():
            logger.info("Download skipped: offline")
            return DownloadResult(skipped=SKIPPED_OFFLINE)

        async with self._lock.try_hold("download") as acquired:
            if not acquired:
                logger.info("Download skipped: sync already in progress")
                return DownloadResult(skipped=SKIPPED_BUSY)
            return await self.download_all_locked(should_cancel)

    async def download_all_locked(self, should_cancel: Callable[[], bool] | None = None) -> DownloadResult:
        """Full download without the probe and lock checks. The caller must hold the sync lock."""
        result = await self.download_tables(
            self._config.download_order,
            replace_tables=self._config.replace_tables,
            should_cancel=should_cancel,
        )
        if not result.cancelled:
            self._settings.set(SETTING_LAST_DOWNLOAD, now_timestamp(self._clock))
        return result

    async def download_tables(
        self,
        tables: Iterable[str],
        replace_tables: frozenset[str] = frozenset(),
        should_cancel: Callable[[], bool] | None = None,
    ) -> DownloadResult:
        """Fetch then apply the given tables. The caller must hold the sync lock."""
        start = time.time()
        fetched = await self._fetch(tuple(tables))

        if should_cancel is not None and should_cancel():
            logger.info("Download cancelled before apply")
            return DownloadResult(cancelled=True)

        counts = self._apply(fetched, replace_tables)
        self._sync_logger.download_applied(counts)
        return DownloadResult(counts=counts, duration_ms=(time.time() - start) * 1000)

    async def _fetch(self, tables: tuple[str, ...]) -> dict[str, list[dict[str, Any]]]:
        fetched: dict[str, list[dict[str, Any]]] = {}
        for table in tables:
            try:
                fetched[table] = await self._remote.select_active(table)
            except Exception as e:
                raise DownloadError(f"Failed to fetch {table}: {e}", table=table, phase="fetch") from e
            logger.debug(f"Fetched {len(fetched[table])} rows from {table}")
        return fetched

    def _apply(self, fetched: dict[str, list[dict[str, Any]]], replace_tables: frozenset[str]) -> dict[str, int]:
        counts: dict[str, int] = {}
        table = None
        try:
            with self._store.transaction(enforce_foreign_keys=False):
                local_rows = self._pending_local_rows(tuple(fetched))
                for table, rows in fetched.items():
                    if table in replace_tables:
                        self._store.execute(f"DELETE FROM {table}")
                    for row in rows:
                        self._upsert_row(table, row)
                    counts[table] = len(rows)
                table = None
                self._restore_pending(local_rows)
        except DownloadError:
            raise
        except Exception as e:
            raise DownloadError(
                f"Failed to apply {table or 'pending local records'}: {e}", table=table, phase="apply"
            ) from e
        return counts

    def _upsert_row(self, table: str, row: dict[str, Any]) -> None:
        local_columns = self._store.table_columns(table)
        primary_key = self._store.primary_key(table)
        columns = [c for c in row if c in local_columns]
        missing = [c for c in primary_key if row.get(c) is None]
        if missing:
            raise DownloadError(
                f"Row from {table} has no value for key column(s) {', '.join(missing)}",
                table=table,
                phase="apply",
            )

        sql = (
            f"INSERT INTO {table} ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)}) "
            f"ON CONFLICT({', '.join(primary_key)}) DO "
        )
        updates = [c for c in columns if c not in primary_key]
        if updates:
            sql += "UPDATE SET " + ", ".join(f"{c} = excluded.{c}" for c in updates)
        else:
            sql += "NOTHING"
        self._store.execute(sql, [row[c] for c in columns])

    def _pending_local_rows(self, tables: tuple[str, ...]) -> dict[tuple[str, str], dict[str, Any] | None]:
        """
        Local rows of records whose changes have not reached the remote.

        Keyed by (table, record_id). None means the record has no local
        row, as after a junction DELETE.
        """
        if not tables:
            return {}
        placeholders = ", ".join("?" for _ in tables)
        pending = self._store.query(
            f"SELECT DISTINCT table_name, record_id FROM sync_queue "
            f"WHERE synced = 0 AND table_name IN ({placeholders})",
            tables,
        )

        local_rows: dict[tuple[str, str], dict[str, Any] | None] = {}
        for entry in pending:
            table_name, record_id = entry["table_name"], entry["record_id"]
            try:
                filters = key_filters(table_name, record_id)
            except ValidationError as e:
                logger.warning(f"Ignoring outbox record {table_name}/{record_id}: {e}")
                continue
            row = self._store.query_one(
                f"SELECT * FROM {table_name} WHERE {_where(filters)}", tuple(filters.values())
            )
            local_rows[(table_name, record_id)] = None if row is None else dict(row)
        return local_rows

    def _restore_pending(self, local_rows: dict[tuple[str, str], dict[str, Any] | None]) -> None:
        for (table, record_id), row in local_rows.items():
            if row is not None:
                self._upsert_row(table, row)
            else:
                filters = key_filters(table, record_id)
                self._store.execute(f"DELETE FROM {table} WHERE {_where(filters)}", tuple(filters.values()))
        if local_rows:
            logger.info(f"Kept local version of {len(local_rows)} record(s) pending upload")


def _where(filters: dict[str, Any]) -> str:
    return " AND ".join(f"{column} = ?" for column in filters)

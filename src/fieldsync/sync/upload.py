"""
upload.py - Upload engine.

Drains the outbox against the remote store one entry at a time:
- Junction tables: INSERT/UPDATE upsert on both key columns, DELETE
  removes the remote row matched by both keys
- Single-key tables: INSERT/UPDATE upsert on id, DELETE sets deleted_at
  on the remote row (soft delete)

Entries are independent. A failure increments the entry's retry_count
and the batch moves on; entries at the retry cap are quarantined.
"""

import logging
from dataclasses import dataclass, field

from fieldsync.config import JUNCTION_KEYS, SETTING_LAST_SYNC_PREFIX, SyncConfig
from fieldsync.db.settings import SettingsStore
from fieldsync.db.store import LocalStore
from fieldsync.observability import SyncLogger
from fieldsync.remote.base import RemoteStore
from fieldsync.remote.connectivity import ConnectivityProbe
from fieldsync.sync.keys import is_junction, key_filters
from fieldsync.sync.locks import SyncLock
from fieldsync.sync.outbox import Operation, Outbox, OutboxEntry
from fieldsync.utils.timestamps import Clock, now_timestamp, utc_now

logger = logging.getLogger(__name__)

SKIPPED_OFFLINE = "offline"
SKIPPED_BUSY = "busy"


@dataclass
class UploadResult:
    """Outcome of one upload pass."""
    synced: int = 0
    failed: int = 0
    purged: int = 0
    skipped: str | None = None
    errors: dict[int, str] = field(default_factory=dict)

    @property
    def attempted(self) -> int:
        return self.synced + self.failed


class UploadEngine:
    """
    Pushes pending outbox entries to the remote store.

    Args:
        store: Local store gateway
        outbox: Outbox to drain
        remote: Remote backend
        probe: Connectivity probe asked before every pass
        lock: Lock shared with the download engine and form sync
        config: Retry cap and purge age
        clock: Time source for soft-delete and checkpoint timestamps
    """

    def __init__(
        self,
        store: LocalStore,
        outbox: Outbox,
        remote: RemoteStore,
        probe: ConnectivityProbe,
        lock: SyncLock | None = None,
        config: SyncConfig | None = None,
        clock: Clock = utc_now,
    ):
        self._store = store
        self._outbox = outbox
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

    async def upload_pending(self, tables: tuple[str, ...] | None = None) -> UploadResult:
        """
        Upload every pending entry, oldest first.

        Returns a skipped result instead of raising when offline or when
        another sync operation holds the lock.
        """
        if not await self._probe.is_online():
            logger.info("Upload skipped: offline")
            return UploadResult(skipped=SKIPPED_OFFLINE)

        async with self._lock.try_hold("upload") as acquired:
            if not acquired:
                logger.info("Upload skipped: sync already in progress")
                return UploadResult(skipped=SKIPPED_BUSY)
            return await self.upload_entries(tables)

    async def upload_entries(self, tables: tuple[str, ...] | None = None) -> UploadResult:
        """Drain and push pending entries. The caller must hold the sync lock."""
        result = UploadResult()
        entries = self._outbox.drain_pending(self._config.max_retry, tables)
        if entries:
            logger.info(f"Uploading {len(entries)} outbox entries")

        for entry in entries:
            try:
                await self.dispatch(entry)
            except Exception as e:
                self._outbox.mark_failed(entry.id, str(e))
                self._sync_logger.entry_failed(entry.id, entry.table_name, str(e), entry.retry_count + 1)
                result.failed += 1
                result.errors[entry.id] = str(e)
                continue

            self._outbox.mark_synced(entry.id)
            self._settings.set(f"{SETTING_LAST_SYNC_PREFIX}{entry.table_name}", now_timestamp(self._clock))
            self._sync_logger.entry_synced(entry.id, entry.table_name)
            result.synced += 1

        result.purged = self._outbox.purge_old(self._config.purge_age, self._config.max_retry)
        return result

    async def dispatch(self, entry: OutboxEntry) -> None:
        """Send one entry to the remote store according to its table kind."""
        table = entry.table_name
        keys = key_filters(table, entry.record_id)

        if is_junction(table):
            if entry.operation is Operation.DELETE:
                await self._remote.delete(table, keys)
            else:
                await self._remote.upsert(table, {**entry.payload, **keys}, on_conflict=JUNCTION_KEYS[table])
            return

        if entry.operation is Operation.DELETE:
            values = {k: v for k, v in entry.payload.items() if k != "id"}
            values["deleted_at"] = entry.payload.get("deleted_at") or now_timestamp(self._clock)
            await self._remote.update(table, keys, values)
        else:
            await self._remote.upsert(table, {**entry.payload, **keys}, on_conflict=("id",))

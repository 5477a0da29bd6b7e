"""
orchestrator.py - Sync session coordination.

A session runs checking -> downloading -> uploading -> complete, or
stops in offline or error. Only one session runs at a time; a request
arriving while one is in flight is dropped and answered with the
current status. Local writes schedule a debounced upload pass.
"""

import asyncio
import logging
import time
from typing import Callable

from fieldsync.config import (
    SETTING_INITIAL_SYNC,
    SETTING_LAST_SYNC_PREFIX,
    SyncConfig,
)
from fieldsync.db.settings import SettingsStore
from fieldsync.db.store import LocalStore
from fieldsync.observability import SyncLogger
from fieldsync.remote.base import RemoteStore
from fieldsync.remote.connectivity import ConnectivityProbe
from fieldsync.sync.debounce import DebouncedTask
from fieldsync.sync.download import DownloadEngine
from fieldsync.sync.locks import SyncLock
from fieldsync.sync.outbox import Outbox
from fieldsync.sync.status import DEFAULT_MESSAGES, StatusListener, StatusPublisher, SyncState, SyncStatus
from fieldsync.sync.upload import SKIPPED_BUSY, UploadEngine, UploadResult
from fieldsync.utils.timestamps import Clock, now_timestamp, utc_now

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Sync cancelled"


class SyncOrchestrator:
    """
    Owns the sync lock, both engines and the session state.

    Usage:
        orchestrator = SyncOrchestrator(store, remote, probe)
        orchestrator.subscribe(render_status)
        await orchestrator.initialize()
    """

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteStore,
        probe: ConnectivityProbe,
        outbox: Outbox | None = None,
        config: SyncConfig | None = None,
        clock: Clock = utc_now,
    ):
        self._store = store
        self._probe = probe
        self._config = config or SyncConfig()
        self._clock = clock
        self._lock = SyncLock()
        self._settings = SettingsStore(store)
        self._publisher = StatusPublisher()
        self._sync_logger = SyncLogger()

        self.outbox = outbox or Outbox(store, clock)
        self.upload_engine = UploadEngine(store, self.outbox, remote, probe, self._lock, self._config, clock)
        self.download_engine = DownloadEngine(store, remote, probe, self._lock, self._config, clock)

        self._debounce = DebouncedTask(self._debounced_upload, self._config.debounce_seconds, "debounced-upload")
        self._remove_listener = self.outbox.add_listener(lambda entry: self.schedule_upload())
        self._running = False
        self._cancel_requested = False

    @property
    def lock(self) -> SyncLock:
        return self._lock

    @property
    def status(self) -> SyncStatus:
        return self._publisher.current

    @property
    def running(self) -> bool:
        return self._running

    def subscribe(self, callback: StatusListener) -> Callable[[], None]:
        """Receive every status change. Returns an unsubscribe function."""
        return self._publisher.subscribe(callback)

    # ------------------------------------------------------------------
    # Session triggers
    # ------------------------------------------------------------------

    async def initialize(self) -> SyncStatus:
        """Run the first full sync of this install, once."""
        if self._settings.get(SETTING_INITIAL_SYNC):
            logger.info("Initial sync already completed, skipping")
            return self.status

        self._settings.remove(*(f"{SETTING_LAST_SYNC_PREFIX}{t}" for t in self._config.download_order))
        status = await self._run_session("initialize")
        if status.state is SyncState.COMPLETE:
            self._settings.set(SETTING_INITIAL_SYNC, "true")
        return status

    async def on_login(self) -> SyncStatus:
        return await self._run_session("login")

    async def sync_now(self) -> SyncStatus:
        return await self._run_session("manual")

    async def retry(self) -> SyncStatus:
        return await self._run_session("retry")

    def continue_offline(self) -> SyncStatus:
        """Leave the offline or error state and keep working locally."""
        if self.status.state in (SyncState.OFFLINE, SyncState.ERROR):
            return self._publish(SyncState.IDLE, "Working offline")
        return self.status

    def cancel(self) -> bool:
        """
        Ask the running session to stop at its next checkpoint.

        Returns:
            False when no session is running
        """
        if not self._running:
            return False
        self._cancel_requested = True
        logger.info("Sync cancellation requested")
        return True

    # ------------------------------------------------------------------
    # Debounced upload
    # ------------------------------------------------------------------

    def schedule_upload(self) -> bool:
        """Restart the upload quiet period."""
        return self._debounce.schedule()

    async def wait_for_scheduled_upload(self) -> None:
        await self._debounce.wait()

    async def _debounced_upload(self) -> None:
        result = await self.upload_engine.upload_pending()
        if result.skipped == SKIPPED_BUSY:
            self.schedule_upload()

    def close(self) -> None:
        self._debounce.cancel()
        self._remove_listener()

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def _run_session(self, trigger: str) -> SyncStatus:
        if self._running:
            logger.info(f"Sync request ({trigger}) dropped: session already running")
            return self.status

        self._running = True
        self._cancel_requested = False
        started_at = now_timestamp(self._clock)
        start = time.time()
        self._sync_logger.session_started(trigger)

        try:
            self._publish(SyncState.CHECKING, started_at=started_at)
            if not await self._probe.is_online():
                self._sync_logger.session_offline()
                return self._publish(SyncState.OFFLINE, started_at=started_at)

            async with self._lock.hold("session"):
                if self._cancel_requested:
                    return self._cancelled()

                self._publish(SyncState.DOWNLOADING, started_at=started_at)
                download = await self.download_engine.download_all_locked(
                    should_cancel=lambda: self._cancel_requested
                )
                if download.cancelled or self._cancel_requested:
                    return self._cancelled()

                self._publish(SyncState.UPLOADING, started_at=started_at)
                upload = await self.upload_engine.upload_entries()

            self._sync_logger.session_completed(upload.synced, download.total, (time.time() - start) * 1000)
            return self._publish(SyncState.COMPLETE, _complete_message(download.total, upload), started_at=started_at)
        except asyncio.CancelledError:
            self._publish(SyncState.IDLE, CANCELLED_MESSAGE)
            raise
        except Exception as e:
            self._sync_logger.session_failed(str(e))
            return self._publish(SyncState.ERROR, str(e), started_at=started_at, error=str(e))
        finally:
            self._running = False
            self._cancel_requested = False

    def _cancelled(self) -> SyncStatus:
        logger.info("Sync session cancelled")
        return self._publish(SyncState.IDLE, CANCELLED_MESSAGE)

    def _publish(
        self,
        state: SyncState,
        message: str | None = None,
        started_at: str | None = None,
        error: str | None = None,
    ) -> SyncStatus:
        return self._publisher.publish(SyncStatus(
            state=state,
            message=DEFAULT_MESSAGES[state] if message is None else message,
            started_at=started_at,
            error=error,
        ))


def _complete_message(downloaded: int, upload: UploadResult) -> str:
    message = f"Sync complete: {downloaded} rows downloaded, {upload.synced} changes uploaded"
    if upload.failed:
        message += f", {upload.failed} failed"
    return message

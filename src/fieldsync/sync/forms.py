"""
forms.py - Form definition and form response sync.

Form operations queue instead of dropping: each one waits for every
previously submitted form operation, then waits for the shared sync
lock so it never interleaves with a general upload or download.
"""

import logging

from fieldsync.config import FORM_RESPONSE_TABLES, FORM_TABLES, SETTING_LAST_FORMS_SYNC
from fieldsync.db.settings import SettingsStore
from fieldsync.remote.connectivity import ConnectivityProbe
from fieldsync.sync.download import DownloadEngine, DownloadResult
from fieldsync.sync.locks import SerialWorkQueue, SyncLock
from fieldsync.sync.orchestrator import SyncOrchestrator
from fieldsync.sync.upload import SKIPPED_OFFLINE, UploadEngine, UploadResult
from fieldsync.utils.timestamps import Clock, now_timestamp, utc_now

logger = logging.getLogger(__name__)


class FormSync:
    """Queued sync of forms, their fields and company assignments, and responses."""

    def __init__(
        self,
        settings: SettingsStore,
        upload_engine: UploadEngine,
        download_engine: DownloadEngine,
        probe: ConnectivityProbe,
        lock: SyncLock,
        clock: Clock = utc_now,
    ):
        self._settings = settings
        self._upload_engine = upload_engine
        self._download_engine = download_engine
        self._probe = probe
        self._lock = lock
        self._clock = clock
        self._queue = SerialWorkQueue("form-sync")

    @classmethod
    def from_orchestrator(
        cls,
        orchestrator: SyncOrchestrator,
        settings: SettingsStore,
        probe: ConnectivityProbe,
        clock: Clock = utc_now,
    ) -> "FormSync":
        """Share the engines and the sync lock of an orchestrator."""
        return cls(
            settings,
            orchestrator.upload_engine,
            orchestrator.download_engine,
            probe,
            orchestrator.lock,
            clock,
        )

    @property
    def queue(self) -> SerialWorkQueue:
        return self._queue

    async def download_forms(self) -> DownloadResult:
        """Fetch forms, form_fields and form_companies, then upsert them in one transaction."""
        return await self._queue.submit(self._download_forms)

    async def upload_form_responses(self) -> UploadResult:
        """Upload pending form_responses and form_field_responses entries."""
        return await self._queue.submit(self._upload_form_responses)

    async def initialize(self) -> None:
        """Force a full form sync: clear the checkpoint, download, then upload."""
        logger.info("Initializing form sync")
        self._settings.remove(SETTING_LAST_FORMS_SYNC)
        await self.download_forms()
        await self.upload_form_responses()

    async def _download_forms(self) -> DownloadResult:
        if not await self._probe.is_online():
            logger.info("Form download skipped: offline")
            return DownloadResult(skipped=SKIPPED_OFFLINE)

        async with self._lock.hold("form-download"):
            result = await self._download_engine.download_tables(FORM_TABLES)
        self._settings.set(SETTING_LAST_FORMS_SYNC, now_timestamp(self._clock))
        logger.info(f"Forms sync completed: {result.counts}")
        return result

    async def _upload_form_responses(self) -> UploadResult:
        if not await self._probe.is_online():
            logger.info("Form response upload skipped: offline")
            return UploadResult(skipped=SKIPPED_OFFLINE)

        async with self._lock.hold("form-upload"):
            return await self._upload_engine.upload_entries(FORM_RESPONSE_TABLES)

"""
test_forms_sync.py - Tests for queued form sync.
"""

import asyncio

from fieldsync.config import SyncConfig
from fieldsync.db import SettingsStore
from fieldsync.sync import FormSync, SyncOrchestrator
from fieldsync.sync.outbox import Operation
from fieldsync.sync.upload import SKIPPED_OFFLINE

FORM_ROWS = {
    "forms": [{"id": 1, "name": "Checklist", "description": None, "deleted_at": None}],
    "form_fields": [
        {"id": 1, "form_id": 1, "name": "temp", "label": "Temperature", "type": "number",
         "required": 1, "sort_order": 0, "deleted_at": None},
    ],
    "form_companies": [{"form_id": 1, "company_id": 1, "deleted_at": None}],
}


class TestFormSync:
    def make_form_sync(self, store, remote, probe, clock):
        remote.tables.update({table: [dict(r) for r in rows] for table, rows in FORM_ROWS.items()})
        self.orchestrator = SyncOrchestrator(store, remote, probe, config=SyncConfig(), clock=clock)
        self.settings = SettingsStore(store)
        return FormSync.from_orchestrator(self.orchestrator, self.settings, probe, clock)

    def test_download_forms_only_touches_form_tables(self, store, remote, probe, clock):
        form_sync = self.make_form_sync(store, remote, probe, clock)

        result = asyncio.run(form_sync.download_forms())

        assert result.counts == {"forms": 1, "form_fields": 1, "form_companies": 1}
        assert [c[1] for c in remote.calls_of("select")] == ["forms", "form_fields", "form_companies"]
        assert store.scalar("SELECT label FROM form_fields WHERE id = 1") == "Temperature"
        assert store.scalar("SELECT COUNT(*) FROM users") == 3
        assert self.settings.get("last_forms_sync") == "2025-02-20T12:00:00.000000Z"

    def test_upload_only_form_responses(self, store, remote, probe, clock):
        form_sync = self.make_form_sync(store, remote, probe, clock)
        outbox = self.orchestrator.outbox
        outbox.enqueue("companies", 1, Operation.UPDATE, {"name": "x"})
        response = outbox.enqueue("form_responses", 4, Operation.INSERT, {"form_id": 1, "visit_id": 1})
        answer = outbox.enqueue("form_field_responses", 9, Operation.INSERT, {"form_response_id": 4})

        result = asyncio.run(form_sync.upload_form_responses())

        assert result.synced == 2
        assert outbox.get(response.id).synced
        assert outbox.get(answer.id).synced
        assert outbox.pending_by_table() == {"companies": 1}

    def test_offline(self, store, remote, probe, clock):
        form_sync = self.make_form_sync(store, remote, probe, clock)
        probe.online = False

        download = asyncio.run(form_sync.download_forms())
        upload = asyncio.run(form_sync.upload_form_responses())

        assert download.skipped == SKIPPED_OFFLINE
        assert upload.skipped == SKIPPED_OFFLINE
        assert remote.calls == []

    def test_operations_queue_instead_of_dropping(self, store, remote, probe, clock):
        form_sync = self.make_form_sync(store, remote, probe, clock)
        remote.select_delay = 0.01

        async def run():
            return await asyncio.gather(
                form_sync.download_forms(),
                form_sync.download_forms(),
                form_sync.upload_form_responses(),
            )

        first, second, upload = asyncio.run(run())

        assert first.skipped is None
        assert second.skipped is None
        assert upload.skipped is None
        assert len(remote.calls_of("select")) == 6
        assert form_sync.queue.pending == 0

    def test_waits_for_general_sync_lock(self, store, remote, probe, clock):
        form_sync = self.make_form_sync(store, remote, probe, clock)
        events = []

        async def hold_lock():
            async with self.orchestrator.lock.hold("upload"):
                await asyncio.sleep(0.05)
                events.append("released")

        async def run():
            holder = asyncio.create_task(hold_lock())
            await asyncio.sleep(0)
            result = await form_sync.download_forms()
            events.append("downloaded")
            await holder
            return result

        result = asyncio.run(run())

        assert result.skipped is None
        assert events == ["released", "downloaded"]

    def test_initialize_resets_checkpoint(self, store, remote, probe, clock):
        form_sync = self.make_form_sync(store, remote, probe, clock)
        self.settings.set("last_forms_sync", "2025-01-01T00:00:00.000000Z")
        clock.advance(60)

        asyncio.run(form_sync.initialize())

        assert self.settings.get("last_forms_sync") == "2025-02-20T12:01:00.000000Z"
        assert store.scalar("SELECT COUNT(*) FROM forms") == 1

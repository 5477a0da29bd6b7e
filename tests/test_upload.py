"""
test_upload.py - Tests for the upload engine.

Covers per-table dispatch (junction vs single-key), independence of
entries within a batch, the retry cap and the skip conditions.
"""

import asyncio

from fieldsync.config import SyncConfig
from fieldsync.db import SettingsStore
from fieldsync.sync.locks import SyncLock
from fieldsync.sync.outbox import Operation
from fieldsync.sync.upload import SKIPPED_BUSY, SKIPPED_OFFLINE, UploadEngine


def make_engine(store, outbox, remote, probe, clock, lock=None):
    return UploadEngine(store, outbox, remote, probe, lock=lock, config=SyncConfig(), clock=clock)


class TestDispatch:
    def test_junction_delete_uses_both_keys(self, store, outbox, remote, probe, clock):
        outbox.enqueue("user_roles", "5,12", Operation.DELETE, {"deleted_at": "2025-02-20T12:00:00.000000Z"})
        engine = make_engine(store, outbox, remote, probe, clock)

        result = asyncio.run(engine.upload_pending())

        assert result.synced == 1
        assert remote.calls == [("delete", "user_roles", {"user_id": 5, "role_id": 12})]

    def test_junction_insert_upserts_on_both_keys(self, store, outbox, remote, probe, clock):
        outbox.enqueue("form_companies", "3,7", Operation.INSERT, {"form_id": 3, "company_id": 7})
        engine = make_engine(store, outbox, remote, probe, clock)

        asyncio.run(engine.upload_pending())

        kind, table, row, on_conflict = remote.calls[0]
        assert (kind, table) == ("upsert", "form_companies")
        assert row == {"form_id": 3, "company_id": 7}
        assert on_conflict == ("form_id", "company_id")

    def test_single_key_insert_upserts_on_id(self, store, outbox, remote, probe, clock):
        outbox.enqueue("companies", 9, Operation.INSERT, {"name": "Acme", "description": None})
        engine = make_engine(store, outbox, remote, probe, clock)

        asyncio.run(engine.upload_pending())

        assert remote.calls == [
            ("upsert", "companies", {"name": "Acme", "description": None, "id": 9}, ("id",))
        ]
        created = remote.tables["companies"]
        assert len(created) == 1
        assert (created[0]["id"], created[0]["name"], created[0]["deleted_at"]) == (9, "Acme", None)

    def test_single_key_delete_is_soft(self, store, outbox, remote, probe, clock):
        remote.tables["companies"] = [{"id": 9, "name": "Acme", "deleted_at": None}]
        outbox.enqueue("companies", 9, Operation.DELETE, {"deleted_at": "2025-02-20T12:00:00.000000Z"})
        engine = make_engine(store, outbox, remote, probe, clock)

        asyncio.run(engine.upload_pending())

        assert remote.calls == [
            ("update", "companies", {"id": 9}, {"deleted_at": "2025-02-20T12:00:00.000000Z"})
        ]
        assert remote.tables["companies"][0]["deleted_at"] == "2025-02-20T12:00:00.000000Z"

    def test_delete_without_timestamp_gets_one(self, store, outbox, remote, probe, clock):
        outbox.enqueue("roles", 2, Operation.DELETE, {})
        engine = make_engine(store, outbox, remote, probe, clock)

        asyncio.run(engine.upload_pending())

        assert remote.calls == [("update", "roles", {"id": 2}, {"deleted_at": "2025-02-20T12:00:00.000000Z"})]


class TestBatch:
    def test_entries_uploaded_in_fifo_order(self, store, outbox, remote, probe, clock):
        outbox.enqueue("companies", 1, Operation.INSERT, {"name": "first"})
        clock.advance(1)
        outbox.enqueue("companies", 1, Operation.UPDATE, {"name": "second"})
        engine = make_engine(store, outbox, remote, probe, clock)

        asyncio.run(engine.upload_pending())

        assert [c[2]["name"] for c in remote.calls] == ["first", "second"]
        assert [(r["id"], r["name"]) for r in remote.tables["companies"]] == [(1, "second")]

    def test_failure_does_not_abort_batch(self, store, outbox, remote, probe, clock):
        bad = outbox.enqueue("roles", 1, Operation.UPDATE, {"name": "x"})
        good = outbox.enqueue("companies", 1, Operation.UPDATE, {"name": "y"})
        remote.fail_writes.add("roles")
        engine = make_engine(store, outbox, remote, probe, clock)

        result = asyncio.run(engine.upload_pending())

        assert result.synced == 1
        assert result.failed == 1
        assert "rejected" in result.errors[bad.id]
        failed = outbox.get(bad.id)
        assert failed.retry_count == 1
        assert not failed.synced
        assert "rejected" in failed.error
        assert outbox.get(good.id).synced

    def test_quarantined_after_max_retry(self, store, outbox, remote, probe, clock):
        entry = outbox.enqueue("roles", 1, Operation.UPDATE, {"name": "x"})
        remote.fail_writes.add("roles")
        engine = make_engine(store, outbox, remote, probe, clock)

        for _ in range(3):
            asyncio.run(engine.upload_pending())
        assert len(remote.calls) == 3

        result = asyncio.run(engine.upload_pending())
        assert result.attempted == 0
        assert len(remote.calls) == 3
        assert outbox.get(entry.id).retry_count == 3
        assert [e.id for e in outbox.quarantined()] == [entry.id]

    def test_sets_table_checkpoint(self, store, outbox, remote, probe, clock):
        outbox.enqueue("visits", 1, Operation.INSERT, {"user_id": 2})
        engine = make_engine(store, outbox, remote, probe, clock)

        asyncio.run(engine.upload_pending())

        assert SettingsStore(store).get("last_sync_visits") == "2025-02-20T12:00:00.000000Z"

    def test_purges_settled_entries(self, store, outbox, remote, probe, clock):
        old = outbox.enqueue("visits", 1, Operation.INSERT, {"user_id": 2})
        outbox.mark_synced(old.id)
        clock.advance(days=8)
        outbox.enqueue("visits", 2, Operation.INSERT, {"user_id": 2})
        engine = make_engine(store, outbox, remote, probe, clock)

        result = asyncio.run(engine.upload_pending())

        assert result.synced == 1
        assert result.purged == 1
        assert outbox.get(old.id) is None

    def test_table_filter(self, store, outbox, remote, probe, clock):
        outbox.enqueue("companies", 1, Operation.UPDATE, {"name": "y"})
        response = outbox.enqueue("form_responses", 1, Operation.INSERT, {"form_id": 1})
        engine = make_engine(store, outbox, remote, probe, clock)

        async def run():
            async with engine.lock.hold("test"):
                return await engine.upload_entries(("form_responses",))

        result = asyncio.run(run())

        assert result.synced == 1
        assert outbox.get(response.id).synced
        assert outbox.pending_by_table() == {"companies": 1}


class TestSkips:
    def test_offline_skips_without_touching_remote(self, store, outbox, remote, probe, clock):
        outbox.enqueue("companies", 1, Operation.UPDATE, {"name": "y"})
        probe.online = False
        engine = make_engine(store, outbox, remote, probe, clock)

        result = asyncio.run(engine.upload_pending())

        assert result.skipped == SKIPPED_OFFLINE
        assert remote.calls == []
        assert outbox.pending_count() == 1

    def test_busy_lock_skips(self, store, outbox, remote, probe, clock):
        outbox.enqueue("companies", 1, Operation.UPDATE, {"name": "y"})
        lock = SyncLock()
        engine = make_engine(store, outbox, remote, probe, clock, lock=lock)

        async def run():
            async with lock.hold("download"):
                return await engine.upload_pending()

        result = asyncio.run(run())

        assert result.skipped == SKIPPED_BUSY
        assert remote.calls == []
        assert outbox.get(1).retry_count == 0

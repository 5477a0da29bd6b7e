"""
test_download.py - Tests for the download engine.

The local store must change all-or-nothing: a failed fetch or a failed
apply leaves it exactly as it was.
"""

import asyncio

import pytest

from fieldsync.config import SyncConfig
from fieldsync.db import SettingsStore
from fieldsync.errors import DownloadError
from fieldsync.sync.download import DownloadEngine
from fieldsync.sync.outbox import Operation
from fieldsync.sync.upload import SKIPPED_BUSY, SKIPPED_OFFLINE

from conftest import FakeRemoteStore

REMOTE_DATA = {
    "users": [
        {"id": 10, "username": "ana", "password": "pw", "is_admin": 0, "active": 1, "deleted_at": None},
        {"id": 11, "username": "luis", "password": "pw", "is_admin": 0, "active": 1, "deleted_at": None},
    ],
    "companies": [
        {"id": 20, "name": "Initech", "description": "Software", "deleted_at": None},
    ],
    "roles": [
        {"id": 30, "name": "inspector", "deleted_at": None},
    ],
    "user_roles": [
        {"user_id": 10, "role_id": 30, "deleted_at": None},
    ],
    "user_companies": [
        {"user_id": 10, "company_id": 20, "deleted_at": None},
    ],
}


def local_usernames(store):
    return [row["username"] for row in store.query("SELECT username FROM users ORDER BY id")]


class TestDownload:
    def setup_method(self):
        self.remote = FakeRemoteStore(REMOTE_DATA)

    def make_engine(self, store, probe, clock):
        return DownloadEngine(store, self.remote, probe, config=SyncConfig(), clock=clock)

    def test_replaces_reference_tables(self, store, probe, clock):
        engine = self.make_engine(store, probe, clock)

        result = asyncio.run(engine.download_all())

        assert local_usernames(store) == ["ana", "luis"]
        assert [r["name"] for r in store.query("SELECT name FROM companies")] == ["Initech"]
        assert result.counts["users"] == 2
        assert result.counts["visits"] == 0
        assert result.total == 6
        assert SettingsStore(store).get("last_sync_download") == "2025-02-20T12:00:00.000000Z"

    def test_fetches_in_dependency_order(self, store, probe, clock):
        engine = self.make_engine(store, probe, clock)

        asyncio.run(engine.download_all())

        fetched = [c[1] for c in self.remote.calls_of("select")]
        assert fetched == list(SyncConfig().download_order)

    def test_junction_tables_are_additive(self, store, probe, clock):
        seeded = store.scalar("SELECT COUNT(*) FROM user_companies")
        engine = self.make_engine(store, probe, clock)

        asyncio.run(engine.download_all())

        assert store.scalar("SELECT COUNT(*) FROM user_companies") == seeded + 1

    def test_soft_deleted_rows_not_downloaded(self, store, probe, clock):
        self.remote.tables["roles"].append({"id": 31, "name": "retired", "deleted_at": "2025-01-01T00:00:00.000000Z"})
        engine = self.make_engine(store, probe, clock)

        asyncio.run(engine.download_all())

        assert [r["name"] for r in store.query("SELECT name FROM roles")] == ["inspector"]

    def test_empty_remote_table_empties_replace_table(self, store, probe, clock):
        self.remote.tables["companies"] = []
        engine = self.make_engine(store, probe, clock)

        asyncio.run(engine.download_all())

        assert store.scalar("SELECT COUNT(*) FROM companies") == 0

    def test_upsert_overwrites_with_nulls(self, store, probe, clock):
        store.execute(
            "INSERT INTO visits (id, user_id, company_id, start_time, end_time, duration) "
            "VALUES (5, 2, 1, '2025-02-20T08:00:00.000000Z', '2025-02-20T09:00:00.000000Z', 3600)"
        )
        self.remote.tables["visits"] = [
            {"id": 5, "user_id": 2, "company_id": 1, "start_time": "2025-02-20T08:00:00.000000Z",
             "end_time": None, "duration": None, "deleted_at": None},
        ]
        engine = self.make_engine(store, probe, clock)

        asyncio.run(engine.download_all())

        row = store.query_one("SELECT end_time, duration FROM visits WHERE id = 5")
        assert row["end_time"] is None
        assert row["duration"] is None

    def test_unknown_remote_columns_ignored(self, store, probe, clock):
        self.remote.tables["companies"][0]["remote_only"] = "x"
        engine = self.make_engine(store, probe, clock)

        result = asyncio.run(engine.download_all())

        assert result.counts["companies"] == 1
        assert store.scalar("SELECT name FROM companies WHERE id = 20") == "Initech"

    def test_fetch_failure_leaves_store_untouched(self, store, probe, clock):
        before = local_usernames(store)
        self.remote.fail_select.add("forms")
        engine = self.make_engine(store, probe, clock)

        with pytest.raises(DownloadError) as exc_info:
            asyncio.run(engine.download_all())

        assert exc_info.value.phase == "fetch"
        assert exc_info.value.table == "forms"
        assert local_usernames(store) == before
        assert SettingsStore(store).get("last_sync_download") is None
        assert not engine.lock.busy

    def test_apply_failure_rolls_back(self, store, probe, clock):
        before = local_usernames(store)
        self.remote.tables["form_fields"] = [{"id": None, "form_id": 1, "name": "x"}]
        engine = self.make_engine(store, probe, clock)

        with pytest.raises(DownloadError) as exc_info:
            asyncio.run(engine.download_all())

        assert exc_info.value.phase == "apply"
        assert local_usernames(store) == before
        assert store.scalar("SELECT COUNT(*) FROM roles") == 2
        assert not store.in_transaction
        assert store.scalar("PRAGMA foreign_keys") == 1

    def test_cancel_before_apply(self, store, probe, clock):
        before = local_usernames(store)
        engine = self.make_engine(store, probe, clock)

        result = asyncio.run(engine.download_all(should_cancel=lambda: True))

        assert result.cancelled
        assert local_usernames(store) == before
        assert SettingsStore(store).get("last_sync_download") is None

    def test_offline_skips(self, store, probe, clock):
        probe.online = False
        engine = self.make_engine(store, probe, clock)

        result = asyncio.run(engine.download_all())

        assert result.skipped == SKIPPED_OFFLINE
        assert self.remote.calls == []

    def test_concurrent_downloads_single_flight(self, store, probe, clock):
        self.remote.select_delay = 0.01
        engine = self.make_engine(store, probe, clock)

        async def run():
            return await asyncio.gather(engine.download_all(), engine.download_all())

        first, second = asyncio.run(run())

        skipped = [r.skipped for r in (first, second)]
        assert skipped.count(SKIPPED_BUSY) == 1
        assert skipped.count(None) == 1
        assert len(self.remote.calls_of("select")) == len(SyncConfig().download_order)

    def test_download_subset(self, store, probe, clock):
        self.remote.tables["forms"] = [{"id": 1, "name": "Checklist", "created_at": "t", "updated_at": "t"}]
        engine = self.make_engine(store, probe, clock)

        async def run():
            async with engine.lock.hold("forms"):
                return await engine.download_tables(("forms",))

        result = asyncio.run(run())

        assert result.counts == {"forms": 1}
        assert local_usernames(store) == ["admin", "usuario1", "controlador1"]
        assert store.scalar("SELECT name FROM forms WHERE id = 1") == "Checklist"


class TestPendingLocalChanges:
    """Records with unsynced outbox entries keep their local version."""

    def setup_method(self):
        self.remote = FakeRemoteStore(REMOTE_DATA)
        self.remote.tables["companies"].append(
            {"id": 1, "name": "AWS", "description": "Amazon Web Services Cloud Provider", "deleted_at": None}
        )
        self.remote.tables["user_roles"].append({"user_id": 2, "role_id": 1, "deleted_at": None})

    def download(self, store, probe, clock):
        engine = DownloadEngine(store, self.remote, probe, config=SyncConfig(), clock=clock)
        return asyncio.run(engine.download_all())

    def test_pending_update_wins_over_remote_row(self, store, outbox, probe, clock):
        store.execute("UPDATE companies SET name = 'AWS EMEA' WHERE id = 1")
        outbox.enqueue("companies", 1, Operation.UPDATE, {"name": "AWS EMEA"})

        self.download(store, probe, clock)

        assert store.scalar("SELECT name FROM companies WHERE id = 1") == "AWS EMEA"
        assert store.scalar("SELECT name FROM companies WHERE id = 20") == "Initech"

    def test_pending_insert_survives_replace(self, store, outbox, probe, clock):
        company_id = store.execute("INSERT INTO companies (name) VALUES ('Acme')").lastrowid
        outbox.enqueue("companies", company_id, Operation.INSERT, {"name": "Acme"})

        self.download(store, probe, clock)

        names = [r["name"] for r in store.query("SELECT name FROM companies ORDER BY id")]
        assert names == ["AWS", "Acme", "Initech"]

    def test_pending_soft_delete_stays_deleted(self, store, outbox, probe, clock):
        store.execute("UPDATE companies SET deleted_at = '2025-02-20T12:00:00.000000Z' WHERE id = 1")
        outbox.enqueue("companies", 1, Operation.DELETE, {"deleted_at": "2025-02-20T12:00:00.000000Z"})

        self.download(store, probe, clock)

        assert store.scalar("SELECT deleted_at FROM companies WHERE id = 1") == "2025-02-20T12:00:00.000000Z"

    def test_pending_junction_delete_stays_deleted(self, store, outbox, probe, clock):
        store.execute("DELETE FROM user_roles WHERE user_id = 2 AND role_id = 1")
        outbox.enqueue("user_roles", "2,1", Operation.DELETE, {"deleted_at": "2025-02-20T12:00:00.000000Z"})

        self.download(store, probe, clock)

        assert store.query_one("SELECT * FROM user_roles WHERE user_id = 2 AND role_id = 1") is None
        assert store.query_one("SELECT * FROM user_roles WHERE user_id = 10 AND role_id = 30") is not None

    def test_synced_entries_do_not_shield_rows(self, store, outbox, probe, clock):
        store.execute("UPDATE companies SET name = 'AWS EMEA' WHERE id = 1")
        entry = outbox.enqueue("companies", 1, Operation.UPDATE, {"name": "AWS EMEA"})
        outbox.mark_synced(entry.id)

        self.download(store, probe, clock)

        assert store.scalar("SELECT name FROM companies WHERE id = 1") == "AWS"

    def test_failed_apply_keeps_pending_rows(self, store, outbox, probe, clock):
        store.execute("UPDATE companies SET name = 'AWS EMEA' WHERE id = 1")
        outbox.enqueue("companies", 1, Operation.UPDATE, {"name": "AWS EMEA"})
        self.remote.tables["form_fields"] = [{"id": None, "form_id": 1, "name": "x"}]

        with pytest.raises(DownloadError):
            self.download(store, probe, clock)

        assert store.scalar("SELECT name FROM companies WHERE id = 1") == "AWS EMEA"
        assert store.scalar("SELECT COUNT(*) FROM companies") == 3

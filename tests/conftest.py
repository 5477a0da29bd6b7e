"""
conftest.py - pytest fixtures for fieldsync tests.
"""

import asyncio
import os
import tempfile
from datetime import datetime, timedelta, timezone
from typing import Any, Sequence

import pytest

from fieldsync.config import DOWNLOAD_ORDER
from fieldsync.db import LocalStore, SettingsStore
from fieldsync.errors import RemoteError
from fieldsync.remote.base import RemoteStore
from fieldsync.remote.connectivity import StaticConnectivityProbe
from fieldsync.sync.outbox import Outbox


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 2, 20, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, **kwargs) -> None:
        self.now += timedelta(seconds=seconds, **kwargs)


class FakeRemoteStore(RemoteStore):
    """
    In-memory remote backend.

    Rows created by upsert carry every column in `columns` for their
    table, unset ones as None, the way `select=*` returns them.
    Every call is recorded in `calls`. Tables listed in `fail_select`
    or `fail_writes` raise RemoteError; `select_delay` makes each
    select yield to the event loop for that long.
    """

    def __init__(
        self,
        tables: dict[str, list[dict[str, Any]]] | None = None,
        columns: dict[str, Sequence[str]] | None = None,
    ):
        self.tables: dict[str, list[dict[str, Any]]] = {t: [] for t in DOWNLOAD_ORDER}
        for table, rows in (tables or {}).items():
            self.tables[table] = [dict(r) for r in rows]
        self.columns: dict[str, Sequence[str]] = dict(columns or {})
        self.calls: list[tuple] = []
        self.fail_select: set[str] = set()
        self.fail_writes: set[str] = set()
        self.select_delay = 0.0

    @property
    def name(self) -> str:
        return "fake"

    def calls_of(self, kind: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == kind]

    async def select_active(self, table: str) -> list[dict[str, Any]]:
        self.calls.append(("select", table))
        if self.select_delay:
            await asyncio.sleep(self.select_delay)
        if table in self.fail_select:
            raise RemoteError(f"select {table} failed", table=table, status_code=500)
        return [dict(r) for r in self.tables[table] if r.get("deleted_at") is None]

    async def upsert(self, table: str, row: dict[str, Any], on_conflict: Sequence[str]) -> None:
        self.calls.append(("upsert", table, dict(row), tuple(on_conflict)))
        if table in self.fail_writes:
            raise RemoteError(f"upsert {table} rejected", table=table, status_code=409)
        for existing in self.tables[table]:
            if all(existing.get(c) == row.get(c) for c in on_conflict):
                existing.update(row)
                return
        created = dict.fromkeys(self.columns.get(table, ()))
        created.update(row)
        self.tables[table].append(created)

    async def update(self, table: str, filters: dict[str, Any], values: dict[str, Any]) -> None:
        self.calls.append(("update", table, dict(filters), dict(values)))
        if table in self.fail_writes:
            raise RemoteError(f"update {table} rejected", table=table, status_code=409)
        for existing in self.tables[table]:
            if all(existing.get(k) == v for k, v in filters.items()):
                existing.update(values)

    async def delete(self, table: str, filters: dict[str, Any]) -> None:
        self.calls.append(("delete", table, dict(filters)))
        if table in self.fail_writes:
            raise RemoteError(f"delete {table} rejected", table=table, status_code=409)
        self.tables[table] = [
            r for r in self.tables[table] if not all(r.get(k) == v for k, v in filters.items())
        ]


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test databases."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def store(temp_dir):
    """Open a seeded LocalStore in a temp directory."""
    store = LocalStore(os.path.join(temp_dir, "local.db"))
    store.open()
    yield store
    store.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def outbox(store, clock):
    return Outbox(store, clock)


@pytest.fixture
def settings(store):
    return SettingsStore(store)


@pytest.fixture
def remote(store):
    return FakeRemoteStore(columns={t: store.table_columns(t) for t in DOWNLOAD_ORDER})


@pytest.fixture
def probe():
    return StaticConnectivityProbe(online=True)

"""
server.py - Reference remote backend.

A FastAPI app serving the subset of the PostgREST dialect that
RestRemoteStore speaks, stored in SQLite. Used for local development
(`fieldsync serve-remote`) and integration tests.
"""

import logging
import os
import sqlite3
import threading
from typing import Any

from fastapi import FastAPI, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse

from fieldsync import __version__
from fieldsync.config import SYNCABLE_TABLES
from fieldsync.db.schema import DOMAIN_SCHEMA_STATEMENTS, iter_statements
from fieldsync.remote.rest import REST_PREFIX

logger = logging.getLogger(__name__)

RESERVED_PARAMS = frozenset({"select", "on_conflict", "order", "limit"})


class RemoteDatabase:
    """SQLite tables behind the reference app, guarded by one lock."""

    def __init__(self, db_path: str):
        self._conn = sqlite3.connect(db_path, isolation_level=None, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._columns: dict[str, tuple[str, ...]] = {}
        with self._lock:
            for sql in iter_statements(DOMAIN_SCHEMA_STATEMENTS):
                self._conn.execute(sql)
            for table in SYNCABLE_TABLES:
                rows = self._conn.execute(f"PRAGMA table_info({table})").fetchall()
                self._columns[table] = tuple(row["name"] for row in rows)

    def close(self) -> None:
        self._conn.close()

    def columns(self, table: str) -> tuple[str, ...]:
        if table not in self._columns:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown table: {table}")
        return self._columns[table]

    def _check_columns(self, table: str, names) -> None:
        known = self.columns(table)
        unknown = [name for name in names if name not in known]
        if unknown:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Unknown column(s) on {table}: {', '.join(unknown)}",
            )

    def _where(self, table: str, filters: dict[str, str]) -> tuple[str, list[Any]]:
        self._check_columns(table, filters)
        clauses, params = [], []
        for column, expression in filters.items():
            if expression == "is.null":
                clauses.append(f"{column} IS NULL")
            elif expression == "not.is.null":
                clauses.append(f"{column} IS NOT NULL")
            elif expression.startswith("eq."):
                clauses.append(f"{column} = ?")
                params.append(expression[3:])
            else:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"Unsupported filter: {column}={expression}",
                )
        return (" WHERE " + " AND ".join(clauses)) if clauses else "", params

    def select(self, table: str, filters: dict[str, str]) -> list[dict[str, Any]]:
        where, params = self._where(table, filters)
        with self._lock:
            rows = self._conn.execute(f"SELECT * FROM {table}{where}", params).fetchall()
        return [dict(row) for row in rows]

    def upsert(self, table: str, rows: list[dict[str, Any]], on_conflict: list[str]) -> None:
        with self._lock:
            self._conn.execute("BEGIN")
            try:
                for row in rows:
                    self._upsert_one(table, row, on_conflict)
                self._conn.execute("COMMIT")
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise

    def _upsert_one(self, table: str, row: dict[str, Any], on_conflict: list[str]) -> None:
        self._check_columns(table, list(row) + on_conflict)
        columns = list(row)
        placeholders = ", ".join("?" for _ in columns)
        updates = [c for c in columns if c not in on_conflict]
        sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"
        if on_conflict:
            sql += f" ON CONFLICT({', '.join(on_conflict)}) DO "
            if updates:
                sql += "UPDATE SET " + ", ".join(f"{c} = excluded.{c}" for c in updates)
            else:
                sql += "NOTHING"
        self._conn.execute(sql, [row[c] for c in columns])

    def update(self, table: str, filters: dict[str, str], values: dict[str, Any]) -> int:
        _require_filters(filters)
        if not values:
            return 0
        self._check_columns(table, values)
        where, params = self._where(table, filters)
        assignments = ", ".join(f"{c} = ?" for c in values)
        with self._lock:
            cursor = self._conn.execute(
                f"UPDATE {table} SET {assignments}{where}", list(values.values()) + params
            )
        return cursor.rowcount

    def delete(self, table: str, filters: dict[str, str]) -> int:
        _require_filters(filters)
        where, params = self._where(table, filters)
        with self._lock:
            cursor = self._conn.execute(f"DELETE FROM {table}{where}", params)
        return cursor.rowcount


def _require_filters(filters: dict[str, str]) -> None:
    if not filters:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Filters are required")


def _filters(request: Request) -> dict[str, str]:
    return {k: v for k, v in request.query_params.items() if k not in RESERVED_PARAMS}


async def _body_rows(request: Request) -> list[dict[str, Any]]:
    body = await request.json()
    rows = body if isinstance(body, list) else [body]
    if not all(isinstance(row, dict) for row in rows):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Body must be an object or a list of objects")
    return rows


def create_app(db_path: str | None = None) -> FastAPI:
    """
    Build the reference remote app.

    Args:
        db_path: SQLite file for the remote tables; defaults to
            FIELDSYNC_REMOTE_DB_PATH or fieldsync_remote.db
    """
    db_path = db_path or os.environ.get("FIELDSYNC_REMOTE_DB_PATH", "fieldsync_remote.db")
    database = RemoteDatabase(db_path)
    app = FastAPI(title="fieldsync reference remote", version=__version__)
    app.state.database = database

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"message": exc.detail})

    @app.exception_handler(sqlite3.Error)
    async def sqlite_exception_handler(request: Request, exc: sqlite3.Error):
        logger.warning(f"Rejected {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"message": str(exc)})

    @app.on_event("shutdown")
    async def shutdown_event():
        database.close()

    @app.api_route("/health", methods=["GET", "HEAD"])
    async def health_check():
        return {"status": "ok", "version": __version__}

    @app.get(REST_PREFIX + "/{table}")
    async def select_rows(table: str, request: Request):
        return database.select(table, _filters(request))

    @app.post(REST_PREFIX + "/{table}", status_code=status.HTTP_201_CREATED)
    async def upsert_rows(table: str, request: Request):
        on_conflict = request.query_params.get("on_conflict")
        keys = [c.strip() for c in on_conflict.split(",")] if on_conflict else []
        database.upsert(table, await _body_rows(request), keys)
        return Response(status_code=status.HTTP_201_CREATED)

    @app.patch(REST_PREFIX + "/{table}")
    async def update_rows(table: str, request: Request):
        values = await request.json()
        if not isinstance(values, dict):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Body must be an object")
        database.update(table, _filters(request), values)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.delete(REST_PREFIX + "/{table}")
    async def delete_rows(table: str, request: Request):
        database.delete(table, _filters(request))
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    return app

"""
store.py - Local store gateway.

LocalStore owns the single SQLite connection of the application.
Every other component reaches the database through it:

- open() is lazy and idempotent, and on first use creates the schema
  and seeds default reference data exactly once
- execute()/query() wrap sqlite3 errors in DatabaseError
- begin()/commit()/rollback() and the transaction() context manager
  give explicit, non-nested transaction control
"""

import logging
import sqlite3
from contextlib import contextmanager
from typing import Any, Iterator, Sequence

from fieldsync.config import SQLITE_PRAGMAS, SYNCABLE_TABLES
from fieldsync.db.schema import ALL_SCHEMA_STATEMENTS, iter_statements
from fieldsync.errors import DatabaseError, ValidationError

logger = logging.getLogger(__name__)

KNOWN_TABLES = SYNCABLE_TABLES | {"sync_queue", "app_settings"}

DEFAULT_ROLES = ("usuario", "controlador")

# username, password, is_admin, role
DEFAULT_USERS = (
    ("admin", "admin123", 1, None),
    ("usuario1", "user123", 0, "usuario"),
    ("controlador1", "ctrl123", 0, "controlador"),
)

# Assigned to usuario1
DEFAULT_COMPANIES = (
    ("AWS", "Amazon Web Services Cloud Provider"),
    ("Google Cloud", "Google Cloud Platform Services"),
    ("Azure", "Microsoft Azure Cloud Services"),
)


def create_connection(db_path: str) -> sqlite3.Connection:
    """
    Create a new SQLite connection with the fieldsync PRAGMAs applied.

    Args:
        db_path: Path to SQLite database file

    Returns:
        Configured sqlite3.Connection

    Raises:
        DatabaseError: If connection fails
    """
    try:
        conn = sqlite3.connect(
            db_path,
            isolation_level=None,  # Manual transaction control
            check_same_thread=False,
        )
    except sqlite3.Error as e:
        raise DatabaseError(
            f"Failed to connect to database: {e}",
            operation="connect",
        ) from e

    conn.row_factory = sqlite3.Row
    for pragma, value in SQLITE_PRAGMAS.items():
        try:
            conn.execute(f"PRAGMA {pragma} = {value}")
        except sqlite3.Error as e:
            conn.close()
            raise DatabaseError(
                f"Failed to set PRAGMA {pragma}: {e}",
                operation="pragma",
                sql=f"PRAGMA {pragma} = {value}",
            ) from e
    return conn


class LocalStore:
    """
    Gateway to the embedded relational store.

    Only one transaction may be open at a time; nesting is rejected
    rather than emulated with savepoints.
    """

    def __init__(self, db_path: str, seed_defaults: bool = True):
        self._db_path = db_path
        self._seed_defaults = seed_defaults
        self._conn: sqlite3.Connection | None = None
        self._columns: dict[str, tuple[str, ...]] = {}
        self._primary_keys: dict[str, tuple[str, ...]] = {}

    def __enter__(self) -> "LocalStore":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def db_path(self) -> str:
        return self._db_path

    def open(self) -> sqlite3.Connection:
        """Return the shared connection, opening and initializing it once."""
        if self._conn is None:
            conn = create_connection(self._db_path)
            try:
                self._initialize(conn)
            except Exception:
                conn.close()
                raise
            self._conn = conn
            logger.info(f"Local store opened at {self._db_path}")
        return self._conn

    @property
    def connection(self) -> sqlite3.Connection:
        return self.open()

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            self._columns.clear()
            self._primary_keys.clear()

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        try:
            return self.connection.execute(sql, params)
        except sqlite3.Error as e:
            raise DatabaseError(f"Statement failed: {e}", operation="execute", sql=sql) from e

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        return self.execute(sql, params).fetchall()

    def query_one(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Row | None:
        return self.execute(sql, params).fetchone()

    def scalar(self, sql: str, params: Sequence[Any] = ()) -> Any:
        row = self.query_one(sql, params)
        return None if row is None else row[0]

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @property
    def in_transaction(self) -> bool:
        return self.connection.in_transaction

    def begin(self) -> None:
        if self.in_transaction:
            raise DatabaseError(
                "A transaction is already open; nested transactions are not supported",
                operation="begin",
            )
        self.execute("BEGIN IMMEDIATE")

    def commit(self) -> None:
        self.execute("COMMIT")

    def rollback(self) -> None:
        if self.in_transaction:
            self.execute("ROLLBACK")

    @contextmanager
    def transaction(self, enforce_foreign_keys: bool = True) -> Iterator["LocalStore"]:
        """
        Run a block inside one transaction.

        Commits when the block completes, rolls back and re-raises on any
        error. With enforce_foreign_keys=False, foreign key enforcement is
        suspended for the duration (SQLite only honours that PRAGMA
        outside a transaction, so it is switched around BEGIN/COMMIT).
        """
        if self.in_transaction:
            raise DatabaseError(
                "A transaction is already open; nested transactions are not supported",
                operation="begin",
            )
        if not enforce_foreign_keys:
            self.execute("PRAGMA foreign_keys = OFF")
        try:
            self.begin()
            try:
                yield self
            except BaseException:
                self.rollback()
                raise
            try:
                self.commit()
            except DatabaseError:
                self.rollback()
                raise
        finally:
            if not enforce_foreign_keys:
                self.execute("PRAGMA foreign_keys = ON")

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def table_columns(self, table: str) -> tuple[str, ...]:
        """Column names of a known table, in declaration order."""
        if table not in self._columns:
            self._load_table_info(table)
        return self._columns[table]

    def primary_key(self, table: str) -> tuple[str, ...]:
        """Primary key columns of a known table, in key order."""
        if table not in self._primary_keys:
            self._load_table_info(table)
        return self._primary_keys[table]

    def _load_table_info(self, table: str) -> None:
        if table not in KNOWN_TABLES:
            raise ValidationError(f"Unknown table: {table}", field="table", value=table)
        rows = self.query(f"PRAGMA table_info({table})")
        self._columns[table] = tuple(row["name"] for row in rows)
        keyed = sorted((row["pk"], row["name"]) for row in rows if row["pk"])
        self._primary_keys[table] = tuple(name for _, name in keyed)

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def _initialize(self, conn: sqlite3.Connection) -> None:
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                for sql in iter_statements(ALL_SCHEMA_STATEMENTS):
                    conn.execute(sql)
                user_count = conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]
                if user_count == 0 and self._seed_defaults:
                    _seed_reference_data(conn)
                    logger.info("Seeded default reference data")
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
        except sqlite3.Error as e:
            raise DatabaseError(
                f"Failed to initialize local store: {e}",
                operation="initialize",
            ) from e


def _seed_reference_data(conn: sqlite3.Connection) -> None:
    role_ids = {}
    for name in DEFAULT_ROLES:
        role_ids[name] = conn.execute("INSERT INTO roles (name) VALUES (?)", (name,)).lastrowid

    user_ids = {}
    for username, password, is_admin, role in DEFAULT_USERS:
        user_id = conn.execute(
            "INSERT INTO users (username, password, is_admin, active) VALUES (?, ?, ?, 1)",
            (username, password, is_admin),
        ).lastrowid
        user_ids[username] = user_id
        if role is not None:
            conn.execute(
                "INSERT INTO user_roles (user_id, role_id) VALUES (?, ?)",
                (user_id, role_ids[role]),
            )

    for name, description in DEFAULT_COMPANIES:
        company_id = conn.execute(
            "INSERT INTO companies (name, description) VALUES (?, ?)",
            (name, description),
        ).lastrowid
        conn.execute(
            "INSERT INTO user_companies (user_id, company_id) VALUES (?, ?)",
            (user_ids["usuario1"], company_id),
        )

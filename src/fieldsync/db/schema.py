"""
schema.py - Local store table definitions.

Domain tables mirror the remote backend one to one. Every syncable
table carries created_at, updated_at and a nullable deleted_at
(soft-delete marker). sync_queue is the outbox and app_settings is the
key-value store for sync checkpoints.
"""

from typing import Final

USERS_SCHEMA: Final[str] = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT UNIQUE NOT NULL,
    password TEXT NOT NULL,
    is_admin INTEGER DEFAULT 0,
    active INTEGER DEFAULT 1,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
    deleted_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_users_active ON users(active);
"""

COMPANIES_SCHEMA: Final[str] = """
CREATE TABLE IF NOT EXISTS companies (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    description TEXT,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
    deleted_at TEXT
);
"""

ROLES_SCHEMA: Final[str] = """
CREATE TABLE IF NOT EXISTS roles (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
    deleted_at TEXT
);
"""

USER_ROLES_SCHEMA: Final[str] = """
CREATE TABLE IF NOT EXISTS user_roles (
    user_id INTEGER,
    role_id INTEGER,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
    deleted_at TEXT,
    FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE,
    FOREIGN KEY (role_id) REFERENCES roles (id) ON DELETE CASCADE,
    PRIMARY KEY (user_id, role_id)
);
"""

USER_COMPANIES_SCHEMA: Final[str] = """
CREATE TABLE IF NOT EXISTS user_companies (
    user_id INTEGER,
    company_id INTEGER,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
    deleted_at TEXT,
    FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE,
    FOREIGN KEY (company_id) REFERENCES companies (id) ON DELETE CASCADE,
    PRIMARY KEY (user_id, company_id)
);
"""

VISITS_SCHEMA: Final[str] = """
CREATE TABLE IF NOT EXISTS visits (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER,
    company_id INTEGER,
    role_id INTEGER,
    start_time TEXT NOT NULL,
    end_time TEXT,
    duration INTEGER,
    latitude REAL,
    longitude REAL,
    no_gps_signal INTEGER DEFAULT 0,
    end_latitude REAL,
    end_longitude REAL,
    no_gps_signal_end INTEGER DEFAULT 0,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
    deleted_at TEXT,
    FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE,
    FOREIGN KEY (company_id) REFERENCES companies (id) ON DELETE CASCADE,
    FOREIGN KEY (role_id) REFERENCES roles (id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_visits_user_open ON visits(user_id, end_time);
"""

FORMS_SCHEMA: Final[str] = """
CREATE TABLE IF NOT EXISTS forms (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    description TEXT,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    deleted_at TEXT
);
"""

FORM_FIELDS_SCHEMA: Final[str] = """
CREATE TABLE IF NOT EXISTS form_fields (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    form_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    label TEXT NOT NULL,
    type TEXT CHECK(type IN ('text', 'number', 'date', 'boolean')) NOT NULL,
    required INTEGER DEFAULT 0,
    sort_order INTEGER NOT NULL,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
    deleted_at TEXT,
    FOREIGN KEY (form_id) REFERENCES forms (id) ON DELETE CASCADE
);
"""

FORM_COMPANIES_SCHEMA: Final[str] = """
CREATE TABLE IF NOT EXISTS form_companies (
    form_id INTEGER NOT NULL,
    company_id INTEGER NOT NULL,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
    deleted_at TEXT,
    FOREIGN KEY (form_id) REFERENCES forms (id) ON DELETE CASCADE,
    FOREIGN KEY (company_id) REFERENCES companies (id) ON DELETE CASCADE,
    PRIMARY KEY (form_id, company_id)
);
"""

FORM_RESPONSES_SCHEMA: Final[str] = """
CREATE TABLE IF NOT EXISTS form_responses (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    form_id INTEGER NOT NULL,
    visit_id INTEGER NOT NULL,
    user_id INTEGER NOT NULL,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    deleted_at TEXT,
    FOREIGN KEY (form_id) REFERENCES forms (id) ON DELETE CASCADE,
    FOREIGN KEY (visit_id) REFERENCES visits (id) ON DELETE CASCADE,
    FOREIGN KEY (user_id) REFERENCES users (id) ON DELETE CASCADE
);
"""

FORM_FIELD_RESPONSES_SCHEMA: Final[str] = """
CREATE TABLE IF NOT EXISTS form_field_responses (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    form_response_id INTEGER NOT NULL,
    field_id INTEGER NOT NULL,
    value TEXT NOT NULL,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
    deleted_at TEXT,
    FOREIGN KEY (form_response_id) REFERENCES form_responses (id) ON DELETE CASCADE,
    FOREIGN KEY (field_id) REFERENCES form_fields (id) ON DELETE CASCADE
);
"""

# sync_queue table - the outbox
# Every local mutation of a syncable row becomes a row here
SYNC_QUEUE_SCHEMA: Final[str] = """
CREATE TABLE IF NOT EXISTS sync_queue (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    table_name TEXT NOT NULL,
    record_id TEXT NOT NULL,
    operation TEXT CHECK(operation IN ('INSERT', 'UPDATE', 'DELETE')) NOT NULL,
    data TEXT NOT NULL,
    synced INTEGER DEFAULT 0,
    retry_count INTEGER DEFAULT 0,
    error TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_sync_queue_pending
ON sync_queue(synced, retry_count, created_at);
"""

APP_SETTINGS_SCHEMA: Final[str] = """
CREATE TABLE IF NOT EXISTS app_settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""

# All schema statements in dependency order
ALL_SCHEMA_STATEMENTS: Final[tuple[str, ...]] = (
    SYNC_QUEUE_SCHEMA,
    APP_SETTINGS_SCHEMA,
    USERS_SCHEMA,
    COMPANIES_SCHEMA,
    ROLES_SCHEMA,
    USER_ROLES_SCHEMA,
    USER_COMPANIES_SCHEMA,
    VISITS_SCHEMA,
    FORMS_SCHEMA,
    FORM_FIELDS_SCHEMA,
    FORM_COMPANIES_SCHEMA,
    FORM_RESPONSES_SCHEMA,
    FORM_FIELD_RESPONSES_SCHEMA,
)

# Domain tables only, shared with the reference remote
DOMAIN_SCHEMA_STATEMENTS: Final[tuple[str, ...]] = ALL_SCHEMA_STATEMENTS[2:]


def iter_statements(statements: tuple[str, ...]):
    """Split multi-statement schema strings into single statements."""
    for statement in statements:
        for sql in statement.strip().split(";"):
            sql = sql.strip()
            if sql:
                yield sql

"""
users.py - User repository.

Users carry role and company assignments stored in the user_roles and
user_companies junction tables. Removing an assignment deletes the
junction row locally and enqueues a DELETE keyed by both ids.
"""

import logging
import sqlite3
from typing import Iterable

from fieldsync.errors import BusinessRuleError, ValidationError
from fieldsync.models import Company, Role, User
from fieldsync.repositories.base import Repository
from fieldsync.sync.outbox import Operation

logger = logging.getLogger(__name__)

_USER_COLUMNS = "id, username, is_admin, active"


class UserRepository(Repository):
    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_users(self) -> list[User]:
        rows = self._store.query(
            f"SELECT {_USER_COLUMNS} FROM users WHERE deleted_at IS NULL ORDER BY username"
        )
        return self._with_assignments(rows)

    def get_user(self, user_id: int) -> User | None:
        row = self._store.query_one(
            f"SELECT {_USER_COLUMNS} FROM users WHERE id = ? AND deleted_at IS NULL", (user_id,)
        )
        return None if row is None else self._with_assignments([row])[0]

    def authenticate(self, username: str, password: str) -> User | None:
        """
        Check credentials against the local store.

        Admin users are granted every active role and company.

        Returns:
            The matching user, or None
        """
        row = self._store.query_one(
            f"SELECT {_USER_COLUMNS} FROM users "
            "WHERE username = ? AND password = ? AND deleted_at IS NULL",
            (username, password),
        )
        if row is None:
            return None
        if row["is_admin"]:
            roles = self._store.query("SELECT id, name FROM roles WHERE deleted_at IS NULL ORDER BY name")
            companies = self._store.query(
                "SELECT id, name, description FROM companies WHERE deleted_at IS NULL ORDER BY name"
            )
            return User(
                id=row["id"],
                username=row["username"],
                is_admin=True,
                active=bool(row["active"]),
                roles=[Role(id=r["id"], name=r["name"]) for r in roles],
                companies=[Company(id=c["id"], name=c["name"], description=c["description"]) for c in companies],
            )
        return self._with_assignments([row])[0]

    def _with_assignments(self, rows: list[sqlite3.Row]) -> list[User]:
        users = {
            row["id"]: User(
                id=row["id"],
                username=row["username"],
                is_admin=bool(row["is_admin"]),
                active=bool(row["active"]),
            )
            for row in rows
        }
        if not users:
            return []
        placeholders = ", ".join("?" for _ in users)
        ids = list(users)

        role_rows = self._store.query(
            "SELECT ur.user_id, r.id, r.name FROM user_roles ur "
            "JOIN roles r ON r.id = ur.role_id "
            f"WHERE ur.user_id IN ({placeholders}) AND ur.deleted_at IS NULL AND r.deleted_at IS NULL "
            "ORDER BY r.name",
            ids,
        )
        for row in role_rows:
            users[row["user_id"]].roles.append(Role(id=row["id"], name=row["name"]))

        company_rows = self._store.query(
            "SELECT uc.user_id, c.id, c.name, c.description FROM user_companies uc "
            "JOIN companies c ON c.id = uc.company_id "
            f"WHERE uc.user_id IN ({placeholders}) AND uc.deleted_at IS NULL AND c.deleted_at IS NULL "
            "ORDER BY c.name",
            ids,
        )
        for row in company_rows:
            users[row["user_id"]].companies.append(
                Company(id=row["id"], name=row["name"], description=row["description"])
            )
        return list(users.values())

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_user(
        self,
        username: str,
        password: str,
        is_admin: bool = False,
        active: bool = True,
        role_ids: Iterable[int] = (),
        company_ids: Iterable[int] = (),
    ) -> int:
        """
        Create a user with its assignments.

        Raises:
            ValidationError: If username or password is empty
            BusinessRuleError: If the username is taken
        """
        username = (username or "").strip()
        if not username or not password:
            raise ValidationError("Username and password are required", field="username", value=username)

        with self._store.transaction():
            if self._store.scalar("SELECT 1 FROM users WHERE username = ?", (username,)):
                raise BusinessRuleError(f"Username already exists: {username}", rule="unique_username")
            now = self._now()
            values = {
                "username": username,
                "password": password,
                "is_admin": bool(is_admin),
                "active": bool(active),
                "created_at": now,
                "updated_at": now,
            }
            user_id = self._insert("users", values)
            self._outbox.enqueue("users", user_id, Operation.INSERT, values)
            for role_id in dict.fromkeys(role_ids):
                self._link("user_roles", "user_id", user_id, "role_id", role_id)
            for company_id in dict.fromkeys(company_ids):
                self._link("user_companies", "user_id", user_id, "company_id", company_id)

        logger.info(f"Created user {username} ({user_id})")
        return user_id

    def update_user(
        self,
        user_id: int,
        username: str,
        password: str | None,
        is_admin: bool,
        role_ids: Iterable[int],
        company_ids: Iterable[int],
        active: bool = True,
    ) -> None:
        """
        Update a user and reconcile its assignments.

        New assignments enqueue INSERTs and removed ones DELETEs. The
        users UPDATE carries only the changed fields and is skipped when
        nothing changed. An empty password keeps the current one.
        """
        username = (username or "").strip()
        if not username:
            raise ValidationError("Username is required", field="username", value=username)
        role_ids = list(dict.fromkeys(role_ids))
        company_ids = list(dict.fromkeys(company_ids))

        with self._store.transaction():
            current = self._require("users", user_id, "user")
            taken = self._store.scalar(
                "SELECT 1 FROM users WHERE username = ? AND id != ?", (username, user_id)
            )
            if taken:
                raise BusinessRuleError(f"Username already exists: {username}", rule="unique_username")

            changes: dict = {}
            if username != current["username"]:
                changes["username"] = username
            if password and password != current["password"]:
                changes["password"] = password
            if bool(is_admin) != bool(current["is_admin"]):
                changes["is_admin"] = bool(is_admin)
            if bool(active) != bool(current["active"]):
                changes["active"] = bool(active)

            if changes:
                changes["updated_at"] = self._now()
                assignments = ", ".join(f"{c} = ?" for c in changes)
                self._store.execute(
                    f"UPDATE users SET {assignments} WHERE id = ?", [*changes.values(), user_id]
                )
                self._outbox.enqueue("users", user_id, Operation.UPDATE, changes)

            self._reconcile(user_id, "user_roles", "role_id", role_ids)
            self._reconcile(user_id, "user_companies", "company_id", company_ids)

    def _reconcile(self, user_id: int, table: str, column: str, wanted: list[int]) -> None:
        current = [
            row[column]
            for row in self._store.query(f"SELECT {column} FROM {table} WHERE user_id = ?", (user_id,))
        ]
        for other_id in wanted:
            if other_id not in current:
                self._link(table, "user_id", user_id, column, other_id)
        for other_id in current:
            if other_id not in wanted:
                self._unlink(table, "user_id", user_id, column, other_id)

    def delete_user(self, user_id: int) -> None:
        """
        Soft-delete a user and remove its assignments.

        Raises:
            BusinessRuleError: If the user has visits or form responses
        """
        with self._store.transaction():
            self._require("users", user_id, "user")
            visits = self._store.scalar(
                "SELECT COUNT(*) FROM visits WHERE user_id = ? AND deleted_at IS NULL", (user_id,)
            )
            responses = self._store.scalar(
                "SELECT COUNT(*) FROM form_responses WHERE user_id = ? AND deleted_at IS NULL", (user_id,)
            )
            if visits or responses:
                raise BusinessRuleError(
                    "Cannot delete user with associated visits or form responses. "
                    "Consider deactivating the user instead.",
                    rule="user_has_history",
                )

            self._reconcile(user_id, "user_roles", "role_id", [])
            self._reconcile(user_id, "user_companies", "company_id", [])
            self._soft_delete("users", user_id, extra={"active": False})

        logger.info(f"Deleted user {user_id}")

    def assign_role(self, user_id: int, role_id: int) -> bool:
        """Add a role assignment. Returns False if it already exists."""
        return self._assign("user_roles", "role_id", user_id, role_id)

    def assign_company(self, user_id: int, company_id: int) -> bool:
        """Add a company assignment. Returns False if it already exists."""
        return self._assign("user_companies", "company_id", user_id, company_id)

    def _assign(self, table: str, column: str, user_id: int, other_id: int) -> bool:
        with self._store.transaction():
            self._require("users", user_id, "user")
            exists = self._store.scalar(
                f"SELECT 1 FROM {table} WHERE user_id = ? AND {column} = ?", (user_id, other_id)
            )
            if exists:
                return False
            self._link(table, "user_id", user_id, column, other_id)
        return True

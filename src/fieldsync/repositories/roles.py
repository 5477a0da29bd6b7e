"""
roles.py - Role repository.
"""

from fieldsync.errors import ValidationError
from fieldsync.models import Role
from fieldsync.repositories.base import Repository
from fieldsync.sync.outbox import Operation


class RoleRepository(Repository):
    def get_roles(self) -> list[Role]:
        rows = self._store.query("SELECT id, name FROM roles WHERE deleted_at IS NULL ORDER BY name")
        return [Role(id=row["id"], name=row["name"]) for row in rows]

    def create_role(self, name: str) -> int:
        if not name or not name.strip():
            raise ValidationError("Role name is required", field="name", value=name)
        now = self._now()
        values = {"name": name.strip(), "created_at": now, "updated_at": now}
        with self._store.transaction():
            role_id = self._insert("roles", values)
            self._outbox.enqueue("roles", role_id, Operation.INSERT, values)
        return role_id

    def update_role(self, role_id: int, name: str) -> None:
        if not name or not name.strip():
            raise ValidationError("Role name is required", field="name", value=name)
        with self._store.transaction():
            self._require("roles", role_id, "role")
            values = {"name": name.strip(), "updated_at": self._now()}
            self._store.execute(
                "UPDATE roles SET name = ?, updated_at = ? WHERE id = ?",
                (values["name"], values["updated_at"], role_id),
            )
            self._outbox.enqueue("roles", role_id, Operation.UPDATE, values)

    def delete_role(self, role_id: int) -> None:
        with self._store.transaction():
            self._require("roles", role_id, "role")
            self._soft_delete("roles", role_id)

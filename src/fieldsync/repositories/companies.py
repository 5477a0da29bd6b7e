"""
companies.py - Company repository.
"""

import sqlite3

from fieldsync.errors import ValidationError
from fieldsync.models import Company
from fieldsync.repositories.base import Repository
from fieldsync.sync.outbox import Operation


def _company(row: sqlite3.Row) -> Company:
    return Company(id=row["id"], name=row["name"], description=row["description"])


class CompanyRepository(Repository):
    def get_companies(self) -> list[Company]:
        rows = self._store.query(
            "SELECT id, name, description FROM companies WHERE deleted_at IS NULL ORDER BY name"
        )
        return [_company(row) for row in rows]

    def get_company(self, company_id: int) -> Company | None:
        row = self._store.query_one(
            "SELECT id, name, description FROM companies WHERE id = ? AND deleted_at IS NULL",
            (company_id,),
        )
        return None if row is None else _company(row)

    def get_user_companies(self, user_id: int) -> list[Company]:
        rows = self._store.query(
            "SELECT c.id, c.name, c.description FROM companies c "
            "JOIN user_companies uc ON uc.company_id = c.id "
            "WHERE uc.user_id = ? AND c.deleted_at IS NULL AND uc.deleted_at IS NULL "
            "ORDER BY c.name",
            (user_id,),
        )
        return [_company(row) for row in rows]

    def create_company(self, name: str, description: str | None = None) -> int:
        if not name or not name.strip():
            raise ValidationError("Company name is required", field="name", value=name)
        now = self._now()
        values = {"name": name.strip(), "description": description, "created_at": now, "updated_at": now}
        with self._store.transaction():
            company_id = self._insert("companies", values)
            self._outbox.enqueue("companies", company_id, Operation.INSERT, values)
        return company_id

    def update_company(self, company_id: int, name: str, description: str | None = None) -> None:
        if not name or not name.strip():
            raise ValidationError("Company name is required", field="name", value=name)
        values = {"name": name.strip(), "description": description, "updated_at": self._now()}
        with self._store.transaction():
            self._require("companies", company_id, "company")
            self._store.execute(
                "UPDATE companies SET name = ?, description = ?, updated_at = ? WHERE id = ?",
                (values["name"], description, values["updated_at"], company_id),
            )
            self._outbox.enqueue("companies", company_id, Operation.UPDATE, values)

    def delete_company(self, company_id: int) -> None:
        with self._store.transaction():
            self._require("companies", company_id, "company")
            self._soft_delete("companies", company_id)

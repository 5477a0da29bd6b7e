"""
forms.py - Form and form response repository.

A form owns its fields and is offered to the companies listed in
form_companies. Users see the forms of the companies they are
assigned to.
"""

import logging
from typing import Iterable, Mapping

from fieldsync.errors import NotFoundError, ValidationError
from fieldsync.models import FieldAnswer, FieldSpec, Form, FormResponse, form_field_from_row
from fieldsync.repositories.base import Repository
from fieldsync.sync.outbox import Operation

logger = logging.getLogger(__name__)


class FormRepository(Repository):
    # ------------------------------------------------------------------
    # Forms
    # ------------------------------------------------------------------

    def create_form(
        self,
        name: str,
        description: str | None,
        fields: Iterable[FieldSpec],
        company_ids: Iterable[int],
    ) -> int:
        """
        Create a form with its fields and company assignments.

        Enqueues an INSERT for the form, one per field and one per
        company assignment.
        """
        if not name or not name.strip():
            raise ValidationError("Form name is required", field="name", value=name)
        fields = list(fields)
        company_ids = list(dict.fromkeys(company_ids))

        now = self._now()
        form_values = {"name": name.strip(), "description": description, "created_at": now, "updated_at": now}
        with self._store.transaction():
            form_id = self._insert("forms", form_values)
            self._outbox.enqueue("forms", form_id, Operation.INSERT, form_values)

            for position, field in enumerate(fields):
                field_values = {
                    "form_id": form_id,
                    "name": field.name,
                    "label": field.label,
                    "type": field.type,
                    "required": bool(field.required),
                    "sort_order": field.sort_order or position,
                    "created_at": now,
                    "updated_at": now,
                }
                field_id = self._insert("form_fields", field_values)
                self._outbox.enqueue("form_fields", field_id, Operation.INSERT, field_values)

            for company_id in company_ids:
                self._link("form_companies", "form_id", form_id, "company_id", company_id)

        logger.info(f"Created form {form_id} with {len(fields)} fields for {len(company_ids)} companies")
        return form_id

    def get_forms(self, user_id: int | None = None, company_id: int | None = None) -> list[Form]:
        """
        Forms offered to a company, or to any company of a user.

        With neither filter, every form assigned to at least one company.
        """
        sql = (
            "SELECT DISTINCT f.id, f.name, f.description, f.created_at, f.updated_at "
            "FROM forms f JOIN form_companies fc ON fc.form_id = f.id "
            "WHERE f.deleted_at IS NULL AND fc.deleted_at IS NULL"
        )
        params: list = []
        if company_id is not None:
            sql += " AND fc.company_id = ?"
            params.append(company_id)
        elif user_id is not None:
            sql += (
                " AND fc.company_id IN (SELECT company_id FROM user_companies "
                "WHERE user_id = ? AND deleted_at IS NULL)"
            )
            params.append(user_id)
        sql += " ORDER BY f.name, f.id"
        return self._with_fields(self._store.query(sql, params))

    def get_form(self, form_id: int) -> Form | None:
        rows = self._store.query(
            "SELECT id, name, description, created_at, updated_at FROM forms "
            "WHERE id = ? AND deleted_at IS NULL",
            (form_id,),
        )
        forms = self._with_fields(rows)
        return forms[0] if forms else None

    def _with_fields(self, rows) -> list[Form]:
        forms = {
            row["id"]: Form(
                id=row["id"],
                name=row["name"],
                description=row["description"],
                created_at=row["created_at"],
                updated_at=row["updated_at"],
            )
            for row in rows
        }
        if not forms:
            return []
        placeholders = ", ".join("?" for _ in forms)
        field_rows = self._store.query(
            "SELECT id, form_id, name, label, type, required, sort_order FROM form_fields "
            f"WHERE form_id IN ({placeholders}) AND deleted_at IS NULL ORDER BY sort_order, id",
            list(forms),
        )
        for row in field_rows:
            forms[row["form_id"]].fields.append(form_field_from_row(row))
        return list(forms.values())

    # ------------------------------------------------------------------
    # Responses
    # ------------------------------------------------------------------

    def create_form_response(
        self,
        form_id: int,
        visit_id: int,
        user_id: int,
        answers: Mapping[int, str],
    ) -> int:
        """
        Store a filled form for a visit.

        Args:
            answers: field_id -> value

        Raises:
            NotFoundError: If the form does not exist
            ValidationError: If a required field is unanswered or a field
                does not belong to the form
        """
        form = self.get_form(form_id)
        if form is None:
            raise NotFoundError(f"Form {form_id} not found", entity="form", entity_id=form_id)
        field_ids = {f.id for f in form.fields}
        unknown = [fid for fid in answers if fid not in field_ids]
        if unknown:
            raise ValidationError(f"Fields do not belong to form {form_id}", field="field_id", value=unknown)
        for f in form.fields:
            if f.required and not str(answers.get(f.id, "")).strip():
                raise ValidationError(f"Field '{f.label}' is required", field=f.name)

        now = self._now()
        response_values = {
            "form_id": form_id,
            "visit_id": visit_id,
            "user_id": user_id,
            "created_at": now,
            "updated_at": now,
        }
        with self._store.transaction():
            self._require("visits", visit_id, "visit")
            response_id = self._insert("form_responses", response_values)
            self._outbox.enqueue("form_responses", response_id, Operation.INSERT, response_values)
            for field_id, value in answers.items():
                answer_values = {
                    "form_response_id": response_id,
                    "field_id": field_id,
                    "value": str(value),
                    "created_at": now,
                    "updated_at": now,
                }
                answer_id = self._insert("form_field_responses", answer_values)
                self._outbox.enqueue("form_field_responses", answer_id, Operation.INSERT, answer_values)

        logger.info(f"Stored response {response_id} to form {form_id} for visit {visit_id}")
        return response_id

    def get_form_responses(
        self,
        form_id: int | None = None,
        visit_id: int | None = None,
        user_id: int | None = None,
    ) -> list[FormResponse]:
        """Responses, newest first, with their answers."""
        sql = (
            "SELECT fr.id, fr.form_id, f.name AS form_name, fr.visit_id, fr.user_id, "
            "u.username, fr.created_at FROM form_responses fr "
            "JOIN forms f ON f.id = fr.form_id "
            "JOIN users u ON u.id = fr.user_id "
            "WHERE fr.deleted_at IS NULL"
        )
        params: list = []
        for column, value in (("form_id", form_id), ("visit_id", visit_id), ("user_id", user_id)):
            if value is not None:
                sql += f" AND fr.{column} = ?"
                params.append(value)
        sql += " ORDER BY fr.created_at DESC, fr.id DESC"

        responses = {
            row["id"]: FormResponse(
                id=row["id"],
                form_id=row["form_id"],
                form_name=row["form_name"],
                visit_id=row["visit_id"],
                user_id=row["user_id"],
                username=row["username"],
                created_at=row["created_at"],
            )
            for row in self._store.query(sql, params)
        }
        if not responses:
            return []

        placeholders = ", ".join("?" for _ in responses)
        answer_rows = self._store.query(
            "SELECT ffr.form_response_id, ffr.field_id, ff.label, ffr.value "
            "FROM form_field_responses ffr LEFT JOIN form_fields ff ON ff.id = ffr.field_id "
            f"WHERE ffr.form_response_id IN ({placeholders}) AND ffr.deleted_at IS NULL "
            "ORDER BY ff.sort_order, ffr.id",
            list(responses),
        )
        for row in answer_rows:
            responses[row["form_response_id"]].answers.append(
                FieldAnswer(field_id=row["field_id"], field_label=row["label"], value=row["value"])
            )
        return list(responses.values())

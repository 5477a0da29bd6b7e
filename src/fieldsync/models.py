"""
models.py - Typed records returned by the repositories.

Reads join the related tables and group the flat rows in Python, so
nested collections (a user's roles, a form's fields, a report's visits)
arrive as lists of records instead of delimited strings.
"""

import sqlite3
from dataclasses import asdict, dataclass, field
from typing import Any

from fieldsync.errors import ValidationError

FIELD_TYPES = frozenset({"text", "number", "date", "boolean"})


@dataclass(frozen=True)
class Role:
    id: int
    name: str


@dataclass(frozen=True)
class Company:
    id: int
    name: str
    description: str | None = None


@dataclass
class User:
    id: int
    username: str
    is_admin: bool
    active: bool
    roles: list[Role] = field(default_factory=list)
    companies: list[Company] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "User":
        return cls(
            id=data["id"],
            username=data["username"],
            is_admin=bool(data["is_admin"]),
            active=bool(data["active"]),
            roles=[Role(**r) for r in data.get("roles", [])],
            companies=[Company(**c) for c in data.get("companies", [])],
        )


@dataclass(frozen=True)
class Visit:
    id: int
    user_id: int
    company_id: int
    role_id: int | None
    start_time: str
    end_time: str | None
    duration: int | None
    latitude: float | None
    longitude: float | None
    no_gps_signal: bool
    end_latitude: float | None
    end_longitude: float | None
    no_gps_signal_end: bool
    company_name: str | None = None

    @property
    def active(self) -> bool:
        return self.end_time is None


def visit_from_row(row: sqlite3.Row) -> Visit:
    keys = row.keys()
    return Visit(
        id=row["id"],
        user_id=row["user_id"],
        company_id=row["company_id"],
        role_id=row["role_id"],
        start_time=row["start_time"],
        end_time=row["end_time"],
        duration=row["duration"],
        latitude=row["latitude"],
        longitude=row["longitude"],
        no_gps_signal=bool(row["no_gps_signal"]),
        end_latitude=row["end_latitude"],
        end_longitude=row["end_longitude"],
        no_gps_signal_end=bool(row["no_gps_signal_end"]),
        company_name=row["company_name"] if "company_name" in keys else None,
    )


@dataclass(frozen=True)
class ReportVisit:
    """One finished visit inside a VisitReport."""
    id: int
    start_time: str
    end_time: str
    duration: int
    start_latitude: float | None
    start_longitude: float | None
    no_gps_signal_start: bool
    end_latitude: float | None
    end_longitude: float | None
    no_gps_signal_end: bool


@dataclass
class VisitReport:
    """Finished visits of one user at one company."""
    user_id: int
    username: str
    company_id: int
    company_name: str
    total_duration: int = 0
    visits: list[ReportVisit] = field(default_factory=list)


@dataclass(frozen=True)
class FieldSpec:
    """Definition of a form field about to be created."""
    name: str
    label: str
    type: str
    required: bool = False
    sort_order: int = 0

    def __post_init__(self) -> None:
        if self.type not in FIELD_TYPES:
            raise ValidationError(
                f"Field type must be one of {sorted(FIELD_TYPES)}, got {self.type}",
                field="type",
                value=self.type,
            )
        if not self.name or not self.label:
            raise ValidationError("Field name and label are required", field="name", value=self.name)


@dataclass(frozen=True)
class FormField:
    id: int
    form_id: int
    name: str
    label: str
    type: str
    required: bool
    sort_order: int


@dataclass
class Form:
    id: int
    name: str
    description: str | None
    created_at: str
    updated_at: str
    fields: list[FormField] = field(default_factory=list)


def form_field_from_row(row: sqlite3.Row, prefix: str = "") -> FormField:
    return FormField(
        id=row[f"{prefix}id"],
        form_id=row[f"{prefix}form_id"],
        name=row[f"{prefix}name"],
        label=row[f"{prefix}label"],
        type=row[f"{prefix}type"],
        required=bool(row[f"{prefix}required"]),
        sort_order=row[f"{prefix}sort_order"],
    )


@dataclass(frozen=True)
class FieldAnswer:
    field_id: int
    field_label: str | None
    value: str


@dataclass
class FormResponse:
    id: int
    form_id: int
    form_name: str
    visit_id: int
    user_id: int
    username: str
    created_at: str
    answers: list[FieldAnswer] = field(default_factory=list)

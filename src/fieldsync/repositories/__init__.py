"""
repositories - Domain CRUD that writes the local store and the outbox together.
"""

from dataclasses import dataclass

from fieldsync.db.store import LocalStore
from fieldsync.repositories.companies import CompanyRepository
from fieldsync.repositories.forms import FormRepository
from fieldsync.repositories.roles import RoleRepository
from fieldsync.repositories.users import UserRepository
from fieldsync.repositories.visits import VisitRepository
from fieldsync.sync.outbox import Outbox
from fieldsync.utils.timestamps import Clock, utc_now


@dataclass
class Repositories:
    users: UserRepository
    companies: CompanyRepository
    roles: RoleRepository
    visits: VisitRepository
    forms: FormRepository

    @classmethod
    def create(cls, store: LocalStore, outbox: Outbox, clock: Clock = utc_now) -> "Repositories":
        return cls(
            users=UserRepository(store, outbox, clock),
            companies=CompanyRepository(store, outbox, clock),
            roles=RoleRepository(store, outbox, clock),
            visits=VisitRepository(store, outbox, clock),
            forms=FormRepository(store, outbox, clock),
        )


__all__ = [
    "CompanyRepository",
    "FormRepository",
    "Repositories",
    "RoleRepository",
    "UserRepository",
    "VisitRepository",
]

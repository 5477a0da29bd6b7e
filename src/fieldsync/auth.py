"""
auth.py - Login session.

The logged-in user is persisted, without its password, under the
"user" settings key. A successful login starts a sync session.
"""

import logging

from fieldsync.config import SETTING_SESSION_USER
from fieldsync.db.settings import SettingsStore
from fieldsync.errors import AuthenticationError
from fieldsync.models import User
from fieldsync.repositories.users import UserRepository
from fieldsync.sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


class SessionManager:
    def __init__(
        self,
        users: UserRepository,
        settings: SettingsStore,
        orchestrator: SyncOrchestrator | None = None,
    ):
        self._users = users
        self._settings = settings
        self._orchestrator = orchestrator
        self._user: User | None = None

    @property
    def user(self) -> User | None:
        return self._user

    @property
    def authenticated(self) -> bool:
        return self._user is not None

    async def login(self, username: str, password: str) -> User:
        """
        Check credentials, persist the session and start a sync.

        Raises:
            AuthenticationError: On empty input, bad credentials or an
                inactive account
        """
        username = (username or "").strip().lower()
        password = (password or "").strip()
        if not username or not password:
            raise AuthenticationError("Username and password are required")

        user = self._users.authenticate(username, password)
        if user is None:
            logger.info(f"Rejected login for {username}")
            raise AuthenticationError("Invalid credentials")
        if not user.active:
            raise AuthenticationError(
                "Your account has been deactivated. Please contact an administrator."
            )

        self._settings.set_json(SETTING_SESSION_USER, user.to_dict())
        self._user = user
        logger.info(f"User {username} logged in")

        if self._orchestrator is not None:
            await self._orchestrator.on_login()
        return user

    def restore(self) -> User | None:
        """Reload the persisted session, dropping it if it cannot be read."""
        try:
            data = self._settings.get_json(SETTING_SESSION_USER)
            self._user = None if data is None else User.from_dict(data)
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Failed to restore session: {e}")
            self._settings.remove(SETTING_SESSION_USER)
            self._user = None
        return self._user

    def logout(self) -> None:
        self._settings.remove(SETTING_SESSION_USER)
        self._user = None

"""Service layer for user registration and lookup."""

import logging
from typing import Any, List, Optional

from notesync.exceptions import (
    ErrorCode,
    InvalidInputError,
    UsernameAlreadyExistsError,
    UserNotFoundError,
)
from notesync.models.db_models import get_session_factory, init_db
from notesync.models.schema import User
from notesync.observability import traced
from notesync.storage.user_repository import UserRepository

logger = logging.getLogger(__name__)


class UserService:
    """Registers users and resolves usernames."""

    def __init__(
        self,
        repository: Optional[UserRepository] = None,
        engine: Optional[Any] = None,
    ):
        if repository is not None:
            self.repository = repository
        else:
            engine = engine if engine is not None else init_db()
            self.repository = UserRepository(get_session_factory(engine))

    @traced("register_user")
    def register_user(self, username: str) -> User:
        """Register a new user.

        The username is trimmed before it is stored.

        Raises:
            InvalidInputError: If the username is blank.
            UsernameAlreadyExistsError: If the username is taken.
        """
        name = (username or "").strip()
        if not name:
            raise InvalidInputError(
                "Username is required",
                field="username",
                code=ErrorCode.USERNAME_REQUIRED,
            )
        # The unique constraint still guards concurrent registrations
        if self.repository.get_by_username(name) is not None:
            raise UsernameAlreadyExistsError(name)
        return self.repository.create(User(username=name))

    def get_user(self, username: str) -> User:
        user = self.repository.get_by_username(username)
        if user is None:
            raise UserNotFoundError(username)
        return user

    def list_users(self) -> List[User]:
        return self.repository.get_all()

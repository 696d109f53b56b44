"""Tests for user registration."""
import pytest

from notesync.exceptions import (
    ConflictError,
    ErrorCode,
    InvalidInputError,
    UsernameAlreadyExistsError,
    UserNotFoundError,
)


class TestUserService:
    """Tests for UserService."""

    def test_register_trims_username(self, user_service):
        user = user_service.register_user("  dave  ")
        assert user.username == "dave"
        assert user_service.get_user("dave").id == user.id

    @pytest.mark.parametrize("username", ["", "   ", None])
    def test_blank_username(self, user_service, username):
        with pytest.raises(InvalidInputError) as exc_info:
            user_service.register_user(username)
        assert exc_info.value.code is ErrorCode.USERNAME_REQUIRED

    def test_duplicate_username(self, user_service):
        user_service.register_user("dave")
        with pytest.raises(UsernameAlreadyExistsError) as exc_info:
            user_service.register_user(" dave")
        assert isinstance(exc_info.value, ConflictError)

    def test_unknown_user(self, user_service):
        with pytest.raises(UserNotFoundError):
            user_service.get_user("nobody")

    def test_list_users(self, user_service, users):
        assert [u.username for u in user_service.list_users()] == ["alice", "bob", "carol"]

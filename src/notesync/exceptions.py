"""Custom exceptions for notesync.

Provides a structured exception hierarchy with error codes and
machine-readable error information. Every failing operation raises
exactly one of the kinds below; callers map them to their own
responses (the MCP layer formats them as text).
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Not found (1xxx)
    NOTE_NOT_FOUND = 1001
    USER_NOT_FOUND = 1002

    # Access (2xxx)
    ACCESS_DENIED = 2001

    # Conflicts (3xxx)
    SHARE_ALREADY_EXISTS = 3001
    USERNAME_ALREADY_EXISTS = 3002

    # Invalid input (4xxx)
    VALIDATION_FAILED = 4001
    SEARCH_CRITERIA_MISSING = 4002
    SELF_SHARE = 4003
    NOTE_TITLE_REQUIRED = 4004
    USERNAME_REQUIRED = 4005
    NOTE_CONTENT_REQUIRED = 4006

    # Projection (5xxx)
    PROJECTION_SYNC_FAILED = 5001
    PROJECTION_REMOVE_FAILED = 5002

    # Storage and search (6xxx)
    STORAGE_READ_FAILED = 6001
    STORAGE_WRITE_FAILED = 6002
    SEARCH_FAILED = 6003


class NoteSyncError(Exception):
    """Base exception for all notesync errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class NotFoundError(NoteSyncError):
    """Raised when a note or user cannot be found."""


class NoteNotFoundError(NotFoundError):
    """Raised when a note cannot be found."""

    def __init__(self, note_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"Note with ID '{note_id}' not found",
            code=ErrorCode.NOTE_NOT_FOUND,
            details={"note_id": note_id}
        )
        self.note_id = note_id


class UserNotFoundError(NotFoundError):
    """Raised when a username does not resolve to a user."""

    def __init__(self, username: str, message: Optional[str] = None):
        super().__init__(
            message or f"User '{username}' not found",
            code=ErrorCode.USER_NOT_FOUND,
            details={"username": username}
        )
        self.username = username


class AccessDeniedError(NoteSyncError):
    """Raised when the caller's classification forbids the action."""

    def __init__(
        self,
        message: str,
        note_id: Optional[str] = None,
        username: Optional[str] = None,
        action: Optional[str] = None,
    ):
        details = {}
        if note_id:
            details["note_id"] = note_id
        if username:
            details["username"] = username
        if action:
            details["action"] = action

        super().__init__(message, code=ErrorCode.ACCESS_DENIED, details=details)
        self.note_id = note_id
        self.username = username
        self.action = action


class ConflictError(NoteSyncError):
    """Raised when a write collides with an existing record."""


class ShareAlreadyExistsError(ConflictError):
    """Raised when a note is already shared with the target user."""

    def __init__(self, note_id: str, username: str):
        super().__init__(
            f"Note '{note_id}' is already shared with '{username}'",
            code=ErrorCode.SHARE_ALREADY_EXISTS,
            details={"note_id": note_id, "username": username}
        )
        self.note_id = note_id
        self.username = username


class UsernameAlreadyExistsError(ConflictError):
    """Raised when registering a username that is taken."""

    def __init__(self, username: str):
        super().__init__(
            f"Username '{username}' already exists",
            code=ErrorCode.USERNAME_ALREADY_EXISTS,
            details={"username": username}
        )
        self.username = username


class InvalidInputError(NoteSyncError):
    """Raised for general validation errors."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]  # Truncate for safety

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value


class InvalidSearchCriteriaError(InvalidInputError):
    """Raised when a search has neither text nor tags."""

    def __init__(self, message: Optional[str] = None):
        super().__init__(
            message or "At least one search criterion (text or tags) must be provided",
            code=ErrorCode.SEARCH_CRITERIA_MISSING,
        )


class SelfShareError(InvalidInputError):
    """Raised when an owner tries to share a note with themselves."""

    def __init__(self, note_id: str, username: str):
        super().__init__(
            "You cannot share a note with yourself",
            field="username",
            value=username,
            code=ErrorCode.SELF_SHARE,
        )
        self.details["note_id"] = note_id
        self.note_id = note_id


class ProjectionSyncError(NoteSyncError):
    """Raised when the search projection could not be written.

    The relational commit that preceded it stands; the projection for
    ``note_id`` is stale until the next successful sync.
    """

    def __init__(
        self,
        message: str,
        note_id: str,
        code: ErrorCode = ErrorCode.PROJECTION_SYNC_FAILED,
        original_error: Optional[Exception] = None
    ):
        details: Dict[str, Any] = {"note_id": note_id}
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.note_id = note_id
        self.original_error = original_error


class StorageError(NoteSyncError):
    """Raised for storage/persistence errors."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.original_error = original_error


class SearchError(NoteSyncError):
    """Raised for search-related errors."""

    def __init__(
        self,
        message: str,
        query: Optional[str] = None,
        code: ErrorCode = ErrorCode.SEARCH_FAILED
    ):
        details = {}
        if query:
            details["query"] = query[:100]  # Truncate for safety

        super().__init__(message, code=code, details=details)
        self.query = query

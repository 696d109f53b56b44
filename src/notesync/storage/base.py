"""Base repository interface."""
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Generic, List, Optional, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from notesync.exceptions import ErrorCode, StorageError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Repository(ABC, Generic[T]):
    """Abstract base class for repositories over the relational store."""

    @abstractmethod
    def get(self, id: str) -> Optional[T]:
        """Get an entity by ID."""

    @abstractmethod
    def get_all(self) -> List[T]:
        """Get all entities."""


@contextmanager
def store_errors(operation: str, code: ErrorCode = ErrorCode.STORAGE_READ_FAILED):
    """Translate SQLAlchemy failures into StorageError.

    Domain errors raised inside the block pass through untouched.
    """
    try:
        yield
    except SQLAlchemyError as e:
        logger.error(f"Store operation '{operation}' failed: {e}")
        raise StorageError(
            f"Store operation '{operation}' failed",
            operation=operation,
            code=code,
            original_error=e,
        ) from e

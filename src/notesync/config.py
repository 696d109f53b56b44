"""Configuration module for notesync."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from notesync import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config, lives alongside the databases
_USER_ENV = Path.home() / ".notesync" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class NoteSyncConfig(BaseModel):
    """Configuration for the notesync stores and server."""

    # Base directory for relative paths
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("NOTESYNC_BASE_DIR", "."))
    )
    # Authoritative relational database
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("NOTESYNC_DATABASE_PATH", "data/db/notesync.db")
        )
    )
    # Search projection, kept in its own database so it can be dropped and
    # re-derived without touching the authoritative records
    index_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("NOTESYNC_INDEX_PATH", "data/db/notesync_index.db")
        )
    )
    # When True both stores live in memory (tests, throwaway sessions)
    in_memory_db: bool = Field(
        default_factory=lambda: _env_flag("NOTESYNC_IN_MEMORY_DB", "false")
    )
    # Server configuration
    server_name: str = Field(default=os.getenv("NOTESYNC_SERVER_NAME", "notesync"))
    server_version: str = Field(default=__version__)
    # Search tuning
    search_limit: int = Field(
        default_factory=lambda: int(os.getenv("NOTESYNC_SEARCH_LIMIT", "100"))
    )
    title_weight: float = Field(
        default_factory=lambda: float(os.getenv("NOTESYNC_TITLE_WEIGHT", "2.0"))
    )
    # Logging
    log_dir: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("NOTESYNC_LOG_DIR"))
            if os.getenv("NOTESYNC_LOG_DIR")
            else None
        )
    )
    log_level: str = Field(
        default_factory=lambda: os.getenv("NOTESYNC_LOG_LEVEL", "INFO").upper()
    )

    @model_validator(mode="after")
    def _validate_search_config(self) -> "NoteSyncConfig":
        """Reject search settings that would make every query useless."""
        if self.search_limit < 1:
            raise ValueError("search_limit must be >= 1")
        if self.title_weight <= 0:
            raise ValueError("title_weight must be > 0")
        if self.title_weight < 1.0:
            logger.warning(
                "title_weight=%.2f ranks title matches below content matches",
                self.title_weight,
            )
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def _sqlite_url(self, path: Path) -> str:
        if self.in_memory_db:
            return "sqlite:///:memory:"
        db_path = self.get_absolute_path(path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"

    def get_db_url(self) -> str:
        """Get the database URL of the relational store."""
        return self._sqlite_url(self.database_path)

    def get_index_url(self) -> str:
        """Get the database URL of the search projection."""
        return self._sqlite_url(self.index_path)


# Create a global config instance
config = NoteSyncConfig()

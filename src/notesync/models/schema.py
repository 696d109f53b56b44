"""Data models for notesync."""

import datetime
import uuid
from datetime import timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: Optional[datetime.datetime]) -> datetime.datetime:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC.

    SQLite hands back naive datetimes; everything stored was UTC.

    Args:
        dt_value: A datetime that may or may not have timezone info.

    Returns:
        The same datetime with UTC timezone if it was naive, otherwise unchanged.
    """
    if dt_value is None:
        return utc_now()
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


def generate_id() -> str:
    """Generate a random UUID4 string used for every record id."""
    return str(uuid.uuid4())


def normalize_tag_name(name: str) -> str:
    """Normalize a tag name: trimmed and upper-cased.

    Idempotent, so ``normalize_tag_name(normalize_tag_name(x)) == normalize_tag_name(x)``.
    """
    return name.strip().upper()


def normalize_tag_names(names: Optional[List[str]]) -> List[str]:
    """Normalize, drop blanks and deduplicate a collection of tag names.

    Returns:
        Sorted list of distinct normalized names.
    """
    if not names:
        return []
    return sorted({normalize_tag_name(n) for n in names if n and n.strip()})


class NoteOwnership(str, Enum):
    """Access classification of a note relative to one user."""

    OWNED = "owned"  # Caller owns the note and has not shared it
    SHARED_BY_ME = "shared_by_me"  # Caller owns the note and shared it
    SHARED_WITH_ME = "shared_with_me"  # Someone shared the note with the caller
    DENIED = "denied"  # No relationship

    @property
    def is_owner(self) -> bool:
        return self in (NoteOwnership.OWNED, NoteOwnership.SHARED_BY_ME)


class NoteAction(str, Enum):
    """Actions gated by the access resolver."""

    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    SHARE = "share"


class User(BaseModel):
    """A registered user."""

    id: str = Field(default_factory=generate_id, description="Unique ID of the user")
    username: str = Field(..., description="Unique username")
    created_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the user registered (UTC)"
    )

    model_config = {"validate_assignment": True, "extra": "forbid", "frozen": True}

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        """Validate that the username is not blank."""
        if not v or not v.strip():
            raise ValueError("Username cannot be empty")
        return v.strip()


class Tag(BaseModel):
    """A normalized tag shared by every note that references it."""

    name: str = Field(..., description="Normalized tag name")

    model_config = {"validate_assignment": True, "frozen": True}

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        normalized = normalize_tag_name(v)
        if not normalized:
            raise ValueError("Tag name cannot be empty")
        return normalized

    def __str__(self) -> str:
        """Return string representation of tag."""
        return self.name


class NoteShare(BaseModel):
    """A note made visible to one other user. Never updated."""

    id: str = Field(default_factory=generate_id, description="Unique ID of the share")
    note_id: str = Field(..., description="ID of the shared note")
    shared_with_user_id: str = Field(..., description="ID of the recipient")
    shared_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was shared (UTC)"
    )

    model_config = {"validate_assignment": True, "extra": "forbid", "frozen": True}


class Note(BaseModel):
    """A note as stored in the relational store.

    ``owner_username`` and ``shared_with`` are hydrated alongside the row so the
    access resolver can classify the note without another round trip.
    ``ownership`` is only set on notes handed back to a caller.
    """

    id: str = Field(default_factory=generate_id, description="Unique ID of the note")
    title: str = Field(..., description="Title of the note")
    content: str = Field(..., description="Content of the note")
    tags: List[str] = Field(default_factory=list, description="Normalized tag names")
    created_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was created (UTC)"
    )
    updated_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was last updated (UTC)"
    )
    owner_id: str = Field(..., description="ID of the owning user")
    owner_username: str = Field(..., description="Username of the owning user")
    shared_with: List[str] = Field(
        default_factory=list, description="Usernames the note is shared with"
    )
    ownership: Optional[NoteOwnership] = Field(
        default=None, description="Classification relative to the requesting user"
    )

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Validate that the title is not empty."""
        if not v.strip():
            raise ValueError("Title cannot be empty")
        return v

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: List[str]) -> List[str]:
        return normalize_tag_names(v)

    def is_owned_by(self, username: str) -> bool:
        return self.owner_username == username

    def is_shared_with(self, username: str) -> bool:
        return username in self.shared_with

    def with_ownership(self, ownership: NoteOwnership) -> "Note":
        """Return a copy annotated for a caller with the given classification.

        Recipients do not get to see who else the note was shared with.
        """
        update = {"ownership": ownership}
        if not ownership.is_owner:
            update["shared_with"] = []
        return self.model_copy(update=update)


class NoteDocument(BaseModel):
    """Denormalized search projection of a note.

    Always reconstructable from a Note, its tags and its shares; the id is the
    note id.
    """

    id: str = Field(..., description="ID of the source note")
    title: str = Field(..., description="Title of the note")
    content: str = Field(..., description="Content of the note")
    tags: List[str] = Field(default_factory=list, description="Normalized tag names")
    owner_username: str = Field(..., description="Username of the owner")
    shared_with_usernames: List[str] = Field(
        default_factory=list, description="Usernames of the share recipients"
    )

    model_config = {"extra": "forbid", "frozen": True}

    def is_visible_to(self, username: str) -> bool:
        return (
            self.owner_username == username
            or username in self.shared_with_usernames
        )

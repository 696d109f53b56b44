"""Storage layer for notesync."""

from notesync.storage.base import Repository
from notesync.storage.note_repository import NoteRepository
from notesync.storage.search_index import NoteSearchIndex
from notesync.storage.tag_repository import TagRepository
from notesync.storage.user_repository import UserRepository

__all__ = [
    "Repository",
    "NoteRepository",
    "NoteSearchIndex",
    "TagRepository",
    "UserRepository",
]

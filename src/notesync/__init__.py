"""
notesync - shared notes kept in a relational store and a search projection.

The relational database is authoritative for notes, tags, users and shares.
A denormalized, full-text searchable projection of every note is derived from
it after each committed write, and search results are hydrated back from the
relational store.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("notesync")
except PackageNotFoundError:
    __version__ = "0.3.0"

"""Service layer for notesync."""

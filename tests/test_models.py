"""Tests for the data models in notesync."""
import pytest
from pydantic import ValidationError

from notesync.models.schema import (
    Note,
    NoteDocument,
    NoteOwnership,
    Tag,
    User,
    normalize_tag_name,
    normalize_tag_names,
)


def _note(**overrides):
    fields = dict(
        title="Title",
        content="Content",
        owner_id="owner-1",
        owner_username="alice",
    )
    fields.update(overrides)
    return Note(**fields)


class TestTagNormalization:
    """Tag names are trimmed and upper-cased everywhere."""

    def test_trim_and_upper(self):
        assert normalize_tag_name("  java ") == "JAVA"

    def test_idempotent(self):
        once = normalize_tag_name(" Spring Boot ")
        assert normalize_tag_name(once) == once

    def test_collection_drops_blanks_and_duplicates(self):
        assert normalize_tag_names(["b", " a", "B", "   ", ""]) == ["A", "B"]

    def test_collection_of_none(self):
        assert normalize_tag_names(None) == []

    def test_tag_model_normalizes(self):
        assert Tag(name=" python ").name == "PYTHON"

    def test_tag_model_rejects_blank(self):
        with pytest.raises(ValidationError):
            Tag(name="   ")


class TestUserModel:
    def test_username_is_trimmed(self):
        assert User(username="  alice ").username == "alice"

    def test_blank_username_rejected(self):
        with pytest.raises(ValidationError):
            User(username="  ")

    def test_ids_are_unique(self):
        assert User(username="a").id != User(username="b").id


class TestNoteModel:
    """Tests for the Note model."""

    def test_tags_normalized_on_construction(self):
        note = _note(tags=["java", " JAVA ", "spring"])
        assert note.tags == ["JAVA", "SPRING"]

    def test_blank_title_rejected(self):
        with pytest.raises(ValidationError):
            _note(title="   ")

    def test_ownership_unset_by_default(self):
        assert _note().ownership is None

    def test_owner_view_keeps_recipients(self):
        note = _note(shared_with=["bob", "carol"])
        view = note.with_ownership(NoteOwnership.SHARED_BY_ME)
        assert view.ownership is NoteOwnership.SHARED_BY_ME
        assert view.shared_with == ["bob", "carol"]

    def test_recipient_view_hides_recipients(self):
        note = _note(shared_with=["bob", "carol"])
        view = note.with_ownership(NoteOwnership.SHARED_WITH_ME)
        assert view.shared_with == []
        # The original is untouched
        assert note.shared_with == ["bob", "carol"]

    def test_relationship_helpers(self):
        note = _note(shared_with=["bob"])
        assert note.is_owned_by("alice")
        assert not note.is_owned_by("bob")
        assert note.is_shared_with("bob")
        assert not note.is_shared_with("carol")


class TestNoteOwnership:
    def test_owner_states(self):
        assert NoteOwnership.OWNED.is_owner
        assert NoteOwnership.SHARED_BY_ME.is_owner
        assert not NoteOwnership.SHARED_WITH_ME.is_owner
        assert not NoteOwnership.DENIED.is_owner

    def test_values_are_strings(self):
        assert NoteOwnership("shared_with_me") is NoteOwnership.SHARED_WITH_ME


class TestNoteDocument:
    def test_visible_to_owner_and_recipients_only(self):
        doc = NoteDocument(
            id="n1",
            title="t",
            content="c",
            owner_username="alice",
            shared_with_usernames=["bob"],
        )
        assert doc.is_visible_to("alice")
        assert doc.is_visible_to("bob")
        assert not doc.is_visible_to("carol")

    def test_document_is_frozen(self):
        doc = NoteDocument(id="n1", title="t", content="c", owner_username="alice")
        with pytest.raises(ValidationError):
            doc.title = "changed"

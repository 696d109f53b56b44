"""Tests for access classification and gating."""
import pytest

from notesync.exceptions import AccessDeniedError, ErrorCode
from notesync.models.schema import Note, NoteAction, NoteOwnership
from notesync.services.access import (
    authorized_actions,
    classify,
    ensure_can,
    is_authorized,
)


@pytest.fixture
def private_note():
    return Note(title="Private", content="c", owner_id="u1", owner_username="alice")


@pytest.fixture
def shared_note():
    return Note(
        title="Shared",
        content="c",
        owner_id="u1",
        owner_username="alice",
        shared_with=["bob"],
    )


class TestClassify:
    """The four-way classification table."""

    def test_owner_without_shares(self, private_note):
        assert classify(private_note, "alice") is NoteOwnership.OWNED

    def test_owner_with_shares(self, shared_note):
        assert classify(shared_note, "alice") is NoteOwnership.SHARED_BY_ME

    def test_recipient(self, shared_note):
        assert classify(shared_note, "bob") is NoteOwnership.SHARED_WITH_ME

    def test_stranger(self, shared_note, private_note):
        assert classify(shared_note, "carol") is NoteOwnership.DENIED
        assert classify(private_note, "bob") is NoteOwnership.DENIED

    def test_username_match_is_exact(self, private_note):
        assert classify(private_note, "Alice") is NoteOwnership.DENIED


class TestAuthorizedActions:
    def test_owner_states_have_every_action(self):
        for ownership in (NoteOwnership.OWNED, NoteOwnership.SHARED_BY_ME):
            assert authorized_actions(ownership) == frozenset(NoteAction)

    def test_recipient_reads_only(self):
        assert authorized_actions(NoteOwnership.SHARED_WITH_ME) == {NoteAction.READ}

    def test_denied_has_nothing(self):
        assert authorized_actions(NoteOwnership.DENIED) == frozenset()

    def test_is_authorized(self, shared_note):
        assert is_authorized(shared_note, "bob", NoteAction.READ)
        assert not is_authorized(shared_note, "bob", NoteAction.UPDATE)


class TestEnsureCan:
    def test_returns_classification(self, shared_note):
        assert ensure_can(shared_note, "bob", NoteAction.READ) is NoteOwnership.SHARED_WITH_ME
        assert ensure_can(shared_note, "alice", NoteAction.DELETE) is NoteOwnership.SHARED_BY_ME

    @pytest.mark.parametrize(
        "action", [NoteAction.UPDATE, NoteAction.DELETE, NoteAction.SHARE]
    )
    def test_recipient_cannot_write(self, shared_note, action):
        with pytest.raises(AccessDeniedError) as exc_info:
            ensure_can(shared_note, "bob", action)
        assert exc_info.value.code is ErrorCode.ACCESS_DENIED
        assert exc_info.value.action == action.value
        assert exc_info.value.note_id == shared_note.id

    def test_stranger_cannot_read(self, private_note):
        with pytest.raises(AccessDeniedError, match="does not have access"):
            ensure_can(private_note, "carol", NoteAction.READ)

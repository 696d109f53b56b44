"""Access resolution for notes.

Pure functions over an already-hydrated Note: no I/O, no side effects.
"""
from typing import Dict, FrozenSet

from notesync.exceptions import AccessDeniedError
from notesync.models.schema import Note, NoteAction, NoteOwnership

_ALL_ACTIONS: FrozenSet[NoteAction] = frozenset(NoteAction)

_AUTHORIZED: Dict[NoteOwnership, FrozenSet[NoteAction]] = {
    NoteOwnership.OWNED: _ALL_ACTIONS,
    NoteOwnership.SHARED_BY_ME: _ALL_ACTIONS,
    NoteOwnership.SHARED_WITH_ME: frozenset({NoteAction.READ}),
    NoteOwnership.DENIED: frozenset(),
}

_DENIED_MESSAGES: Dict[NoteAction, str] = {
    NoteAction.READ: "User does not have access to this note",
    NoteAction.UPDATE: "Only the owner can update the note",
    NoteAction.DELETE: "Only the owner can delete the note",
    NoteAction.SHARE: "Only the owner can share the note",
}


def classify(note: Note, username: str) -> NoteOwnership:
    """Classify a note relative to a user.

    The owner gets OWNED while the note has no shares and SHARED_BY_ME once it
    has any; both carry full rights; the split only matters for display.
    """
    if note.is_owned_by(username):
        return NoteOwnership.SHARED_BY_ME if note.shared_with else NoteOwnership.OWNED
    if note.is_shared_with(username):
        return NoteOwnership.SHARED_WITH_ME
    return NoteOwnership.DENIED


def authorized_actions(ownership: NoteOwnership) -> FrozenSet[NoteAction]:
    """Actions a caller with the given classification may perform."""
    return _AUTHORIZED[ownership]


def is_authorized(note: Note, username: str, action: NoteAction) -> bool:
    return action in authorized_actions(classify(note, username))


def ensure_can(note: Note, username: str, action: NoteAction) -> NoteOwnership:
    """Gate an action on a note.

    Returns:
        The caller's classification, for annotating the result.

    Raises:
        AccessDeniedError: If the classification does not allow the action.
    """
    ownership = classify(note, username)
    if action not in authorized_actions(ownership):
        raise AccessDeniedError(
            _DENIED_MESSAGES[action],
            note_id=note.id,
            username=username,
            action=action.value,
        )
    return ownership

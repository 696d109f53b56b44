"""MCP server exposing notesync operations as tools."""

import atexit
import logging
import uuid
from typing import List, Optional

from mcp.server.fastmcp import FastMCP

from notesync.config import config
from notesync.exceptions import NoteSyncError
from notesync.models.schema import Note
from notesync.observability import metrics, timed_operation
from notesync.services.access import authorized_actions
from notesync.services.note_service import NoteService
from notesync.services.user_service import UserService
from notesync.utils import parse_csv

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 1_000_000  # 1 MB


def _validate_content_length(content: Optional[str]) -> None:
    """Reject oversized content at the MCP boundary."""
    if content and len(content) > MAX_CONTENT_LENGTH:
        raise ValueError(
            f"Content exceeds maximum length of {MAX_CONTENT_LENGTH} characters"
        )


def _format_note(note: Note) -> str:
    result = f"# {note.title}\n"
    result += f"ID: {note.id}\n"
    result += f"Owner: {note.owner_username}\n"
    if note.ownership is not None:
        result += f"Access: {note.ownership.value}\n"
        actions = sorted(a.value for a in authorized_actions(note.ownership))
        result += f"Allowed: {', '.join(actions)}\n"
    result += f"Created: {note.created_at.isoformat()}\n"
    result += f"Updated: {note.updated_at.isoformat()}\n"
    if note.tags:
        result += f"Tags: {', '.join(note.tags)}\n"
    if note.shared_with:
        result += f"Shared with: {', '.join(note.shared_with)}\n"
    result += f"\n{note.content}\n"
    return result


def _format_note_list(heading: str, notes: List[Note]) -> str:
    output = f"{heading} ({len(notes)}):\n\n"
    for i, note in enumerate(notes, 1):
        access = note.ownership.value if note.ownership else "unknown"
        output += f"{i}. {note.title} (ID: {note.id})\n"
        output += f"   Owner: {note.owner_username} | Access: {access}\n"
        if note.tags:
            output += f"   Tags: {', '.join(note.tags)}\n"
        output += f"   Updated: {note.updated_at.strftime('%Y-%m-%d %H:%M')}\n"
    return output


class NoteSyncMcpServer:
    """MCP server for shared notes."""

    def __init__(self, engine=None, index_engine=None):
        """Initialize the MCP server.

        Args:
            engine: Pre-configured engine of the relational store.
            index_engine: Pre-configured engine of the search index.
                When None, each is created from config.
        """
        self.mcp = FastMCP(config.server_name)
        self.note_service = NoteService(engine=engine, index_engine=index_engine)
        self.user_service = UserService(engine=self.note_service.repository.engine)
        atexit.register(self._shutdown)
        self._register_tools()
        logger.info(f"{config.server_name} MCP server {config.server_version} initialized")

    def _shutdown(self) -> None:
        stale = self.note_service.stale_note_ids
        if stale:
            logger.warning(
                f"Shutting down with {len(stale)} stale search documents; "
                "run note_reconcile to repair"
            )

    def format_error_response(self, error: Exception) -> str:
        """Format an error response in a consistent way.

        Domain errors carry a message safe to show the caller; anything else
        is logged in full and answered with a reference id only.
        """
        error_id = str(uuid.uuid4())[:8]

        if isinstance(error, NoteSyncError):
            logger.error(
                f"[{error.code.name}] [{error_id}]: {error.message}",
                extra={"error_details": error.details},
            )
            return f"Error: {error.message}"
        elif isinstance(error, ValueError):
            logger.error(f"Validation error [{error_id}]: {str(error)}")
            return f"Error: Invalid input (ref: {error_id})"
        else:
            logger.error(f"Unexpected error [{error_id}]: {str(error)}", exc_info=True)
            return f"Error: An unexpected error occurred (ref: {error_id})"

    def _register_tools(self) -> None:
        """Register MCP tools."""

        @self.mcp.tool(name="note_register_user")
        def note_register_user(username: str) -> str:
            """Register a new user.
            Args:
                username: The username to register (leading/trailing spaces are dropped)
            """
            with timed_operation("note_register_user", username=username[:30]) as op:
                try:
                    user = self.user_service.register_user(username=username)
                    op["user_id"] = user.id
                    return f"User '{user.username}' registered with ID: {user.id}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="note_create")
        def note_create(
            username: str,
            title: str,
            content: str,
            tags: Optional[str] = None,
        ) -> str:
            """Create a new note owned by the user.
            Args:
                username: The acting user, who becomes the owner
                title: The title of the note
                content: The body of the note
                tags: Comma-separated list of tags (optional)
            """
            with timed_operation("note_create", username=username) as op:
                try:
                    _validate_content_length(content)
                    note = self.note_service.create_note(
                        title=title,
                        content=content,
                        tags=parse_csv(tags),
                        owner_username=username,
                    )
                    op["note_id"] = note.id
                    return f"Note created successfully with ID: {note.id}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="note_list")
        def note_list(username: str) -> str:
            """List notes the user owns or that were shared with them, newest first.
            Args:
                username: The acting user
            """
            with timed_operation("note_list", username=username) as op:
                try:
                    notes = self.note_service.list_notes(username=username)
                    op["result_count"] = len(notes)
                    if not notes:
                        return f"No notes visible to '{username}'."
                    return _format_note_list(f"Notes visible to '{username}'", notes)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="note_get")
        def note_get(note_id: str, username: str) -> str:
            """Retrieve a note the user owns or received.
            Args:
                note_id: The ID of the note
                username: The acting user
            """
            with timed_operation("note_get", note_id=note_id) as op:
                try:
                    note = self.note_service.get_note(note_id=note_id, username=username)
                    op["ownership"] = note.ownership.value if note.ownership else None
                    return _format_note(note)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="note_update")
        def note_update(
            note_id: str,
            username: str,
            title: str,
            content: str,
            tags: Optional[str] = None,
        ) -> str:
            """Replace the title, content and tags of a note. Owner only.
            Args:
                note_id: The ID of the note
                username: The acting user, who must own the note
                title: The new title
                content: The new content
                tags: Comma-separated list of tags; omitted or empty clears them
            """
            with timed_operation("note_update", note_id=note_id) as op:
                try:
                    _validate_content_length(content)
                    note = self.note_service.update_note(
                        note_id=note_id,
                        title=title,
                        content=content,
                        tags=parse_csv(tags),
                        username=username,
                    )
                    op["updated"] = True
                    return f"Note updated successfully: {note.id}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="note_delete")
        def note_delete(note_id: str, username: str) -> str:
            """Delete a note and all of its shares. Owner only.
            Args:
                note_id: The ID of the note
                username: The acting user, who must own the note
            """
            with timed_operation("note_delete", note_id=note_id) as op:
                try:
                    self.note_service.delete_note(note_id=note_id, username=username)
                    op["deleted"] = True
                    return f"Note deleted successfully: {note_id}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="note_share")
        def note_share(note_id: str, username: str, target_username: str) -> str:
            """Share a note with another user, who can then read it. Owner only.
            Args:
                note_id: The ID of the note
                username: The acting user, who must own the note
                target_username: The user to share with
            """
            with timed_operation("note_share", note_id=note_id) as op:
                try:
                    note = self.note_service.share_note(
                        note_id=note_id,
                        target_username=target_username,
                        owner_username=username,
                    )
                    op["recipients"] = len(note.shared_with)
                    return (
                        f"Note {note.id} shared with '{target_username}'. "
                        f"Recipients: {', '.join(note.shared_with)}"
                    )
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="note_search")
        def note_search(
            username: str,
            query: Optional[str] = None,
            tags: Optional[str] = None,
        ) -> str:
            """Search notes visible to the user, most relevant first.
            Args:
                username: The acting user
                query: Free text matched against titles and content (optional)
                tags: Comma-separated tags that must all be present (optional)
            At least one of query or tags is required.
            """
            with timed_operation("note_search", username=username) as op:
                try:
                    notes = self.note_service.search_notes(
                        text=query,
                        tags=parse_csv(tags),
                        username=username,
                    )
                    op["result_count"] = len(notes)
                    if not notes:
                        return "No matching notes found."
                    return _format_note_list("Found notes", notes)
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="note_resync")
        def note_resync(note_id: str, username: str) -> str:
            """Re-index one note whose search entry is stale. Owner only.
            Args:
                note_id: The ID of the note
                username: The acting user, who must own the note
            """
            with timed_operation("note_resync", note_id=note_id):
                try:
                    note = self.note_service.resync_note(note_id=note_id, username=username)
                    return f"Search entry refreshed for note {note.id}"
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="note_reconcile")
        def note_reconcile() -> str:
            """Rebuild the whole search index from the authoritative notes."""
            with timed_operation("note_reconcile") as op:
                try:
                    stats = self.note_service.reconcile_projection()
                    op.update(stats)
                    return (
                        "Search index reconciled: "
                        f"{stats['synced']} synced, "
                        f"{stats['removed']} removed, "
                        f"{stats['failed']} failed"
                    )
                except Exception as e:
                    return self.format_error_response(e)

        @self.mcp.tool(name="note_metrics")
        def note_metrics() -> str:
            """Show server metrics and search index health."""
            with timed_operation("note_metrics"):
                try:
                    summary = metrics.get_summary()
                    output = "## Server Metrics\n"
                    output += f"**Uptime:** {summary['uptime_seconds']:.0f} seconds\n"
                    output += f"**Operations:** {summary['total_operations']}\n"
                    output += f"**Success Rate:** {summary['overall_success_rate']:.1%}\n"
                    output += f"**Errors:** {summary['total_errors']}\n"
                    for name, count in sorted(summary["events"].items()):
                        output += f"**{name}:** {count}\n"

                    stale = self.note_service.stale_note_ids
                    output += "\n## Search Index\n"
                    output += f"**Stale documents:** {len(stale)}\n"
                    if stale:
                        output += f"**Stale IDs:** {', '.join(stale)}\n"
                    return output
                except Exception as e:
                    return self.format_error_response(e)

    def run(self) -> None:
        """Run the MCP server."""
        self.mcp.run()

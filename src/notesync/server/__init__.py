"""MCP server for notesync."""

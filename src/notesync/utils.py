"""Utility functions for notesync."""
import re
from typing import List, Optional

_WORD_PATTERN = re.compile(r"\w+", re.UNICODE)


def escape_like_pattern(value: str) -> str:
    """Escape SQL LIKE wildcards to treat them as literals.

    Prevents SQL LIKE pattern injection where user input containing
    '%' or '_' could match unintended patterns.

    Args:
        value: User input string that may contain LIKE wildcards

    Returns:
        String with '%', '_', and '\\' escaped for safe use in LIKE clauses

    Example:
        >>> escape_like_pattern("100% complete")
        '100\\% complete'
    """
    escape_table = str.maketrans(
        {
            "\\": "\\\\",  # Escape backslash first
            "%": "\\%",
            "_": "\\_",
        }
    )
    return value.translate(escape_table)


def split_words(text: Optional[str]) -> List[str]:
    """Split free text into searchable words, dropping punctuation."""
    if not text:
        return []
    return _WORD_PATTERN.findall(text)


def parse_csv(value: Optional[str]) -> List[str]:
    """Parse a comma-separated argument into its non-blank items."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


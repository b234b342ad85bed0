"""
Common utility functions and helpers.
"""
from typing import Optional
import re
import uuid


_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def new_case_id() -> str:
    """Return a fresh canonical (UUID4) case id."""
    return str(uuid.uuid4())


def is_canonical_case_id(value: Optional[str]) -> bool:
    """
    Check whether a case id is already in canonical UUID form.

    Args:
        value: Case id as stored

    Returns:
        True for RFC 4122 UUID strings, False for legacy ids
    """
    return bool(value) and bool(_UUID_RE.match(value))


def clean_text(text: str) -> str:
    """
    Strip markdown emphasis and bullet markers, and collapse whitespace.

    Args:
        text: Raw markdown fragment

    Returns:
        Plain display text
    """
    if not text:
        return ""
    text = text.replace("**", "").replace("*", "")
    text = re.sub(r"^\s*[-•]\s*", "", text)
    text = re.sub(r"\s+", " ", text)
    return text.strip()


def truncate_text(text: str, max_length: int = 200, suffix: str = "...") -> str:
    """
    Truncate text to maximum length.

    Args:
        text: Text to truncate
        max_length: Maximum length
        suffix: Suffix to add if truncated

    Returns:
        Truncated text
    """
    if len(text) <= max_length:
        return text
    return text[:max_length - len(suffix)] + suffix


def format_file_size(size_bytes: int) -> str:
    """
    Format file size in human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string
    """
    size = float(size_bytes)
    for unit in ['B', 'KB', 'MB', 'GB']:
        if size < 1024.0:
            return f"{size:.1f} {unit}"
        size /= 1024.0
    return f"{size:.1f} TB"

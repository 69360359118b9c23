import re
import html
from typing import Any, Optional


def sanitize_for_log(value: Any) -> str:
    """
    Sanitize user input for safe logging to prevent log injection attacks.

    Args:
        value: Any value that might contain user input

    Returns:
        Sanitized string safe for logging
    """
    if value is None:
        return "None"

    text = str(value)

    # CRLF injection
    text = re.sub(r'[\r\n\t]', ' ', text)

    # ANSI escape sequences
    text = re.sub(r'\x1b\[[0-9;]*m', '', text)

    text = re.sub(r'[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]', '', text)

    if len(text) > 200:
        text = text[:197] + "..."

    text = html.escape(text)

    return text


def redact_secrets(text: str, *secrets: Optional[str]) -> str:
    """Replace any configured secret values that leak into an error message"""
    if not text:
        return text
    for secret in secrets:
        if secret and len(secret) > 4:
            text = text.replace(secret, "[REDACTED]")
    # Bearer tokens and JWT-looking strings
    text = re.sub(r'Bearer\s+[A-Za-z0-9\-_.]+', 'Bearer [REDACTED]', text)
    text = re.sub(r'eyJ[A-Za-z0-9\-_]+\.[A-Za-z0-9\-_]+\.[A-Za-z0-9\-_]*', '[REDACTED]', text)
    return text


def sanitize_filename_hint(hint: Optional[str], max_length: int = 40) -> str:
    """
    Reduce a user-supplied filename to a safe lowercase token for storage paths.

    Returns an empty string when nothing usable is left.
    """
    if not hint or not isinstance(hint, str):
        return ""

    # Drop the extension, the caller picks one from the MIME type
    base = hint.rsplit("/", 1)[-1].rsplit("\\", 1)[-1]
    if "." in base:
        base = base.rsplit(".", 1)[0]

    base = re.sub(r'[^a-zA-Z0-9_-]+', '-', base).strip('-_').lower()
    base = re.sub(r'-{2,}', '-', base)

    return base[:max_length].strip('-')


def validate_search_query(query: Optional[str]) -> Optional[str]:
    """
    Validate and sanitize search queries used in ilike filters.

    Args:
        query: User search query

    Returns:
        Sanitized query, or None when nothing searchable remains

    Raises:
        ValueError: If the query is too long
    """
    if query is None:
        return None

    query = query.strip()
    if not query:
        return None

    if len(query) > 200:
        raise ValueError("Search query cannot exceed 200 characters")

    # PostgREST filter syntax characters would break the or() expression
    query = re.sub(r'[,()*%\\]', ' ', query)
    query = re.sub(r'\s+', ' ', query).strip()

    return query or None

"""
Slug generation for posts.

Slugs are ASCII, lowercase and dash separated. They must not collide with
existing posts or with route names used by the site.
"""
import re
import logging
import unicodedata
from typing import Optional, Tuple

from supabase_client import get_supabase_client

logger = logging.getLogger(__name__)

RESERVED_WORDS = frozenset({
    "new", "admin", "edit", "create", "update", "delete", "api",
    "posts", "images", "labels", "auth", "login", "logout", "register",
    "dashboard", "settings", "profile", "search", "about", "contact",
    "help", "terms", "privacy", "blog", "stories",
})

SLUG_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
MAX_SLUG_ATTEMPTS = 100


class SlugError(ValueError):
    """Raised when no usable slug can be produced"""


def transliterate(text: str) -> str:
    """Lowercase ASCII slug form of `text` (no uniqueness checks)"""
    if not text:
        return ""

    normalized = unicodedata.normalize("NFD", text.lower())
    stripped = "".join(ch for ch in normalized if not unicodedata.combining(ch))
    stripped = re.sub(r"[^a-z0-9\s-]", " ", stripped)
    stripped = re.sub(r"[\s-]+", "-", stripped)
    return stripped.strip("-")


def is_reserved(slug: str) -> bool:
    return slug in RESERVED_WORDS


def is_valid_slug_format(slug: str) -> bool:
    return bool(slug) and bool(SLUG_PATTERN.match(slug))


def is_slug_taken(slug: str, exclude_id: Optional[str] = None) -> bool:
    """Check the posts table; lookup failures count as taken"""
    service_client = get_supabase_client().service_client
    if not service_client:
        logger.error("Cannot check slug availability without Supabase")
        return True

    try:
        query = service_client.table("posts").select("id").eq("slug", slug)
        if exclude_id:
            query = query.neq("id", exclude_id)
        result = query.limit(1).execute()
        return bool(result.data)
    except Exception as e:
        logger.error(f"Error checking slug '{slug}': {str(e)}")
        return True


def generate_unique_slug(title: Optional[str], exclude_id: Optional[str] = None) -> str:
    if not title or not title.strip():
        raise SlugError("Title is required for slug generation")

    base = transliterate(title)
    if not base:
        raise SlugError("Title must contain at least one alphanumeric character")

    if is_reserved(base):
        raise SlugError(f'"{base}" is a reserved word and cannot be used as a slug')

    if not is_slug_taken(base, exclude_id):
        return base

    for counter in range(2, MAX_SLUG_ATTEMPTS + 2):
        candidate = f"{base}-{counter}"
        if not is_slug_taken(candidate, exclude_id):
            return candidate

    raise SlugError(f'Could not find an available slug for "{base}"')


def validate_slug_availability(slug: str, exclude_id: Optional[str] = None) -> Tuple[bool, Optional[str]]:
    """Returns (available, reason)"""
    if not is_valid_slug_format(slug):
        return False, "Slug must contain only lowercase letters, numbers and single dashes"
    if is_reserved(slug):
        return False, f'"{slug}" is a reserved word'
    if is_slug_taken(slug, exclude_id):
        return False, f'Slug "{slug}" is already taken'
    return True, None


def regenerate_slug(post_id: str, new_title: str) -> str:
    """New slug for an existing post whose title changed"""
    return generate_unique_slug(new_title, exclude_id=post_id)

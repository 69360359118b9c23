"""
Datetime utilities for timestamps stored in Postgres and returned by the API.
Everything is UTC; the client formats for display.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def parse_timestamp(dt: Optional[Union[str, datetime]]) -> Optional[datetime]:
    """
    Parse a Postgres/ISO timestamp into an aware datetime.

    Naive values are assumed to be UTC. Returns None for empty or
    unparseable input.
    """
    if dt is None or dt == "":
        return None

    try:
        if isinstance(dt, str):
            dt_str = dt.replace("Z", "+00:00")
            try:
                dt_obj = datetime.fromisoformat(dt_str)
            except ValueError:
                # Postgres can emit more than 6 fractional digits
                dt_obj = datetime.fromisoformat(dt_str.split(".")[0])
        else:
            dt_obj = dt

        if dt_obj.tzinfo is None:
            dt_obj = dt_obj.replace(tzinfo=timezone.utc)
        return dt_obj

    except (ValueError, TypeError) as e:
        logger.warning(f"Could not parse timestamp {dt!r}: {e}")
        return None


def is_older_than(dt: Optional[Union[str, datetime]], days: int) -> bool:
    """True when dt is missing or more than `days` days in the past"""
    parsed = parse_timestamp(dt)
    if parsed is None:
        return True
    return utc_now() - parsed > timedelta(days=days)

## common/utils.py

from datetime import datetime, timezone
from typing import Optional, Union

DateLike = Union[str, datetime, None]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: DateLike) -> Optional[datetime]:
    """
    Timezone-aware UTC datetime from a datetime or an ISO-8601 string
    ('2026-10-20T09:00:00Z', '2026-10-20 09:00', ...).
    Naive values are taken as UTC; SQLite hands stored timestamps back naive.
    Raises ValueError for strings that are not ISO-8601.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


__all__ = ["DateLike", "as_utc", "utcnow"]

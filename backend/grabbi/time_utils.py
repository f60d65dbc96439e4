from __future__ import annotations

import re
from datetime import datetime, time, timezone
from typing import Optional
from zoneinfo import ZoneInfo


_BARE_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def store_now(tz_name: str = "") -> datetime:
    """Naive wall-clock time in the stores' zone, or the server's local time when no zone is configured."""
    if not tz_name:
        return datetime.now()
    return datetime.now(ZoneInfo(tz_name)).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DD" and "YYYY-MM-DDTHH:MM" (naive) are interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)

    if dt.tzinfo is None:
        return dt

    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def is_bare_date(value) -> bool:
    return isinstance(value, str) and bool(_BARE_DATE.match(value.strip()))


def end_of_day(dt: datetime) -> datetime:
    """Last representable instant of dt's calendar day; inclusive end bounds given as dates land here."""
    return datetime.combine(dt.date(), time.max)


def parse_date_lenient(value, *, inclusive_end: bool = False) -> Optional[datetime]:
    """
    Parse a spreadsheet-style date ("YYYY-MM-DD", optionally with a time part).

    With inclusive_end a bare date means the whole day, so it maps to the end
    of that day. Returns None for blanks and for anything unparseable; callers
    log and move on.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    s = str(value).strip()
    if not s:
        return None
    try:
        parsed = parse_iso_datetime(s)
        date_only = is_bare_date(s)
    except ValueError:
        # keep a readable date prefix, drop whatever trails it
        try:
            parsed = datetime.strptime(s[:10], "%Y-%m-%d")
        except ValueError:
            return None
        date_only = True
    if inclusive_end and date_only:
        return end_of_day(parsed)
    return parsed


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def to_date_str(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return dt.strftime("%Y-%m-%d")

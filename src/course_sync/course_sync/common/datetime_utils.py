from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone

from ..core.constants import DEFAULT_TIMEZONE_OFFSET

logger = logging.getLogger(__name__)


_OFFSET_RE = re.compile(r"^([+-])(\d{2}):?(\d{2})$")


def now_local() -> datetime:
    """Current local time.

    Note: Wrapped so tests can patch/mocked easier.
    """
    return datetime.now()


def parse_offset(offset: str) -> timezone:
    """Turn '+08:00' (or '+0800') into a fixed-offset tzinfo."""
    m = _OFFSET_RE.match((offset or "").strip())
    if not m:
        raise ValueError(f"Invalid UTC offset: {offset!r}")
    sign, hours, minutes = m.groups()
    delta = timedelta(hours=int(hours), minutes=int(minutes))
    return timezone(-delta if sign == "-" else delta)


def normalize_date(value: str) -> str:
    """'2025/03/18' or '2025/03/18 00:00:00.000' -> '2025-03-18'."""
    v = (value or "").strip().replace("/", "-")
    return v.split(" ")[0].split("T")[0]


def normalize_time(value: str) -> str:
    """'09:50:00.000' -> '09:50:00', '09:50' -> '09:50:00', '9:5' -> '09:05:00'."""
    v = (value or "").strip().split(".")[0]
    parts = v.split(":")
    if len(parts) == 2:
        parts.append("0")
    if len(parts) != 3:
        raise ValueError(f"Invalid time: {value!r}")
    hours, minutes, seconds = (int(p) for p in parts)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def to_offset_datetime(date_value: str, time_value: str, *, offset: str = DEFAULT_TIMEZONE_OFFSET) -> str:
    """Interpret a local civil date+time in the institution's fixed offset.

    Returns an RFC 3339 timestamp like '2025-03-18T09:50:00+08:00'. If the
    input cannot be parsed the result degrades to plain concatenation with the
    offset appended and a warning is logged.
    """

    try:
        tz = parse_offset(offset)
        parsed = datetime.strptime(f"{normalize_date(date_value)}T{normalize_time(time_value)}", "%Y-%m-%dT%H:%M:%S")
        return parsed.replace(tzinfo=tz).isoformat()
    except (TypeError, ValueError) as exc:
        fallback_date = str(date_value or "").replace("/", "-")
        fallback_time = str(time_value or "").split(".")[0]
        logger.warning(
            "Could not parse course time date=%r time=%r (%s); using naive value", date_value, time_value, exc
        )
        return f"{fallback_date}T{fallback_time}{offset}"


def same_instant(a: str | None, b: str | None) -> bool:
    """Compare two RFC 3339 timestamps as instants ('Z' and offsets allowed)."""

    if not a or not b:
        return False
    try:
        left = datetime.fromisoformat(a.strip().replace("Z", "+00:00"))
        right = datetime.fromisoformat(b.strip().replace("Z", "+00:00"))
    except ValueError:
        return a.strip() == b.strip()
    if (left.tzinfo is None) != (right.tzinfo is None):
        return left.replace(tzinfo=None) == right.replace(tzinfo=None)
    return left == right

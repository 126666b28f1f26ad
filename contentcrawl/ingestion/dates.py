"""Multi-format date parsing for feed, API and scraped values."""

import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Optional

import pendulum


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _from_epoch(value: float) -> Optional[datetime]:
    # Millisecond timestamps are common in JSON APIs
    if value > 1e11:
        value = value / 1000.0
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def parse_date(value: Any, fmt: Optional[str] = None) -> Optional[datetime]:
    """
    Parse a date value into an aware UTC datetime.

    Tries, in order: an explicit strptime format, ISO 8601 (which covers
    Dublin Core W3CDTF dates), RFC 2822, epoch seconds or milliseconds, and
    finally lenient parsing. Returns None when nothing matches.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, time.struct_time):
        return datetime(*value[:6], tzinfo=timezone.utc)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return _from_epoch(float(value))
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    # Ten or more digits reads as an epoch rather than a compact ISO date
    if len(text) >= 10 and text.replace(".", "", 1).isdigit():
        return _from_epoch(float(text))

    if fmt:
        try:
            return _as_utc(datetime.strptime(text, fmt))
        except ValueError:
            pass

    try:
        parsed = pendulum.parse(text)
        if isinstance(parsed, datetime):
            return _as_utc(parsed)
    except (ValueError, TypeError, OverflowError):
        pass

    try:
        return _as_utc(parsedate_to_datetime(text))
    except (TypeError, ValueError, IndexError):
        pass

    try:
        parsed = pendulum.parse(text, strict=False)
        if isinstance(parsed, datetime):
            return _as_utc(parsed)
    except (ValueError, TypeError, OverflowError):
        pass

    return None

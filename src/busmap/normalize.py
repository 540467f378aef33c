"""Normalization of loosely typed upstream values."""

import math
import re
from datetime import datetime
from typing import Any, Optional
from zoneinfo import ZoneInfo

UPSTREAM_TIMEZONE = ZoneInfo("Europe/Amsterdam")

_ALNUM = re.compile(r"^[0-9A-Za-z]+$")
MAX_LINE_NUMBER_LENGTH = 6


def normalize_line_number(value: Any) -> Optional[str]:
    """Canonical public line number, or None when the value is not usable.

    "04" -> "4", "n1" -> "N1"; empty, punctuated or overlong values are rejected.
    """
    if value is None:
        return None
    raw = str(value).strip()
    if not raw or not _ALNUM.match(raw) or len(raw) > MAX_LINE_NUMBER_LENGTH:
        return None
    if raw.isdigit():
        return str(int(raw))
    return raw.upper()


def parse_timestamp(value: Any, tz=UPSTREAM_TIMEZONE) -> Optional[int]:
    """ISO-8601 string to epoch seconds; naive values are read in ``tz``."""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return int(parsed.timestamp())


def to_float(value: Any) -> Optional[float]:
    """Float conversion that yields None for missing or non-finite values."""
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number

"""Timestamp helpers shared by the sweep and the HTTP layer.

Heartbeats are integer epoch milliseconds. Audit-log times are strings
written by the browser (``toLocaleString()``) or by this service, so parsing
has to accept both the en-US locale form and ISO-8601.
"""

from __future__ import annotations

import math
import time
from datetime import datetime, timezone
from typing import Any, Literal, Optional
from zoneinfo import ZoneInfo

import pandas as pd

MS_PER_MINUTE = 60_000


def now_ms() -> int:
    """Return the current wall-clock time as epoch milliseconds."""
    return int(time.time() * 1000)


def from_epoch_ms(ms: float, tz: ZoneInfo) -> datetime:
    return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc).astimezone(tz)


def parse_epoch_ms(value: Any, tz: ZoneInfo) -> Optional[int]:
    """Return ``value`` as epoch milliseconds, or ``None`` if unparseable.

    Numbers are taken to already be epoch milliseconds. Naive strings are
    interpreted in ``tz``.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return None if math.isnan(value) else int(value)
    text = str(value).strip()
    if not text:
        return None
    if text.isdigit():
        return int(text)
    ts = pd.to_datetime(text, errors="coerce")
    if ts is None or pd.isna(ts):
        return None
    if ts.tzinfo is None:
        ts = ts.tz_localize(tz, nonexistent="shift_forward", ambiguous=False)
    return int(round(ts.timestamp() * 1000))


def format_locale(dt: datetime) -> str:
    """Render ``dt`` like ``Date.prototype.toLocaleString('en-US')``."""
    hour = dt.hour % 12 or 12
    meridiem = "AM" if dt.hour < 12 else "PM"
    return f"{dt.month}/{dt.day}/{dt.year}, {hour}:{dt.minute:02d}:{dt.second:02d} {meridiem}"


def format_timestamp(
    ms: int, tz: ZoneInfo, style: Literal["locale", "iso"] = "locale"
) -> str:
    dt = from_epoch_ms(ms, tz)
    if style == "iso":
        return dt.isoformat(timespec="seconds")
    return format_locale(dt)


def js_round(value: float) -> int:
    """Round half towards +infinity, matching ``Math.round``."""
    return math.floor(value + 0.5)


def duration_minutes(login_ms: int, now: int) -> int:
    """Whole minutes between login and ``now``, never less than one."""
    return max(1, js_round((now - login_ms) / MS_PER_MINUTE))


__all__ = [
    "MS_PER_MINUTE",
    "duration_minutes",
    "format_locale",
    "format_timestamp",
    "from_epoch_ms",
    "js_round",
    "now_ms",
    "parse_epoch_ms",
]

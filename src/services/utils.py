"""
Utilitaires partagés par le pipeline.

Dates toujours en UTC, durées toujours en millisecondes.
"""

from __future__ import annotations

import time
from datetime import date, datetime, time as dtime, timezone
from typing import Any, Optional

from dateutil import parser as dateutil_parser


# ──────────────────────────────────────────────
# DATE NORMALIZATION
# ──────────────────────────────────────────────


def normalize_date(
    value: Any,
    default: Optional[datetime] = None,
) -> Optional[datetime]:
    if value is None:
        return default
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, dtime.min, tzinfo=timezone.utc)
    if isinstance(value, str) and not value.strip():
        return default
    if isinstance(value, (int, float)):
        try:
            if value > 1e12:
                value = value / 1000
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (ValueError, OverflowError, OSError):
            return default
    if isinstance(value, str):
        try:
            parsed = dateutil_parser.parse(value)
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed.astimezone(timezone.utc)
        except (ValueError, OverflowError):
            return default
    return default


def parse_day(value: date | datetime | str | None) -> date:
    """Jour UTC ciblé par un rapport. None → aujourd'hui."""
    if value is None:
        return datetime.now(timezone.utc).date()
    if isinstance(value, datetime):
        return normalize_date(value).date()
    if isinstance(value, date):
        return value
    parsed = normalize_date(value)
    if parsed is None:
        raise ValueError(f"Invalid date: {value!r}")
    return parsed.date()


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """[00:00:00, 23:59:59.999999] UTC du jour."""
    start = datetime.combine(day, dtime.min, tzinfo=timezone.utc)
    end = datetime.combine(day, dtime.max, tzinfo=timezone.utc)
    return start, end


# ──────────────────────────────────────────────
# TIME
# ──────────────────────────────────────────────


def epoch_ms() -> float:
    """Horloge murale en millisecondes."""
    return time.time() * 1000


def elapsed_ms(started: float) -> float:
    """Durée depuis un time.perf_counter(), en ms."""
    return round((time.perf_counter() - started) * 1000, 1)


# ──────────────────────────────────────────────
# STRING
# ──────────────────────────────────────────────


def truncate(text: Optional[str], max_length: int = 500) -> Optional[str]:
    if text is None:
        return None
    if len(text) <= max_length:
        return text
    return text[:max_length - 3] + "..."

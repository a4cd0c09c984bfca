"""Spoken lines that are not replies: join greetings and the late-night check."""

from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

GREETING_PREFIX = "I'm back. Last time we: "
GREETING_SUMMARY_LIMIT = 240


def build_greeting(summary: str) -> str | None:
    """Return the rejoin greeting, or None when there is nothing to recap."""
    compact = " ".join(summary.split())
    if not compact:
        return None
    return GREETING_PREFIX + compact[:GREETING_SUMMARY_LIMIT]


def is_departure_window(
    now: datetime | None = None,
    *,
    timezone: str = "America/New_York",
    start_hour: int = 21,
    end_hour: int = 4,
) -> bool:
    """True when the local hour is at or after ``start_hour`` or at or before ``end_hour``.

    Naive datetimes are taken to already be in ``timezone``.
    """
    zone = ZoneInfo(timezone)
    if now is None:
        local = datetime.now(zone)
    elif now.tzinfo is None:
        local = now.replace(tzinfo=zone)
    else:
        local = now.astimezone(zone)
    hour = local.hour
    if start_hour <= end_hour:
        return start_hour <= hour <= end_hour
    return hour >= start_hour or hour <= end_hour


__all__ = ["GREETING_PREFIX", "build_greeting", "is_departure_window"]

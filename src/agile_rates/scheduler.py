"""Decide whether the cached rate series needs refreshing.

Next-day Agile prices are published around 16:00 UK time. Before that the
app only needs rates through 23:00 today; from 16:00 onwards it expects
rates through 23:00 tomorrow.
"""

from datetime import datetime, time, timedelta, timezone
from typing import Iterable
from zoneinfo import ZoneInfo

from .models import LOCAL_TIMEZONE, RateRecord

COVERAGE_TIMEZONE = LOCAL_TIMEZONE
PUBLICATION_HOUR = 16
EXPECTED_END_HOUR = 23


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def expected_end(now: datetime, zone: str = COVERAGE_TIMEZONE) -> datetime:
    """The UTC instant the cached series must reach for ``now``.

    Day arithmetic happens on the local wall clock so DST changes are handled.
    """
    if now.tzinfo is None:
        raise ValueError("now must be timezone-aware")
    tz = ZoneInfo(zone)
    local_now = now.astimezone(tz)
    day = local_now.date()
    if local_now.hour >= PUBLICATION_HOUR:
        day += timedelta(days=1)
    end_local = datetime.combine(day, time(EXPECTED_END_HOUR, 0), tz)
    return end_local.astimezone(timezone.utc)


def is_covered(now: datetime, cached_series: Iterable[RateRecord], zone: str = COVERAGE_TIMEZONE) -> bool:
    """True if the latest ``valid_to`` reaches the expected end. Empty is never covered."""
    latest = max((r.valid_to for r in cached_series), default=None)
    if latest is None:
        return False
    return latest >= expected_end(now, zone)

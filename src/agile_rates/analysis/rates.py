"""Derived views over a rate series.

Everything here is a pure function of its arguments: no I/O, no clock
reads, and input records are never modified.
"""

import math
from datetime import date, datetime, timedelta
from statistics import fmean
from typing import Iterable
from zoneinfo import ZoneInfo

from ..models import (
    BAND_HIGH,
    BAND_NEGATIVE,
    BAND_NEUTRAL,
    LOCAL_TIMEZONE,
    Intensity,
    RateRecord,
    TimeWindow,
)

SLOTS_PER_HOUR = 2  # half-hour rates


def _by_start(series: Iterable[RateRecord]) -> list[RateRecord]:
    return sorted(series, key=lambda r: r.valid_from)


def current_rate(series: Iterable[RateRecord], now: datetime) -> RateRecord | None:
    """The record with valid_from <= now < valid_to, or None inside a gap."""
    for record in series:
        if record.covers(now):
            return record
    return None


def upcoming_rates(series: Iterable[RateRecord], now: datetime) -> list[RateRecord]:
    """Records still running or yet to start, ascending by start."""
    return _by_start(r for r in series if r.valid_to > now)


def lowest_upcoming(series: Iterable[RateRecord], now: datetime, count: int = 1) -> list[RateRecord]:
    """The ``count`` cheapest records overlapping or after ``now``."""
    if count <= 0:
        return []
    upcoming = upcoming_rates(series, now)
    return sorted(upcoming, key=lambda r: r.value_inc_vat)[:count]


def highest_upcoming(series: Iterable[RateRecord], now: datetime, count: int = 1) -> list[RateRecord]:
    """The ``count`` most expensive records overlapping or after ``now``."""
    if count <= 0:
        return []
    upcoming = upcoming_rates(series, now)
    return sorted(upcoming, key=lambda r: r.value_inc_vat, reverse=True)[:count]


def average_upcoming(series: Iterable[RateRecord], now: datetime, hours: float) -> float | None:
    """Mean price of the slots lying entirely within the next ``hours``."""
    end = now + timedelta(hours=hours)
    values = [r.value_inc_vat for r in series if r.valid_from >= now and r.valid_to <= end]
    if not values:
        return None
    return fmean(values)


def lowest_n_average(series: Iterable[RateRecord], now: datetime, count: int = 10) -> float | None:
    """Mean of the ``count`` cheapest slots starting after ``now``."""
    future = sorted((r for r in series if r.valid_from > now), key=lambda r: r.value_inc_vat)
    cheapest = [r.value_inc_vat for r in future[:count]]
    if not cheapest:
        return None
    return fmean(cheapest)


def rates_for_day(
    series: Iterable[RateRecord], day: date, tz: ZoneInfo | None = None
) -> list[RateRecord]:
    """Records starting on the local calendar ``day``, ascending."""
    tz = tz or ZoneInfo(LOCAL_TIMEZONE)
    return _by_start(r for r in series if r.valid_from.astimezone(tz).date() == day)


def classify(record: RateRecord, same_day_series: Iterable[RateRecord]) -> Intensity:
    """Grade a rate against the other rates of its day.

    Negative rates scale with value / most negative value of the day. Rates
    below the day's median are neutral. Rates at or above the median scale
    from 0 at the median to 1 at the day's maximum.
    """
    value = record.value_inc_vat
    values = sorted(r.value_inc_vat for r in same_day_series)
    if not values:
        values = [value]

    if value < 0:
        most_negative = min(values[0], value)
        return Intensity(BAND_NEGATIVE, min(1.0, value / most_negative))

    median = values[len(values) // 2]
    if value < median:
        return Intensity(BAND_NEUTRAL, 0.0)

    maximum = max(values[-1], value)
    if value == maximum:
        return Intensity(BAND_HIGH, 1.0)
    return Intensity(BAND_HIGH, (value - median) / (maximum - median))


def slots_for_hours(window_hours: float) -> int:
    """Number of half-hour slots in ``window_hours``; must be a multiple of 0.5."""
    slots = window_hours * SLOTS_PER_HOUR
    if not math.isfinite(slots) or slots < 1 or slots != int(slots):
        raise ValueError(f"Window of {window_hours}h is not a positive multiple of 0.5h")
    return int(slots)


def _is_contiguous(run: list[RateRecord]) -> bool:
    return all(a.valid_to == b.valid_from for a, b in zip(run, run[1:]))


def best_average_windows(
    series: Iterable[RateRecord],
    window_hours: float,
    max_count: int,
    since: datetime | None = None,
) -> list[TimeWindow]:
    """Cheapest contiguous windows of ``window_hours``, lowest mean first.

    Every run of consecutive slots is scored by the mean of value_inc_vat.
    Runs that cross a gap in the series are skipped. Returned windows may
    overlap; see merge_overlapping_windows for display.
    """
    slots = slots_for_hours(window_hours)
    if max_count <= 0:
        return []

    ordered = _by_start(r for r in series if since is None or r.valid_from >= since)

    windows = []
    for i in range(len(ordered) - slots + 1):
        run = ordered[i : i + slots]
        if not _is_contiguous(run):
            continue
        windows.append(
            TimeWindow(
                start=run[0].valid_from,
                end=run[-1].valid_to,
                average=fmean(r.value_inc_vat for r in run),
            )
        )

    windows.sort(key=lambda w: (w.average, w.start))
    return windows[:max_count]


def merge_overlapping_windows(windows: Iterable[TimeWindow]) -> list[TimeWindow]:
    """Merge windows that overlap or touch into single spans, ascending by start."""
    merged: list[TimeWindow] = []
    for window in sorted(windows, key=lambda w: w.start):
        if merged and window.start <= merged[-1].end:
            last = merged[-1]
            merged[-1] = TimeWindow(start=last.start, end=max(last.end, window.end))
        else:
            merged.append(TimeWindow(start=window.start, end=window.end))
    return merged

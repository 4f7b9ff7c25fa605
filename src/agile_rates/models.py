"""Data models for half-hourly tariff rates."""

from dataclasses import dataclass
from datetime import datetime

LOCAL_TIMEZONE = "Europe/London"

# Intensity bands used when colouring a rate relative to its day
BAND_NEGATIVE = "negative"
BAND_NEUTRAL = "neutral"
BAND_HIGH = "high"


@dataclass(frozen=True)
class RateRecord:
    """A single priced half-hour interval.

    Timestamps are timezone-aware UTC. ``valid_from`` is inclusive and is the
    unique key within a series; ``valid_to`` is exclusive.
    """

    valid_from: datetime
    valid_to: datetime
    value_exc_vat: float  # pence per kWh
    value_inc_vat: float  # pence per kWh

    def __post_init__(self):
        if self.valid_from.tzinfo is None or self.valid_to.tzinfo is None:
            raise ValueError("RateRecord timestamps must be timezone-aware")
        if self.valid_from >= self.valid_to:
            raise ValueError(f"valid_from {self.valid_from} is not before valid_to {self.valid_to}")

    def covers(self, moment: datetime) -> bool:
        """Whether ``moment`` falls inside this half-open interval."""
        return self.valid_from <= moment < self.valid_to


@dataclass(frozen=True)
class TimeWindow:
    """A derived (start, end) span, e.g. a cheapest-average window."""

    start: datetime
    end: datetime
    average: float | None = None


@dataclass(frozen=True)
class Intensity:
    """How a rate compares with the rest of its day."""

    band: str  # BAND_NEGATIVE, BAND_NEUTRAL or BAND_HIGH
    level: float  # 0.0 - 1.0 within the band


@dataclass
class AgileProduct:
    """Metadata for an Agile import product."""

    code: str
    full_name: str
    display_name: str
    description: str

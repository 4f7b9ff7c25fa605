from datetime import datetime, timedelta, timezone

import pytest

from agile_rates.models import RateRecord

HALF_HOUR = timedelta(minutes=30)


def build_series(start: datetime, values: list[float]) -> list[RateRecord]:
    """Contiguous half-hour records starting at ``start`` (exc VAT = inc VAT / 1.05)."""
    return [
        RateRecord(
            valid_from=start + i * HALF_HOUR,
            valid_to=start + (i + 1) * HALF_HOUR,
            value_exc_vat=round(value / 1.05, 4),
            value_inc_vat=value,
        )
        for i, value in enumerate(values)
    ]


@pytest.fixture
def make_series():
    return build_series


@pytest.fixture
def utc():
    def _utc(*args):
        return datetime(*args, tzinfo=timezone.utc)

    return _utc

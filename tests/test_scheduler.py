from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from agile_rates.models import RateRecord
from agile_rates.scheduler import expected_end, is_covered

LONDON = ZoneInfo("Europe/London")


def ending_at(valid_to: datetime) -> list[RateRecord]:
    return [RateRecord(valid_to - timedelta(minutes=30), valid_to, 10.0, 10.5)]


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def london(*args):
    return datetime(*args, tzinfo=LONDON)


def test_before_publication_needs_today_until_2300():
    now = london(2025, 1, 15, 15, 59)

    assert expected_end(now) == utc(2025, 1, 15, 23, 0)
    assert is_covered(now, ending_at(utc(2025, 1, 15, 23, 0))) is True
    assert is_covered(now, ending_at(utc(2025, 1, 15, 22, 30))) is False


def test_from_publication_hour_needs_tomorrow():
    now = london(2025, 1, 15, 16, 0)

    assert expected_end(now) == utc(2025, 1, 16, 23, 0)
    assert is_covered(now, ending_at(utc(2025, 1, 16, 23, 0))) is True
    assert is_covered(now, ending_at(utc(2025, 1, 15, 23, 0))) is False


def test_summer_time_boundary_uses_local_clock():
    # 23:00 BST is 22:00 UTC
    before = london(2025, 7, 15, 15, 59)
    assert expected_end(before) == utc(2025, 7, 15, 22, 0)
    assert is_covered(before, ending_at(utc(2025, 7, 15, 22, 0))) is True
    assert is_covered(before, ending_at(utc(2025, 7, 15, 21, 30))) is False

    # 15:30 UTC is already 16:30 BST, so tomorrow is required
    after = utc(2025, 7, 15, 15, 30)
    assert expected_end(after) == utc(2025, 7, 16, 22, 0)
    assert is_covered(after, ending_at(utc(2025, 7, 15, 23, 0))) is False


def test_expected_end_across_clocks_going_forward():
    # Clocks go forward at 01:00 UTC on 30 March 2025
    now = london(2025, 3, 29, 17, 0)

    assert expected_end(now) == utc(2025, 3, 30, 22, 0)


def test_coverage_uses_latest_valid_to_regardless_of_order():
    now = london(2025, 1, 15, 10, 0)
    series = ending_at(utc(2025, 1, 15, 23, 0)) + ending_at(utc(2025, 1, 15, 12, 0))

    assert is_covered(now, series) is True


@pytest.mark.parametrize("hour", [0, 9, 15, 16, 23])
def test_empty_series_is_never_covered(hour):
    assert is_covered(london(2025, 1, 15, hour, 0), []) is False


def test_naive_now_is_rejected():
    with pytest.raises(ValueError):
        expected_end(datetime(2025, 1, 15, 12, 0))

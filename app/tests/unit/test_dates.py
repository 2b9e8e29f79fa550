from datetime import date, datetime, time, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from app.core.enums import FuelType, TrendBucket
from app.services.allocation import default_allocation, month_period
from app.utils.dates import as_utc, bucket_start, day_range, iter_buckets, month_bounds, parse_month


@pytest.mark.unit
def test_day_range_is_inclusive_of_end_date():
    tz = ZoneInfo("Asia/Colombo")
    start, end = day_range(date(2024, 5, 1), date(2024, 5, 3), tz)
    assert start == datetime(2024, 5, 1, 0, 0, tzinfo=tz)
    assert end.date() == date(2024, 5, 3)
    assert end.time() == time.max


@pytest.mark.unit
def test_day_range_rejects_reversed_dates():
    with pytest.raises(ValueError):
        day_range(date(2024, 5, 3), date(2024, 5, 1), timezone.utc)


@pytest.mark.unit
def test_month_bounds_handles_leap_february():
    start, end = month_bounds(2024, 2, timezone.utc)
    assert start.date() == date(2024, 2, 1)
    assert end.date() == date(2024, 2, 29)


@pytest.mark.unit
@pytest.mark.parametrize("value", ["2024-13", "2024", "may-2024", "2024-00"])
def test_parse_month_rejects_bad_input(value):
    with pytest.raises(ValueError):
        parse_month(value)


@pytest.mark.unit
def test_month_period_uses_given_month():
    start, end = month_period("2024-04", timezone.utc)
    assert (start.date(), end.date()) == (date(2024, 4, 1), date(2024, 4, 30))


@pytest.mark.unit
def test_naive_datetimes_are_treated_as_utc():
    assert as_utc(datetime(2024, 1, 1, 12, 0)) == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.mark.unit
def test_week_buckets_start_on_monday():
    # 2024-05-01 is a Wednesday
    assert bucket_start(date(2024, 5, 1), TrendBucket.WEEK) == date(2024, 4, 29)
    assert list(iter_buckets(date(2024, 5, 1), date(2024, 5, 14), TrendBucket.WEEK)) == [
        date(2024, 4, 29), date(2024, 5, 6), date(2024, 5, 13),
    ]


@pytest.mark.unit
def test_month_buckets_cross_year_end():
    assert list(iter_buckets(date(2023, 11, 15), date(2024, 1, 2), TrendBucket.MONTH)) == [
        date(2023, 11, 1), date(2023, 12, 1), date(2024, 1, 1),
    ]


@pytest.mark.unit
@pytest.mark.parametrize("vehicle_type,fuel_type,engine,expected", [
    ("car", FuelType.PETROL, 1500, "60"),
    ("Car", FuelType.PETROL, 2400, "80"),
    ("motorcycle", FuelType.PETROL, None, "20"),
    ("three wheeler", FuelType.PETROL, None, "40"),
    ("bus", FuelType.DIESEL, None, "200"),
    ("van", FuelType.DIESEL, None, "80"),
    ("tractor", FuelType.PETROL, None, "60"),
])
def test_default_allocation(vehicle_type, fuel_type, engine, expected):
    assert default_allocation(vehicle_type, fuel_type, engine) == Decimal(expected)

"""
Tests for the shared cost and date arithmetic.
"""
from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from data_processor import (
    as_number,
    booking_costs,
    filter_customer,
    new_booking_id,
    parse_calendar_date,
    rental_days,
    to_date_string,
)


class TestRentalDays:
    """Whole-day durations floored at one day."""

    def test_same_day_counts_as_one(self):
        assert rental_days("2024-01-01", "2024-01-01") == 1

    def test_three_days(self):
        assert rental_days("2024-01-01", "2024-01-04") == 3

    def test_reversed_range_counts_as_one(self):
        assert rental_days("2024-01-10", "2024-01-01") == 1

    def test_time_of_day_is_ignored(self):
        start = datetime(2024, 1, 1, 23, 30)
        end = datetime(2024, 1, 2, 0, 15)
        assert rental_days(start, end) == 1
        assert rental_days("2024-01-01T08:00:00Z", "2024-01-03T20:00:00Z") == 2

    def test_unparsable_dates_count_as_one(self):
        assert rental_days("not a date", "2024-01-04") == 1
        assert rental_days(None, None) == 1

    def test_never_below_one(self):
        start = date(2024, 3, 1)
        for offset in range(-5, 6):
            assert rental_days(start, start + timedelta(days=offset)) >= 1

    def test_across_month_and_leap_day(self):
        assert rental_days(date(2024, 2, 27), date(2024, 3, 2)) == 4


class TestAsNumber:
    """Money parsing falls back to zero instead of failing."""

    @pytest.mark.parametrize("value,expected", [
        (10, 10.0),
        ("12.5", 12.5),
        (Decimal("7.25"), 7.25),
        (None, 0.0),
        ("abc", 0.0),
        (float("nan"), 0.0),
        (float("inf"), 0.0),
        ({}, 0.0),
    ])
    def test_values(self, value, expected):
        assert as_number(value) == expected


class TestBookingCosts:
    def test_scenario_totals(self):
        costs = booking_costs("2024-01-01", "2024-01-04", 50, [{"costs": 10}, {"costs": 15}])
        assert costs == {"days": 3, "base_cost": 150.0, "extras_cost": 25.0, "total_cost": 175.0}

    def test_malformed_service_costs_count_as_zero(self):
        costs = booking_costs("2024-01-01", "2024-01-02", "40", [{"costs": None}, {"costs": "n/a"}, {}])
        assert costs["extras_cost"] == 0.0
        assert costs["total_cost"] == 40.0

    def test_missing_services(self):
        assert booking_costs("2024-01-01", "2024-01-01", 30, None)["total_cost"] == 30.0


class TestHelpers:
    def test_booking_ids_are_unique_and_prefixed(self):
        ids = [new_booking_id() for _ in range(50)]
        assert all(booking_id.startswith("b_") for booking_id in ids)
        assert len(set(ids)) == len(ids)
        millis = [int(booking_id[2:]) for booking_id in ids]
        assert millis == sorted(millis)

    def test_date_helpers(self):
        assert parse_calendar_date("2024-05-06") == date(2024, 5, 6)
        assert parse_calendar_date("06.05.2024") is None
        assert to_date_string(date(2024, 5, 6)) == "2024-05-06"
        assert to_date_string("2024-05-06") == "2024-05-06"

    def test_filter_customer_without_bank_account(self):
        row = filter_customer({
            "_id": 2,
            "name": "Bob Brown",
            "roles": {"customer": {"customer_number": "C-2"}, "retailer": None},
            "bankAccount": None,
        })
        assert row["person_id"] == 2
        assert row["customer_number"] == "C-2"
        assert row["iban"] is None

"""Tests for scheduled pay date calculation."""

from datetime import date, datetime, timedelta, timezone

import pytest

from commission_engine.calculators import calculate_scheduled_pay_date
from commission_engine.calculators.pay_date import format_pay_date
from commission_engine.config import PayDateRules

MST = timezone(timedelta(hours=-7))


class TestScheduledPayDate:
    """Sunday-to-Saturday pay weeks with a Tuesday 3 PM MST cutoff."""

    @pytest.mark.parametrize(
        "submitted, expected",
        [
            # Sunday morning: start of the week, paid that Friday
            (datetime(2026, 3, 1, 9, 0, tzinfo=MST), date(2026, 3, 6)),
            # Monday
            (datetime(2026, 2, 23, 10, 0, tzinfo=MST), date(2026, 2, 27)),
            # Tuesday one minute before cutoff
            (datetime(2026, 2, 24, 14, 59, tzinfo=MST), date(2026, 2, 27)),
            # Tuesday at cutoff rolls to the next Friday
            (datetime(2026, 2, 24, 15, 0, tzinfo=MST), date(2026, 3, 6)),
            # Wednesday
            (datetime(2026, 2, 25, 8, 0, tzinfo=MST), date(2026, 3, 6)),
            # Saturday
            (datetime(2026, 2, 28, 23, 0, tzinfo=MST), date(2026, 3, 6)),
        ],
    )
    def test_cutoff(self, submitted, expected):
        assert calculate_scheduled_pay_date(submitted) == expected

    def test_utc_input_is_converted(self):
        # Wednesday 01:00 UTC is still Tuesday 18:00 MST, after the cutoff
        moment = datetime(2026, 2, 25, 1, 0, tzinfo=timezone.utc)
        assert calculate_scheduled_pay_date(moment) == date(2026, 3, 6)

    def test_naive_is_treated_as_utc(self):
        moment = datetime(2026, 2, 24, 21, 0)  # 14:00 MST
        assert calculate_scheduled_pay_date(moment) == date(2026, 2, 27)

    def test_result_is_always_friday(self):
        start = datetime(2026, 1, 1, tzinfo=timezone.utc)
        for hours in range(0, 24 * 21, 5):
            assert calculate_scheduled_pay_date(start + timedelta(hours=hours)).weekday() == 4

    def test_custom_cutoff(self):
        rules = PayDateRules(cutoff_weekday=3, cutoff_hour=12)  # Thursday noon
        moment = datetime(2026, 2, 25, 8, 0, tzinfo=MST)  # Wednesday
        assert calculate_scheduled_pay_date(moment, rules) == date(2026, 2, 27)

    def test_format(self):
        assert format_pay_date(date(2026, 2, 27)) == "Friday, February 27, 2026"

"""Tests for pause proration and the yearly pause allowance.

Covers:
- Cycle lengths and day rates
- Pause credit capped at the days left in the cycle
- Skipped whole cycles
- Early-resume clawback
- Anniversary allowance windows and remaining days
"""

from collections import namedtuple
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from app.services.dates import add_cycles, cycle_length_days, days_between
from app.services.proration import (
    daily_rate,
    early_resume_adjustment,
    pause_credit,
    remaining_suspension_days,
    skipped_cycles,
    suspension_year_window,
    used_suspension_days,
    validate_pause_days,
)

Pause = namedtuple("Pause", ["suspended_at", "suspension_days"])


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class TestCycles:
    """Tests for billing-cycle helpers."""

    def test_cycle_lengths(self):
        assert cycle_length_days("weekly") == 7
        assert cycle_length_days("monthly") == 30
        assert cycle_length_days("quarterly") == 91
        assert cycle_length_days("yearly") == 365

    def test_stripe_interval_aliases(self):
        assert cycle_length_days("month") == 30
        assert cycle_length_days("Year") == 365

    def test_unknown_frequency_raises(self):
        with pytest.raises(ValueError):
            cycle_length_days("fortnightly")

    def test_daily_rate(self):
        assert daily_rate(70, "weekly") == 10

    def test_add_cycles_is_calendar_exact(self):
        assert add_cycles(utc(2024, 10, 1), "monthly", 2) == utc(2024, 12, 1)
        assert add_cycles(utc(2024, 1, 31), "monthly", 1) == utc(2024, 2, 29)
        assert add_cycles(utc(2024, 1, 1), "quarterly", 1) == utc(2024, 4, 1)
        assert add_cycles(utc(2024, 1, 1), "weekly", 2) == utc(2024, 1, 15)

    def test_days_between_rounds_up(self):
        assert days_between(utc(2024, 1, 1), utc(2024, 1, 3)) == 2
        assert days_between(utc(2024, 1, 1), utc(2024, 1, 3, 1)) == 3


class TestPauseCredit:
    """Tests for the pause credit formula."""

    def test_worked_example(self):
        """$50/month, 10-day pause with 15 days left -> $16.67."""
        assert pause_credit(50, "monthly", 10, 15) == Decimal("16.67")

    def test_credit_capped_at_days_left_in_cycle(self):
        """A 20-day pause with 5 days left only credits 5 days."""
        assert pause_credit(60, "monthly", 20, 5) == Decimal("10.00")

    def test_no_days_left_means_no_credit(self):
        assert pause_credit(50, "monthly", 10, 0) == Decimal("0.00")

    def test_zero_or_negative_pause_raises(self):
        with pytest.raises(ValueError):
            pause_credit(50, "monthly", 0, 15)
        with pytest.raises(ValueError):
            pause_credit(50, "monthly", -3, 15)

    def test_skipped_cycles(self):
        """60 days from 10 left in a monthly cycle skips one whole cycle."""
        assert skipped_cycles(60, 10, "monthly") == 1
        assert skipped_cycles(10, 15, "monthly") == 0
        assert skipped_cycles(21, 0, "weekly") == 3


class TestEarlyResume:
    """Tests for the early-resume clawback."""

    def test_worked_example(self):
        """Paused 10 days for $16.67, resumed after 6 -> $6.67 back."""
        assert early_resume_adjustment(50, "monthly", 10, 6, 15) == Decimal("6.67")

    def test_full_pause_has_no_adjustment(self):
        assert early_resume_adjustment(50, "monthly", 10, 10, 15) == Decimal("0.00")
        assert early_resume_adjustment(50, "monthly", 10, 12, 15) == Decimal("0.00")

    def test_resume_on_day_zero_returns_whole_credit(self):
        assert early_resume_adjustment(50, "monthly", 10, 0, 15) == Decimal("16.67")

    def test_adjustment_never_exceeds_credit(self):
        for actual in range(0, 11):
            adjustment = early_resume_adjustment(50, "monthly", 10, actual, 15)
            assert Decimal("0") <= adjustment <= pause_credit(50, "monthly", 10, 15)

    def test_days_beyond_cycle_are_free(self):
        """Unused days past the cycle end earned no credit, so none comes back."""
        assert early_resume_adjustment(50, "monthly", 20, 8, 5) == Decimal("0.00")


class TestAllowance:
    """Tests for the yearly pause allowance."""

    def test_window_contains_now(self):
        window = suspension_year_window(utc(2022, 3, 15), utc(2024, 6, 1))
        assert window.start == utc(2024, 3, 15)
        assert window.end == utc(2025, 3, 15)

    def test_window_before_anniversary(self):
        window = suspension_year_window(utc(2022, 9, 1), utc(2024, 6, 1))
        assert window.start == utc(2023, 9, 1)

    def test_window_accepts_naive_datetimes(self):
        window = suspension_year_window(datetime(2024, 1, 1), utc(2024, 2, 1))
        assert window.start == utc(2024, 1, 1)

    def test_only_pauses_inside_window_count(self):
        window = suspension_year_window(utc(2023, 1, 1), utc(2024, 6, 1))
        pauses = [
            Pause(utc(2023, 6, 1), 20),   # previous year
            Pause(utc(2024, 2, 1), 10),
            Pause(datetime(2024, 4, 1), 5),  # naive, as read from SQLite
        ]

        assert used_suspension_days(pauses, window) == 15
        assert remaining_suspension_days(pauses, 30, window) == 15

    def test_remaining_never_negative(self):
        window = suspension_year_window(utc(2024, 1, 1), utc(2024, 6, 1))
        assert remaining_suspension_days([Pause(utc(2024, 2, 1), 40)], 30, window) == 0

    def test_validate_pause_days(self):
        validate_pause_days(10, 30, 15)
        with pytest.raises(ValueError, match="between 1 and 30"):
            validate_pause_days(0, 30, 30)
        with pytest.raises(ValueError, match="between 1 and 30"):
            validate_pause_days(31, 30, 30)
        with pytest.raises(ValueError, match="remaining"):
            validate_pause_days(20, 30, 15)
        with pytest.raises(ValueError, match="whole number"):
            validate_pause_days("10", 30, 30)

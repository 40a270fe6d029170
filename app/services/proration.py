"""Membership pause proration.

A pause only earns credit for the days it covers inside the current billing
cycle. Cycles that fall entirely inside the pause are skipped at Stripe
(pause_collection voids their invoices), so they are never prorated.

    credit = min(pause_days, days_left_in_cycle) * price / cycle_length_days

Early resumes claw back the difference between the credit that was issued
and the credit the actual pause length would have earned.
"""

from collections import namedtuple

from dateutil.relativedelta import relativedelta

from app.services.dates import as_utc, cycle_length_days
from app.services.money import quantize, to_decimal

SuspensionWindow = namedtuple("SuspensionWindow", ["start", "end"])


def daily_rate(price, frequency):
    return to_decimal(price) / cycle_length_days(frequency)


def pause_credit(price, frequency, pause_days, days_remaining_in_cycle):
    """Credit (dollars) for pausing pause_days from a point in the cycle.

    Raises ValueError for zero or negative pauses.
    """
    if pause_days is None or pause_days <= 0:
        raise ValueError("Pause must be at least 1 day")
    credit_days = max(0, min(pause_days, days_remaining_in_cycle))
    # Multiply before dividing so 10 days of $50/30 is 16.67, not 16.70
    return quantize(
        to_decimal(price) * credit_days / cycle_length_days(frequency)
    )


def skipped_cycles(pause_days, days_remaining_in_cycle, frequency):
    """Whole billing cycles skipped after the current one runs out."""
    overflow = pause_days - days_remaining_in_cycle
    if overflow <= 0:
        return 0
    return overflow // cycle_length_days(frequency)


def early_resume_adjustment(price, frequency, original_days, actual_days,
                            days_remaining_in_cycle):
    """Charge (dollars) to claw back credit for pause days not used.

    Returns 0 when the pause ran its full length (or longer).
    """
    if actual_days >= original_days:
        return quantize(0)
    original_credit = pause_credit(
        price, frequency, original_days, days_remaining_in_cycle
    )
    if actual_days <= 0:
        return original_credit
    actual_credit = pause_credit(
        price, frequency, actual_days, days_remaining_in_cycle
    )
    return original_credit - actual_credit


def suspension_year_window(subscription_start, now):
    """Anniversary year (start inclusive, end exclusive) that contains now.

    Pause allowances reset on each anniversary of the subscription start.
    """
    start = as_utc(subscription_start)
    now = as_utc(now)
    if now < start:
        return SuspensionWindow(start, start + relativedelta(years=1))

    years = now.year - start.year
    window_start = start + relativedelta(years=years)
    if window_start > now:
        window_start = start + relativedelta(years=years - 1)
    return SuspensionWindow(window_start, window_start + relativedelta(years=1))


def used_suspension_days(suspensions, window):
    """Sum of pause days that started inside the allowance window."""
    return sum(
        s.suspension_days for s in suspensions
        if window.start <= as_utc(s.suspended_at) < window.end
    )


def remaining_suspension_days(suspensions, max_days, window):
    return max(0, max_days - used_suspension_days(suspensions, window))


def validate_pause_days(days, max_days, remaining):
    """Raise ValueError if a pause request is outside the org's allowance."""
    if not isinstance(days, int) or isinstance(days, bool):
        raise ValueError("Pause days must be a whole number")
    if days <= 0 or days > max_days:
        raise ValueError(f"Suspension days must be between 1 and {max_days}")
    if days > remaining:
        raise ValueError(
            f"Only {remaining} suspension days remaining in current year "
            f"({max_days - remaining} of {max_days} days used)"
        )

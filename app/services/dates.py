"""Billing date helpers.

Two notions of a billing cycle live side by side:

- cycle_length_days(): a fixed day count per frequency, used for day-rate
  proration (a $50/month plan earns 50/30 per day).
- add_cycles(): calendar arithmetic, used wherever a real date is produced
  (minimum contract end, next billing date). Oct 1 + 2 monthly cycles is
  Dec 1, not Nov 30.
"""

import math
from datetime import datetime, timezone

from dateutil.relativedelta import relativedelta

CYCLE_LENGTH_DAYS = {
    "weekly": 7,
    "monthly": 30,
    "quarterly": 91,
    "yearly": 365,
}

# Stripe price intervals map onto the same frequencies
_FREQUENCY_ALIASES = {
    "week": "weekly",
    "month": "monthly",
    "quarter": "quarterly",
    "year": "yearly",
    "annual": "yearly",
    "annually": "yearly",
}

SECONDS_PER_DAY = 24 * 60 * 60


def normalize_frequency(frequency):
    """Return the canonical frequency name, or raise ValueError."""
    key = (frequency or "").strip().lower()
    key = _FREQUENCY_ALIASES.get(key, key)
    if key not in CYCLE_LENGTH_DAYS:
        raise ValueError(f"Unsupported billing frequency: {frequency!r}")
    return key


def cycle_length_days(frequency):
    return CYCLE_LENGTH_DAYS[normalize_frequency(frequency)]


def add_cycles(start, frequency, cycles):
    """Advance a datetime by a whole number of billing cycles (calendar-exact)."""
    frequency = normalize_frequency(frequency)
    if frequency == "weekly":
        return start + relativedelta(weeks=cycles)
    months_per_cycle = {"monthly": 1, "quarterly": 3, "yearly": 12}[frequency]
    return start + relativedelta(months=months_per_cycle * cycles)


def as_utc(value):
    """Attach UTC to naive datetimes.

    SQLite returns naive datetimes; Postgres returns aware ones.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def days_between(start, end):
    """Whole days from start to end, rounding partial days up."""
    delta = as_utc(end) - as_utc(start)
    return math.ceil(delta.total_seconds() / SECONDS_PER_DAY)


def from_timestamp(ts):
    if not ts:
        return None
    return datetime.fromtimestamp(int(ts), tz=timezone.utc)


def to_timestamp(value):
    return int(as_utc(value).timestamp())


def utcnow():
    return datetime.now(timezone.utc)

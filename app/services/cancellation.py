"""Cancellation scheduling with minimum-contract enforcement.

A membership cancels on the later of its next billing date and the end of
its minimum contract:

    minimum_contract_end = start + minimum_cycles billing cycles
    effective            = max(next_billing_date, minimum_contract_end)

When effective is the next billing date, Stripe's cancel_at_period_end is
enough. Otherwise the subscription gets an explicit cancel_at timestamp and
the plan is flagged as minimum-contract enforced.
"""

from collections import namedtuple

from app.services.dates import add_cycles, as_utc

MODE_PERIOD_END = "period_end"
MODE_CANCEL_AT = "cancel_at"

CancellationPlan = namedtuple(
    "CancellationPlan",
    ["effective_date", "mode", "minimum_contract_end", "minimum_contract_enforced"],
)


def minimum_contract_end(start_date, frequency, minimum_cycles):
    """End of the minimum contract, or None when there is no minimum."""
    if not minimum_cycles or minimum_cycles <= 0:
        return None
    return add_cycles(as_utc(start_date), frequency, minimum_cycles)


def plan_cancellation(start_date, frequency, minimum_cycles, next_billing_date):
    """Work out when and how a subscription should be cancelled."""
    next_billing_date = as_utc(next_billing_date)
    contract_end = minimum_contract_end(start_date, frequency, minimum_cycles)

    if contract_end is None or contract_end <= next_billing_date:
        return CancellationPlan(
            effective_date=next_billing_date,
            mode=MODE_PERIOD_END,
            minimum_contract_end=contract_end,
            minimum_contract_enforced=False,
        )

    return CancellationPlan(
        effective_date=contract_end,
        mode=MODE_CANCEL_AT,
        minimum_contract_end=contract_end,
        minimum_contract_enforced=True,
    )


def plan_to_dict(plan):
    return {
        "effective_date": plan.effective_date.isoformat(),
        "mode": plan.mode,
        "minimum_contract_end": (
            plan.minimum_contract_end.isoformat()
            if plan.minimum_contract_end else None
        ),
        "minimum_contract_enforced": plan.minimum_contract_enforced,
    }

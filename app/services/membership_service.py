"""Membership service — pause, resume and cancellation against Stripe.

Responsible for:
- Pausing memberships now or on a scheduled date, with a prorated credit
- Resuming paused memberships, clawing back credit for unused pause days
- Scheduling cancellations that respect the minimum contract
- Reactivating memberships with a pending cancellation

Every operation validates before touching Stripe and commits locally only
after every Stripe call has succeeded. A StripeError leaves the local
records as they were.
"""

import logging
from datetime import timedelta

import stripe
from flask import current_app

from app.extensions import db
from app.models.membership import Membership, MembershipSuspension
from app.services.billing_service import (
    log_billing_audit,
    record_adjustment,
    sanitize_text,
)
from app.services.cancellation import MODE_PERIOD_END, plan_cancellation
from app.services.dates import as_utc, days_between, to_timestamp, utcnow
from app.services.email_service import notify_resume, notify_suspension
from app.services.money import quantize, to_cents
from app.services.proration import (
    early_resume_adjustment,
    pause_credit,
    remaining_suspension_days,
    suspension_year_window,
    used_suspension_days,
    validate_pause_days,
)

logger = logging.getLogger(__name__)


def _stripe_options(org):
    stripe.api_key = current_app.config["STRIPE_SECRET_KEY"]
    return org.stripe_options


def _actor_id(employee):
    return employee.id if employee else None


# ──────────────────────────────────────────────
# Pause
# ──────────────────────────────────────────────

def pause_membership(membership, days, employee, note=None, start_date=None,
                     now=None):
    """Pause a membership immediately, or schedule a pause for start_date.

    Returns the MembershipSuspension row.
    Raises ValueError for invalid requests, stripe.error.StripeError when
    Stripe rejects the pause.
    """
    now = as_utc(now) or utcnow()
    org = membership.org
    note = sanitize_text(note)

    if membership.status != "active":
        raise ValueError("Only active memberships can be paused")
    if membership.scheduled_pause_date:
        raise ValueError("A pause is already scheduled for this membership")

    max_days = org.membership_suspension_days_per_year
    window = suspension_year_window(membership.subscription_start_date, now)
    remaining = remaining_suspension_days(membership.suspensions, max_days, window)
    validate_pause_days(days, max_days, remaining)

    if start_date is None:
        return _apply_pause(membership, days, now,
                            created_by_id=_actor_id(employee), note=note)

    start_date = as_utc(start_date)
    if start_date <= now:
        raise ValueError("Scheduled pause date must be in the future")
    if start_date >= as_utc(membership.next_billing_date):
        raise ValueError("Scheduled pause must start before the next billing date")

    resumes_at = start_date + timedelta(days=days)
    suspension = MembershipSuspension(
        membership=membership,
        suspended_at=start_date,
        suspension_days=days,
        resumes_at=resumes_at,
        year_start_date=window.start,
        scheduled_pause=True,
        created_by_id=_actor_id(employee),
        note=note,
    )
    db.session.add(suspension)

    membership.scheduled_pause_date = start_date
    membership.scheduled_resume_date = resumes_at
    membership.scheduled_pause_days = days

    log_billing_audit(org.id, "membership.pause_scheduled", {
        "membership_id": membership.id,
        "start_date": start_date.isoformat(),
        "days": days,
    }, actor_user_id=_actor_id(employee))
    db.session.commit()

    logger.info(f"Pause of {days} days scheduled for membership {membership.id} on {start_date.date()}")
    notify_suspension(membership, suspension, org, scheduled=True)
    return suspension


def _apply_pause(membership, days, now, created_by_id=None, note=None,
                 suspension=None, sync_email=False):
    """Pause at Stripe, then record the pause locally.

    suspension is the pre-created row of a scheduled pause, if any.
    """
    org = membership.org
    next_billing = as_utc(membership.next_billing_date)
    cycle_remaining = max(0, days_between(now, next_billing))
    credit = pause_credit(
        membership.amount, membership.billing_frequency, days, cycle_remaining
    )
    resumes_at = now + timedelta(days=days)
    window = suspension_year_window(membership.subscription_start_date, now)

    options = _stripe_options(org)
    invoice_item_id = None

    if membership.stripe_subscription_id:
        stripe.Subscription.modify(
            membership.stripe_subscription_id,
            pause_collection={
                "behavior": "void",
                "resumes_at": to_timestamp(resumes_at),
            },
            **options,
        )

    if credit > 0 and membership.stripe_customer_id:
        try:
            item = stripe.InvoiceItem.create(
                customer=membership.stripe_customer_id,
                amount=-to_cents(credit),
                currency=org.currency,
                description=f"Membership pause credit ({days} days)",
                metadata={
                    "membershipId": membership.id,
                    "type": "suspension_credit",
                    "suspensionDays": str(days),
                },
                **options,
            )
        except stripe.error.StripeError:
            logger.error(
                f"Pause credit failed for membership {membership.id}, unpausing",
                exc_info=True,
            )
            _clear_pause_collection(membership, options)
            raise
        invoice_item_id = item["id"]

    if suspension is None:
        suspension = MembershipSuspension(membership=membership, note=note)
        db.session.add(suspension)
    suspension.suspended_at = now
    suspension.suspension_days = days
    suspension.resumes_at = resumes_at
    suspension.year_start_date = window.start
    suspension.cycle_days_remaining = cycle_remaining
    suspension.credit_amount = credit
    suspension.stripe_invoice_item_id = invoice_item_id
    if created_by_id:
        suspension.created_by_id = created_by_id

    membership.status = "suspended"
    membership.suspended_until = resumes_at
    membership.scheduled_pause_date = None
    membership.scheduled_resume_date = None
    membership.scheduled_pause_days = None

    if credit > 0:
        record_adjustment(
            membership,
            -credit,
            f"Pause credit ({days} days)",
            employee_id=created_by_id,
            stripe_invoice_item_id=invoice_item_id,
        )

    log_billing_audit(org.id, "membership.paused", {
        "membership_id": membership.id,
        "days": days,
        "credit": str(credit),
        "cycle_days_remaining": cycle_remaining,
        "resumes_at": resumes_at.isoformat(),
        "scheduled": bool(suspension.scheduled_pause),
    }, actor_user_id=created_by_id)
    db.session.commit()

    logger.info(f"Membership {membership.id} paused for {days} days (credit ${credit})")
    notify_suspension(membership, suspension, org, sync=sync_email)
    return suspension


def _clear_pause_collection(membership, options):
    if not membership.stripe_subscription_id:
        return
    try:
        stripe.Subscription.modify(
            membership.stripe_subscription_id,
            pause_collection="",
            **options,
        )
    except stripe.error.StripeError as e:
        logger.error(f"Failed to unpause subscription {membership.stripe_subscription_id}: {e}")


def cancel_scheduled_pause(membership, employee):
    """Drop a scheduled pause that has not started yet."""
    if not membership.scheduled_pause_date:
        raise ValueError("No scheduled pause to cancel")

    scheduled_date = as_utc(membership.scheduled_pause_date)
    for suspension in list(membership.suspensions):
        if (suspension.scheduled_pause
                and suspension.cycle_days_remaining is None
                and as_utc(suspension.suspended_at) == scheduled_date):
            membership.suspensions.remove(suspension)
            db.session.delete(suspension)

    membership.scheduled_pause_date = None
    membership.scheduled_resume_date = None
    membership.scheduled_pause_days = None

    log_billing_audit(membership.org_id, "membership.pause_schedule_cancelled", {
        "membership_id": membership.id,
        "start_date": scheduled_date.isoformat(),
    }, actor_user_id=_actor_id(employee))
    db.session.commit()
    return membership


def process_scheduled_pauses(now=None):
    """Apply every scheduled pause whose start date has arrived.

    Returns a dict of counts. One failing membership does not stop the rest.
    """
    now = as_utc(now) or utcnow()
    due = (
        Membership.query
        .filter(Membership.status == "active")
        .filter(Membership.scheduled_pause_date.isnot(None))
        .filter(Membership.scheduled_pause_date <= now)
        .all()
    )

    results = {"processed": 0, "failed": 0}
    for membership in due:
        membership_id = membership.id
        try:
            suspension = _scheduled_suspension(membership)
            _apply_pause(
                membership,
                membership.scheduled_pause_days,
                now,
                created_by_id=suspension.created_by_id if suspension else None,
                suspension=suspension,
                sync_email=True,
            )
            results["processed"] += 1
        except (stripe.error.StripeError, ValueError) as e:
            db.session.rollback()
            logger.error(f"Scheduled pause failed for membership {membership_id}: {e}")
            results["failed"] += 1

    return results


def _scheduled_suspension(membership):
    scheduled_date = as_utc(membership.scheduled_pause_date)
    for suspension in membership.suspensions:
        if (suspension.scheduled_pause
                and suspension.cycle_days_remaining is None
                and as_utc(suspension.suspended_at) == scheduled_date):
            return suspension
    return None


# ──────────────────────────────────────────────
# Resume
# ──────────────────────────────────────────────

def resume_membership(membership, employee, now=None):
    """Resume a paused membership.

    Resuming before the pause ends charges back the credit for the unused
    days. Returns (membership, adjustment_amount).
    """
    now = as_utc(now) or utcnow()
    org = membership.org

    if membership.status != "suspended":
        raise ValueError("Only paused memberships can be resumed")

    suspension = _active_suspension(membership, now)
    adjustment = quantize(0)
    unused_days = 0

    suspended_until = as_utc(membership.suspended_until)
    if suspension and suspended_until and now < suspended_until:
        actual_days = max(0, days_between(suspension.suspended_at, now))
        unused_days = max(0, suspension.suspension_days - actual_days)
        cycle_remaining = suspension.cycle_days_remaining
        if cycle_remaining is None:
            cycle_remaining = suspension.suspension_days
        adjustment = early_resume_adjustment(
            membership.amount,
            membership.billing_frequency,
            suspension.suspension_days,
            actual_days,
            cycle_remaining,
        )

    options = _stripe_options(org)
    adjustment_item_id = None

    if adjustment > 0 and membership.stripe_customer_id:
        item = stripe.InvoiceItem.create(
            customer=membership.stripe_customer_id,
            amount=to_cents(adjustment),
            currency=org.currency,
            description=f"Early resume adjustment ({unused_days} unused pause days)",
            metadata={
                "membershipId": membership.id,
                "type": "early_resume_adjustment",
                "unusedDays": str(unused_days),
            },
            **options,
        )
        adjustment_item_id = item["id"]

    if membership.stripe_subscription_id:
        try:
            stripe.Subscription.modify(
                membership.stripe_subscription_id,
                pause_collection="",
                **options,
            )
        except stripe.error.StripeError:
            logger.error(f"Resume failed for membership {membership.id}", exc_info=True)
            if adjustment_item_id:
                _delete_invoice_item(adjustment_item_id, options)
            raise

    membership.status = "active"
    membership.suspended_until = None
    if suspension:
        suspension.actual_resumed_at = now
        suspension.adjustment_amount = adjustment
        suspension.adjustment_invoice_item_id = adjustment_item_id

    if adjustment > 0:
        record_adjustment(
            membership,
            adjustment,
            f"Early resume adjustment ({unused_days} unused pause days)",
            employee_id=_actor_id(employee),
            stripe_invoice_item_id=adjustment_item_id,
        )

    log_billing_audit(org.id, "membership.resumed", {
        "membership_id": membership.id,
        "adjustment": str(adjustment),
        "unused_days": unused_days,
    }, actor_user_id=_actor_id(employee))
    db.session.commit()

    logger.info(f"Membership {membership.id} resumed (adjustment ${adjustment})")
    notify_resume(membership, org, adjustment, unused_days)
    return membership, adjustment


def _active_suspension(membership, now):
    for suspension in reversed(membership.suspensions):
        if suspension.actual_resumed_at is None and as_utc(suspension.suspended_at) <= now:
            return suspension
    return None


def _delete_invoice_item(item_id, options):
    try:
        stripe.InvoiceItem.delete(item_id, **options)
    except stripe.error.StripeError as e:
        logger.error(f"Failed to delete invoice item {item_id}: {e}")


def suspension_summary(membership, now=None):
    now = as_utc(now) or utcnow()
    max_days = membership.org.membership_suspension_days_per_year
    window = suspension_year_window(membership.subscription_start_date, now)
    return {
        "max_days": max_days,
        "used_days": used_suspension_days(membership.suspensions, window),
        "remaining_days": remaining_suspension_days(
            membership.suspensions, max_days, window
        ),
        "year_start": window.start.isoformat(),
        "year_end": window.end.isoformat(),
        "suspensions": [s.to_dict() for s in membership.suspensions],
    }


# ──────────────────────────────────────────────
# Cancellation
# ──────────────────────────────────────────────

def preview_cancellation(membership):
    """The cancellation plan, without side effects."""
    if membership.status not in ("active", "suspended"):
        raise ValueError(f"Membership is {membership.status}")
    return plan_cancellation(
        membership.subscription_start_date,
        membership.billing_frequency,
        membership.minimum_cycles,
        membership.next_billing_date,
    )


def cancel_membership(membership, employee, reason=None, now=None):
    """Schedule cancellation at Stripe, respecting the minimum contract.

    Returns the CancellationPlan that was applied.
    """
    now = as_utc(now) or utcnow()
    reason = sanitize_text(reason)

    if membership.status != "active":
        raise ValueError("Only active memberships can be cancelled")
    if not membership.stripe_subscription_id:
        raise ValueError("Membership has no Stripe subscription")
    if membership.is_cancelling:
        raise ValueError("Cancellation is already scheduled")

    plan = preview_cancellation(membership)
    options = _stripe_options(membership.org)

    params = {
        "metadata": {
            "cancelledBy": _actor_id(employee) or "",
            "cancellationReason": reason or "",
            "minimumContractEnforced": "true" if plan.minimum_contract_enforced else "false",
        },
    }
    if plan.mode == MODE_PERIOD_END:
        params["cancel_at_period_end"] = True
    else:
        params["cancel_at"] = to_timestamp(plan.effective_date)

    stripe.Subscription.modify(membership.stripe_subscription_id, **params, **options)

    membership.cancel_at_period_end = plan.mode == MODE_PERIOD_END
    membership.cancel_at = None if plan.mode == MODE_PERIOD_END else plan.effective_date
    membership.cancellation_scheduled_for = plan.effective_date
    membership.minimum_contract_enforced = plan.minimum_contract_enforced
    membership.cancellation_reason = reason
    membership.cancelled_by_id = _actor_id(employee)
    membership.cancelled_at = now

    log_billing_audit(membership.org_id, "membership.cancel_scheduled", {
        "membership_id": membership.id,
        "effective_date": plan.effective_date.isoformat(),
        "mode": plan.mode,
        "minimum_contract_enforced": plan.minimum_contract_enforced,
        "reason": reason,
    }, actor_user_id=_actor_id(employee))
    db.session.commit()

    logger.info(
        f"Membership {membership.id} cancels {plan.effective_date.date()} ({plan.mode})"
    )
    return plan


def reactivate_membership(membership, employee):
    """Undo a pending cancellation. No-op when nothing is pending."""
    if not membership.is_cancelling:
        return membership
    if membership.status not in ("active", "suspended"):
        raise ValueError(f"Membership is {membership.status}")

    options = _stripe_options(membership.org)
    stripe.Subscription.modify(
        membership.stripe_subscription_id,
        cancel_at_period_end=False,
        cancel_at="",
        **options,
    )

    previous = membership.cancellation_scheduled_for
    membership.cancel_at_period_end = False
    membership.cancel_at = None
    membership.cancellation_scheduled_for = None
    membership.minimum_contract_enforced = False
    membership.cancellation_reason = None
    membership.cancelled_by_id = None
    membership.cancelled_at = None

    log_billing_audit(membership.org_id, "membership.reactivated", {
        "membership_id": membership.id,
        "previous_cancellation": previous.isoformat() if previous else None,
    }, actor_user_id=_actor_id(employee))
    db.session.commit()
    return membership

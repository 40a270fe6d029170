"""Stripe service — webhook verification, dispatch and renewal handling.

Responsible for:
- Handling incoming webhooks with signature verification
- Dispatching to event-specific handlers
- Idempotency via the stripe_events table (per event) and the unique
  transactions.stripe_invoice_id (per invoice)
- Recording subscription renewals and enforcing billing_max
"""

import logging

import stripe
from flask import current_app
from sqlalchemy.exc import IntegrityError

from app.extensions import db
from app.models.org import Org
from app.models.stripe_event import StripeEvent
from app.models.transaction import Transaction
from app.services.billing_service import (
    find_membership_for_subscription,
    find_transaction_by_invoice,
    log_billing_audit,
)
from app.services.dates import add_cycles, as_utc, from_timestamp, utcnow
from app.services.email_service import notify_receipt
from app.services.invoice_service import handle_invoice_payment, handle_invoice_update
from app.services.money import from_cents

logger = logging.getLogger(__name__)

PAYMENT_EVENTS = (
    "invoice.paid",
    "invoice.payment_succeeded",
    "invoice_payment.paid",
)


def _skipped(reason):
    return {"skipped": True, "reason": reason}


def _id_of(value):
    """Stripe fields are either an ID string or an expanded object."""
    if isinstance(value, dict):
        return value.get("id")
    return value


# ──────────────────────────────────────────────
# Webhook Handling
# ──────────────────────────────────────────────

def verify_webhook_signature(payload, sig_header):
    """Verify Stripe webhook signature and construct the event.

    Returns the verified Stripe event object.
    Raises stripe.error.SignatureVerificationError on invalid signature.
    """
    webhook_secret = current_app.config["STRIPE_WEBHOOK_SECRET"]
    return stripe.Webhook.construct_event(payload, sig_header, webhook_secret)


def handle_webhook_event(event):
    """Process a verified Stripe webhook event.

    Idempotency: checks stripe_events table before processing.
    If the event was already processed, returns immediately.

    Returns (success: bool, message: str).
    """
    event_id = event["id"]
    event_type = event["type"]

    # --- Idempotency check ---
    existing = StripeEvent.query.filter_by(
        stripe_event_id=event_id
    ).first()
    if existing:
        logger.info(f"Duplicate webhook event {event_id}, skipping")
        return True, "already_processed"

    # --- Route to handler ---
    handlers = {
        "invoice.paid": _handle_invoice_paid,
        "invoice.payment_succeeded": _handle_invoice_paid,
        "invoice_payment.paid": _handle_invoice_paid,
        "invoice.updated": _handle_invoice_updated,
        "invoice.payment_failed": _handle_payment_failed,
        "customer.subscription.deleted": _handle_subscription_deleted,
    }

    handler = handlers.get(event_type)
    if handler:
        try:
            handler(event)
        except Exception as e:
            logger.error(f"Error handling {event_type}: {e}", exc_info=True)
            db.session.rollback()
            return False, str(e)
    else:
        logger.info(f"Unhandled webhook event type {event_type}")

    # --- Record event for idempotency ---
    stripe_event = StripeEvent(
        stripe_event_id=event_id,
        event_type=event_type,
        stripe_account_id=event.get("account"),
    )
    db.session.add(stripe_event)
    db.session.commit()

    return True, "processed"


# ──────────────────────────────────────────────
# Event Handlers
# ──────────────────────────────────────────────

def _handle_invoice_paid(event):
    """Route a payment event to the company invoice sync or renewal path.

    Company invoices carry metadata.transactionId; subscription invoices
    do not.
    """
    invoice_obj = event["data"]["object"]
    metadata = invoice_obj.get("metadata") or {}

    if metadata.get("transactionId"):
        handle_invoice_payment(invoice_obj, event["type"])
        return

    handle_renewal_payment(invoice_obj, stripe_account=event.get("account"))


def _handle_invoice_updated(event):
    invoice_obj = event["data"]["object"]
    if not (invoice_obj.get("metadata") or {}).get("transactionId"):
        return
    handle_invoice_update(invoice_obj, event["type"])


def _handle_payment_failed(event):
    """Handle invoice.payment_failed.

    Audited only. Dunning stays with Stripe's retry schedule.
    """
    invoice = event["data"]["object"]
    stripe_subscription_id = _invoice_subscription_id(invoice)
    membership = find_membership_for_subscription(stripe_subscription_id)
    org_id = _org_id_for(event, membership)

    if not org_id:
        logger.warning(
            f"invoice.payment_failed: cannot find org for invoice={invoice.get('id')}"
        )
        return

    log_billing_audit(org_id, "invoice.payment_failed", {
        "stripe_invoice_id": invoice.get("id"),
        "stripe_subscription_id": stripe_subscription_id,
        "membership_id": membership.id if membership else None,
        "amount_due": invoice.get("amount_due"),
    })


def _handle_subscription_deleted(event):
    """Handle customer.subscription.deleted.

    Audited only; the membership row is left for staff to close out.
    """
    sub_data = event["data"]["object"]
    stripe_subscription_id = sub_data.get("id")
    membership = find_membership_for_subscription(stripe_subscription_id)
    org_id = _org_id_for(event, membership)

    if not org_id:
        logger.warning(
            f"subscription.deleted: no local record for sub={stripe_subscription_id}"
        )
        return

    log_billing_audit(org_id, "subscription.deleted", {
        "stripe_subscription_id": stripe_subscription_id,
        "membership_id": membership.id if membership else None,
    })


def _org_id_for(event, membership=None):
    if membership:
        return membership.org_id
    account = event.get("account")
    if not account:
        return None
    org = Org.query.filter_by(stripe_account_id=account).first()
    return org.id if org else None


# ──────────────────────────────────────────────
# Renewals
# ──────────────────────────────────────────────

def _invoice_subscription_id(invoice):
    """Find the subscription ID on an invoice.

    Newer API versions moved it from the top level to
    parent.subscription_details, and per-line to
    parent.subscription_item_details. This helper checks all three.
    """
    subscription = _id_of(invoice.get("subscription"))
    if subscription:
        return subscription

    parent = invoice.get("parent") or {}
    subscription = _id_of((parent.get("subscription_details") or {}).get("subscription"))
    if subscription:
        return subscription

    lines = (invoice.get("lines") or {}).get("data") or []
    if lines:
        line_parent = lines[0].get("parent") or {}
        details = line_parent.get("subscription_item_details") or {}
        return _id_of(details.get("subscription"))
    return None


def _invoice_period_end(invoice):
    lines = (invoice.get("lines") or {}).get("data") or []
    if lines:
        period = lines[0].get("period") or {}
        return from_timestamp(period.get("end"))
    return None


def handle_renewal_payment(invoice_obj, stripe_account=None):
    """Record one subscription renewal per Stripe invoice.

    invoice_obj is an invoice, or an invoice_payment ("inpay_...") that
    points at one. The invoice is refetched so its subscription is current.

    Returns a result dict; {"skipped": True, ...} when nothing was recorded.
    Uses flush() so the webhook dispatcher controls the commit.
    """
    stripe.api_key = current_app.config["STRIPE_SECRET_KEY"]
    options = {"stripe_account": stripe_account} if stripe_account else {}

    invoice_id = invoice_obj.get("id") or ""
    if invoice_id.startswith("inpay_"):
        invoice_id = _id_of(invoice_obj.get("invoice"))
    if not invoice_id:
        logger.warning("Renewal payment without an invoice ID, skipping")
        return _skipped("no_invoice")

    invoice = stripe.Invoice.retrieve(invoice_id, expand=["subscription"], **options)

    if invoice.get("billing_reason") == "subscription_create":
        logger.info(f"Invoice {invoice_id} is the first subscription invoice, skipping")
        return _skipped("subscription_create")

    stripe_subscription_id = _invoice_subscription_id(invoice)
    if not stripe_subscription_id:
        logger.info(f"Invoice {invoice_id} has no subscription, skipping")
        return _skipped("no_subscription")

    if find_transaction_by_invoice(invoice_id):
        logger.info(f"Renewal for invoice {invoice_id} already recorded, skipping")
        return _skipped("already_processed")

    membership = find_membership_for_subscription(stripe_subscription_id)
    if membership:
        org_id = membership.org_id
    else:
        logger.warning(
            f"Renewal invoice {invoice_id}: no membership for sub={stripe_subscription_id}"
        )
        org = Org.query.filter_by(stripe_account_id=stripe_account).first() if stripe_account else None
        if not org:
            logger.warning(f"Renewal invoice {invoice_id}: cannot find org, dropping")
            return _skipped("unknown_org")
        org_id = org.id

    amount_paid = from_cents(invoice.get("amount_paid"))
    transaction = Transaction(
        org_id=org_id,
        customer_id=membership.customer_id if membership else None,
        membership_id=membership.id if membership else None,
        type="subscription_renewal",
        status="completed",
        payment_method="stripe",
        subtotal=from_cents(invoice.get("subtotal")),
        tax=from_cents(invoice.get("tax")),
        total=amount_paid,
        stripe_invoice_id=invoice_id,
        stripe_subscription_id=stripe_subscription_id,
        stripe_payment_intent_id=_id_of(invoice.get("payment_intent")),
        invoice_status=invoice.get("status") or "paid",
        invoice_amount_paid=amount_paid,
        invoice_amount_due=from_cents(invoice.get("amount_due")),
        invoice_url=invoice.get("hosted_invoice_url"),
        cart={
            "products": [{
                "name": membership.product_name if membership else "Membership renewal",
                "qty": 1,
                "value": str(amount_paid),
                "type": "membership",
            }]
        },
    )
    db.session.add(transaction)
    try:
        db.session.flush()
    except IntegrityError:
        # A concurrent delivery inserted the same invoice first
        db.session.rollback()
        logger.info(f"Renewal for invoice {invoice_id} inserted concurrently, skipping")
        return _skipped("already_processed")

    if not membership:
        return {"skipped": False, "transaction_id": transaction.id}

    _advance_membership(membership, invoice, options)

    log_billing_audit(org_id, "membership.renewed", {
        "membership_id": membership.id,
        "transaction_id": transaction.id,
        "stripe_invoice_id": invoice_id,
        "billing_count": membership.billing_count,
        "next_billing_date": as_utc(membership.next_billing_date).isoformat(),
    })
    db.session.flush()

    notify_receipt(transaction, membership.customer, membership.org)

    return {
        "skipped": False,
        "transaction_id": transaction.id,
        "membership_id": membership.id,
        "billing_count": membership.billing_count,
    }


def _advance_membership(membership, invoice, options):
    """Move the membership to its next cycle after a paid renewal."""
    previous = as_utc(membership.next_billing_date)
    next_billing = _invoice_period_end(invoice) or add_cycles(
        previous, membership.billing_frequency, 1
    )

    membership.last_billing_date = from_timestamp(invoice.get("created")) or utcnow()
    membership.next_billing_date = next_billing
    membership.billing_count = (membership.billing_count or 0) + 1

    if (membership.billing_max
            and membership.billing_count >= membership.billing_max
            and not membership.cancel_at_period_end):
        stripe.Subscription.modify(
            membership.stripe_subscription_id,
            cancel_at_period_end=True,
            metadata={"cancellationReason": "billing_max_reached"},
            **options,
        )
        membership.cancel_at_period_end = True
        membership.cancellation_scheduled_for = next_billing
        membership.cancellation_reason = "Billing limit reached"

        log_billing_audit(membership.org_id, "membership.billing_max_reached", {
            "membership_id": membership.id,
            "billing_count": membership.billing_count,
            "billing_max": membership.billing_max,
        })
        logger.info(
            f"Membership {membership.id} reached billing max "
            f"({membership.billing_count}/{membership.billing_max}), cancelling at period end"
        )

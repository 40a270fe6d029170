"""Invoice service — company invoices on the org's connected account.

Responsible for:
- Creating, itemising, finalising and sending a Stripe invoice for a
  company transaction
- Syncing paid / partially paid status back from invoice webhooks

Line items are built and checked against the transaction total before
Stripe is called. A draft invoice whose items fail to post is deleted so
a half-built invoice never reaches the company.
"""

import logging

import stripe
from flask import current_app

from app.extensions import db
from app.models.transaction import Transaction
from app.services.billing_service import log_billing_audit
from app.services.line_items import build_line_items, check_line_items_total
from app.services.money import from_cents
from app.services.payment_link import invoice_status_for

logger = logging.getLogger(__name__)


def create_company_invoice(transaction, employee=None):
    """Create and send the Stripe invoice for a company transaction.

    Returns the finalised Stripe invoice.
    Raises ValueError on bad local data (before any Stripe call).
    Raises stripe.error.StripeError on API failures; the transaction is
    left untouched in that case.
    """
    org = transaction.org
    company = transaction.company

    if transaction.stripe_invoice_id:
        raise ValueError("Transaction already has an invoice")
    if not company:
        raise ValueError("Transaction has no company to invoice")
    if not company.stripe_customer_id:
        raise ValueError("Company has no Stripe customer")
    if not org.stripe_account_id:
        raise ValueError("Org has no connected Stripe account")

    currency = org.currency or current_app.config["DEFAULT_CURRENCY"]
    items = build_line_items(
        transaction.cart,
        adjustments=transaction.adjustments,
        tax=transaction.tax,
        currency=currency,
    )
    if not items:
        raise ValueError("Transaction has no billable items")
    check_line_items_total(items, transaction.total)

    stripe.api_key = current_app.config["STRIPE_SECRET_KEY"]
    options = org.stripe_options

    invoice = stripe.Invoice.create(
        customer=company.stripe_customer_id,
        collection_method="send_invoice",
        days_until_due=company.payment_terms_days,
        auto_advance=False,
        metadata={
            "transactionId": transaction.id,
            "companyId": company.id,
            "orgId": org.id,
        },
        **options,
    )

    try:
        for item in items:
            stripe.InvoiceItem.create(
                customer=company.stripe_customer_id,
                invoice=invoice["id"],
                amount=item.amount,
                currency=item.currency,
                description=item.description,
                metadata=item.metadata,
                **options,
            )
    except stripe.error.StripeError:
        logger.error(
            f"Invoice item failed for transaction {transaction.id}, "
            f"deleting draft {invoice['id']}",
            exc_info=True,
        )
        _delete_draft(invoice["id"], options)
        raise

    invoice = stripe.Invoice.finalize_invoice(invoice["id"], **options)
    invoice = stripe.Invoice.send_invoice(invoice["id"], **options)

    transaction.stripe_invoice_id = invoice["id"]
    transaction.invoice_status = invoice.get("status") or "open"
    transaction.invoice_amount_paid = from_cents(invoice.get("amount_paid"))
    transaction.invoice_amount_due = from_cents(invoice.get("amount_due"))
    transaction.invoice_url = invoice.get("hosted_invoice_url")
    transaction.payment_method = "invoice"

    log_billing_audit(org.id, "invoice.created", {
        "transaction_id": transaction.id,
        "stripe_invoice_id": invoice["id"],
        "line_items": len(items),
        "amount_due": invoice.get("amount_due"),
    }, actor_user_id=employee.id if employee else None)

    db.session.commit()
    logger.info(f"Invoice {invoice['id']} sent for transaction {transaction.id}")
    return invoice


def _delete_draft(invoice_id, options):
    try:
        stripe.Invoice.delete(invoice_id, **options)
    except stripe.error.StripeError as e:
        logger.error(f"Failed to delete draft invoice {invoice_id}: {e}")


# ──────────────────────────────────────────────
# Webhook sync
# ──────────────────────────────────────────────

def _transaction_for_invoice(invoice_obj, event_type):
    transaction_id = (invoice_obj.get("metadata") or {}).get("transactionId")
    if not transaction_id:
        logger.warning(f"{event_type}: invoice {invoice_obj.get('id')} has no transactionId")
        return None

    transaction = db.session.get(Transaction, transaction_id)
    if not transaction:
        logger.warning(f"{event_type}: transaction {transaction_id} not found")
        return None
    return transaction


CLOSED_STATUSES = ("void", "uncollectible")


def _synced_status(transaction, invoice_obj, amount_paid):
    """Invoice status after a webhook, derived from cumulative payments.

    A paid invoice stays paid. Stripe keeps amount_due at the invoice total,
    so it cannot tell a part payment from a full one.
    """
    if transaction.invoice_status == "paid":
        return "paid"
    stripe_status = invoice_obj.get("status")
    if stripe_status == "paid" or stripe_status in CLOSED_STATUSES:
        return stripe_status
    return invoice_status_for(transaction.total, amount_paid)


def handle_invoice_payment(invoice_obj, event_type="invoice.paid"):
    """Apply a paid / payment_succeeded invoice to its company transaction.

    Uses flush() so the webhook dispatcher controls the commit.
    """
    transaction = _transaction_for_invoice(invoice_obj, event_type)
    if not transaction:
        return None

    amount_paid = from_cents(invoice_obj.get("amount_paid"))
    status = _synced_status(transaction, invoice_obj, amount_paid)
    transaction.invoice_amount_paid = amount_paid
    transaction.invoice_amount_due = from_cents(invoice_obj.get("amount_due"))
    transaction.invoice_status = status

    if status == "paid":
        transaction.status = "completed"
        transaction.payment_method = "invoice"

    log_billing_audit(transaction.org_id, "invoice.paid", {
        "transaction_id": transaction.id,
        "stripe_invoice_id": invoice_obj.get("id"),
        "amount_paid": invoice_obj.get("amount_paid"),
        "status": status,
    })
    db.session.flush()
    return transaction


def handle_invoice_update(invoice_obj, event_type="invoice.updated"):
    """Track partial payments made through payment links."""
    transaction = _transaction_for_invoice(invoice_obj, event_type)
    if not transaction:
        return None

    amount_paid = from_cents(invoice_obj.get("amount_paid"))
    transaction.invoice_status = _synced_status(transaction, invoice_obj, amount_paid)
    transaction.invoice_amount_paid = amount_paid
    transaction.invoice_amount_due = from_cents(invoice_obj.get("amount_due"))
    if transaction.invoice_status == "paid":
        transaction.status = "completed"
        transaction.payment_method = "invoice"

    db.session.flush()
    return transaction

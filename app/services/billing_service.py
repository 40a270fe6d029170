"""Billing service — DB sync helpers shared by the billing flows.

Responsible for:
- Logging billing audit events (staff-initiated and system-initiated)
- Recording ledger adjustments for pause credits and resume clawbacks
- Looking up local records from Stripe identifiers
- Sanitising staff-entered notes before they reach Stripe metadata or emails
"""

import logging

import bleach

from app.extensions import db
from app.models.audit import AuditEvent
from app.models.membership import Membership
from app.models.transaction import Transaction

logger = logging.getLogger(__name__)


def sanitize_text(text):
    """Strip all HTML tags from staff input. Blank input becomes None."""
    if text is None:
        return None
    return bleach.clean(str(text), tags=[], strip=True).strip() or None


def log_billing_audit(org_id, action, metadata=None, actor_user_id=None):
    """Log a billing-related audit event.

    actor_user_id is None for webhook and cron events.
    Uses flush() so the caller controls the commit boundary.
    """
    event = AuditEvent(
        org_id=org_id,
        actor_user_id=actor_user_id,
        action=action,
        metadata_=metadata or {},
    )
    db.session.add(event)
    db.session.flush()
    return event


def record_adjustment(membership, amount, note, employee_id=None,
                      stripe_invoice_item_id=None):
    """Add an adjustment row to the ledger for a membership.

    amount is signed dollars: negative for credits, positive for charges.
    The Stripe invoice item that carries it is kept in metadata.
    """
    transaction = Transaction(
        org_id=membership.org_id,
        customer_id=membership.customer_id,
        membership_id=membership.id,
        employee_id=employee_id,
        type="adjustment",
        status="success",
        payment_method="adjustment",
        subtotal=amount,
        tax=0,
        total=amount,
        notes=note,
        metadata_={"stripe_invoice_item_id": stripe_invoice_item_id},
        cart={
            "products": [{
                "name": note,
                "qty": 1,
                "value": str(amount),
                "total": str(amount),
            }]
        },
    )
    db.session.add(transaction)
    db.session.flush()
    return transaction


def find_membership_for_subscription(stripe_subscription_id):
    """Most relevant local membership for a Stripe subscription, or None.

    Prefers live memberships (active / suspended) over historical rows.
    """
    if not stripe_subscription_id:
        return None
    return (
        Membership.query
        .filter_by(stripe_subscription_id=stripe_subscription_id)
        .filter(Membership.status.in_(("active", "suspended")))
        .first()
    ) or (
        Membership.query
        .filter_by(stripe_subscription_id=stripe_subscription_id)
        .first()
    )


def find_transaction_by_invoice(stripe_invoice_id):
    if not stripe_invoice_id:
        return None
    return Transaction.query.filter_by(stripe_invoice_id=stripe_invoice_id).first()

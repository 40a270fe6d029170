"""Stripe event model (event-level idempotency log).

Every webhook event is recorded by its Stripe event ID once handled. A
redelivery of the same event returns 200 immediately. Different events about
the same invoice (invoice.paid and invoice.payment_succeeded) carry different
event IDs; those are deduplicated on transactions.stripe_invoice_id instead.
"""

import uuid

from app.extensions import db


class StripeEvent(db.Model):
    __tablename__ = "stripe_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    stripe_event_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "evt_1Abc..."
    event_type = db.Column(
        db.String(255), nullable=False
    )  # e.g. "invoice.paid"
    stripe_account_id = db.Column(
        db.String(255), nullable=True
    )  # connected account the event came from
    processed_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<StripeEvent {self.stripe_event_id} ({self.event_type})>"

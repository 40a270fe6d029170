"""Membership models.

- Membership: a customer's recurring billing agreement, mirrored from a
  Stripe subscription. Mutated by pause, resume, cancel and by renewal
  webhooks; Stripe remains the source of truth for collection.
- MembershipSuspension: one row per pause, holding the credit issued and any
  early-resume clawback so the two can be reconciled later.
"""

import uuid

from app.extensions import db


class Membership(db.Model):
    __tablename__ = "memberships"

    # -- Valid statuses --
    STATUSES = [
        "pending",
        "active",
        "suspended",
        "cancelled",
        "expired",
    ]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    org_id = db.Column(
        db.String(36), db.ForeignKey("orgs.id"), nullable=False
    )
    customer_id = db.Column(
        db.String(36), db.ForeignKey("customers.id"), nullable=False
    )
    product_name = db.Column(db.String(255), nullable=True)
    price_name = db.Column(db.String(255), nullable=True)  # e.g. "Adult"
    amount = db.Column(
        db.Numeric(10, 2), nullable=False
    )  # charged per billing cycle, in dollars
    billing_frequency = db.Column(
        db.String(20), nullable=False, default="monthly"
    )  # weekly | monthly | quarterly | yearly

    # --- Stripe ---
    stripe_customer_id = db.Column(db.String(255), nullable=True)
    stripe_subscription_id = db.Column(db.String(255), nullable=True, index=True)

    # --- Lifecycle ---
    subscription_start_date = db.Column(db.DateTime(timezone=True), nullable=False)
    next_billing_date = db.Column(db.DateTime(timezone=True), nullable=False)
    last_billing_date = db.Column(db.DateTime(timezone=True), nullable=True)
    minimum_cycles = db.Column(db.Integer, nullable=True)  # None / 0 = no minimum
    billing_max = db.Column(db.Integer, nullable=True)  # None = bill indefinitely
    billing_count = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(20), nullable=False, default="active")
    suspended_until = db.Column(db.DateTime(timezone=True), nullable=True)

    # --- Cancellation ---
    cancel_at_period_end = db.Column(db.Boolean, default=False)
    cancel_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancellation_scheduled_for = db.Column(db.DateTime(timezone=True), nullable=True)
    minimum_contract_enforced = db.Column(db.Boolean, default=False)
    cancellation_reason = db.Column(db.Text, nullable=True)
    cancelled_by_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True
    )
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # --- Scheduled pause (applied by `flask process-scheduled-pauses`) ---
    scheduled_pause_date = db.Column(db.DateTime(timezone=True), nullable=True)
    scheduled_resume_date = db.Column(db.DateTime(timezone=True), nullable=True)
    scheduled_pause_days = db.Column(db.Integer, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __table_args__ = (
        db.Index("ix_memberships_status_next_billing", "status", "next_billing_date"),
    )

    # --- Relationships ---
    org = db.relationship("Org", back_populates="memberships")
    customer = db.relationship("Customer", back_populates="memberships")
    cancelled_by = db.relationship("User", foreign_keys=[cancelled_by_id])
    suspensions = db.relationship(
        "MembershipSuspension",
        back_populates="membership",
        order_by="MembershipSuspension.suspended_at",
        cascade="all, delete-orphan",
    )

    @property
    def is_cancelling(self):
        """True when a cancellation is pending at Stripe (either mode)."""
        return bool(self.cancel_at_period_end) or self.cancel_at is not None

    def to_dict(self):
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "product_name": self.product_name,
            "price_name": self.price_name,
            "amount": str(self.amount),
            "billing_frequency": self.billing_frequency,
            "status": self.status,
            "subscription_start_date": _iso(self.subscription_start_date),
            "next_billing_date": _iso(self.next_billing_date),
            "last_billing_date": _iso(self.last_billing_date),
            "billing_count": self.billing_count,
            "billing_max": self.billing_max,
            "minimum_cycles": self.minimum_cycles,
            "suspended_until": _iso(self.suspended_until),
            "cancel_at_period_end": bool(self.cancel_at_period_end),
            "cancel_at": _iso(self.cancel_at),
            "cancellation_scheduled_for": _iso(self.cancellation_scheduled_for),
            "minimum_contract_enforced": bool(self.minimum_contract_enforced),
            "cancellation_reason": self.cancellation_reason,
            "scheduled_pause_date": _iso(self.scheduled_pause_date),
            "scheduled_resume_date": _iso(self.scheduled_resume_date),
            "scheduled_pause_days": self.scheduled_pause_days,
        }

    def __repr__(self):
        return f"<Membership {self.product_name} ({self.status})>"


class MembershipSuspension(db.Model):
    __tablename__ = "membership_suspensions"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    membership_id = db.Column(
        db.String(36), db.ForeignKey("memberships.id"), nullable=False
    )
    suspended_at = db.Column(db.DateTime(timezone=True), nullable=False)
    suspension_days = db.Column(db.Integer, nullable=False)
    resumes_at = db.Column(db.DateTime(timezone=True), nullable=False)
    year_start_date = db.Column(
        db.DateTime(timezone=True), nullable=True
    )  # start of the allowance year this pause counts against
    cycle_days_remaining = db.Column(
        db.Integer, nullable=True
    )  # days from pause start to next billing date when the pause began
    credit_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    stripe_invoice_item_id = db.Column(db.String(255), nullable=True)
    scheduled_pause = db.Column(db.Boolean, default=False)
    created_by_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True
    )
    note = db.Column(db.Text, nullable=True)
    actual_resumed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    adjustment_amount = db.Column(db.Numeric(10, 2), nullable=True)
    adjustment_invoice_item_id = db.Column(db.String(255), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    membership = db.relationship("Membership", back_populates="suspensions")
    created_by = db.relationship("User", foreign_keys=[created_by_id])

    def to_dict(self):
        return {
            "id": self.id,
            "suspended_at": _iso(self.suspended_at),
            "suspension_days": self.suspension_days,
            "resumes_at": _iso(self.resumes_at),
            "credit_amount": str(self.credit_amount or 0),
            "scheduled_pause": bool(self.scheduled_pause),
            "note": self.note,
            "actual_resumed_at": _iso(self.actual_resumed_at),
            "adjustment_amount": (
                str(self.adjustment_amount)
                if self.adjustment_amount is not None else None
            ),
        }

    def __repr__(self):
        return f"<MembershipSuspension {self.suspension_days}d membership={self.membership_id}>"


def _iso(value):
    return value.isoformat() if value else None

"""Organization model.

An org is the top-level tenant: one venue business with its own Stripe
connected account. Every billing record belongs to exactly one org, and every
Stripe call made on its behalf is scoped to stripe_account_id.
"""

import uuid

from app.extensions import db


class Org(db.Model):
    __tablename__ = "orgs"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    stripe_account_id = db.Column(
        db.String(255), nullable=True
    )  # e.g. "acct_1Abc..." (Stripe Connect)
    currency = db.Column(db.String(3), nullable=False, default="aud")
    min_invoice_payment_percent = db.Column(
        db.Integer, nullable=False, default=50
    )  # 0-100, first payment on a payment link must cover this share
    membership_suspension_days_per_year = db.Column(
        db.Integer, nullable=False, default=30
    )
    payment_terms_days = db.Column(
        db.Integer, nullable=False, default=7
    )  # used by invoice reminders
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    users = db.relationship("User", back_populates="org", lazy="dynamic")
    customers = db.relationship("Customer", back_populates="org", lazy="dynamic")
    companies = db.relationship("Company", back_populates="org", lazy="dynamic")
    memberships = db.relationship(
        "Membership", back_populates="org", lazy="dynamic"
    )
    transactions = db.relationship(
        "Transaction", back_populates="org", lazy="dynamic"
    )
    audit_events = db.relationship(
        "AuditEvent", back_populates="org", lazy="dynamic"
    )

    @property
    def stripe_options(self):
        """Request options that scope a Stripe call to this org's account."""
        if self.stripe_account_id:
            return {"stripe_account": self.stripe_account_id}
        return {}

    def __repr__(self):
        return f"<Org {self.name}>"

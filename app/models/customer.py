"""Billing party models.

- Customer: an individual member of a venue (memberships, receipts).
- Company: a business buyer that is invoiced rather than charged at the till.
"""

import uuid

from app.extensions import db


class Customer(db.Model):
    __tablename__ = "customers"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    org_id = db.Column(
        db.String(36), db.ForeignKey("orgs.id"), nullable=False
    )
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    stripe_customer_id = db.Column(db.String(255), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    org = db.relationship("Org", back_populates="customers")
    memberships = db.relationship(
        "Membership", back_populates="customer", lazy="dynamic"
    )

    def __repr__(self):
        return f"<Customer {self.name}>"


class Company(db.Model):
    __tablename__ = "companies"

    # Stripe days_until_due for each supported payment term
    PAYMENT_TERMS_DAYS = {
        "due_on_receipt": 0,
        "net_7": 7,
        "net_15": 15,
        "net_30": 30,
        "net_60": 60,
    }

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    org_id = db.Column(
        db.String(36), db.ForeignKey("orgs.id"), nullable=False
    )
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    stripe_customer_id = db.Column(db.String(255), nullable=True)
    payment_terms = db.Column(
        db.String(50), nullable=False, default="due_on_receipt"
    )  # due_on_receipt | net_7 | net_15 | net_30 | net_60
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    org = db.relationship("Org", back_populates="companies")

    @property
    def payment_terms_days(self):
        return self.PAYMENT_TERMS_DAYS.get(self.payment_terms, 0)

    def __repr__(self):
        return f"<Company {self.name}>"

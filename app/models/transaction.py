"""Transaction model (the ledger).

One row per money movement: till sales, invoiced company sales, subscription
renewals and pause/resume adjustments.

stripe_invoice_id carries a unique index. Renewal webhooks look a transaction
up by it before inserting, and the index guarantees at most one ledger row per
Stripe invoice even if two deliveries race.
"""

import uuid

from app.extensions import db


class Transaction(db.Model):
    __tablename__ = "transactions"

    # -- Invoice statuses (synced from Stripe) --
    INVOICE_STATUSES = [
        "draft",
        "open",
        "partially_paid",
        "paid",
        "void",
        "uncollectible",
    ]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    org_id = db.Column(
        db.String(36), db.ForeignKey("orgs.id"), nullable=False
    )
    customer_id = db.Column(
        db.String(36), db.ForeignKey("customers.id"), nullable=True
    )
    company_id = db.Column(
        db.String(36), db.ForeignKey("companies.id"), nullable=True
    )
    membership_id = db.Column(
        db.String(36), db.ForeignKey("memberships.id"), nullable=True
    )
    employee_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True
    )
    type = db.Column(
        db.String(50), nullable=False, default="sale"
    )  # sale | subscription_renewal | adjustment
    status = db.Column(
        db.String(50), nullable=False, default="pending"
    )  # pending | completed | success | refunded
    payment_method = db.Column(db.String(50), nullable=True)

    # --- Amounts (dollars) ---
    subtotal = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    tax = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(10, 2), nullable=False, default=0)

    cart = db.Column(db.JSON, default=dict)
    adjustments = db.Column(db.JSON, default=dict)  # {"discounts": {...}, "surcharges": {...}}
    notes = db.Column(db.Text, nullable=True)
    metadata_ = db.Column(
        "metadata", db.JSON, default=dict
    )  # named metadata_ to avoid clashing with SQLAlchemy's MetaData

    # --- Stripe ---
    stripe_invoice_id = db.Column(
        db.String(255), unique=True, nullable=True
    )  # idempotency key for invoice webhooks
    stripe_subscription_id = db.Column(db.String(255), nullable=True)
    stripe_payment_intent_id = db.Column(db.String(255), nullable=True)

    # --- Invoice state (webhook-driven, never set from client input) ---
    invoice_status = db.Column(db.String(50), nullable=True)
    invoice_amount_paid = db.Column(db.Numeric(10, 2), nullable=True)
    invoice_amount_due = db.Column(db.Numeric(10, 2), nullable=True)
    invoice_url = db.Column(db.String(1024), nullable=True)
    invoice_reminders_sent = db.Column(db.JSON, default=list)

    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    org = db.relationship("Org", back_populates="transactions")
    customer = db.relationship("Customer")
    company = db.relationship("Company")
    membership = db.relationship("Membership")

    def to_dict(self):
        return {
            "id": self.id,
            "type": self.type,
            "status": self.status,
            "subtotal": str(self.subtotal),
            "tax": str(self.tax),
            "total": str(self.total),
            "stripe_invoice_id": self.stripe_invoice_id,
            "invoice_status": self.invoice_status,
            "invoice_amount_paid": (
                str(self.invoice_amount_paid)
                if self.invoice_amount_paid is not None else None
            ),
            "invoice_amount_due": (
                str(self.invoice_amount_due)
                if self.invoice_amount_due is not None else None
            ),
            "invoice_url": self.invoice_url,
        }

    def __repr__(self):
        return f"<Transaction {self.type} {self.total} ({self.status})>"

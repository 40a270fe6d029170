"""Audit event model.

Logs billing actions (pauses, cancellations, invoice syncs, webhook-driven
changes) for the activity feed and for reconciling against Stripe.
"""

import uuid

from app.extensions import db


class AuditEvent(db.Model):
    __tablename__ = "audit_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    org_id = db.Column(
        db.String(36), db.ForeignKey("orgs.id"), nullable=True
    )
    actor_user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True
    )  # None for webhook / cron initiated events
    action = db.Column(db.String(255), nullable=False)  # e.g. "membership.paused"
    metadata_ = db.Column(
        "metadata", db.JSON, default=dict
    )  # extra context, named metadata_ to avoid Python builtin clash
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    org = db.relationship("Org", back_populates="audit_events")
    actor = db.relationship("User", back_populates="audit_events")

    def __repr__(self):
        return f"<AuditEvent {self.action}>"

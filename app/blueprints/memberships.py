"""Memberships blueprint — /api/memberships/<membership_id>/*

Staff-only membership billing actions. Every membership is looked up
within the staff user's org; other orgs' memberships are a 404.

Routes:
- POST /api/memberships/<id>/pause                   — pause now or on startDate
- POST /api/memberships/<id>/resume                  — resume a paused membership
- POST /api/memberships/<id>/cancel-scheduled-pause  — drop a scheduled pause
- GET  /api/memberships/<id>/suspensions             — allowance + pause history
- GET  /api/memberships/<id>/cancellation            — preview cancellation date
- POST /api/memberships/<id>/cancel                  — schedule cancellation
- POST /api/memberships/<id>/reactivate              — undo pending cancellation
"""

import logging
from datetime import datetime

import stripe
from flask import Blueprint, jsonify, request
from flask_login import current_user

from app.decorators import staff_required
from app.extensions import db
from app.middleware.tenant import get_org_record_or_404
from app.models.membership import Membership
from app.services import membership_service
from app.services.cancellation import plan_to_dict

logger = logging.getLogger(__name__)

memberships_bp = Blueprint("memberships", __name__, url_prefix="/api/memberships")


@memberships_bp.errorhandler(ValueError)
def handle_value_error(e):
    db.session.rollback()
    return jsonify({"error": str(e)}), 400


@memberships_bp.errorhandler(stripe.error.StripeError)
def handle_stripe_error(e):
    db.session.rollback()
    logger.error(f"Stripe error on membership action: {e}", exc_info=True)
    return jsonify({"error": getattr(e, "user_message", None) or str(e)}), 502


def _parse_date(value):
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        raise ValueError(f"Invalid date: {value}")


# ──────────────────────────────────────────────
# Pause / resume
# ──────────────────────────────────────────────

@memberships_bp.route("/<membership_id>/pause", methods=["POST"])
@staff_required
def pause(membership_id):
    """Pause for {"days"} days, now or from {"startDate"}."""
    membership = get_org_record_or_404(Membership, membership_id)
    data = request.get_json(silent=True) or {}

    suspension = membership_service.pause_membership(
        membership,
        data.get("days"),
        current_user,
        note=data.get("note"),
        start_date=_parse_date(data.get("startDate")),
    )
    return jsonify({
        "membership": membership.to_dict(),
        "suspension": suspension.to_dict(),
    })


@memberships_bp.route("/<membership_id>/resume", methods=["POST"])
@staff_required
def resume(membership_id):
    membership = get_org_record_or_404(Membership, membership_id)
    membership, adjustment = membership_service.resume_membership(
        membership, current_user
    )
    return jsonify({
        "membership": membership.to_dict(),
        "adjustment_amount": str(adjustment),
    })


@memberships_bp.route("/<membership_id>/cancel-scheduled-pause", methods=["POST"])
@staff_required
def cancel_scheduled_pause(membership_id):
    membership = get_org_record_or_404(Membership, membership_id)
    membership = membership_service.cancel_scheduled_pause(membership, current_user)
    return jsonify({"membership": membership.to_dict()})


@memberships_bp.route("/<membership_id>/suspensions")
@staff_required
def suspensions(membership_id):
    membership = get_org_record_or_404(Membership, membership_id)
    return jsonify(membership_service.suspension_summary(membership))


# ──────────────────────────────────────────────
# Cancellation
# ──────────────────────────────────────────────

@memberships_bp.route("/<membership_id>/cancellation")
@staff_required
def cancellation_preview(membership_id):
    """Show when a cancellation would take effect, without cancelling."""
    membership = get_org_record_or_404(Membership, membership_id)
    plan = membership_service.preview_cancellation(membership)
    return jsonify(plan_to_dict(plan))


@memberships_bp.route("/<membership_id>/cancel", methods=["POST"])
@staff_required
def cancel(membership_id):
    membership = get_org_record_or_404(Membership, membership_id)
    data = request.get_json(silent=True) or {}

    plan = membership_service.cancel_membership(
        membership, current_user, reason=data.get("reason")
    )
    return jsonify({
        "membership": membership.to_dict(),
        "cancellation": plan_to_dict(plan),
    })


@memberships_bp.route("/<membership_id>/reactivate", methods=["POST"])
@staff_required
def reactivate(membership_id):
    membership = get_org_record_or_404(Membership, membership_id)
    membership = membership_service.reactivate_membership(membership, current_user)
    return jsonify({"membership": membership.to_dict()})

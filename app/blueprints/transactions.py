"""Transactions blueprint — /api/transactions/<transaction_id>/*

Staff-only invoice actions for company transactions.

Routes:
- POST /api/transactions/<id>/invoice       — create and send the Stripe invoice
- POST /api/transactions/<id>/payment-link  — signed public payment link
"""

import logging

import stripe
from flask import Blueprint, jsonify
from flask_login import current_user

from app.decorators import staff_required
from app.extensions import db
from app.middleware.tenant import get_org_record_or_404
from app.models.transaction import Transaction
from app.services.invoice_service import create_company_invoice
from app.services.payment_link import generate_payment_token, payment_url

logger = logging.getLogger(__name__)

transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


@transactions_bp.errorhandler(ValueError)
def handle_value_error(e):
    db.session.rollback()
    return jsonify({"error": str(e)}), 400


@transactions_bp.errorhandler(stripe.error.StripeError)
def handle_stripe_error(e):
    db.session.rollback()
    logger.error(f"Stripe error on transaction action: {e}", exc_info=True)
    return jsonify({"error": getattr(e, "user_message", None) or str(e)}), 502


@transactions_bp.route("/<transaction_id>/invoice", methods=["POST"])
@staff_required
def create_invoice(transaction_id):
    transaction = get_org_record_or_404(Transaction, transaction_id)
    create_company_invoice(transaction, employee=current_user)
    return jsonify({"transaction": transaction.to_dict()}), 201


@transactions_bp.route("/<transaction_id>/payment-link", methods=["POST"])
@staff_required
def create_payment_link(transaction_id):
    """Generate a payment link the company can use without logging in."""
    transaction = get_org_record_or_404(Transaction, transaction_id)

    if not transaction.stripe_invoice_id:
        return jsonify({"error": "This transaction does not have an invoice"}), 400
    if transaction.invoice_status == "paid":
        return jsonify({"error": "This invoice has already been paid"}), 400

    token = generate_payment_token(transaction)
    return jsonify({
        "paymentUrl": payment_url(transaction, token),
        "token": token,
    })

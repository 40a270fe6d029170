"""Pay blueprint — /pay/<transaction_id>

Public invoice payment pages, authenticated by the signed token in the link
rather than a session. CSRF-exempt (registered in create_app()).

Routes:
- GET  /pay/<id>?token=...  — invoice summary and minimum payment
- POST /pay/<id>/checkout   — Stripe Checkout Session for a part payment
"""

import logging

import stripe
from flask import Blueprint, current_app, jsonify, request

from app.extensions import db, limiter
from app.models.transaction import Transaction
from app.services.money import to_cents
from app.services.payment_link import (
    minimum_payable,
    remaining_balance,
    validate_payment_amount,
    verify_payment_token,
)

logger = logging.getLogger(__name__)

pay_bp = Blueprint("pay", __name__, url_prefix="/pay")


def _load_payable(transaction_id, token):
    """Verify the token and load its transaction.

    Returns (transaction, None) or (None, (response, status)).
    """
    payload, error = verify_payment_token(token, transaction_id)
    if error:
        return None, (jsonify({"error": error}), 401)

    transaction = db.session.get(Transaction, transaction_id)
    if transaction is None or transaction.org_id != payload.get("orgId"):
        return None, (jsonify({"error": "Transaction not found"}), 404)

    if not transaction.stripe_invoice_id:
        return None, (jsonify({"error": "This transaction does not have an invoice"}), 400)

    return transaction, None


# ──────────────────────────────────────────────
# GET /pay/<id>?token=...
# ──────────────────────────────────────────────

@pay_bp.route("/<transaction_id>")
@limiter.limit("30 per minute")
def invoice_summary(transaction_id):
    transaction, error = _load_payable(transaction_id, request.args.get("token"))
    if error:
        return error

    org = transaction.org
    company = transaction.company
    paid = transaction.invoice_amount_paid or 0
    min_percent = org.min_invoice_payment_percent

    return jsonify({
        "transactionId": transaction.id,
        "orgName": org.name,
        "companyName": company.name if company else None,
        "invoiceStatus": transaction.invoice_status,
        "invoiceUrl": transaction.invoice_url,
        "total": str(transaction.total),
        "amountPaid": str(paid),
        "amountDue": str(remaining_balance(transaction.total, paid)),
        "minPaymentPercent": min_percent,
        "minPaymentAmount": str(minimum_payable(transaction.total, paid, min_percent)),
        "currency": org.currency,
    })


# ──────────────────────────────────────────────
# POST /pay/<id>/checkout
# ──────────────────────────────────────────────

@pay_bp.route("/<transaction_id>/checkout", methods=["POST"])
@limiter.limit("10 per minute")
def checkout(transaction_id):
    """Start a Stripe Checkout for {"amount", "token"}.

    The invoice status is left alone here; it changes when Stripe reports
    the payment through invoice webhooks.
    """
    data = request.get_json(silent=True) or {}
    token = data.get("token")

    transaction, error = _load_payable(transaction_id, token)
    if error:
        return error

    if transaction.invoice_status == "paid":
        return jsonify({"error": "This invoice has already been paid"}), 400

    org = transaction.org
    if not org.stripe_account_id:
        return jsonify({"error": "Organization does not have Stripe connected"}), 400

    amount, error = validate_payment_amount(
        data.get("amount"),
        transaction.total,
        transaction.invoice_amount_paid or 0,
        org.min_invoice_payment_percent,
    )
    if error:
        return jsonify({"error": error}), 400

    company = transaction.company
    base_url = current_app.config["APP_BASE_URL"]
    metadata = {
        "transactionId": transaction.id,
        "invoiceId": transaction.stripe_invoice_id,
        "paymentType": "partial_invoice_payment",
    }

    stripe.api_key = current_app.config["STRIPE_SECRET_KEY"]
    try:
        session = stripe.checkout.Session.create(
            mode="payment",
            customer=company.stripe_customer_id if company else None,
            line_items=[{
                "price_data": {
                    "currency": org.currency,
                    "product_data": {
                        "name": f"Payment for Invoice #{transaction.id[-8:].upper()}",
                        "description": f"{company.name if company else 'Company'} - {org.name}",
                    },
                    "unit_amount": to_cents(amount),
                },
                "quantity": 1,
            }],
            payment_intent_data={
                "metadata": {
                    **metadata,
                    "companyId": transaction.company_id or "",
                    "orgId": org.id,
                },
            },
            metadata=metadata,
            success_url=(
                f"{base_url}/pay/{transaction.id}/success"
                f"?session_id={{CHECKOUT_SESSION_ID}}&token={token}"
            ),
            cancel_url=f"{base_url}/pay/{transaction.id}?token={token}",
            **org.stripe_options,
        )
    except stripe.error.StripeError as e:
        logger.error(f"Checkout error for transaction {transaction.id}: {e}", exc_info=True)
        return jsonify({"error": "Failed to create checkout session"}), 502

    logger.info(f"Created checkout session {session['id']} for ${amount} on {transaction.id}")
    return jsonify({"url": session["url"], "sessionId": session["id"]})

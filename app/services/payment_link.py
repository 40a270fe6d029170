"""Public invoice payment links.

Companies receive a signed link to pay an invoice in one or more parts.
The first payment must cover the org's minimum percentage of the total;
once anything has been paid, any positive amount up to the balance is fine.

Tokens are itsdangerous signatures over {"transactionId", "orgId"} using the
app SECRET_KEY, so the public page needs no login.
"""

import logging

from flask import current_app
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from app.services.money import CENT, quantize, to_decimal

logger = logging.getLogger(__name__)

DEFAULT_MIN_PERCENT = 50
TOKEN_SALT = "payment-link"


def remaining_balance(total, amount_paid):
    return max(quantize(to_decimal(total) - to_decimal(amount_paid)), quantize(0))


def minimum_payable(total, amount_paid, min_percent=DEFAULT_MIN_PERCENT):
    """Smallest amount the payer may submit on this attempt (dollars)."""
    if min_percent is None:
        min_percent = DEFAULT_MIN_PERCENT
    min_percent = max(0, min(100, min_percent))
    total = to_decimal(total)
    amount_paid = to_decimal(amount_paid)
    balance = remaining_balance(total, amount_paid)

    if amount_paid > 0:
        minimum = CENT
    else:
        minimum = max(quantize(total * min_percent / 100), CENT)

    return min(minimum, balance)


def validate_payment_amount(amount, total, amount_paid,
                            min_percent=DEFAULT_MIN_PERCENT):
    """Check a submitted amount against the minimum and the balance.

    Returns:
        tuple: (amount_as_decimal, None) if acceptable,
               (None, "reason string") otherwise.
    """
    try:
        amount = quantize(amount)
    except (ArithmeticError, TypeError, ValueError):
        return None, "Invalid payment amount"

    if amount <= 0:
        return None, "Invalid payment amount"

    balance = remaining_balance(total, amount_paid)
    if amount > balance:
        return None, f"Amount cannot exceed remaining balance of ${balance:.2f}"

    minimum = minimum_payable(total, amount_paid, min_percent)
    if amount < minimum:
        return None, f"Minimum payment is ${minimum:.2f}"

    return amount, None


def invoice_status_for(total, amount_paid):
    """open -> partially_paid -> paid as cumulative payments arrive."""
    amount_paid = to_decimal(amount_paid)
    if amount_paid <= 0:
        return "open"
    if amount_paid >= to_decimal(total):
        return "paid"
    return "partially_paid"


# ──────────────────────────────────────────────
# Tokens
# ──────────────────────────────────────────────

def _serializer():
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=TOKEN_SALT)


def generate_payment_token(transaction):
    return _serializer().dumps({
        "transactionId": transaction.id,
        "orgId": transaction.org_id,
        "type": "payment_link",
    })


def verify_payment_token(token, transaction_id):
    """Validate a payment-link token for one transaction.

    Returns:
        tuple: (payload, None) if valid, (None, "reason string") otherwise.
    """
    if not token:
        return None, "Payment link token required"

    max_age = current_app.config["PAYMENT_LINK_MAX_AGE_DAYS"] * 24 * 60 * 60
    try:
        payload = _serializer().loads(token, max_age=max_age)
    except SignatureExpired:
        return None, "Invalid or expired payment link"
    except BadSignature:
        logger.warning(f"Bad payment link signature for transaction {transaction_id}")
        return None, "Invalid or expired payment link"

    if payload.get("transactionId") != transaction_id:
        return None, "Invalid payment link"

    return payload, None


def payment_url(transaction, token):
    base_url = current_app.config["APP_BASE_URL"]
    return f"{base_url}/pay/{transaction.id}?token={token}"

"""Tests for public invoice payment links.

Covers:
- POST /api/transactions/<id>/payment-link (staff only)
- GET /pay/<id>: token checks and the invoice summary
- POST /pay/<id>/checkout: minimum payment, balance cap, Stripe session
"""

from decimal import Decimal
from unittest.mock import patch

import pytest
import stripe

from app.extensions import db
from app.models.transaction import Transaction
from app.services.payment_link import generate_payment_token


@pytest.fixture
def invoiced(seed_data):
    """The seeded $1000 company sale with an open Stripe invoice."""
    transaction = seed_data["transaction"]
    transaction.stripe_invoice_id = "in_company"
    transaction.invoice_status = "open"
    transaction.invoice_amount_paid = Decimal("0.00")
    transaction.invoice_amount_due = Decimal("1000.00")
    transaction.invoice_url = "https://invoice.stripe.com/i/company"
    db.session.commit()
    return transaction


@pytest.fixture
def token(invoiced):
    return generate_payment_token(invoiced)


class TestPaymentLinkRoute:
    """Tests for POST /api/transactions/<id>/payment-link."""

    def test_requires_login(self, client, invoiced):
        resp = client.post(f"/api/transactions/{invoiced.id}/payment-link")
        assert resp.status_code == 401

    def test_creates_link(self, staff_client, invoiced):
        resp = staff_client.post(f"/api/transactions/{invoiced.id}/payment-link")

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["paymentUrl"].startswith(f"http://localhost:5000/pay/{invoiced.id}?token=")
        assert data["paymentUrl"].endswith(data["token"])

    def test_no_invoice_is_400(self, staff_client, seed_data):
        resp = staff_client.post(
            f"/api/transactions/{seed_data['transaction_id']}/payment-link"
        )
        assert resp.status_code == 400

    def test_paid_invoice_is_400(self, staff_client, invoiced):
        invoiced.invoice_status = "paid"
        db.session.commit()

        resp = staff_client.post(f"/api/transactions/{invoiced.id}/payment-link")
        assert resp.status_code == 400
        assert "already been paid" in resp.get_json()["error"]


class TestInvoiceSummary:
    """Tests for GET /pay/<id>."""

    def test_summary(self, client, invoiced, token):
        resp = client.get(f"/pay/{invoiced.id}?token={token}")

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["orgName"] == "Harbour Climbing"
        assert data["companyName"] == "Acme Corp"
        assert data["total"] == "1000.00"
        assert data["amountDue"] == "1000.00"
        assert data["minPaymentPercent"] == 50
        assert data["minPaymentAmount"] == "500.00"
        assert data["currency"] == "aud"

    def test_minimum_drops_after_first_payment(self, client, invoiced, token):
        invoiced.invoice_amount_paid = Decimal("500.00")
        invoiced.invoice_status = "partially_paid"
        db.session.commit()

        data = client.get(f"/pay/{invoiced.id}?token={token}").get_json()

        assert data["amountDue"] == "500.00"
        assert data["minPaymentAmount"] == "0.01"

    def test_missing_token_is_401(self, client, invoiced):
        resp = client.get(f"/pay/{invoiced.id}")
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Payment link token required"

    def test_bad_token_is_401(self, client, invoiced):
        resp = client.get(f"/pay/{invoiced.id}?token=not-a-token")
        assert resp.status_code == 401

    def test_token_for_other_transaction_is_401(self, client, seed_data, invoiced):
        other = Transaction(org_id=seed_data["org_id"], total=10, subtotal=10,
                            stripe_invoice_id="in_other")
        db.session.add(other)
        db.session.commit()

        resp = client.get(f"/pay/{other.id}?token={generate_payment_token(invoiced)}")
        assert resp.status_code == 401

    def test_no_invoice_is_400(self, client, seed_data):
        token = generate_payment_token(seed_data["transaction"])
        resp = client.get(f"/pay/{seed_data['transaction_id']}?token={token}")
        assert resp.status_code == 400


class TestCheckout:
    """Tests for POST /pay/<id>/checkout."""

    @patch("app.blueprints.pay.stripe.checkout.Session.create")
    def test_below_minimum_rejected(self, mock_create, client, invoiced, token):
        resp = client.post(f"/pay/{invoiced.id}/checkout",
                           json={"amount": 499.99, "token": token})

        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Minimum payment is $500.00"
        mock_create.assert_not_called()

    @patch("app.blueprints.pay.stripe.checkout.Session.create")
    def test_above_balance_rejected(self, mock_create, client, invoiced, token):
        resp = client.post(f"/pay/{invoiced.id}/checkout",
                           json={"amount": 1000.01, "token": token})

        assert resp.status_code == 400
        assert "remaining balance" in resp.get_json()["error"]
        mock_create.assert_not_called()

    @patch("app.blueprints.pay.stripe.checkout.Session.create")
    def test_creates_checkout_session(self, mock_create, client, invoiced, token):
        mock_create.return_value = {"id": "cs_test_1", "url": "https://checkout.stripe.com/c/1"}

        resp = client.post(f"/pay/{invoiced.id}/checkout",
                           json={"amount": 500, "token": token})

        assert resp.status_code == 200
        assert resp.get_json() == {
            "url": "https://checkout.stripe.com/c/1",
            "sessionId": "cs_test_1",
        }

        kwargs = mock_create.call_args.kwargs
        assert kwargs["mode"] == "payment"
        assert kwargs["customer"] == "cus_acme"
        assert kwargs["stripe_account"] == "acct_test_123"
        assert kwargs["line_items"][0]["price_data"]["unit_amount"] == 50000
        assert kwargs["metadata"] == {
            "transactionId": invoiced.id,
            "invoiceId": "in_company",
            "paymentType": "partial_invoice_payment",
        }

    @patch("app.blueprints.pay.stripe.checkout.Session.create")
    def test_any_amount_after_first_payment(self, mock_create, client, invoiced, token):
        invoiced.invoice_amount_paid = Decimal("500.00")
        db.session.commit()
        mock_create.return_value = {"id": "cs_test_2", "url": "https://checkout.stripe.com/c/2"}

        resp = client.post(f"/pay/{invoiced.id}/checkout",
                           json={"amount": 25, "token": token})

        assert resp.status_code == 200
        assert mock_create.call_args.kwargs["line_items"][0]["price_data"]["unit_amount"] == 2500

    @patch("app.blueprints.pay.stripe.checkout.Session.create")
    def test_paid_invoice_rejected(self, mock_create, client, invoiced, token):
        invoiced.invoice_status = "paid"
        db.session.commit()

        resp = client.post(f"/pay/{invoiced.id}/checkout",
                           json={"amount": 500, "token": token})

        assert resp.status_code == 400
        mock_create.assert_not_called()

    def test_bad_token_is_401(self, client, invoiced):
        resp = client.post(f"/pay/{invoiced.id}/checkout",
                           json={"amount": 500, "token": "forged"})
        assert resp.status_code == 401

    @patch("app.blueprints.pay.stripe.checkout.Session.create")
    def test_stripe_error_is_502(self, mock_create, client, invoiced, token):
        mock_create.side_effect = stripe.error.APIConnectionError("down")

        resp = client.post(f"/pay/{invoiced.id}/checkout",
                           json={"amount": 500, "token": token})

        assert resp.status_code == 502

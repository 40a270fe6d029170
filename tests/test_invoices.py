"""Tests for company invoice creation and the invoice status sync.

Covers:
- Happy path: create, itemise, finalise, send, persist
- Validation failures before any Stripe call
- Item failure deletes the draft and leaves the transaction untouched
- POST /api/transactions/<id>/invoice status codes
- invoice.paid / invoice.updated sync by metadata.transactionId
"""

from decimal import Decimal
from unittest.mock import patch

import pytest
import stripe

from app.extensions import db
from app.models.audit import AuditEvent
from app.models.transaction import Transaction
from app.services.invoice_service import (
    create_company_invoice,
    handle_invoice_payment,
    handle_invoice_update,
)


def _sent_invoice(**overrides):
    invoice = {
        "id": "in_test_1",
        "status": "open",
        "amount_paid": 0,
        "amount_due": 100000,
        "hosted_invoice_url": "https://invoice.stripe.com/i/test",
    }
    invoice.update(overrides)
    return invoice


class TestCreateCompanyInvoice:
    """Tests for create_company_invoice."""

    @patch("app.services.invoice_service.stripe.Invoice.send_invoice")
    @patch("app.services.invoice_service.stripe.Invoice.finalize_invoice")
    @patch("app.services.invoice_service.stripe.InvoiceItem.create")
    @patch("app.services.invoice_service.stripe.Invoice.create")
    def test_creates_and_sends(self, mock_create, mock_item, mock_finalize,
                               mock_send, seed_data):
        """Draft -> one item per line -> finalise -> send -> persisted."""
        mock_create.return_value = {"id": "in_test_1"}
        mock_finalize.return_value = _sent_invoice()
        mock_send.return_value = _sent_invoice()

        transaction = seed_data["transaction"]
        create_company_invoice(transaction, employee=seed_data["staff"])

        create_kwargs = mock_create.call_args.kwargs
        assert create_kwargs["customer"] == "cus_acme"
        assert create_kwargs["collection_method"] == "send_invoice"
        assert create_kwargs["days_until_due"] == 7
        assert create_kwargs["auto_advance"] is False
        assert create_kwargs["metadata"]["transactionId"] == transaction.id
        assert create_kwargs["stripe_account"] == "acct_test_123"

        assert mock_item.call_count == 1
        item_kwargs = mock_item.call_args.kwargs
        assert item_kwargs["invoice"] == "in_test_1"
        assert item_kwargs["amount"] == 100000
        assert item_kwargs["currency"] == "aud"

        txn = db.session.get(Transaction, seed_data["transaction_id"])
        assert txn.stripe_invoice_id == "in_test_1"
        assert txn.invoice_status == "open"
        assert txn.invoice_amount_due == Decimal("1000.00")
        assert txn.invoice_url == "https://invoice.stripe.com/i/test"

        audit = AuditEvent.query.filter_by(action="invoice.created").first()
        assert audit is not None
        assert audit.actor_user_id == seed_data["staff_id"]

    @patch("app.services.invoice_service.stripe.Invoice.delete")
    @patch("app.services.invoice_service.stripe.Invoice.finalize_invoice")
    @patch("app.services.invoice_service.stripe.InvoiceItem.create")
    @patch("app.services.invoice_service.stripe.Invoice.create")
    def test_item_failure_deletes_draft(self, mock_create, mock_item,
                                        mock_finalize, mock_delete, seed_data):
        """Second item fails -> draft deleted, error re-raised, nothing saved."""
        transaction = seed_data["transaction"]
        transaction.cart = {"products": [
            {"name": "Team day", "value": 600},
            {"name": "Catering", "value": 400},
        ]}
        db.session.commit()

        mock_create.return_value = {"id": "in_draft"}
        mock_item.side_effect = [{"id": "ii_1"}, stripe.error.APIError("boom")]

        with pytest.raises(stripe.error.APIError):
            create_company_invoice(transaction)

        mock_delete.assert_called_once_with("in_draft", stripe_account="acct_test_123")
        mock_finalize.assert_not_called()

        db.session.rollback()
        txn = db.session.get(Transaction, seed_data["transaction_id"])
        assert txn.stripe_invoice_id is None
        assert txn.invoice_status is None

    @patch("app.services.invoice_service.stripe.Invoice.create")
    def test_total_mismatch_fails_before_stripe(self, mock_create, seed_data):
        transaction = seed_data["transaction"]
        transaction.total = Decimal("900.00")
        db.session.commit()

        with pytest.raises(ValueError, match="total"):
            create_company_invoice(transaction)

        mock_create.assert_not_called()

    @patch("app.services.invoice_service.stripe.Invoice.create")
    def test_company_without_stripe_customer(self, mock_create, seed_data):
        seed_data["company"].stripe_customer_id = None
        db.session.commit()

        with pytest.raises(ValueError, match="Stripe customer"):
            create_company_invoice(seed_data["transaction"])
        mock_create.assert_not_called()

    @patch("app.services.invoice_service.stripe.Invoice.create")
    def test_already_invoiced(self, mock_create, seed_data):
        seed_data["transaction"].stripe_invoice_id = "in_existing"
        db.session.commit()

        with pytest.raises(ValueError, match="already"):
            create_company_invoice(seed_data["transaction"])
        mock_create.assert_not_called()


class TestInvoiceRoute:
    """Tests for POST /api/transactions/<id>/invoice."""

    def test_requires_login(self, client, seed_data):
        resp = client.post(f"/api/transactions/{seed_data['transaction_id']}/invoice")
        assert resp.status_code == 401

    def test_other_org_transaction_is_404(self, staff_client, seed_data):
        other = Transaction(org_id=seed_data["other_org_id"], total=10, subtotal=10)
        db.session.add(other)
        db.session.commit()

        resp = staff_client.post(f"/api/transactions/{other.id}/invoice")
        assert resp.status_code == 404

    @patch("app.services.invoice_service.stripe.Invoice.create")
    def test_validation_error_is_400(self, mock_create, staff_client, seed_data):
        seed_data["company"].stripe_customer_id = None
        db.session.commit()

        resp = staff_client.post(f"/api/transactions/{seed_data['transaction_id']}/invoice")

        assert resp.status_code == 400
        assert "Stripe customer" in resp.get_json()["error"]

    @patch("app.services.invoice_service.stripe.Invoice.create")
    def test_stripe_error_is_502(self, mock_create, staff_client, seed_data):
        mock_create.side_effect = stripe.error.APIConnectionError("network down")

        resp = staff_client.post(f"/api/transactions/{seed_data['transaction_id']}/invoice")

        assert resp.status_code == 502

    @patch("app.services.invoice_service.stripe.Invoice.send_invoice")
    @patch("app.services.invoice_service.stripe.Invoice.finalize_invoice")
    @patch("app.services.invoice_service.stripe.InvoiceItem.create")
    @patch("app.services.invoice_service.stripe.Invoice.create")
    def test_success_is_201(self, mock_create, mock_item, mock_finalize,
                            mock_send, staff_client, seed_data):
        mock_create.return_value = {"id": "in_test_1"}
        mock_finalize.return_value = _sent_invoice()
        mock_send.return_value = _sent_invoice()

        resp = staff_client.post(f"/api/transactions/{seed_data['transaction_id']}/invoice")

        assert resp.status_code == 201
        assert resp.get_json()["transaction"]["stripe_invoice_id"] == "in_test_1"


class TestInvoiceSync:
    """Tests for webhook-driven status sync of company invoices."""

    def test_paid_marks_transaction_completed(self, seed_data):
        invoice = _sent_invoice(
            status="paid", amount_paid=100000, amount_due=0,
            metadata={"transactionId": seed_data["transaction_id"]},
        )

        handle_invoice_payment(invoice)

        txn = db.session.get(Transaction, seed_data["transaction_id"])
        assert txn.invoice_status == "paid"
        assert txn.status == "completed"
        assert txn.invoice_amount_paid == Decimal("1000.00")

    def test_updated_with_part_payment(self, seed_data):
        invoice = _sent_invoice(
            status="open", amount_paid=50000, amount_due=100000,
            metadata={"transactionId": seed_data["transaction_id"]},
        )

        handle_invoice_update(invoice)

        txn = db.session.get(Transaction, seed_data["transaction_id"])
        assert txn.invoice_status == "partially_paid"
        assert txn.status == "pending"

    def test_missing_transaction_id_is_dropped(self, seed_data):
        assert handle_invoice_payment(_sent_invoice(metadata={})) is None

    def test_unknown_transaction_is_dropped(self, seed_data):
        invoice = _sent_invoice(metadata={"transactionId": "does-not-exist"})
        assert handle_invoice_update(invoice) is None

    def test_update_after_paid_keeps_paid(self, seed_data):
        """invoice.updated delivered after invoice.paid must not reopen it."""
        metadata = {"transactionId": seed_data["transaction_id"]}
        handle_invoice_payment(_sent_invoice(
            status="paid", amount_paid=100000, amount_due=100000, metadata=metadata,
        ))

        handle_invoice_update(_sent_invoice(
            status="paid", amount_paid=100000, amount_due=100000, metadata=metadata,
        ))

        txn = db.session.get(Transaction, seed_data["transaction_id"])
        assert txn.invoice_status == "paid"
        assert txn.status == "completed"

    def test_stale_open_update_does_not_downgrade_paid(self, seed_data):
        metadata = {"transactionId": seed_data["transaction_id"]}
        handle_invoice_payment(_sent_invoice(
            status="paid", amount_paid=100000, amount_due=0, metadata=metadata,
        ))

        handle_invoice_update(_sent_invoice(
            status="open", amount_paid=50000, amount_due=100000, metadata=metadata,
        ))

        txn = db.session.get(Transaction, seed_data["transaction_id"])
        assert txn.invoice_status == "paid"

    def test_full_payment_via_update_is_paid(self, seed_data):
        invoice = _sent_invoice(
            status="open", amount_paid=100000, amount_due=100000,
            metadata={"transactionId": seed_data["transaction_id"]},
        )

        handle_invoice_update(invoice)

        txn = db.session.get(Transaction, seed_data["transaction_id"])
        assert txn.invoice_status == "paid"
        assert txn.status == "completed"

"""Shared test fixtures for the billing test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, CSRF off)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- seed_data: pre-populated org, staff, customer, company, membership
- staff_client: test client logged in as the seeded staff user
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from werkzeug.security import generate_password_hash

from app import create_app
from app.extensions import db as _db
from app.models.customer import Company, Customer
from app.models.membership import Membership
from app.models.org import Org
from app.models.transaction import Transaction
from app.models.user import User


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture(autouse=True)
def no_email():
    """Keep tests off SMTP; the templates still render."""
    from unittest.mock import patch

    with patch("app.services.email_service._send_smtp") as mock_send:
        yield mock_send


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def seed_data(app, db_session):
    """Seed an org with staff, a member on a $50/month plan and a company.

    Returns a dict with all created objects and their IDs.
    """
    now = datetime.now(timezone.utc)

    # --- Org (connected Stripe account) ---
    org = Org(
        name="Harbour Climbing",
        email="hello@harbour.test",
        stripe_account_id="acct_test_123",
        currency="aud",
        min_invoice_payment_percent=50,
        membership_suspension_days_per_year=30,
        payment_terms_days=7,
    )
    _db.session.add(org)
    _db.session.flush()

    # --- Second org (for isolation checks) ---
    other_org = Org(name="Other Venue", stripe_account_id="acct_other_456")
    _db.session.add(other_org)
    _db.session.flush()

    # --- Staff ---
    staff = User(
        org_id=org.id,
        email="staff@harbour.test",
        password_hash=generate_password_hash("staff123"),
        full_name="Front Desk",
    )
    inactive = User(
        org_id=org.id,
        email="gone@harbour.test",
        password_hash=generate_password_hash("gone123"),
        full_name="Former Staff",
        is_active=False,
    )
    _db.session.add_all([staff, inactive])
    _db.session.flush()

    # --- Customer + membership ---
    customer = Customer(
        org_id=org.id,
        name="Jane Member",
        email="jane@example.com",
        stripe_customer_id="cus_jane",
    )
    _db.session.add(customer)
    _db.session.flush()

    membership = Membership(
        org_id=org.id,
        customer_id=customer.id,
        product_name="Unlimited Climbing",
        price_name="Adult",
        amount=Decimal("50.00"),
        billing_frequency="monthly",
        stripe_customer_id="cus_jane",
        stripe_subscription_id="sub_jane",
        subscription_start_date=now - timedelta(days=45),
        next_billing_date=now + timedelta(days=15),
        status="active",
    )
    _db.session.add(membership)

    # --- Company + invoiced transaction ---
    company = Company(
        org_id=org.id,
        name="Acme Corp",
        email="accounts@acme.test",
        stripe_customer_id="cus_acme",
        payment_terms="net_7",
    )
    _db.session.add(company)
    _db.session.flush()

    transaction = Transaction(
        org_id=org.id,
        company_id=company.id,
        employee_id=staff.id,
        type="sale",
        status="pending",
        payment_method="invoice",
        subtotal=Decimal("1000.00"),
        tax=Decimal("0.00"),
        total=Decimal("1000.00"),
        cart={"products": [{"name": "Team day", "value": 1000, "qty": 1}]},
    )
    _db.session.add(transaction)
    _db.session.commit()

    return {
        "org": org,
        "org_id": org.id,
        "other_org_id": other_org.id,
        "staff": staff,
        "staff_id": staff.id,
        "customer": customer,
        "customer_id": customer.id,
        "membership": membership,
        "membership_id": membership.id,
        "company": company,
        "company_id": company.id,
        "transaction": transaction,
        "transaction_id": transaction.id,
    }


@pytest.fixture
def staff_client(client, seed_data):
    """Test client with a logged-in staff session."""
    resp = client.post(
        "/auth/login",
        json={"email": "staff@harbour.test", "password": "staff123"},
    )
    assert resp.status_code == 200
    return client

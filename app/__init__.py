import os
import logging

import click
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException
from werkzeug.security import generate_password_hash

from app.config import config_by_name
from app.extensions import db, migrate, login_manager, csrf, limiter


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from app import models  # noqa: F401

    # --- Tenant middleware ---
    from app.middleware.tenant import init_tenant_middleware
    init_tenant_middleware(app)

    # --- Register blueprints ---
    from app.blueprints.auth import auth_bp
    from app.blueprints.memberships import memberships_bp
    from app.blueprints.transactions import transactions_bp
    from app.blueprints.pay import pay_bp
    from app.blueprints.webhooks import webhooks_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(memberships_bp)
    app.register_blueprint(transactions_bp)
    app.register_blueprint(pay_bp)
    app.register_blueprint(webhooks_bp)

    # Exempt webhooks from CSRF: raw body needed for Stripe signature verification
    csrf.exempt(webhooks_bp)
    # Exempt payment links from CSRF: public pages authenticated by the link token
    csrf.exempt(pay_bp)

    # --- Health check ---
    @app.route("/health")
    def health():
        return jsonify({"status": "ok"})

    # --- Error handlers ---
    @app.errorhandler(HTTPException)
    def http_error(e):
        return jsonify({"error": e.description}), e.code

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": "Internal server error"}), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("seed-org")
    @click.option("--name", default="Demo Venue", help="Org name")
    @click.option("--email", default="admin@venue.local", help="Staff login email")
    @click.option("--password", default="admin123", help="Staff login password")
    @click.option("--stripe-account", default=None, help="Connected account ID (acct_...)")
    def seed_org(name, email, password, stripe_account):
        """Create an org with one admin staff user.

        Usage:
            flask seed-org
            flask seed-org --name "Harbour Gym" --stripe-account acct_123
        """
        from app.models.org import Org
        from app.models.user import User

        existing = User.query.filter_by(email=email).first()
        if existing:
            click.echo(f"Staff user already exists: {email} (org {existing.org_id})")
            return

        org = Org(
            name=name,
            email=email,
            stripe_account_id=stripe_account,
            currency=app.config["DEFAULT_CURRENCY"],
        )
        db.session.add(org)
        db.session.flush()

        user = User(
            org_id=org.id,
            email=email,
            password_hash=generate_password_hash(password),
            full_name="Admin",
            is_admin=True,
        )
        db.session.add(user)
        db.session.commit()

        click.echo("")
        click.echo("=" * 60)
        click.echo("Seed data created successfully!")
        click.echo("=" * 60)
        click.echo(f"  Org:    {org.name} (id: {org.id})")
        click.echo(f"  Stripe: {org.stripe_account_id or '(not connected)'}")
        click.echo(f"  Staff:  {email} / {password}")
        click.echo("=" * 60)

    @app.cli.command("process-scheduled-pauses")
    def process_scheduled_pauses():
        """Apply membership pauses whose scheduled start date has arrived.

        Usage:
            flask process-scheduled-pauses
        """
        from app.services.membership_service import process_scheduled_pauses as run

        results = run()
        click.echo(
            f"Done: {results['processed']} pause(s) applied, "
            f"{results['failed']} failed."
        )

    @app.cli.command("send-invoice-reminders")
    @click.option("--dry-run", is_flag=True, help="Show what would be sent without actually sending.")
    @click.option("--advance-days", default=0, type=int, help="Pretend today is N days later.")
    def send_invoice_reminders(dry_run, advance_days):
        """Send D5/D3/D1 payment reminders for open company invoices.

        Usage:
            flask send-invoice-reminders
            flask send-invoice-reminders --dry-run
            flask send-invoice-reminders --dry-run --advance-days 3
        """
        from app.services.reminder_service import process_invoice_reminders
        process_invoice_reminders(dry_run=dry_run, advance_days=advance_days)

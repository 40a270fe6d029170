"""
Email service for billing notifications.

Sends receipts, pause/resume confirmations and invoice reminders over SMTP.
Billing flows call the notify_* helpers, which never raise: a failed email
is logged and the billing operation still succeeds.

Usage:
    from app.services.email_service import send_email

    send_email(
        to="member@example.com",
        subject="Your receipt",
        template="emails/receipt.html",
        context={"customer_name": "Jane"},
    )
"""

import logging
import smtplib
import threading
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from flask import current_app, render_template

logger = logging.getLogger(__name__)


def _send_smtp(app, msg):
    """Send an email via SMTP (called inline or from a background thread).

    Returns True once the message is handed to the server.
    """
    with app.app_context():
        host = app.config.get("MAIL_SMTP_HOST", "smtp.gmail.com")
        port = app.config.get("MAIL_SMTP_PORT", 587)
        username = app.config.get("MAIL_USERNAME")
        password = app.config.get("MAIL_PASSWORD")

        if not username or not password:
            logger.warning("Email not sent — MAIL_USERNAME or MAIL_PASSWORD not configured.")
            return False

        try:
            with smtplib.SMTP(host, port, timeout=30) as server:
                server.ehlo()
                server.starttls()
                server.ehlo()
                server.login(username, password)
                server.send_message(msg)
            logger.info(f"Email sent to {msg['To']} — {msg['Subject']}")
            return True
        except Exception as e:
            logger.error(f"Failed to send email to {msg['To']}: {e}")
            return False


def _build_message(app, to, subject, template, context, reply_to, from_name=None):
    from_name = from_name or app.config.get("MAIL_FROM_NAME", "Venue Billing")
    from_email = app.config.get("MAIL_FROM_ADDRESS") or app.config.get("MAIL_USERNAME", "")

    html_body = render_template(template, **(context or {}))

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f"{from_name} <{from_email}>"
    msg["To"] = to if isinstance(to, str) else ", ".join(to)

    if reply_to:
        msg["Reply-To"] = reply_to

    msg.attach(MIMEText(html_body, "html"))
    return msg


def send_email(to, subject, template, context=None, reply_to=None, from_name=None):
    """
    Send a templated HTML email without blocking the request.

    Args:
        to:        Recipient email address (str or list).
        subject:   Email subject line.
        template:  Path to Jinja2 HTML template (relative to templates/).
        context:   Dict of variables to pass to the template.
        reply_to:  Optional reply-to address (usually the venue's email).
        from_name: Optional display name (usually the venue's name).
    """
    app = current_app._get_current_object()
    msg = _build_message(app, to, subject, template, context, reply_to, from_name)

    thread = threading.Thread(target=_send_smtp, args=(app, msg))
    thread.daemon = True
    thread.start()


def send_email_sync(to, subject, template, context=None, reply_to=None, from_name=None):
    """
    Same as send_email but blocks until sent. Used by CLI jobs, which exit
    before a daemon thread would finish. Returns True if the email was sent.
    """
    app = current_app._get_current_object()
    msg = _build_message(app, to, subject, template, context, reply_to, from_name)
    return _send_smtp(app, msg)


# ──────────────────────────────────────────────
# Billing notifications
# ──────────────────────────────────────────────

def notify_receipt(transaction, customer, org):
    """Receipt for a subscription renewal."""
    if not customer or not customer.email:
        return False
    try:
        send_email(
            to=customer.email,
            subject=f"Your receipt from {org.name}",
            template="emails/receipt.html",
            context={
                "org_name": org.name,
                "customer_name": customer.name,
                "transaction": transaction,
            },
            reply_to=org.email,
            from_name=org.name,
        )
        return True
    except Exception as e:
        logger.error(f"Failed to send receipt for transaction {transaction.id}: {e}")
        return False


def notify_suspension(membership, suspension, org, scheduled=False, sync=False):
    """Tell the member their membership is paused (or will be)."""
    customer = membership.customer
    if not customer or not customer.email:
        return False
    sender = send_email_sync if sync else send_email
    try:
        sender(
            to=customer.email,
            subject=f"Your {org.name} membership is paused",
            template="emails/suspension.html",
            context={
                "org_name": org.name,
                "customer_name": customer.name,
                "membership": membership,
                "suspension": suspension,
                "scheduled": scheduled,
            },
            reply_to=org.email,
            from_name=org.name,
        )
        return True
    except Exception as e:
        logger.error(f"Failed to send suspension email for membership {membership.id}: {e}")
        return False


def notify_resume(membership, org, adjustment_amount, unused_days):
    customer = membership.customer
    if not customer or not customer.email:
        return False
    try:
        send_email(
            to=customer.email,
            subject=f"Welcome back — your {org.name} membership is active",
            template="emails/resume.html",
            context={
                "org_name": org.name,
                "customer_name": customer.name,
                "membership": membership,
                "adjustment_amount": adjustment_amount,
                "unused_days": unused_days,
            },
            reply_to=org.email,
            from_name=org.name,
        )
        return True
    except Exception as e:
        logger.error(f"Failed to send resume email for membership {membership.id}: {e}")
        return False

"""Reminder service — payment reminders for open company invoices.

Sends D5, D3 and D1 reminder emails for invoices that:
  - Were sent through Stripe (have a stripe_invoice_id)
  - Are still open or partially paid with an amount due
  - Haven't already received the reminder for that tier

The due date is the transaction's created_at plus the org's
payment_terms_days. Each reminder carries a fresh payment link.

Designed to be called from a Flask CLI command
(`flask send-invoice-reminders`) on a daily cron schedule.
"""

import logging
from datetime import timedelta

import click

from app.extensions import db
from app.models.org import Org
from app.models.transaction import Transaction
from app.services.dates import as_utc, utcnow
from app.services.email_service import send_email_sync
from app.services.payment_link import (
    generate_payment_token,
    minimum_payable,
    payment_url,
    remaining_balance,
)

logger = logging.getLogger(__name__)

# Ordered least to most urgent
REMINDER_TIERS = [
    ("d5", 5),
    ("d3", 3),
    ("d1", 1),
]

REMINDER_SUBJECTS = {
    "d5": "Invoice from {org_name} due in 5 days",
    "d3": "Reminder: invoice from {org_name} due in 3 days",
    "d1": "Final reminder: invoice from {org_name} due tomorrow",
}


def due_date_for(transaction, org):
    return as_utc(transaction.created_at) + timedelta(days=org.payment_terms_days)


def pick_reminder_tier(days_until_due, sent_tiers):
    """Most urgent tier that applies today, or None.

    Lower tiers that were never sent are superseded, not sent late.
    """
    if days_until_due < 0:
        return None
    for tier_label, tier_days in reversed(REMINDER_TIERS):
        if days_until_due <= tier_days:
            if tier_label in sent_tiers:
                return None
            return tier_label
    return None


def _open_invoices(org):
    return (
        Transaction.query
        .filter_by(org_id=org.id)
        .filter(Transaction.stripe_invoice_id.isnot(None))
        .filter(Transaction.company_id.isnot(None))
        .filter(Transaction.invoice_status.in_(("open", "partially_paid")))
        .filter(Transaction.invoice_amount_due > 0)
        .order_by(Transaction.created_at.asc())
        .all()
    )


def process_invoice_reminders(dry_run=False, advance_days=0):
    """Find invoices nearing their due date and email the company.

    Args:
        dry_run:      If True, log what would be sent but don't actually send.
        advance_days: Pretend today is this many days later.

    Returns:
        int: Number of reminders sent (or would-be-sent in dry-run mode).
    """
    now = utcnow() + timedelta(days=advance_days)
    sent_count = 0

    if dry_run:
        click.echo("[DRY RUN] No emails will actually be sent.\n")

    for org in Org.query.order_by(Org.name).all():
        invoices = _open_invoices(org)
        if not invoices:
            continue

        click.echo(f"── {org.name}: {len(invoices)} open invoice(s) ──")

        for transaction in invoices:
            company = transaction.company
            if not company or not company.email:
                click.echo(f"   SKIP {transaction.id}: company has no email")
                continue

            due_date = due_date_for(transaction, org)
            days_until_due = (due_date.date() - now.date()).days
            sent_tiers = list(transaction.invoice_reminders_sent or [])
            tier_label = pick_reminder_tier(days_until_due, sent_tiers)

            if not tier_label:
                click.echo(f"   {company.name}: due in {days_until_due}d, no reminder due")
                continue

            subject = REMINDER_SUBJECTS[tier_label].format(org_name=org.name)

            if dry_run:
                click.echo(f"   {tier_label.upper()}: WOULD SEND → {company.email}")
                sent_count += 1
                continue

            click.echo(f"   {tier_label.upper()}: SENDING → {company.email}")
            total = transaction.total
            paid = transaction.invoice_amount_paid or 0
            try:
                token = generate_payment_token(transaction)
                sent = send_email_sync(
                    to=company.email,
                    subject=subject,
                    template="emails/invoice_reminder.html",
                    context={
                        "org_name": org.name,
                        "company_name": company.name,
                        "due_date": due_date,
                        "days_until_due": days_until_due,
                        "balance": remaining_balance(total, paid),
                        "minimum": minimum_payable(
                            total, paid, org.min_invoice_payment_percent
                        ),
                        "payment_url": payment_url(transaction, token),
                        "invoice_url": transaction.invoice_url,
                    },
                    reply_to=org.email,
                    from_name=org.name,
                )

                if not sent:
                    click.echo("      ✗ NOT SENT: will retry on the next run.")
                    continue

                # Reassign so the JSON column is marked dirty
                transaction.invoice_reminders_sent = sent_tiers + [tier_label]
                db.session.commit()
                sent_count += 1
                click.echo("      ✓ Sent and logged.")
            except Exception as e:
                click.echo(f"      ✗ FAILED: {e}")
                logger.error(f"Invoice reminder failed for transaction {transaction.id}: {e}")
                db.session.rollback()

    click.echo(f"{'[DRY RUN] ' if dry_run else ''}Done: {sent_count} reminder(s) {'would be ' if dry_run else ''}sent.")
    return sent_count

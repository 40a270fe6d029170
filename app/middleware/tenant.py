"""Tenant middleware — resolves the logged-in staff user to their org.

Runs before every request. Sets g.org and g.org_id for authenticated staff
so blueprints can scope every lookup to one org. Public routes (webhooks,
payment links) carry no session and leave both as None.
"""

from flask import abort, g
from flask_login import current_user

from app.extensions import db


def resolve_org():
    """Before-request hook: load the current user's org into g."""
    g.org = None
    g.org_id = None

    if not current_user.is_authenticated:
        return

    g.org = current_user.org
    g.org_id = current_user.org_id


def get_org_record_or_404(model, record_id):
    """Fetch a row by ID, 404 if it is missing or belongs to another org."""
    record = db.session.get(model, record_id)
    if record is None or record.org_id != g.org_id:
        abort(404)
    return record


def init_tenant_middleware(app):
    """Register the org resolver as a before_request hook."""
    app.before_request(resolve_org)

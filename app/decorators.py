"""
Custom route decorators for access control.

- staff_required: ensures user is logged in, active, AND belongs to an org
  (g.org_id set by tenant middleware).
"""

from functools import wraps

from flask import abort, g
from flask_login import current_user, login_required


def staff_required(f):
    """Require login + an active account scoped to an org."""

    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        if not current_user.is_active:
            abort(403)

        # g.org_id is set by tenant middleware
        if getattr(g, "org_id", None) is None:
            abort(403)

        return f(*args, **kwargs)

    return decorated

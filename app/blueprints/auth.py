"""Auth blueprint — /auth/*

JSON login and logout for staff. The session cookie set here is what the
/api/* routes authenticate with.

State-changing requests carry the CSRF token from GET /auth/csrf-token in
an X-CSRFToken header.
"""

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf.csrf import generate_csrf
from werkzeug.security import check_password_hash

from app.extensions import db, limiter
from app.models.audit import AuditEvent
from app.models.user import User

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


# ──────────────────────────────────────────────
# GET /auth/csrf-token
# ──────────────────────────────────────────────

@auth_bp.route("/csrf-token")
def csrf_token():
    """Token for the X-CSRFToken header, bound to this session."""
    return jsonify({"csrfToken": generate_csrf()})


# ──────────────────────────────────────────────
# POST /auth/login
# ──────────────────────────────────────────────

@auth_bp.route("/login", methods=["POST"])
@limiter.limit("15 per minute", methods=["POST"])
def login():
    """Email + password login. Body: {"email", "password", "remember"?}."""
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").lower().strip()
    password = data.get("password") or ""

    if not email or not password:
        return jsonify({"error": "Email and password are required."}), 400

    user = User.query.filter_by(email=email).first()

    if user is None or not check_password_hash(user.password_hash, password):
        return jsonify({"error": "Invalid email or password."}), 401

    if not user.is_active:
        return jsonify({"error": "Your account has been deactivated."}), 403

    login_user(user, remember=bool(data.get("remember")))

    db.session.add(AuditEvent(
        org_id=user.org_id,
        actor_user_id=user.id,
        action="user.logged_in",
        metadata_={"email": email},
    ))
    db.session.commit()

    return jsonify({
        "id": user.id,
        "email": user.email,
        "full_name": user.full_name,
        "org_id": user.org_id,
    })


# ──────────────────────────────────────────────
# POST /auth/logout
# ──────────────────────────────────────────────

@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    return jsonify({"status": "logged_out"})


@auth_bp.route("/me")
@login_required
def me():
    return jsonify({
        "id": current_user.id,
        "email": current_user.email,
        "full_name": current_user.full_name,
        "org_id": current_user.org_id,
    })

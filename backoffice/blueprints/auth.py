"""Auth blueprint — /auth/*

JSON login/logout for staff (admins and technicians).
Session cookies via Flask-Login; state-changing calls need the CSRF token
from GET /auth/csrf in an X-CSRFToken header.
"""

import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf.csrf import generate_csrf
from werkzeug.security import check_password_hash

from backoffice.extensions import db, limiter
from backoffice.models.audit import log_audit
from backoffice.models.user import User

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def _user_payload(user):
    return {
        "id": user.id,
        "email": user.email,
        "fullName": user.full_name,
        "isAdmin": user.is_admin,
    }


# ──────────────────────────────────────────────
# GET /auth/csrf
# ──────────────────────────────────────────────

@auth_bp.route("/csrf", methods=["GET"])
def csrf_token():
    return jsonify(csrfToken=generate_csrf())


# ──────────────────────────────────────────────
# POST /auth/login
# ──────────────────────────────────────────────

@auth_bp.route("/login", methods=["POST"])
@limiter.limit("15 per minute")
def login():
    """Email + password login. Body: {email, password, remember?}"""
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").lower().strip()
    password = data.get("password") or ""

    if not email or not password:
        return jsonify(success=False, error="Email and password are required."), 400

    user = User.query.filter_by(email=email).first()
    if user is None or not check_password_hash(user.password_hash, password):
        logger.info(f"Failed login for {email}")
        return jsonify(success=False, error="Invalid email or password."), 401

    if not user.is_active:
        return jsonify(success=False, error="Your account has been deactivated."), 403

    login_user(user, remember=bool(data.get("remember")))
    log_audit("user.login", subject_id=user.id, actor_user_id=user.id)
    db.session.commit()

    return jsonify(success=True, user=_user_payload(user))


# ──────────────────────────────────────────────
# POST /auth/logout
# ──────────────────────────────────────────────

@auth_bp.route("/logout", methods=["POST"])
@login_required
def logout():
    logout_user()
    return jsonify(success=True)


# ──────────────────────────────────────────────
# GET /auth/me
# ──────────────────────────────────────────────

@auth_bp.route("/me", methods=["GET"])
@login_required
def me():
    return jsonify(success=True, user=_user_payload(current_user))

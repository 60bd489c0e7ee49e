"""
Custom route decorators for access control.

- admin_required: ensures user is logged in AND has is_admin=True.
  Technicians (is_admin=False) get 403; anonymous callers get the JSON 401
  from the login manager's unauthorized handler.
"""

from functools import wraps

from flask import abort
from flask_login import current_user, login_required


def admin_required(f):
    """Require login + is_admin flag."""

    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        if not current_user.is_admin:
            abort(403)
        return f(*args, **kwargs)

    return decorated

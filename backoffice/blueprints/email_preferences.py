"""Email preferences blueprint — /email-preferences/*

Public, token-addressed. The token comes from the unsubscribe link in
every automated email. CSRF-exempt so mail clients can POST the RFC 8058
one-click unsubscribe.

Route Map:
  GET  /email-preferences/<token>              — current preferences
  POST /email-preferences/<token>/unsubscribe  — opt out of all non-transactional mail
"""

from flask import Blueprint, jsonify

from backoffice.extensions import limiter
from backoffice.models.email import EmailPreference
from backoffice.services import email_preferences

email_preferences_bp = Blueprint(
    "email_preferences", __name__, url_prefix="/email-preferences"
)


@email_preferences_bp.route("/<token>", methods=["GET"])
def show(token):
    prefs = EmailPreference.query.filter_by(unsubscribe_token=token).first()
    if prefs is None:
        return jsonify(success=False, error="Invalid preferences link."), 404
    return jsonify(success=True, preferences=prefs.to_dict())


@email_preferences_bp.route("/<token>", methods=["POST"])  # List-Unsubscribe-Post target
@email_preferences_bp.route("/<token>/unsubscribe", methods=["POST"])
@limiter.limit("20 per hour")
def unsubscribe(token):
    prefs = email_preferences.unsubscribe_all(token)
    if prefs is None:
        return jsonify(success=False, error="Invalid preferences link."), 404
    return jsonify(success=True, preferences=prefs.to_dict())

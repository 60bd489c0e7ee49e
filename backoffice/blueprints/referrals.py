"""Referrals blueprint — public referral endpoints.

Route Map:
  GET  /ref/<code>             — referral link; sets the tracking cookie
  POST /api/referrals/pending  — landing-page form, records a pending referral
  POST /api/referrals          — manual referral submission
"""

import logging
import secrets

from flask import Blueprint, current_app, jsonify, redirect, request

from backoffice.extensions import limiter
from backoffice.models.referral import ReferralCode
from backoffice.services import referral_service

logger = logging.getLogger(__name__)

referrals_bp = Blueprint("referrals", __name__)

COOKIE_NAME = "referral_token"
COOKIE_MAX_AGE = 60 * 60 * 24 * 90  # 90 days


def _tracking_token():
    return request.cookies.get(COOKIE_NAME) or secrets.token_urlsafe(24)


def _set_tracking_cookie(response, token):
    response.set_cookie(
        COOKIE_NAME,
        token,
        max_age=COOKIE_MAX_AGE,
        httponly=True,
        samesite="Lax",
        secure=not current_app.debug,
    )
    return response


@referrals_bp.route("/ref/<code>", methods=["GET"])
def referral_link(code):
    """Record the visit and send the visitor to the booking page."""
    token = _tracking_token()
    pending, error = referral_service.record_pending_referral(code, token)
    target = current_app.config["APP_BASE_URL"].rstrip("/") + "/schedule"
    if error:
        logger.info(f"Referral link {code}: {error}")
        return redirect(target)

    referral_code = ReferralCode.query.filter_by(code=code).first()
    logger.info(f"Referral link visit for {referral_code.customer_id} ({pending.tracking_cookie})")
    return _set_tracking_cookie(redirect(f"{target}?ref={code}"), pending.tracking_cookie)


@referrals_bp.route("/api/referrals/pending", methods=["POST"])
@limiter.limit("20 per hour")
def create_pending():
    """Body: { code, refereeName?, refereeEmail?, refereePhone? }"""
    data = request.get_json(silent=True) or {}
    code = (data.get("code") or "").strip()
    if not code:
        return jsonify(success=False, error="Referral code is required."), 400

    token = _tracking_token()
    pending, error = referral_service.record_pending_referral(
        code,
        token,
        referee_name=data.get("refereeName"),
        referee_email=data.get("refereeEmail"),
        referee_phone=data.get("refereePhone"),
    )
    if error:
        return jsonify(success=False, error=error), 404

    response = jsonify(success=True, trackingToken=pending.tracking_cookie)
    return _set_tracking_cookie(response, pending.tracking_cookie)


@referrals_bp.route("/api/referrals", methods=["POST"])
@limiter.limit("10 per hour")
def submit():
    """Body: { referrerName?, referrerPhone, refereeName, refereePhone, refereeEmail? }"""
    data = request.get_json(silent=True) or {}
    try:
        referral = referral_service.submit_referral(
            referrer_name=data.get("referrerName"),
            referrer_phone=data.get("referrerPhone"),
            referee_name=data.get("refereeName"),
            referee_phone=data.get("refereePhone"),
            referee_email=data.get("refereeEmail"),
        )
    except ValueError as e:
        return jsonify(success=False, error=str(e)), 400

    return jsonify(success=True, referral=referral.to_dict()), 201

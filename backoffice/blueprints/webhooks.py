"""Webhooks blueprint — /webhooks/*

Receives ServiceTitan job-completion and Resend engagement events.
CSRF-exempt. Each sender authenticates with a shared secret in the
X-Webhook-Secret header.
"""

import hmac
import logging
from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify, request

from backoffice.services.nurture_service import handle_resend_event
from backoffice.services.referral_service import mark_job_completed

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/webhooks")

SECRET_HEADER = "X-Webhook-Secret"


def _secret_ok(config_key):
    expected = current_app.config.get(config_key)
    provided = request.headers.get(SECRET_HEADER, "")
    if not expected:
        logger.error(f"Webhook rejected: {config_key} not configured")
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


def _to_cents(total):
    """ServiceTitan reports job totals in dollars."""
    return int(round(float(total) * 100))


def _parse_completed_on(value):
    if not value:
        return None
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@webhooks_bp.route("/servicetitan/job-completed", methods=["POST"])
def servicetitan_job_completed():
    """Body: { customerId, jobId, jobNumber?, total, completedOn? }

    Marks the referee's referral completed and decides credit eligibility.
    """
    if not _secret_ok("SERVICETITAN_WEBHOOK_SECRET"):
        return jsonify({"error": "Invalid secret"}), 401

    data = request.get_json(silent=True) or {}
    customer_id = data.get("customerId")
    if customer_id is None or data.get("total") is None:
        return jsonify({"error": "customerId and total are required"}), 400

    try:
        customer_id = int(customer_id)
        job_amount = _to_cents(data["total"])
        completed_on = _parse_completed_on(data.get("completedOn"))
    except (TypeError, ValueError, OverflowError) as e:
        return jsonify({"error": f"Invalid payload: {e}"}), 400

    referral = mark_job_completed(
        job_amount,
        job_id=data.get("jobId"),
        completed_at=completed_on,
        referee_customer_id=customer_id,
    )
    if referral is None:
        return jsonify({"status": "no matching referral"}), 200

    return jsonify({
        "status": "processed",
        "referralId": referral.id,
        "creditStatus": referral.credit_status,
    }), 200


@webhooks_bp.route("/resend", methods=["POST"])
def resend_event():
    """Resend engagement events (delivered/opened/clicked/bounced/complained)."""
    if not _secret_ok("RESEND_WEBHOOK_SECRET"):
        return jsonify({"error": "Invalid secret"}), 401

    event = request.get_json(silent=True) or {}
    handled, message = handle_resend_event(event)
    if handled:
        return jsonify({"status": message}), 200
    logger.warning(f"Resend webhook rejected: {message}")
    return jsonify({"error": message}), 400

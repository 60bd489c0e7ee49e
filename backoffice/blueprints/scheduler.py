"""Scheduler blueprint — /api/scheduler/*

Public booking endpoint hit by the website scheduler. CSRF-exempt.

Route Map:
  POST /api/scheduler/book  — create a ServiceTitan job for a booking request
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from backoffice.extensions import limiter
from backoffice.services.booking_service import BookingError, book_appointment

logger = logging.getLogger(__name__)

scheduler_bp = Blueprint("scheduler", __name__, url_prefix="/api/scheduler")


@scheduler_bp.route("/book", methods=["POST"])
@limiter.limit("20 per hour")
def book():
    """
    Book an appointment.

    Returns: { success, requestId, jobNumber, jobId, appointmentId, message }
             or { success: false, error, details } with 400/500
    """
    data = request.get_json(silent=True)

    # The booking page sets a referral cookie when the visitor came
    # through a referral link; the body wins if both are present.
    if isinstance(data, dict) and not data.get("referralToken"):
        cookie_token = request.cookies.get("referral_token")
        if cookie_token:
            data["referralToken"] = cookie_token

    client = current_app.extensions["servicetitan"]
    try:
        result = book_appointment(data, client)
    except BookingError as e:
        body = {"success": False, "error": e.message, "details": e.details}
        if e.request_id:
            body["requestId"] = e.request_id
        return jsonify(body), e.status_code

    return jsonify(result), 200

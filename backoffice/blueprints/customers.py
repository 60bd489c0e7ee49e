"""Customers blueprint — /api/customers/*

Public customer lookup used by the scheduler and the customer portal.

Route Map:
  POST /api/customers/lookup  — find a customer by phone and/or email
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from backoffice.extensions import limiter

logger = logging.getLogger(__name__)

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.route("/lookup", methods=["POST"])
@limiter.limit("30 per minute")
def lookup():
    """
    Body: { phone?, email?, source?, createPlaceholderIfMissing?, includeInactive? }

    Returns: { success, found, matches, isPlaceholder, error, bestMatch }
    """
    data = request.get_json(silent=True) or {}
    phone = (data.get("phone") or "").strip() or None
    email = (data.get("email") or "").strip() or None

    service = current_app.extensions["customer_lookup"]
    try:
        result = service.search(
            phone=phone,
            email=email,
            source=data.get("source"),
            create_placeholder_if_missing=bool(data.get("createPlaceholderIfMissing")),
            include_inactive=bool(data.get("includeInactive")),
        )
    except ValueError as e:
        return jsonify(success=False, error=str(e)), 400

    best = service.get_best_match(result, phone=phone, email=email)
    body = result.to_dict()
    body["success"] = result.error is None
    body["bestMatch"] = best.to_dict() if best else None

    if result.error:
        status = 400 if result.error.type == "validation" else 503
        return jsonify(body), status
    return jsonify(body), 200

"""Vouchers blueprint — /api/vouchers/*

Technician-facing voucher scan + redeem. Staff login required.
The client shows the looked-up voucher and job amount for confirmation
before it calls /redeem.

Route Map:
  GET  /api/vouchers/lookup?code=  — voucher details (expires it if due)
  POST /api/vouchers/redeem        — { code, jobAmount, jobId?, jobNumber? }
"""

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from backoffice.extensions import limiter
from backoffice.services import voucher_service

vouchers_bp = Blueprint("vouchers", __name__, url_prefix="/api/vouchers")


@vouchers_bp.route("/lookup", methods=["GET"])
@login_required
@limiter.limit("60 per minute")
def lookup():
    voucher, error = voucher_service.lookup_voucher(request.args.get("code"))
    if error:
        status = 400 if error == "Voucher code is required." else 404
        return jsonify(success=False, error=error), status
    return jsonify(success=True, voucher=voucher.to_dict())


@vouchers_bp.route("/redeem", methods=["POST"])
@login_required
@limiter.limit("30 per minute")
def redeem():
    data = request.get_json(silent=True) or {}
    code = data.get("code")
    job_amount = data.get("jobAmount")

    if not code or job_amount is None:
        return jsonify(success=False, error="code and jobAmount are required."), 400

    voucher, error = voucher_service.redeem_voucher(
        code,
        job_amount,
        technician_name=current_user.full_name or current_user.email,
        job_id=data.get("jobId"),
        job_number=data.get("jobNumber"),
        actor_user_id=current_user.id,
    )
    if error:
        body = {"success": False, "error": error}
        if voucher is None:
            return jsonify(body), 404
        body["voucher"] = voucher.to_dict()
        if voucher.status == "redeemed":
            body["redeemedAt"] = voucher.to_dict()["redeemedAt"]
            return jsonify(body), 409
        return jsonify(body), 400

    return jsonify(
        success=True,
        voucher=voucher.to_dict(),
        message=f"Voucher {voucher.code} redeemed: ${voucher.discount_amount / 100:.2f} off.",
    )

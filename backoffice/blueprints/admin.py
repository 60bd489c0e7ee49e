"""Admin blueprint — /admin/*

Staff back-office JSON API.
All routes protected by @admin_required decorator.

Route Map:
  GET  /admin/referrals                              — list (filter status/creditStatus)
  POST /admin/referrals/<id>/credit                  — credit the referrer once
  POST /admin/referrals/<id>/ineligible              — mark ineligible
  GET  /admin/nurture/campaigns                      — list nurture campaigns
  POST /admin/nurture/campaigns                      — enrol a happy reviewer
  POST /admin/nurture/campaigns/<id>/resume          — un-pause
  PUT  /admin/nurture/templates/<type>/<number>      — save a drip email template
  GET  /admin/settings, PUT /admin/settings          — email switches + tracking phone
  GET  /admin/tracking-numbers, POST /admin/tracking-numbers
  GET  /admin/vouchers                               — list vouchers
"""

import logging

import bleach
from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user
from sqlalchemy.exc import IntegrityError

from backoffice.decorators import admin_required
from backoffice.extensions import db
from backoffice.models.nurture import ReferralNurtureCampaign, ReviewEmailTemplate
from backoffice.models.setting import SystemSetting
from backoffice.models.tracking_number import TrackingNumber
from backoffice.models.voucher import Voucher
from backoffice.services import referral_service
from backoffice.services.email_content import CAMPAIGN_TYPES, Strategy
from backoffice.services.email_service import notify_staff
from backoffice.services.nurture_service import (
    DRIP_ENABLED_KEY,
    MASTER_SWITCH_KEY,
    PHONE_NUMBER_KEY,
)

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")

SETTING_KEYS = (MASTER_SWITCH_KEY, DRIP_ENABLED_KEY, PHONE_NUMBER_KEY)

# Tags allowed in admin-authored email HTML
TEMPLATE_TAGS = [
    "a", "b", "br", "div", "em", "h1", "h2", "h3", "hr", "i", "img", "li",
    "ol", "p", "span", "strong", "table", "tbody", "td", "th", "tr", "u", "ul",
]
TEMPLATE_ATTRIBUTES = {
    "*": ["style"],
    "a": ["href", "title", "style"],
    "img": ["src", "alt", "width", "height", "style"],
}


def _scheduler():
    return current_app.extensions["nurture_scheduler"]


# ──────────────────────────────────────────────
# Referrals
# ──────────────────────────────────────────────

@admin_bp.route("/referrals", methods=["GET"])
@admin_required
def referral_list():
    referrals = referral_service.list_referrals(
        status=request.args.get("status") or None,
        credit_status=request.args.get("creditStatus") or None,
    )
    return jsonify(success=True, referrals=[r.to_dict() for r in referrals])


@admin_bp.route("/referrals/<referral_id>/credit", methods=["POST"])
@admin_required
def referral_credit(referral_id):
    data = request.get_json(silent=True) or {}
    amount = data.get("amountCents", referral_service.REFERRAL_CREDIT_CENTS)
    try:
        amount = int(amount)
    except (TypeError, ValueError):
        return jsonify(success=False, error="amountCents must be a whole number."), 400

    referral, error = referral_service.credit_referral(
        referral_id, amount_cents=amount, notes=data.get("notes"), actor=current_user
    )
    if referral is None:
        return jsonify(success=False, error=error), 404
    if error:
        status = 409 if referral.credit_status == "credited" else 400
        return jsonify(success=False, error=error, referral=referral.to_dict()), status

    notify_staff(
        f"Referral credited: {referral.referrer_name or referral.referrer_phone}",
        f"{current_user.email} credited "
        f"{referral_service.format_cents(referral.credit_amount)} for referring "
        f"{referral.referee_name}.",
    )
    return jsonify(success=True, referral=referral.to_dict())


@admin_bp.route("/referrals/<referral_id>/ineligible", methods=["POST"])
@admin_required
def referral_ineligible(referral_id):
    data = request.get_json(silent=True) or {}
    referral, error = referral_service.mark_ineligible(
        referral_id, reason=data.get("reason"), actor=current_user
    )
    if referral is None:
        return jsonify(success=False, error=error), 404
    if error:
        return jsonify(success=False, error=error, referral=referral.to_dict()), 409
    return jsonify(success=True, referral=referral.to_dict())


# ──────────────────────────────────────────────
# Nurture campaigns
# ──────────────────────────────────────────────

@admin_bp.route("/nurture/campaigns", methods=["GET"])
@admin_required
def campaign_list():
    query = ReferralNurtureCampaign.query
    status = request.args.get("status")
    if status:
        query = query.filter(ReferralNurtureCampaign.status == status)
    campaigns = query.order_by(ReferralNurtureCampaign.created_at.desc()).all()
    return jsonify(success=True, campaigns=[c.to_dict() for c in campaigns])


@admin_bp.route("/nurture/campaigns", methods=["POST"])
@admin_required
def campaign_create():
    data = request.get_json(silent=True) or {}
    customer_id = data.get("customerId")
    email = (data.get("email") or "").strip()
    if customer_id is None or not email:
        return jsonify(success=False, error="customerId and email are required."), 400
    try:
        customer_id = int(customer_id)
    except (TypeError, ValueError):
        return jsonify(success=False, error="customerId must be a number."), 400

    campaign_id = _scheduler().create_campaign_for_reviewer(
        customer_id, email, data.get("reviewId")
    )
    campaign = db.session.get(ReferralNurtureCampaign, campaign_id)
    return jsonify(success=True, campaign=campaign.to_dict()), 201


@admin_bp.route("/nurture/campaigns/<campaign_id>/resume", methods=["POST"])
@admin_required
def campaign_resume(campaign_id):
    campaign, error = _scheduler().resume_campaign(campaign_id, actor=current_user)
    if campaign is None:
        return jsonify(success=False, error=error), 404
    if error:
        return jsonify(success=False, error=error, campaign=campaign.to_dict()), 409
    return jsonify(success=True, campaign=campaign.to_dict())


@admin_bp.route("/nurture/templates/<campaign_type>/<int:email_number>", methods=["PUT"])
@admin_required
def template_save(campaign_type, email_number):
    """Body: { subject, preheader?, htmlContent, plainTextContent, strategy? }"""
    if campaign_type not in CAMPAIGN_TYPES or not 1 <= email_number <= 4:
        return jsonify(success=False, error="Unknown template slot."), 404

    data = request.get_json(silent=True) or {}
    subject = (data.get("subject") or "").strip()
    html = data.get("htmlContent") or ""
    text = data.get("plainTextContent") or ""
    strategy = data.get("strategy") or None

    errors = []
    if not subject:
        errors.append("Subject is required.")
    if not html.strip():
        errors.append("HTML content is required.")
    if not text.strip():
        errors.append("Plain text content is required.")
    if strategy and strategy not in {s.value for s in Strategy}:
        errors.append(f"Unknown strategy: {strategy}")
    if errors:
        return jsonify(success=False, error=" ".join(errors)), 400

    template = ReviewEmailTemplate.query.filter_by(
        campaign_type=campaign_type, email_number=email_number
    ).first()
    if template is None:
        template = ReviewEmailTemplate(campaign_type=campaign_type, email_number=email_number)
        db.session.add(template)

    template.subject = subject
    template.preheader = (data.get("preheader") or "").strip() or None
    template.html_content = bleach.clean(
        html, tags=TEMPLATE_TAGS, attributes=TEMPLATE_ATTRIBUTES, strip=True
    )
    template.plain_text_content = text
    template.strategy = strategy
    db.session.commit()

    logger.info(f"Saved {campaign_type} template #{email_number}")
    return jsonify(success=True, id=template.id)


# ──────────────────────────────────────────────
# Settings
# ──────────────────────────────────────────────

@admin_bp.route("/settings", methods=["GET"])
@admin_required
def settings_show():
    settings = SystemSetting.as_map()
    ok, reason = _scheduler().can_send_emails()
    return jsonify(
        success=True,
        settings={key: settings.get(key) for key in SETTING_KEYS},
        canSendEmails=ok,
        reason=reason,
    )


@admin_bp.route("/settings", methods=["PUT"])
@admin_required
def settings_update():
    data = request.get_json(silent=True) or {}
    unknown = [key for key in data if key not in SETTING_KEYS]
    if unknown:
        return jsonify(success=False, error=f"Unknown settings: {', '.join(unknown)}"), 400

    for key, value in data.items():
        if isinstance(value, bool):
            value = "true" if value else "false"
        SystemSetting.set(key, None if value is None else str(value).strip())
    db.session.commit()
    return settings_show()


# ──────────────────────────────────────────────
# Tracking numbers
# ──────────────────────────────────────────────

def _tracking_dict(tracking):
    return {
        "id": tracking.id,
        "utmSource": tracking.utm_source,
        "displayName": tracking.display_name,
        "phoneNumber": tracking.phone_number,
        "serviceTitanCampaignId": tracking.service_titan_campaign_id,
        "isActive": tracking.is_active,
    }


@admin_bp.route("/tracking-numbers", methods=["GET"])
@admin_required
def tracking_list():
    rows = TrackingNumber.query.order_by(TrackingNumber.utm_source.asc()).all()
    return jsonify(success=True, trackingNumbers=[_tracking_dict(t) for t in rows])


@admin_bp.route("/tracking-numbers", methods=["POST"])
@admin_required
def tracking_create():
    data = request.get_json(silent=True) or {}
    utm_source = (data.get("utmSource") or "").strip().lower()
    if not utm_source:
        return jsonify(success=False, error="utmSource is required."), 400

    tracking = TrackingNumber(
        utm_source=utm_source,
        display_name=(data.get("displayName") or "").strip() or None,
        phone_number=(data.get("phoneNumber") or "").strip() or None,
        service_titan_campaign_id=data.get("serviceTitanCampaignId"),
        is_active=bool(data.get("isActive", True)),
    )
    db.session.add(tracking)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify(success=False, error=f"utm_source {utm_source} already mapped."), 409
    return jsonify(success=True, trackingNumber=_tracking_dict(tracking)), 201


# ──────────────────────────────────────────────
# Vouchers
# ──────────────────────────────────────────────

@admin_bp.route("/vouchers", methods=["GET"])
@admin_required
def voucher_list():
    query = Voucher.query
    status = request.args.get("status")
    if status:
        query = query.filter(Voucher.status == status)
    vouchers = query.order_by(Voucher.created_at.desc()).all()
    return jsonify(success=True, vouchers=[v.to_dict() for v in vouchers])

"""Tests for the admin blueprint.

Covers:
- Auth guards (anonymous 401, technician 403)
- Referral list, credit (once), ineligible
- Nurture campaign enrolment, listing, resume
- Drip template upsert with HTML cleaning
- Email settings and the send gate
- Tracking numbers and the voucher list
"""

import json
from unittest.mock import patch

from backoffice.extensions import db
from backoffice.models.audit import AuditEvent
from backoffice.models.email import EmailSuppression
from backoffice.models.nurture import ReferralNurtureCampaign, ReviewEmailTemplate
from backoffice.models.referral import Referral
from backoffice.models.setting import SystemSetting
from backoffice.services.voucher_service import create_voucher

NOTIFY_PATH = "backoffice.blueprints.admin.notify_staff"


def make_referral(**overrides):
    fields = {
        "referrer_name": "Rita Referrer",
        "referrer_phone": "5125550100",
        "referrer_customer_id": 1001,
        "referee_name": "Pat Referee",
        "referee_phone": "5125550142",
        "status": "completed",
        "credit_status": "pending",
        "job_amount": 30000,
    }
    fields.update(overrides)
    referral = Referral(**fields)
    db.session.add(referral)
    db.session.commit()
    return referral


# ══════════════════════════════════════════════
#  AUTH GUARDS
# ══════════════════════════════════════════════

class TestAdminGuards:

    def test_anonymous_gets_401(self, client, seed_data):
        resp = client.get("/admin/referrals")
        assert resp.status_code == 401
        assert json.loads(resp.data)["success"] is False

    def test_technician_gets_403(self, technician_client):
        resp = technician_client.get("/admin/referrals")
        assert resp.status_code == 403

    def test_technician_cannot_credit(self, technician_client):
        referral = make_referral()
        resp = technician_client.post(f"/admin/referrals/{referral.id}/credit", json={})
        assert resp.status_code == 403
        db.session.refresh(referral)
        assert referral.credit_status == "pending"


# ══════════════════════════════════════════════
#  REFERRALS
# ══════════════════════════════════════════════

class TestAdminReferrals:

    def test_list_filters_by_credit_status(self, admin_client):
        make_referral()
        make_referral(referee_phone="5125550143", credit_status="ineligible")

        resp = admin_client.get("/admin/referrals?creditStatus=pending")
        data = json.loads(resp.data)
        assert resp.status_code == 200
        assert len(data["referrals"]) == 1

    @patch(NOTIFY_PATH)
    def test_credit(self, mock_notify, admin_client):
        referral = make_referral()
        resp = admin_client.post(
            f"/admin/referrals/{referral.id}/credit", json={"notes": "Paid out"}
        )
        assert resp.status_code == 200
        db.session.refresh(referral)
        assert referral.credit_status == "credited"
        assert referral.credit_amount == 2500
        mock_notify.assert_called_once()

    @patch(NOTIFY_PATH)
    def test_credit_twice_is_409(self, mock_notify, admin_client):
        referral = make_referral()
        admin_client.post(f"/admin/referrals/{referral.id}/credit", json={})
        resp = admin_client.post(f"/admin/referrals/{referral.id}/credit", json={"amountCents": 9999})
        assert resp.status_code == 409
        db.session.refresh(referral)
        assert referral.credit_amount == 2500
        assert mock_notify.call_count == 1

    @patch(NOTIFY_PATH)
    def test_credit_custom_amount(self, mock_notify, admin_client):
        referral = make_referral()
        resp = admin_client.post(
            f"/admin/referrals/{referral.id}/credit", json={"amountCents": 5000}
        )
        assert json.loads(resp.data)["referral"]["creditAmount"] == 5000

    def test_credit_bad_amount_is_400(self, admin_client):
        referral = make_referral()
        resp = admin_client.post(
            f"/admin/referrals/{referral.id}/credit", json={"amountCents": "lots"}
        )
        assert resp.status_code == 400

    def test_credit_unknown_is_404(self, admin_client):
        resp = admin_client.post("/admin/referrals/nope/credit", json={})
        assert resp.status_code == 404

    def test_credit_ineligible_is_400(self, admin_client):
        referral = make_referral(credit_status="ineligible")
        resp = admin_client.post(f"/admin/referrals/{referral.id}/credit", json={})
        assert resp.status_code == 400

    def test_mark_ineligible(self, admin_client):
        referral = make_referral(status="contacted", credit_status=None)
        resp = admin_client.post(
            f"/admin/referrals/{referral.id}/ineligible", json={"reason": "Self-referral"}
        )
        assert resp.status_code == 200
        db.session.refresh(referral)
        assert referral.credit_notes == "Self-referral"


# ══════════════════════════════════════════════
#  NURTURE CAMPAIGNS & TEMPLATES
# ══════════════════════════════════════════════

class TestAdminNurture:

    def test_enrol_reviewer(self, admin_client):
        resp = admin_client.post("/admin/nurture/campaigns", json={
            "customerId": "1001", "email": "Rita@Example.com", "reviewId": "g-123",
        })
        assert resp.status_code == 201
        campaign = json.loads(resp.data)["campaign"]
        assert campaign["status"] == "queued"
        assert campaign["customerEmail"] == "rita@example.com"

    def test_enrol_twice_returns_same_campaign(self, admin_client):
        first = admin_client.post("/admin/nurture/campaigns", json={
            "customerId": 1001, "email": "rita@example.com",
        })
        second = admin_client.post("/admin/nurture/campaigns", json={
            "customerId": 1001, "email": "rita@example.com",
        })
        assert json.loads(first.data)["campaign"]["id"] == json.loads(second.data)["campaign"]["id"]
        assert ReferralNurtureCampaign.query.count() == 1

    def test_enrol_missing_fields(self, admin_client):
        resp = admin_client.post("/admin/nurture/campaigns", json={"customerId": 1001})
        assert resp.status_code == 400

    def test_list_by_status(self, admin_client):
        db.session.add(ReferralNurtureCampaign(customer_id=1, customer_email="a@example.com"))
        db.session.add(ReferralNurtureCampaign(
            customer_id=2, customer_email="b@example.com", status="paused",
        ))
        db.session.commit()

        resp = admin_client.get("/admin/nurture/campaigns?status=paused")
        campaigns = json.loads(resp.data)["campaigns"]
        assert [c["customerId"] for c in campaigns] == [2]

    def test_resume_paused_campaign(self, admin_client):
        campaign = ReferralNurtureCampaign(
            customer_id=1001, customer_email="rita@example.com",
            status="paused", pause_reason="low_engagement", consecutive_unopened=2,
        )
        db.session.add(campaign)
        db.session.commit()

        resp = admin_client.post(f"/admin/nurture/campaigns/{campaign.id}/resume")
        assert resp.status_code == 200
        db.session.refresh(campaign)
        assert campaign.status == "queued"
        assert campaign.consecutive_unopened == 0
        assert AuditEvent.query.filter_by(action="nurture.resumed").count() == 1

    def test_resume_suppressed_is_409(self, admin_client):
        campaign = ReferralNurtureCampaign(
            customer_id=1001, customer_email="rita@example.com",
            status="paused", pause_reason="hard_bounce",
        )
        db.session.add(campaign)
        db.session.add(EmailSuppression(email="rita@example.com", reason="hard_bounce"))
        db.session.commit()

        resp = admin_client.post(f"/admin/nurture/campaigns/{campaign.id}/resume")
        assert resp.status_code == 409

    def test_resume_unknown_is_404(self, admin_client):
        resp = admin_client.post("/admin/nurture/campaigns/nope/resume")
        assert resp.status_code == 404

    def test_save_template_cleans_html(self, admin_client):
        resp = admin_client.put("/admin/nurture/templates/referral_nurture/1", json={
            "subject": "Thanks {{customerName}}",
            "htmlContent": '<p>Share <a href="{{referralLink}}">this</a></p><script>alert(1)</script>',
            "plainTextContent": "Share {{referralLink}}",
            "strategy": "value",
        })
        assert resp.status_code == 200
        template = ReviewEmailTemplate.query.one()
        assert "<script>" not in template.html_content
        assert '<a href="{{referralLink}}">' in template.html_content

    def test_save_template_updates_slot(self, admin_client):
        body = {"subject": "One", "htmlContent": "<p>1</p>", "plainTextContent": "1"}
        admin_client.put("/admin/nurture/templates/referral_nurture/2", json=body)
        body["subject"] = "Two"
        admin_client.put("/admin/nurture/templates/referral_nurture/2", json=body)
        assert ReviewEmailTemplate.query.one().subject == "Two"

    def test_save_template_validation(self, admin_client):
        resp = admin_client.put("/admin/nurture/templates/referral_nurture/1", json={
            "subject": "", "htmlContent": "<p>x</p>", "plainTextContent": "x", "strategy": "fomo",
        })
        assert resp.status_code == 400
        error = json.loads(resp.data)["error"]
        assert "Subject is required." in error
        assert "Unknown strategy: fomo" in error

    def test_unknown_template_slot_is_404(self, admin_client):
        resp = admin_client.put("/admin/nurture/templates/referral_nurture/5", json={})
        assert resp.status_code == 404


# ══════════════════════════════════════════════
#  SETTINGS, TRACKING NUMBERS, VOUCHERS
# ══════════════════════════════════════════════

class TestAdminSettings:

    def test_show_settings(self, admin_client):
        data = json.loads(admin_client.get("/admin/settings").data)
        assert data["settings"]["review_master_email_switch"] == "true"
        assert data["canSendEmails"] is True
        assert data["reason"] is None

    def test_turn_off_drip(self, admin_client):
        resp = admin_client.put("/admin/settings", json={"review_drip_enabled": False})
        data = json.loads(resp.data)
        assert data["settings"]["review_drip_enabled"] == "false"
        assert data["canSendEmails"] is False
        assert data["reason"] == "Review/referral drip campaigns disabled"
        assert db.session.get(SystemSetting, "review_drip_enabled").value == "false"

    def test_unknown_setting_rejected(self, admin_client):
        resp = admin_client.put("/admin/settings", json={"debug_mode": "true"})
        assert resp.status_code == 400


class TestAdminTrackingNumbers:

    def test_create_and_list(self, admin_client):
        resp = admin_client.post("/admin/tracking-numbers", json={
            "utmSource": "Google", "displayName": "Google Ads",
            "phoneNumber": "(512) 555-0300", "serviceTitanCampaignId": 777,
        })
        assert resp.status_code == 201
        rows = json.loads(admin_client.get("/admin/tracking-numbers").data)["trackingNumbers"]
        assert rows[0]["utmSource"] == "google"
        assert rows[0]["serviceTitanCampaignId"] == 777

    def test_duplicate_is_409(self, admin_client):
        admin_client.post("/admin/tracking-numbers", json={"utmSource": "yelp"})
        resp = admin_client.post("/admin/tracking-numbers", json={"utmSource": "yelp"})
        assert resp.status_code == 409

    def test_missing_source_is_400(self, admin_client):
        resp = admin_client.post("/admin/tracking-numbers", json={"displayName": "x"})
        assert resp.status_code == 400


class TestAdminVouchers:

    def test_list_by_status(self, admin_client):
        create_voucher("referral_new_customer", customer_name="Pat")
        expired = create_voucher("referral_reward", customer_name="Rita", expires_days=-1)
        expired.status = "expired"
        db.session.commit()

        resp = admin_client.get("/admin/vouchers?status=active")
        vouchers = json.loads(resp.data)["vouchers"]
        assert len(vouchers) == 1
        assert vouchers[0]["customerName"] == "Pat"

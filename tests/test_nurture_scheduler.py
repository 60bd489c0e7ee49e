"""Tests for the referral nurture drip.

Covers:
- One campaign per customer (second enrolment returns the same id)
- Three-level send gate with reasons
- Content source selection: stored template first, OpenAI otherwise
- Seasons and strategies
- send_referral_email pipeline: suppression, opt-out, content failure,
  send log, status progression, low-engagement pause, completion
- process_pending_emails cadence (14/60/150/210 days), one email per run
- Resend engagement events
"""

import json
from datetime import date, datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from backoffice.extensions import db
from backoffice.models.email import EmailPreference, EmailSendLog, EmailSuppression
from backoffice.models.nurture import ReferralNurtureCampaign, ReviewEmailTemplate
from backoffice.models.referral import ReferralCode
from backoffice.models.setting import SystemSetting
from backoffice.services.email_content import (
    EmailContent,
    EmailContentError,
    GeneratedSource,
    Recipient,
    Season,
    Strategy,
    TemplateSource,
    apply_merge_fields,
    season_for,
    select_content_source,
    strategy_for,
)
from backoffice.services.nurture_service import ReferralNurtureScheduler, handle_resend_event

SEND_PATH = "backoffice.services.nurture_service.send_resend_email"


def canned_content(*args, **kwargs):
    return EmailContent(
        subject="Share the love",
        html_body="<html><body><p>Hi there</p></body></html>",
        text_body="Hi there",
    )


@pytest.fixture
def scheduler(app):
    scheduler = ReferralNurtureScheduler(app.config)
    scheduler.get_email_content = MagicMock(side_effect=canned_content)
    return scheduler


def enrol(scheduler, customer_id=1001, email="rita@example.com", days_ago=0):
    campaign_id = scheduler.create_campaign_for_reviewer(customer_id, email, "review-1")
    campaign = db.session.get(ReferralNurtureCampaign, campaign_id)
    campaign.created_at = datetime.now(timezone.utc) - timedelta(days=days_ago)
    db.session.commit()
    return campaign


def fake_openai(payload):
    client = MagicMock()
    message = MagicMock()
    message.content = json.dumps(payload)
    client.chat.completions.create.return_value.choices = [MagicMock(message=message)]
    return client


# ══════════════════════════════════════════════
#  ENROLMENT & GATES
# ══════════════════════════════════════════════

class TestEnrolment:

    def test_one_campaign_per_customer(self, seed_data, scheduler):
        first = scheduler.create_campaign_for_reviewer(1001, "rita@example.com")
        second = scheduler.create_campaign_for_reviewer(1001, "other@example.com")
        assert first == second
        assert ReferralNurtureCampaign.query.count() == 1
        assert db.session.get(ReferralNurtureCampaign, first).status == "queued"


class TestGates:

    def test_all_on(self, seed_data, scheduler):
        assert scheduler.can_send_emails() == (True, None)

    def test_master_switch_off(self, seed_data, scheduler):
        SystemSetting.set("review_master_email_switch", "false")
        db.session.commit()
        assert scheduler.can_send_emails() == (False, "Email system disabled")

    def test_drip_off(self, seed_data, scheduler):
        SystemSetting.set("review_drip_enabled", "false")
        db.session.commit()
        assert scheduler.can_send_emails() == (False, "Review/referral drip campaigns disabled")

    def test_phone_missing(self, seed_data, scheduler):
        SystemSetting.set("referral_nurture_phone_number", "  ")
        db.session.commit()
        assert scheduler.can_send_emails() == (
            False, "Referral nurture phone number not configured"
        )


# ══════════════════════════════════════════════
#  CONTENT
# ══════════════════════════════════════════════

class TestContent:

    def test_season_table(self):
        assert season_for(date(2026, 1, 15)) == Season.WINTER
        assert season_for(date(2026, 7, 4)) == Season.SUMMER

    def test_strategy_table_and_override(self):
        assert strategy_for("referral_nurture", 1) == Strategy.VALUE
        assert strategy_for("referral_nurture", 4) == Strategy.URGENCY
        assert strategy_for("quote_followup", 3) == Strategy.SEASONAL
        assert strategy_for("referral_nurture", 1, override="trust") == Strategy.TRUST

    def test_merge_fields(self):
        text = apply_merge_fields("Hi {{customerName}}, {{unknown}}", {"customerName": "Rita"})
        assert text == "Hi Rita, {{unknown}}"

    def test_template_preferred(self, app, seed_data):
        db.session.add(ReviewEmailTemplate(
            campaign_type="referral_nurture",
            email_number=1,
            subject="Thanks {{customerName}}!",
            html_content="<p>Share {{referralLink}}</p>",
            plain_text_content="Share {{referralLink}}",
        ))
        db.session.commit()

        openai_client = MagicMock()
        source = select_content_source(
            "referral_nurture", 1, app.config, openai_client=openai_client
        )
        assert isinstance(source, TemplateSource)

        content = source.render(Recipient(
            customer_id=1001, customer_name="Rita",
            referral_link="http://localhost:5000/ref/RITA1001",
        ))
        assert content.subject == "Thanks Rita!"
        assert "http://localhost:5000/ref/RITA1001" in content.html_body
        openai_client.chat.completions.create.assert_not_called()

    def test_generated_when_no_template(self, app, seed_data):
        client = fake_openai({
            "subject": "Hey {{customerName}}",
            "preheader": "A quick thank-you",
            "bodyHtml": "<p>Link: {{referralLink}}</p>",
            "bodyPlain": "Link: {{referralLink}}",
        })
        source = select_content_source("referral_nurture", 2, app.config, openai_client=client)
        assert isinstance(source, GeneratedSource)

        content = source.render(Recipient(
            customer_id=1001, customer_name="Rita", referral_link="http://x/ref/1",
        ))
        assert content.subject == "Hey Rita"
        assert content.text_body == "Link: http://x/ref/1"
        assert content.strategy == "trust"
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}
        assert "http://x/ref/1" in kwargs["messages"][1]["content"]

    def test_generated_missing_fields_is_error(self, app, seed_data):
        client = fake_openai({"subject": "Only a subject"})
        source = GeneratedSource("referral_nurture", 1, client=client)
        with pytest.raises(EmailContentError):
            source.render(Recipient(customer_id=1, customer_name="Rita"))

    def test_no_api_key_is_error(self):
        with pytest.raises(EmailContentError):
            GeneratedSource("referral_nurture", 1, api_key=None)

    def test_referral_link_creates_code(self, app, seed_data):
        db.session.delete(ReferralCode.query.filter_by(customer_id=1001).one())
        db.session.commit()

        link = ReferralNurtureScheduler(app.config).get_referral_link(1001)
        assert link == "http://localhost:5000/ref/1001"
        code = ReferralCode.query.filter_by(customer_id=1001).one()
        assert code.customer_phone == "5125550100"


# ══════════════════════════════════════════════
#  SENDING ONE EMAIL
# ══════════════════════════════════════════════

class TestSendReferralEmail:

    @patch(SEND_PATH, return_value="re_msg_1")
    def test_sends_and_logs(self, mock_send, seed_data, scheduler):
        campaign = enrol(scheduler)
        assert scheduler.send_referral_email(campaign.id, 1) is True

        kwargs = mock_send.call_args.kwargs
        assert kwargs["to"] == "rita@example.com"
        assert "/email-preferences/" in kwargs["unsubscribe_url"]
        assert kwargs["html"].index("unsubscribe") < kwargs["html"].index("</body>")
        assert "Unsubscribe:" in kwargs["text"]

        log = EmailSendLog.query.one()
        assert log.resend_email_id == "re_msg_1"
        assert log.email_number == 1

        db.session.refresh(campaign)
        assert campaign.status == "email1_sent"
        assert campaign.email1_sent_at is not None
        assert campaign.consecutive_unopened == 1

    @patch(SEND_PATH)
    def test_suppressed_recipient_pauses(self, mock_send, seed_data, scheduler):
        campaign = enrol(scheduler)
        db.session.add(EmailSuppression(email="rita@example.com", reason="hard_bounce"))
        db.session.commit()

        assert scheduler.send_referral_email(campaign.id, 1) is False
        mock_send.assert_not_called()
        db.session.refresh(campaign)
        assert campaign.status == "paused"
        assert campaign.pause_reason == "hard_bounce"

    @patch(SEND_PATH)
    def test_opted_out_pauses(self, mock_send, seed_data, scheduler):
        campaign = enrol(scheduler)
        db.session.add(EmailPreference(
            email="rita@example.com", unsubscribe_token="t" * 64, referral_emails=False,
        ))
        db.session.commit()

        assert scheduler.send_referral_email(campaign.id, 1) is False
        mock_send.assert_not_called()
        db.session.refresh(campaign)
        assert campaign.pause_reason == "opted_out"

    @patch(SEND_PATH)
    def test_content_failure_leaves_campaign_unchanged(self, mock_send, seed_data, scheduler):
        campaign = enrol(scheduler)
        scheduler.get_email_content = MagicMock(side_effect=EmailContentError("no key"))

        assert scheduler.send_referral_email(campaign.id, 1) is False
        mock_send.assert_not_called()
        db.session.refresh(campaign)
        assert campaign.status == "queued"

    @patch(SEND_PATH, side_effect=RuntimeError("provider down"))
    def test_send_error_returns_false(self, mock_send, seed_data, scheduler):
        campaign = enrol(scheduler)
        assert scheduler.send_referral_email(campaign.id, 1) is False
        db.session.refresh(campaign)
        assert campaign.status == "queued"
        assert EmailSendLog.query.count() == 0

    @patch(SEND_PATH)
    def test_invalid_email_number(self, mock_send, seed_data, scheduler):
        campaign = enrol(scheduler)
        assert scheduler.send_referral_email(campaign.id, 5) is False
        mock_send.assert_not_called()

    @patch(SEND_PATH, side_effect=["re_1", "re_2"])
    def test_two_unopened_pauses_for_low_engagement(self, mock_send, seed_data, scheduler):
        campaign = enrol(scheduler)
        scheduler.send_referral_email(campaign.id, 1)
        scheduler.send_referral_email(campaign.id, 2)

        db.session.refresh(campaign)
        assert campaign.status == "paused"
        assert campaign.pause_reason == "low_engagement"

    @patch(SEND_PATH, return_value="re_4")
    def test_fourth_email_completes(self, mock_send, seed_data, scheduler):
        campaign = enrol(scheduler)
        campaign.status = "email3_sent"
        campaign.consecutive_unopened = 1
        db.session.commit()

        assert scheduler.send_referral_email(campaign.id, 4) is True
        db.session.refresh(campaign)
        assert campaign.status == "completed"
        assert campaign.completed_at is not None
        assert campaign.consecutive_unopened == 2
        assert campaign.pause_reason is None


# ══════════════════════════════════════════════
#  CRON RUN
# ══════════════════════════════════════════════

class TestProcessPendingEmails:

    @patch(SEND_PATH)
    def test_gate_closed_skips_everything(self, mock_send, seed_data, scheduler):
        enrol(scheduler, days_ago=30)
        SystemSetting.set("review_master_email_switch", "false")
        db.session.commit()

        summary = scheduler.process_pending_emails()
        assert summary["skipped_reason"] == "Email system disabled"
        mock_send.assert_not_called()

    @patch(SEND_PATH, return_value="re_x")
    def test_cadence(self, mock_send, seed_data, scheduler):
        enrol(scheduler, customer_id=1, email="a@example.com", days_ago=13)
        due = enrol(scheduler, customer_id=2, email="b@example.com", days_ago=14)

        summary = scheduler.process_pending_emails()
        assert summary["due"] == [{"campaignId": due.id, "emailNumber": 1}]
        assert summary["sent"] == 1

    @patch(SEND_PATH, return_value="re_y")
    def test_at_most_one_email_per_run(self, mock_send, seed_data, scheduler):
        # Overdue for emails 1 and 2
        campaign = enrol(scheduler, days_ago=70)
        scheduler.process_pending_emails()
        assert mock_send.call_count == 1
        db.session.refresh(campaign)
        assert campaign.status == "email1_sent"

    @patch(SEND_PATH)
    def test_dry_run_sends_nothing(self, mock_send, seed_data, scheduler):
        enrol(scheduler, days_ago=20)
        summary = scheduler.process_pending_emails(dry_run=True)
        assert len(summary["due"]) == 1
        assert summary["sent"] == 0
        mock_send.assert_not_called()

    @patch(SEND_PATH)
    def test_low_engagement_not_scanned(self, mock_send, seed_data, scheduler):
        campaign = enrol(scheduler, days_ago=70)
        campaign.status = "email1_sent"
        campaign.email1_sent_at = datetime.now(timezone.utc) - timedelta(days=50)
        campaign.consecutive_unopened = 2
        db.session.commit()

        summary = scheduler.process_pending_emails()
        assert summary["scanned"] == 0


# ══════════════════════════════════════════════
#  ENGAGEMENT
# ══════════════════════════════════════════════

class TestResendEvents:

    def _sent(self, scheduler, unopened=1):
        campaign = enrol(scheduler)
        campaign.status = "email1_sent"
        campaign.consecutive_unopened = unopened
        db.session.add(EmailSendLog(
            campaign_type="referral_nurture",
            campaign_record_id=campaign.id,
            email_number=1,
            recipient_email="rita@example.com",
            resend_email_id="re_evt",
        ))
        db.session.commit()
        return campaign

    def test_open_resets_unopened(self, seed_data, scheduler):
        campaign = self._sent(scheduler)
        handled, _ = handle_resend_event({"type": "email.opened", "data": {"email_id": "re_evt"}})
        assert handled
        db.session.refresh(campaign)
        assert campaign.consecutive_unopened == 0
        assert campaign.total_opens == 1
        assert EmailSendLog.query.one().opened_at is not None

    def test_repeat_open_counted_once(self, seed_data, scheduler):
        campaign = self._sent(scheduler)
        event = {"type": "email.opened", "data": {"email_id": "re_evt"}}
        handle_resend_event(event)
        handle_resend_event(event)
        db.session.refresh(campaign)
        assert campaign.total_opens == 1

    def test_bounce_suppresses_and_pauses(self, seed_data, scheduler):
        campaign = self._sent(scheduler)
        handle_resend_event({"type": "email.bounced", "data": {"email_id": "re_evt"}})

        assert EmailSuppression.query.filter_by(email="rita@example.com").one().reason == "hard_bounce"
        db.session.refresh(campaign)
        assert campaign.status == "paused"

    def test_unknown_email_ignored(self, seed_data):
        handled, message = handle_resend_event(
            {"type": "email.opened", "data": {"email_id": "re_unknown"}}
        )
        assert handled
        assert "unknown email" in message

    def test_malformed_event(self, seed_data):
        handled, _ = handle_resend_event({"type": "email.opened"})
        assert not handled

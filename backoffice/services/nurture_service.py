"""Referral nurture service — the 4-email drip sent to happy reviewers.

Campaign states:
    queued -> email1_sent -> email2_sent -> email3_sent -> completed
    any non-terminal state -> paused (suppressed, opted out, or two sends
    in a row without an open)

Emails go out on days 14, 60, 150 and 210 after the campaign was created,
at most one per campaign per run of `flask process-nurture-emails`.

One ReferralNurtureScheduler is built in create_app() and registered as
app.extensions["nurture_scheduler"]; it holds configuration only, all
state lives in the database.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from backoffice.extensions import db
from backoffice.models.audit import log_audit
from backoffice.models.customer_cache import CachedCustomer
from backoffice.models.email import EmailSendLog
from backoffice.models.nurture import ReferralNurtureCampaign
from backoffice.models.referral import ReferralCode
from backoffice.models.setting import SystemSetting
from backoffice.services.email_content import (
    EmailContentError,
    Recipient,
    SEND_DAYS,
    select_content_source,
)
from backoffice.services.email_preferences import (
    add_unsubscribe_footer,
    add_unsubscribe_footer_plain_text,
    can_send_email,
    get_suppression,
    suppress_email,
)
from backoffice.services.email_service import send_resend_email

logger = logging.getLogger(__name__)

CAMPAIGN_TYPE = "referral_nurture"
LOW_ENGAGEMENT_THRESHOLD = 2

# System setting keys
MASTER_SWITCH_KEY = "review_master_email_switch"
DRIP_ENABLED_KEY = "review_drip_enabled"
PHONE_NUMBER_KEY = "referral_nurture_phone_number"


def _now():
    return datetime.now(timezone.utc)


def _aware(value):
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _truthy(value):
    return str(value or "").strip().lower() in ("true", "1", "yes", "on")


class ReferralNurtureScheduler:
    cadence = SEND_DAYS[CAMPAIGN_TYPE]

    def __init__(self, config, openai_client=None):
        self.config = config
        self.openai_client = openai_client

    # ──────────────────────────────────────────────
    # Enrollment
    # ──────────────────────────────────────────────

    def create_campaign_for_reviewer(self, customer_id, email, review_id=None):
        """Start a campaign for a customer. Returns the campaign id.

        One campaign per customer, ever: a second call returns the
        existing id.
        """
        campaign = ReferralNurtureCampaign(
            customer_id=customer_id,
            customer_email=(email or "").strip().lower(),
            original_review_id=review_id,
            status="queued",
        )
        db.session.add(campaign)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            existing = ReferralNurtureCampaign.query.filter_by(customer_id=customer_id).first()
            logger.info(f"Customer {customer_id} already has nurture campaign {existing.id}")
            return existing.id

        logger.info(f"Created nurture campaign {campaign.id} for customer {customer_id}")
        return campaign.id

    # ──────────────────────────────────────────────
    # Gates
    # ──────────────────────────────────────────────

    def get_email_settings(self):
        settings = SystemSetting.as_map()
        return {
            "master_email_enabled": _truthy(settings.get(MASTER_SWITCH_KEY)),
            "drip_enabled": _truthy(settings.get(DRIP_ENABLED_KEY)),
            "phone_number": (settings.get(PHONE_NUMBER_KEY) or "").strip() or None,
        }

    def can_send_emails(self):
        """Master switch, then drip flag, then tracking phone. Returns (ok, reason)."""
        settings = self.get_email_settings()
        if not settings["master_email_enabled"]:
            return False, "Email system disabled"
        if not settings["drip_enabled"]:
            return False, "Review/referral drip campaigns disabled"
        if not settings["phone_number"]:
            return False, "Referral nurture phone number not configured"
        return True, None

    # ──────────────────────────────────────────────
    # Content
    # ──────────────────────────────────────────────

    def get_referral_link(self, customer_id):
        """The customer's share link, creating their referral code if needed."""
        code = ReferralCode.query.filter_by(customer_id=customer_id).first()
        if code is None:
            customer = db.session.get(CachedCustomer, customer_id)
            code = ReferralCode(
                customer_id=customer_id,
                customer_name=customer.name if customer else None,
                customer_phone=(customer.phone if customer else None) or "",
                code=str(customer_id),
            )
            db.session.add(code)
            try:
                db.session.commit()
            except IntegrityError:
                db.session.rollback()
                code = ReferralCode.query.filter_by(customer_id=customer_id).first()
        base_url = self.config["APP_BASE_URL"].rstrip("/")
        return f"{base_url}/ref/{code.code}"

    def build_recipient(self, campaign, phone_number=None):
        customer = db.session.get(CachedCustomer, campaign.customer_id)
        return Recipient(
            customer_id=campaign.customer_id,
            customer_name=customer.name.split(" ")[0] if customer and customer.name else "there",
            referral_link=self.get_referral_link(campaign.customer_id),
            phone_number=phone_number,
            location=customer.city if customer else None,
        )

    def get_email_content(self, email_number, recipient, today=None):
        source = select_content_source(
            CAMPAIGN_TYPE,
            email_number,
            self.config,
            openai_client=self.openai_client,
            today=today,
        )
        logger.info(f"Nurture email {email_number} content from {source.kind}")
        return source.render(recipient)

    # ──────────────────────────────────────────────
    # Sending
    # ──────────────────────────────────────────────

    def _pause(self, campaign, reason, now=None):
        campaign.status = "paused"
        campaign.paused_at = now or _now()
        campaign.pause_reason = reason
        db.session.commit()
        logger.info(f"Paused nurture campaign {campaign.id} ({reason})")

    def send_referral_email(self, campaign_id, email_number, now=None):
        """Send one drip email. Returns True on success; never raises."""
        try:
            return self._send(campaign_id, email_number, now or _now())
        except Exception as e:
            db.session.rollback()
            logger.exception(
                f"Nurture email {email_number} for campaign {campaign_id} failed: {e}"
            )
            return False

    def _send(self, campaign_id, email_number, now):
        if email_number not in (1, 2, 3, 4):
            logger.error(f"Invalid nurture email number {email_number}")
            return False

        campaign = db.session.get(ReferralNurtureCampaign, campaign_id)
        if campaign is None:
            logger.error(f"Nurture campaign {campaign_id} not found")
            return False
        if campaign.status not in ReferralNurtureCampaign.ACTIVE_STATUSES:
            logger.info(f"Nurture campaign {campaign_id} is {campaign.status}, not sending")
            return False

        email = campaign.customer_email

        suppression = get_suppression(email)
        if suppression:
            logger.info(f"{email} is suppressed ({suppression.reason})")
            self._pause(campaign, suppression.reason, now)
            return False

        check = can_send_email(email, "referral", campaign.customer_id)
        if not check.can_send:
            logger.info(f"{email} opted out: {check.reason}")
            self._pause(campaign, "opted_out", now)
            return False

        settings = self.get_email_settings()
        recipient = self.build_recipient(campaign, settings["phone_number"])
        try:
            content = self.get_email_content(email_number, recipient, today=now.date())
        except EmailContentError as e:
            logger.error(f"No content for nurture email {email_number}: {e}")
            return False

        if not self.config.get("RESEND_API_KEY"):
            logger.error("RESEND_API_KEY not configured, nurture email not sent")
            return False

        html = add_unsubscribe_footer(
            content.html_body, check.unsubscribe_url, self.config.get("COMPANY_NAME")
        )
        text = add_unsubscribe_footer_plain_text(
            content.text_body, check.unsubscribe_url, self.config.get("COMPANY_NAME")
        )

        email_id = send_resend_email(
            to=email,
            subject=content.subject,
            html=html,
            text=text,
            unsubscribe_url=check.unsubscribe_url,
            tags={"campaign": CAMPAIGN_TYPE, "email_number": email_number},
        )

        db.session.add(EmailSendLog(
            campaign_type=CAMPAIGN_TYPE,
            campaign_record_id=campaign.id,
            email_number=email_number,
            recipient_email=email,
            recipient_name=recipient.customer_name,
            customer_id=campaign.customer_id,
            resend_email_id=email_id,
            resend_status="sent",
        ))

        campaign.consecutive_unopened = (campaign.consecutive_unopened or 0) + 1
        setattr(campaign, f"email{email_number}_sent_at", now)
        if email_number == 4:
            campaign.status = "completed"
            campaign.completed_at = now
        else:
            campaign.status = f"email{email_number}_sent"
            if campaign.consecutive_unopened >= LOW_ENGAGEMENT_THRESHOLD:
                campaign.status = "paused"
                campaign.paused_at = now
                campaign.pause_reason = "low_engagement"
        db.session.commit()

        logger.info(
            f"Sent nurture email {email_number} to {email} "
            f"(campaign {campaign.id}, now {campaign.status})"
        )
        return True

    # ──────────────────────────────────────────────
    # Cron
    # ──────────────────────────────────────────────

    def next_email_due(self, campaign, now):
        """First unmet cadence threshold, or None."""
        days = (now - _aware(campaign.created_at)).days
        for number, threshold in enumerate(self.cadence, start=1):
            if days >= threshold and campaign.sent_at(number) is None:
                return number
        return None

    def process_pending_emails(self, now=None, dry_run=False):
        """Send whatever is due. Returns a summary dict."""
        now = now or _now()
        summary = {"scanned": 0, "sent": 0, "failed": 0, "due": [], "skipped_reason": None}

        ok, reason = self.can_send_emails()
        if not ok:
            logger.info(f"Nurture run skipped: {reason}")
            summary["skipped_reason"] = reason
            return summary

        campaigns = (
            ReferralNurtureCampaign.query.filter(
                ReferralNurtureCampaign.status.in_(ReferralNurtureCampaign.ACTIVE_STATUSES),
                ReferralNurtureCampaign.consecutive_unopened < LOW_ENGAGEMENT_THRESHOLD,
            )
            .order_by(ReferralNurtureCampaign.created_at.asc())
            .all()
        )
        summary["scanned"] = len(campaigns)

        for campaign in campaigns:
            number = self.next_email_due(campaign, now)
            if number is None:
                continue
            summary["due"].append({"campaignId": campaign.id, "emailNumber": number})
            if dry_run:
                continue
            if self.send_referral_email(campaign.id, number, now=now):
                summary["sent"] += 1
            else:
                summary["failed"] += 1

        logger.info(
            f"Nurture run: scanned {summary['scanned']}, due {len(summary['due'])}, "
            f"sent {summary['sent']}, failed {summary['failed']}"
            + (" (dry run)" if dry_run else "")
        )
        return summary

    # ──────────────────────────────────────────────
    # Admin
    # ──────────────────────────────────────────────

    def resume_campaign(self, campaign_id, actor=None):
        """Un-pause a campaign. Returns (campaign, error_message)."""
        campaign = db.session.get(ReferralNurtureCampaign, campaign_id)
        if campaign is None:
            return None, "Campaign not found."
        if campaign.status != "paused":
            return campaign, "Only paused campaigns can be resumed."
        if get_suppression(campaign.customer_email):
            return campaign, "Recipient is on the suppression list."

        last_sent = max(
            (n for n in range(1, 5) if campaign.sent_at(n) is not None), default=0
        )
        campaign.status = f"email{last_sent}_sent" if last_sent else "queued"
        campaign.consecutive_unopened = 0
        campaign.paused_at = None
        campaign.pause_reason = None
        log_audit(
            "nurture.resumed",
            subject_id=campaign.id,
            actor_user_id=actor.id if actor else None,
        )
        db.session.commit()
        logger.info(f"Resumed nurture campaign {campaign.id} as {campaign.status}")
        return campaign, None


# ──────────────────────────────────────────────
# Resend engagement webhooks
# ──────────────────────────────────────────────

BOUNCE_EVENTS = {
    "email.bounced": ("bounced", "hard_bounce"),
    "email.complained": ("complained", "spam_complaint"),
}


def handle_resend_event(event):
    """Apply a Resend webhook event to the send log and its campaign.

    Returns:
        tuple: (handled, message)
    """
    event_type = event.get("type")
    data = event.get("data") or {}
    email_id = data.get("email_id")
    if not event_type or not email_id:
        return False, "Missing event type or email id"

    send_log = EmailSendLog.query.filter_by(resend_email_id=email_id).first()
    if send_log is None:
        return True, f"Ignored {event_type}: unknown email {email_id}"

    campaign = None
    if send_log.campaign_type == CAMPAIGN_TYPE and send_log.campaign_record_id:
        campaign = db.session.get(ReferralNurtureCampaign, send_log.campaign_record_id)

    now = _now()
    if event_type == "email.delivered":
        if send_log.resend_status == "sent":
            send_log.resend_status = "delivered"
    elif event_type == "email.opened":
        first_open = send_log.opened_at is None
        send_log.opened_at = send_log.opened_at or now
        if send_log.resend_status in ("sent", "delivered"):
            send_log.resend_status = "opened"
        if campaign and first_open:
            campaign.consecutive_unopened = 0
            campaign.total_opens = (campaign.total_opens or 0) + 1
    elif event_type == "email.clicked":
        first_click = send_log.clicked_at is None
        send_log.clicked_at = send_log.clicked_at or now
        send_log.opened_at = send_log.opened_at or now
        send_log.resend_status = "clicked"
        if campaign:
            campaign.consecutive_unopened = 0
            if first_click:
                campaign.total_clicks = (campaign.total_clicks or 0) + 1
    elif event_type in BOUNCE_EVENTS:
        status, reason = BOUNCE_EVENTS[event_type]
        send_log.resend_status = status
        db.session.commit()
        suppress_email(send_log.recipient_email, reason, source="resend_webhook")
        if campaign and campaign.status in ReferralNurtureCampaign.ACTIVE_STATUSES:
            campaign.status = "paused"
            campaign.paused_at = now
            campaign.pause_reason = reason
    else:
        return True, f"Ignored {event_type}"

    db.session.commit()
    logger.info(f"Resend event {event_type} applied to {email_id}")
    return True, f"Processed {event_type}"

"""Email delivery models.

- EmailSuppression: addresses that must never receive automated mail.
- EmailPreference: per-address opt-in flags + unsubscribe token.
- EmailSendLog: one row per automated send, updated by provider webhooks.
"""

import uuid

from backoffice.extensions import db


class EmailSuppression(db.Model):
    __tablename__ = "email_suppression_list"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    email = db.Column(db.String(255), unique=True, nullable=False)  # stored lowercase
    reason = db.Column(
        db.String(100), nullable=False
    )  # hard_bounce | spam_complaint | manual
    source = db.Column(db.String(100), nullable=True)  # e.g. "resend_webhook"
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<EmailSuppression {self.email} ({self.reason})>"


class EmailPreference(db.Model):
    __tablename__ = "email_preferences"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    email = db.Column(db.String(255), unique=True, nullable=False)  # stored lowercase
    customer_id = db.Column(db.BigInteger, nullable=True)
    unsubscribe_token = db.Column(db.String(64), unique=True, nullable=False)
    marketing_emails = db.Column(db.Boolean, default=True, nullable=False)
    review_requests = db.Column(db.Boolean, default=True, nullable=False)
    referral_emails = db.Column(db.Boolean, default=True, nullable=False)
    service_reminders = db.Column(db.Boolean, default=True, nullable=False)
    transactional_only = db.Column(db.Boolean, default=False, nullable=False)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self):
        return {
            "email": self.email,
            "marketingEmails": self.marketing_emails,
            "reviewRequests": self.review_requests,
            "referralEmails": self.referral_emails,
            "serviceReminders": self.service_reminders,
            "transactionalOnly": self.transactional_only,
        }

    def __repr__(self):
        return f"<EmailPreference {self.email}>"


class EmailSendLog(db.Model):
    __tablename__ = "email_send_log"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    campaign_type = db.Column(db.String(50), nullable=False)  # e.g. referral_nurture
    campaign_record_id = db.Column(db.String(36), nullable=True)
    email_number = db.Column(db.Integer, nullable=True)
    recipient_email = db.Column(db.String(255), nullable=False)
    recipient_name = db.Column(db.String(255), nullable=True)
    customer_id = db.Column(db.BigInteger, nullable=True)
    resend_email_id = db.Column(db.String(255), unique=True, nullable=True)
    resend_status = db.Column(
        db.String(50), default="sent", nullable=False
    )  # sent | delivered | opened | clicked | bounced | complained
    sent_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    opened_at = db.Column(db.DateTime(timezone=True), nullable=True)
    clicked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<EmailSendLog {self.campaign_type} #{self.email_number} -> {self.recipient_email}>"

"""Referral nurture models.

- ReferralNurtureCampaign: 4-email drip sent to a happy reviewer.
  queued -> email1_sent -> email2_sent -> email3_sent -> completed,
  with paused reachable from any non-terminal state. Sending email 4
  always completes the campaign; the low-engagement pause only applies
  to emails 1-3.
- ReviewEmailTemplate: admin-authored email body for one drip slot.
"""

import uuid

from backoffice.extensions import db


class ReferralNurtureCampaign(db.Model):
    __tablename__ = "referral_nurture_campaigns"

    STATUSES = [
        "queued",
        "email1_sent",
        "email2_sent",
        "email3_sent",
        "completed",
        "paused",
    ]

    # Campaigns in these states are still waiting on a send
    ACTIVE_STATUSES = ["queued", "email1_sent", "email2_sent", "email3_sent"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    customer_id = db.Column(
        db.BigInteger, unique=True, nullable=False
    )  # one campaign per customer, ever
    customer_email = db.Column(db.String(255), nullable=False)
    original_review_id = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(50), default="queued", nullable=False)

    email1_sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    email2_sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    email3_sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    email4_sent_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # --- Engagement ---
    consecutive_unopened = db.Column(db.Integer, default=0, nullable=False)
    total_opens = db.Column(db.Integer, default=0, nullable=False)
    total_clicks = db.Column(db.Integer, default=0, nullable=False)
    referrals_submitted = db.Column(db.Integer, default=0, nullable=False)

    paused_at = db.Column(db.DateTime(timezone=True), nullable=True)
    pause_reason = db.Column(
        db.String(100), nullable=True
    )  # low_engagement | opted_out | hard_bounce | spam_complaint | manual
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def sent_at(self, email_number):
        return getattr(self, f"email{email_number}_sent_at")

    def to_dict(self):
        return {
            "id": self.id,
            "customerId": self.customer_id,
            "customerEmail": self.customer_email,
            "originalReviewId": self.original_review_id,
            "status": self.status,
            "email1SentAt": _iso(self.email1_sent_at),
            "email2SentAt": _iso(self.email2_sent_at),
            "email3SentAt": _iso(self.email3_sent_at),
            "email4SentAt": _iso(self.email4_sent_at),
            "consecutiveUnopened": self.consecutive_unopened,
            "totalOpens": self.total_opens,
            "pausedAt": _iso(self.paused_at),
            "pauseReason": self.pause_reason,
            "completedAt": _iso(self.completed_at),
            "createdAt": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<ReferralNurtureCampaign customer={self.customer_id} ({self.status})>"


class ReviewEmailTemplate(db.Model):
    __tablename__ = "review_email_templates"
    __table_args__ = (
        db.UniqueConstraint(
            "campaign_type", "email_number", name="uq_review_email_templates_slot"
        ),
    )

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    campaign_type = db.Column(
        db.String(50), nullable=False
    )  # review_request | referral_nurture | quote_followup
    email_number = db.Column(db.Integer, nullable=False)  # 1-4
    subject = db.Column(db.String(255), nullable=False)
    preheader = db.Column(db.String(255), nullable=True)
    html_content = db.Column(db.Text, nullable=False)
    plain_text_content = db.Column(db.Text, nullable=False)
    strategy = db.Column(db.String(50), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self):
        return f"<ReviewEmailTemplate {self.campaign_type} #{self.email_number}>"


def _iso(value):
    return value.isoformat() if value else None

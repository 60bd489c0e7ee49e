"""Referral models.

- ReferralCode: a referrer's stable share code, tied to their phone.
- PendingReferral: a referral link visit recorded before the referee books.
- Referral: a tracked referral, from submission through crediting.

Referral lifecycle: pending -> contacted -> completed | ineligible
Credit lifecycle:   None -> pending -> credited | ineligible
"""

import uuid

from backoffice.extensions import db


class ReferralCode(db.Model):
    __tablename__ = "referral_codes"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    customer_id = db.Column(db.BigInteger, unique=True, nullable=False)  # ServiceTitan customer id
    customer_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(
        db.String(50), nullable=False
    )  # authoritative referrer phone at credit time
    code = db.Column(db.String(100), unique=True, nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<ReferralCode {self.code} ({self.customer_id})>"


class PendingReferral(db.Model):
    __tablename__ = "pending_referrals"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    tracking_cookie = db.Column(db.String(255), unique=True, nullable=False)
    referrer_customer_id = db.Column(db.BigInteger, nullable=False)
    referrer_name = db.Column(db.String(255), nullable=True)
    referee_name = db.Column(db.String(255), nullable=True)
    referee_email = db.Column(db.String(255), nullable=True)
    referee_phone = db.Column(db.String(50), nullable=True)  # as typed on the landing page
    referral_id = db.Column(
        db.String(36), db.ForeignKey("referrals.id"), nullable=True
    )
    converted_to_referral = db.Column(db.Boolean, default=False, nullable=False)
    converted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    referral = db.relationship("Referral", foreign_keys=[referral_id])

    @property
    def is_converted(self):
        return self.converted_at is not None or bool(self.converted_to_referral)

    def __repr__(self):
        return f"<PendingReferral {self.tracking_cookie} converted={self.is_converted}>"


class Referral(db.Model):
    __tablename__ = "referrals"

    STATUSES = ["pending", "contacted", "completed", "ineligible"]
    CREDIT_STATUSES = ["pending", "credited", "ineligible"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    referrer_name = db.Column(db.String(255), nullable=True)
    referrer_phone = db.Column(db.String(50), nullable=False)
    referrer_customer_id = db.Column(db.BigInteger, nullable=True)
    referee_name = db.Column(db.String(255), nullable=False)
    referee_phone = db.Column(db.String(50), nullable=False)
    referee_email = db.Column(db.String(255), nullable=True)
    referee_customer_id = db.Column(db.BigInteger, nullable=True)

    # Set when created from a pending referral; unique so one link
    # converts into at most one referral.
    tracking_token = db.Column(db.String(255), unique=True, nullable=True)

    status = db.Column(db.String(50), default="pending", nullable=False)

    first_job_id = db.Column(db.String(50), nullable=True)
    first_job_date = db.Column(db.DateTime(timezone=True), nullable=True)
    job_amount = db.Column(db.Integer, nullable=True)  # cents

    credit_status = db.Column(db.String(50), nullable=True)
    credit_amount = db.Column(db.Integer, nullable=True)  # cents
    credit_issued_at = db.Column(db.DateTime(timezone=True), nullable=True)
    credit_notes = db.Column(db.Text, nullable=True)
    credited_by = db.Column(db.String(255), nullable=True)

    submitted_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    contacted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    job_completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "referrerName": self.referrer_name,
            "referrerPhone": self.referrer_phone,
            "referrerCustomerId": self.referrer_customer_id,
            "refereeName": self.referee_name,
            "refereePhone": self.referee_phone,
            "refereeEmail": self.referee_email,
            "refereeCustomerId": self.referee_customer_id,
            "status": self.status,
            "firstJobId": self.first_job_id,
            "firstJobDate": _iso(self.first_job_date),
            "jobAmount": self.job_amount,
            "creditStatus": self.credit_status,
            "creditAmount": self.credit_amount,
            "creditIssuedAt": _iso(self.credit_issued_at),
            "creditNotes": self.credit_notes,
            "submittedAt": _iso(self.submitted_at),
            "contactedAt": _iso(self.contacted_at),
            "jobCompletedAt": _iso(self.job_completed_at),
        }

    def __repr__(self):
        return f"<Referral {self.referee_name} ({self.status}/{self.credit_status})>"


def _iso(value):
    return value.isoformat() if value else None

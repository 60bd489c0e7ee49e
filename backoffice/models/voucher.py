"""Voucher model.

Single-use discount credential. active -> redeemed, or active -> expired
(checked when looked up, plus a CLI sweep). Amounts are in cents.
"""

import uuid

from backoffice.extensions import db


class Voucher(db.Model):
    __tablename__ = "vouchers"

    STATUSES = ["active", "redeemed", "expired"]
    TYPES = ["referral_new_customer", "referral_reward", "promotional"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    code = db.Column(db.String(20), unique=True, nullable=False)  # REF-XXXXXXXX
    voucher_type = db.Column(db.String(50), nullable=False)
    customer_name = db.Column(db.String(255), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(50), nullable=True)
    customer_id = db.Column(db.BigInteger, nullable=True)
    referral_id = db.Column(
        db.String(36), db.ForeignKey("referrals.id"), nullable=True
    )
    referrer_customer_id = db.Column(db.BigInteger, nullable=True)
    discount_amount = db.Column(db.Integer, default=2500, nullable=False)
    minimum_job_amount = db.Column(db.Integer, default=20000, nullable=False)
    status = db.Column(db.String(50), default="active", nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    # --- Redemption (written once) ---
    redeemed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    redeemed_by = db.Column(db.String(255), nullable=True)  # technician name
    redeemed_job_id = db.Column(db.String(50), nullable=True)
    redeemed_job_number = db.Column(db.String(50), nullable=True)
    redeemed_job_amount = db.Column(db.Integer, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "voucherType": self.voucher_type,
            "customerName": self.customer_name,
            "customerId": self.customer_id,
            "discountAmount": self.discount_amount,
            "minimumJobAmount": self.minimum_job_amount,
            "status": self.status,
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "redeemedAt": self.redeemed_at.isoformat() if self.redeemed_at else None,
        }

    def __repr__(self):
        return f"<Voucher {self.code} ({self.status})>"

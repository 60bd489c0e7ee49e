"""Tracking number model.

Maps a marketing channel (utm_source) to its call-tracking phone number
and, optionally, the ServiceTitan campaign that jobs from that channel
are attributed to.
"""

import uuid

from backoffice.extensions import db


class TrackingNumber(db.Model):
    __tablename__ = "tracking_numbers"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    utm_source = db.Column(db.String(100), unique=True, nullable=False)  # e.g. "google", "website"
    display_name = db.Column(db.String(255), nullable=True)
    phone_number = db.Column(db.String(50), nullable=True)
    service_titan_campaign_id = db.Column(db.BigInteger, nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<TrackingNumber {self.utm_source} -> {self.service_titan_campaign_id}>"

"""Scheduler request model.

One row per booking attempt from the public scheduler. Written as
"pending" when the POST arrives and updated exactly once with the
outcome: "confirmed" (ServiceTitan ids filled in) or "failed"
(error_message filled in).
"""

import uuid

from backoffice.extensions import db


class SchedulerRequest(db.Model):
    __tablename__ = "scheduler_requests"

    STATUSES = ["pending", "confirmed", "failed"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    customer_name = db.Column(db.String(255), nullable=False)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(50), nullable=False)
    address = db.Column(db.String(500), nullable=False)
    city = db.Column(db.String(100), nullable=True)
    state = db.Column(db.String(50), nullable=True)
    zip_code = db.Column(db.String(20), nullable=True)
    requested_service = db.Column(db.String(255), nullable=False)
    preferred_date = db.Column(db.Date, nullable=True)
    preferred_time_slot = db.Column(db.String(50), nullable=True)  # morning | afternoon | evening
    special_instructions = db.Column(db.Text, nullable=True)
    booking_source = db.Column(db.String(50), default="website", nullable=False)

    # --- Attribution ---
    utm_source = db.Column(db.String(100), nullable=True)
    utm_medium = db.Column(db.String(100), nullable=True)
    utm_campaign = db.Column(db.String(255), nullable=True)
    referral_token = db.Column(db.String(255), nullable=True)

    status = db.Column(db.String(50), default="pending", nullable=False)

    # --- ServiceTitan ids (set on confirmation) ---
    service_titan_customer_id = db.Column(db.BigInteger, nullable=True)
    service_titan_location_id = db.Column(db.BigInteger, nullable=True)
    service_titan_job_id = db.Column(db.BigInteger, nullable=True)
    service_titan_appointment_id = db.Column(db.BigInteger, nullable=True)
    job_number = db.Column(db.String(50), nullable=True)

    error_message = db.Column(db.Text, nullable=True)
    booked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self):
        return f"<SchedulerRequest {self.customer_name} ({self.status})>"

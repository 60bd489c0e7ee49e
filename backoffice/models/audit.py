"""Audit event model.

Logs significant actions (referral credited, voucher redeemed, booking
failed, campaign resumed) for the admin activity feed and debugging.
"""

import uuid

from backoffice.extensions import db


class AuditEvent(db.Model):
    __tablename__ = "audit_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    actor_user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True
    )  # None for system actions (cron, webhooks, public booking)
    action = db.Column(db.String(255), nullable=False)  # e.g. "referral.credited"
    subject_id = db.Column(db.String(64), nullable=True)  # id of the row acted on
    metadata_ = db.Column(
        "metadata", db.JSON, default=dict
    )  # extra context, named metadata_ to avoid Python builtin clash
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    actor = db.relationship("User", back_populates="audit_events")

    def __repr__(self):
        return f"<AuditEvent {self.action}>"


def log_audit(action, subject_id=None, actor_user_id=None, **metadata):
    """Add an AuditEvent to the session. Caller commits."""
    event = AuditEvent(
        action=action,
        subject_id=str(subject_id) if subject_id is not None else None,
        actor_user_id=actor_user_id,
        metadata_=metadata,
    )
    db.session.add(event)
    return event

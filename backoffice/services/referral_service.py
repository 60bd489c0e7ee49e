"""Referral service — pending referrals, conversion, job completion, crediting.

Lifecycle:
- record_pending_referral: referral link visit, before the referee books
- convert_pending_referral: the referee's first booking turns the pending
  row into a tracked referral (status=contacted)
- submit_referral: manual submission, creates a pending referral directly
- mark_job_completed: job-completion webhook, decides credit eligibility
- credit_referral / mark_ineligible: staff admin actions

Exactly-once transitions (pending conversion, crediting) are conditional
UPDATEs; the row count says whether this call won.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import bleach
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from backoffice.extensions import db
from backoffice.models.audit import log_audit
from backoffice.models.referral import PendingReferral, Referral, ReferralCode

logger = logging.getLogger(__name__)

REFERRAL_CREDIT_CENTS = 2500
MINIMUM_JOB_CENTS = 20000


@dataclass
class ConversionResult:
    status: str  # converted | updated | already_converted | skipped | not_found | failed
    referral_id: Optional[str] = None
    reason: Optional[str] = None


def _now():
    return datetime.now(timezone.utc)


def _clean(text):
    return bleach.clean(text or "", tags=[], strip=True).strip() or None


def format_cents(cents):
    return f"${cents / 100:,.2f}"


# ──────────────────────────────────────────────
# Referral links & submissions
# ──────────────────────────────────────────────

def record_pending_referral(code, tracking_cookie, referee_name=None,
                            referee_email=None, referee_phone=None):
    """Record a referral link visit.

    A cookie already tied to another referrer, or already converted, is
    not reused: the visit gets a fresh tracking token, so the latest link
    clicked decides attribution. Callers must set the cookie from the
    returned row's tracking_cookie.

    Returns:
        tuple: (PendingReferral, error_message)
    """
    referral_code = ReferralCode.query.filter_by(code=code).first()
    if referral_code is None:
        return None, "Invalid referral link."

    existing = PendingReferral.query.filter_by(tracking_cookie=tracking_cookie).first()
    if existing:
        if (existing.referrer_customer_id == referral_code.customer_id
                and not existing.is_converted):
            return existing, None
        logger.info(
            f"Tracking cookie {tracking_cookie} already used for referrer "
            f"{existing.referrer_customer_id}, issuing a new one for {referral_code.customer_id}"
        )
        tracking_cookie = secrets.token_urlsafe(24)

    pending = PendingReferral(
        tracking_cookie=tracking_cookie,
        referrer_customer_id=referral_code.customer_id,
        referrer_name=referral_code.customer_name,
        referee_name=_clean(referee_name),
        referee_email=(referee_email or "").strip().lower() or None,
        referee_phone=(referee_phone or "").strip() or None,
    )
    db.session.add(pending)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return PendingReferral.query.filter_by(tracking_cookie=tracking_cookie).first(), None

    logger.info(
        f"Pending referral {tracking_cookie} recorded for referrer {referral_code.customer_id}"
    )
    return pending, None


def submit_referral(referrer_name, referrer_phone, referee_name, referee_phone,
                    referee_email=None, referrer_customer_id=None):
    """Create a referral from a manual submission.

    Raises:
        ValueError: a required field is missing.
    """
    missing = [
        label
        for label, value in (
            ("referrerPhone", referrer_phone),
            ("refereeName", referee_name),
            ("refereePhone", referee_phone),
        )
        if not (value or "").strip()
    ]
    if missing:
        raise ValueError(f"Missing required fields: {', '.join(missing)}")

    referral = Referral(
        referrer_name=_clean(referrer_name),
        referrer_phone=referrer_phone.strip(),
        referrer_customer_id=referrer_customer_id,
        referee_name=_clean(referee_name),
        referee_phone=referee_phone.strip(),
        referee_email=(referee_email or "").strip().lower() or None,
        status="pending",
    )
    db.session.add(referral)
    db.session.commit()
    logger.info(f"Referral {referral.id} submitted by {referral.referrer_phone}")
    return referral


# ──────────────────────────────────────────────
# Conversion (booking side effect)
# ──────────────────────────────────────────────

def convert_pending_referral(token, referee_phone, referee_name,
                             referee_email=None, referee_customer_id=None,
                             job_id=None, job_date=None):
    """Turn a pending referral into a tracked referral after a booking.

    The phone collected at booking is verified by the CRM, so it replaces
    whatever phone the landing page captured.
    """
    pending = PendingReferral.query.filter_by(tracking_cookie=token).first()
    if pending is None:
        logger.info(f"No pending referral for token {token}")
        return ConversionResult("not_found", reason="no pending referral")

    if pending.is_converted:
        logger.info(f"Pending referral {token} already converted")
        return ConversionResult(
            "already_converted", referral_id=pending.referral_id, reason="already converted"
        )

    referral_code = ReferralCode.query.filter_by(
        customer_id=pending.referrer_customer_id
    ).first()
    if referral_code is None:
        logger.warning(
            f"No referral code for referrer {pending.referrer_customer_id}, "
            f"skipping conversion of {token}"
        )
        return ConversionResult("skipped", reason="referrer has no referral code")

    now = _now()
    fields = {
        "referee_phone": referee_phone,
        "referee_customer_id": referee_customer_id,
        "status": "contacted",
        "first_job_id": str(job_id) if job_id is not None else None,
        "first_job_date": job_date,
        "contacted_at": now,
    }

    referral = None
    if pending.referral_id:
        referral = db.session.get(Referral, pending.referral_id)
        if referral is None:
            logger.warning(
                f"Pending referral {token} links to missing referral "
                f"{pending.referral_id}, creating a new one"
            )

    if referral is not None:
        for key, value in fields.items():
            setattr(referral, key, value)
        if referee_email and not referral.referee_email:
            referral.referee_email = referee_email.strip().lower()
        status = "updated"
    else:
        referral = Referral(
            referrer_name=pending.referrer_name or referral_code.customer_name,
            referrer_phone=referral_code.customer_phone,
            referrer_customer_id=pending.referrer_customer_id,
            referee_name=referee_name or pending.referee_name or "Unknown",
            referee_email=(referee_email or pending.referee_email or "").strip().lower() or None,
            tracking_token=token,
            **fields,
        )
        db.session.add(referral)
        status = "converted"

    try:
        db.session.flush()
    except IntegrityError:
        # Another request converted this token first
        db.session.rollback()
        logger.info(f"Pending referral {token} already converted (concurrent)")
        existing = Referral.query.filter_by(tracking_token=token).first()
        return ConversionResult(
            "already_converted",
            referral_id=existing.id if existing else None,
            reason="already converted",
        )

    rows = (
        PendingReferral.query.filter(
            PendingReferral.id == pending.id,
            PendingReferral.converted_at.is_(None),
        ).update(
            {
                "converted_at": now,
                "converted_to_referral": True,
                "referral_id": referral.id,
            },
            synchronize_session=False,
        )
    )
    if rows == 0:
        db.session.rollback()
        logger.info(f"Pending referral {token} already converted (concurrent)")
        return ConversionResult("already_converted", reason="already converted")

    db.session.commit()
    logger.info(f"Pending referral {token} {status} into referral {referral.id}")
    return ConversionResult(status, referral_id=referral.id)


# ──────────────────────────────────────────────
# Job completion
# ──────────────────────────────────────────────

def mark_job_completed(job_amount, job_id=None, completed_at=None,
                       referral_id=None, referee_customer_id=None):
    """Record the referee's completed job and decide credit eligibility.

    Returns the updated Referral, or None if no open referral matches.
    """
    if referral_id:
        referral = db.session.get(Referral, referral_id)
    elif referee_customer_id is not None:
        referral = (
            Referral.query.filter(
                Referral.referee_customer_id == referee_customer_id,
                Referral.status.in_(["pending", "contacted", "completed"]),
            )
            .order_by(Referral.submitted_at.asc())
            .first()
        )
    else:
        raise ValueError("referral_id or referee_customer_id is required")

    if referral is None:
        return None

    if referral.status == "completed" or referral.credit_status == "credited":
        logger.info(f"Referral {referral.id} already completed, ignoring job {job_id}")
        return referral
    if referral.status == "ineligible":
        logger.info(f"Referral {referral.id} is ineligible, ignoring job {job_id}")
        return referral

    referral.status = "completed"
    referral.job_amount = int(job_amount)
    referral.job_completed_at = completed_at or _now()
    if job_id is not None and not referral.first_job_id:
        referral.first_job_id = str(job_id)

    if referral.job_amount >= MINIMUM_JOB_CENTS:
        referral.credit_status = "pending"
    else:
        referral.credit_status = "ineligible"
        referral.credit_notes = (
            f"Job total {format_cents(referral.job_amount)} is below the "
            f"{format_cents(MINIMUM_JOB_CENTS)} minimum."
        )

    db.session.commit()
    logger.info(
        f"Referral {referral.id} job completed ({format_cents(referral.job_amount)}), "
        f"credit_status={referral.credit_status}"
    )
    return referral


# ──────────────────────────────────────────────
# Staff actions
# ──────────────────────────────────────────────

def list_referrals(status=None, credit_status=None):
    query = Referral.query
    if status:
        query = query.filter(Referral.status == status)
    if credit_status:
        query = query.filter(Referral.credit_status == credit_status)
    return query.order_by(Referral.submitted_at.desc()).all()


def _not_credited():
    return or_(Referral.credit_status.is_(None), Referral.credit_status != "credited")


def credit_referral(referral_id, amount_cents=REFERRAL_CREDIT_CENTS, notes=None, actor=None):
    """Credit the referrer once and issue them a reward voucher.

    Returns:
        tuple: (Referral, error_message)
    """
    from backoffice.services.voucher_service import create_voucher

    referral = db.session.get(Referral, referral_id)
    if referral is None:
        return None, "Referral not found."
    if referral.credit_status == "credited":
        return referral, "Referral has already been credited."
    if referral.status == "ineligible" or referral.credit_status == "ineligible":
        return referral, "Referral is ineligible and cannot be credited."
    if amount_cents is None or int(amount_cents) <= 0:
        return referral, "Credit amount must be positive."

    # The referrer's code carries the authoritative phone
    referrer_phone = referral.referrer_phone
    if referral.referrer_customer_id is not None:
        code = ReferralCode.query.filter_by(
            customer_id=referral.referrer_customer_id
        ).first()
        if code:
            referrer_phone = code.customer_phone

    now = _now()
    rows = (
        Referral.query.filter(Referral.id == referral.id, _not_credited())
        .update(
            {
                "credit_status": "credited",
                "credit_amount": int(amount_cents),
                "credit_issued_at": now,
                "credit_notes": _clean(notes),
                "credited_by": actor.email if actor else None,
            },
            synchronize_session=False,
        )
    )
    if rows == 0:
        db.session.rollback()
        return db.session.get(Referral, referral_id), "Referral has already been credited."

    voucher = create_voucher(
        voucher_type="referral_reward",
        customer_name=referral.referrer_name,
        customer_phone=referrer_phone,
        customer_id=referral.referrer_customer_id,
        referral_id=referral.id,
        discount_amount=int(amount_cents),
        commit=False,
    )
    log_audit(
        "referral.credited",
        subject_id=referral.id,
        actor_user_id=actor.id if actor else None,
        amount_cents=int(amount_cents),
        voucher_code=voucher.code,
    )
    db.session.commit()
    db.session.refresh(referral)

    logger.info(
        f"Referral {referral.id} credited {format_cents(int(amount_cents))} "
        f"(voucher {voucher.code})"
    )
    return referral, None


def mark_ineligible(referral_id, reason=None, actor=None):
    """Mark a referral ineligible for credit.

    Returns:
        tuple: (Referral, error_message)
    """
    referral = db.session.get(Referral, referral_id)
    if referral is None:
        return None, "Referral not found."
    if referral.credit_status == "credited":
        return referral, "Referral has already been credited and cannot be marked ineligible."

    rows = (
        Referral.query.filter(Referral.id == referral.id, _not_credited())
        .update(
            {
                "status": "ineligible",
                "credit_status": "ineligible",
                "credit_notes": _clean(reason),
            },
            synchronize_session=False,
        )
    )
    if rows == 0:
        db.session.rollback()
        return db.session.get(Referral, referral_id), (
            "Referral has already been credited and cannot be marked ineligible."
        )

    log_audit(
        "referral.ineligible",
        subject_id=referral.id,
        actor_user_id=actor.id if actor else None,
        reason=_clean(reason),
    )
    db.session.commit()
    db.session.refresh(referral)
    logger.info(f"Referral {referral.id} marked ineligible")
    return referral, None

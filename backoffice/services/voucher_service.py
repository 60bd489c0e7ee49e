"""Voucher service — issue, look up, redeem, and expire vouchers.

Vouchers are single-use. Redemption is a conditional UPDATE guarded on
status='active', so a double-submitted redeem request can only land once.
Expiry is applied lazily at lookup time and by `flask expire-vouchers`.
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone

from backoffice.extensions import db
from backoffice.models.audit import log_audit
from backoffice.models.voucher import Voucher

logger = logging.getLogger(__name__)

CODE_PREFIX = "REF-"
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"  # no 0/O, 1/I
CODE_LENGTH = 8
MAX_CODE_ATTEMPTS = 10

DEFAULT_DISCOUNT_CENTS = 2500
DEFAULT_MINIMUM_JOB_CENTS = 20000
DEFAULT_EXPIRY_DAYS = 180


def _now():
    return datetime.now(timezone.utc)


def _aware(value):
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def normalize_code(code):
    return (code or "").strip().upper()


def generate_voucher_code():
    return CODE_PREFIX + "".join(
        secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH)
    )


def create_voucher(voucher_type, customer_name=None, customer_email=None,
                   customer_phone=None, customer_id=None, referral_id=None,
                   referrer_customer_id=None,
                   discount_amount=DEFAULT_DISCOUNT_CENTS,
                   minimum_job_amount=DEFAULT_MINIMUM_JOB_CENTS,
                   expires_days=DEFAULT_EXPIRY_DAYS, commit=True):
    """Create an active voucher with a fresh unique code.

    Raises:
        ValueError: unknown voucher type.
        RuntimeError: no unused code found after MAX_CODE_ATTEMPTS tries.
    """
    if voucher_type not in Voucher.TYPES:
        raise ValueError(f"Unknown voucher type: {voucher_type}")

    for attempt in range(MAX_CODE_ATTEMPTS):
        code = generate_voucher_code()
        if Voucher.query.filter_by(code=code).first() is None:
            break
        logger.warning(f"Voucher code collision on attempt {attempt + 1}: {code}")
    else:
        raise RuntimeError("Could not generate a unique voucher code")

    voucher = Voucher(
        code=code,
        voucher_type=voucher_type,
        customer_name=customer_name,
        customer_email=(customer_email or "").strip().lower() or None,
        customer_phone=customer_phone,
        customer_id=customer_id,
        referral_id=referral_id,
        referrer_customer_id=referrer_customer_id,
        discount_amount=discount_amount,
        minimum_job_amount=minimum_job_amount,
        status="active",
        expires_at=_now() + timedelta(days=expires_days),
    )
    db.session.add(voucher)
    if commit:
        db.session.commit()
    else:
        db.session.flush()

    logger.info(f"Voucher {voucher.code} issued ({voucher_type}) to {customer_name}")
    return voucher


def _expire_if_due(voucher, now=None):
    now = now or _now()
    if voucher.status == "active" and _aware(voucher.expires_at) <= now:
        voucher.status = "expired"
        db.session.commit()
        logger.info(f"Voucher {voucher.code} expired at lookup")
    return voucher


def lookup_voucher(code, now=None):
    """Find a voucher by code, applying expiry.

    Returns:
        tuple: (voucher, error_message)
    """
    code = normalize_code(code)
    if not code:
        return None, "Voucher code is required."

    voucher = Voucher.query.filter_by(code=code).first()
    if voucher is None:
        return None, "Voucher not found."

    return _expire_if_due(voucher, now), None


def redeem_voucher(code, job_amount, technician_name=None, job_id=None,
                   job_number=None, actor_user_id=None, now=None):
    """Redeem a voucher against a job.

    Returns:
        tuple: (voucher, error_message)
            - redeemed now: (Voucher, None)
            - refused: (Voucher or None, "reason string")
    """
    voucher, error = lookup_voucher(code, now)
    if error:
        return None, error

    if voucher.status == "redeemed":
        return voucher, (
            f"Voucher was already redeemed on {_aware(voucher.redeemed_at).isoformat()}."
        )
    if voucher.status == "expired":
        return voucher, "Voucher has expired."

    try:
        job_amount = int(job_amount)
    except (TypeError, ValueError):
        return voucher, "Job amount must be a whole number of cents."

    if job_amount < voucher.minimum_job_amount:
        return voucher, (
            f"Job amount must be at least ${voucher.minimum_job_amount / 100:.2f} "
            f"to use this voucher."
        )

    redeemed_at = now or _now()
    rows = (
        Voucher.query.filter(Voucher.id == voucher.id, Voucher.status == "active")
        .update(
            {
                "status": "redeemed",
                "redeemed_at": redeemed_at,
                "redeemed_by": technician_name,
                "redeemed_job_id": str(job_id) if job_id else None,
                "redeemed_job_number": str(job_number) if job_number else None,
                "redeemed_job_amount": job_amount,
            },
            synchronize_session=False,
        )
    )
    if rows == 0:
        db.session.rollback()
        db.session.refresh(voucher)
        logger.info(f"Voucher {voucher.code} lost a redemption race")
        redeemed = _aware(voucher.redeemed_at)
        return voucher, (
            f"Voucher was already redeemed on {redeemed.isoformat()}."
            if redeemed else "Voucher was already redeemed."
        )

    log_audit(
        "voucher.redeemed",
        subject_id=voucher.id,
        actor_user_id=actor_user_id,
        code=voucher.code,
        job_amount_cents=job_amount,
        job_number=job_number,
    )
    db.session.commit()
    db.session.refresh(voucher)
    logger.info(f"Voucher {voucher.code} redeemed by {technician_name} on job {job_number}")
    return voucher, None


def expire_vouchers(now=None):
    """Mark every active voucher past its expiry as expired. Returns the count."""
    now = now or _now()
    count = (
        Voucher.query.filter(Voucher.status == "active", Voucher.expires_at <= now)
        .update({"status": "expired"}, synchronize_session=False)
    )
    db.session.commit()
    logger.info(f"Expired {count} voucher(s)")
    return count

"""Email preference service — opt-outs, suppression, unsubscribe links.

Every automated email checks the recipient's preferences here and carries
an unsubscribe footer plus List-Unsubscribe headers (CAN-SPAM, RFC 8058).
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import date
from typing import Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from backoffice.extensions import db
from backoffice.models.email import EmailPreference, EmailSuppression

logger = logging.getLogger(__name__)

CATEGORIES = ("marketing", "review", "referral", "service_reminder", "transactional")

# Category -> (EmailPreference flag, refusal reason)
CATEGORY_FLAGS = {
    "marketing": ("marketing_emails", "Recipient has opted out of marketing emails"),
    "review": ("review_requests", "Recipient has opted out of review requests"),
    "referral": ("referral_emails", "Recipient has opted out of referral emails"),
    "service_reminder": ("service_reminders", "Recipient has opted out of service reminders"),
}


@dataclass
class PreferenceCheck:
    can_send: bool
    reason: Optional[str] = None
    unsubscribe_url: Optional[str] = None
    list_unsubscribe_header: Optional[str] = None
    token: Optional[str] = None


def _base_url():
    return current_app.config["APP_BASE_URL"].rstrip("/")


def unsubscribe_url_for(token):
    return f"{_base_url()}/email-preferences/{token}"


def get_or_create_preferences(email, customer_id=None):
    email = (email or "").strip().lower()
    prefs = EmailPreference.query.filter_by(email=email).first()
    if prefs:
        return prefs

    prefs = EmailPreference(
        email=email,
        customer_id=customer_id,
        unsubscribe_token=secrets.token_hex(32),
    )
    db.session.add(prefs)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        prefs = EmailPreference.query.filter_by(email=email).first()
    return prefs


def can_send_email(email, category, customer_id=None):
    """Check the recipient's preferences for a category of email."""
    if category not in CATEGORIES:
        raise ValueError(f"Unknown email category: {category}")

    prefs = get_or_create_preferences(email, customer_id)
    url = unsubscribe_url_for(prefs.unsubscribe_token)
    allowed = PreferenceCheck(
        can_send=True,
        unsubscribe_url=url,
        list_unsubscribe_header=f"<{url}>",
        token=prefs.unsubscribe_token,
    )

    if category == "transactional":
        return allowed

    if prefs.transactional_only:
        return PreferenceCheck(
            can_send=False,
            reason="Recipient has unsubscribed from all non-transactional emails",
        )

    flag, reason = CATEGORY_FLAGS[category]
    if not getattr(prefs, flag):
        return PreferenceCheck(can_send=False, reason=reason)

    return allowed


def unsubscribe_all(token):
    """One-click unsubscribe. Returns the preferences row, or None for a bad token."""
    prefs = EmailPreference.query.filter_by(unsubscribe_token=token).first()
    if prefs is None:
        return None
    prefs.marketing_emails = False
    prefs.review_requests = False
    prefs.referral_emails = False
    prefs.service_reminders = False
    prefs.transactional_only = True
    db.session.commit()
    logger.info(f"{prefs.email} unsubscribed from all non-transactional email")
    return prefs


# ──────────────────────────────────────────────
# Suppression list
# ──────────────────────────────────────────────

def get_suppression(email):
    return EmailSuppression.query.filter_by(email=(email or "").strip().lower()).first()


def suppress_email(email, reason, source=None):
    """Add an address to the suppression list (no-op if already there)."""
    email = (email or "").strip().lower()
    existing = EmailSuppression.query.filter_by(email=email).first()
    if existing:
        return existing
    entry = EmailSuppression(email=email, reason=reason, source=source)
    db.session.add(entry)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return EmailSuppression.query.filter_by(email=email).first()
    logger.info(f"Suppressed {email} ({reason})")
    return entry


# ──────────────────────────────────────────────
# Footers
# ──────────────────────────────────────────────

def add_unsubscribe_footer(html_body, unsubscribe_url, company_name=None):
    """Add the unsubscribe footer before </body>, or at the end."""
    company = company_name or current_app.config.get("COMPANY_NAME", "")
    footer = f"""
    <div style="margin-top: 40px; padding-top: 20px; border-top: 1px solid #e5e7eb; font-size: 12px; color: #6b7280; text-align: center;">
      <p style="margin: 0 0 8px 0;">
        You're receiving this email because you're a valued customer of {company}.
      </p>
      <p style="margin: 0;">
        <a href="{unsubscribe_url}" style="color: #3b82f6; text-decoration: underline;">Manage your email preferences</a> or
        <a href="{unsubscribe_url}" style="color: #3b82f6; text-decoration: underline;">unsubscribe</a>
      </p>
      <p style="margin: 8px 0 0 0; font-size: 11px;">
        {company} | Serving Austin &amp; Central Texas<br/>
        &copy; {date.today().year} All rights reserved
      </p>
    </div>
    """
    if "</body>" in html_body:
        return html_body.replace("</body>", f"{footer}</body>", 1)
    return html_body + footer


def add_unsubscribe_footer_plain_text(text_body, unsubscribe_url, company_name=None):
    company = company_name or current_app.config.get("COMPANY_NAME", "")
    return text_body + (
        f"\n\n---\n"
        f"You're receiving this email because you're a valued customer of {company}.\n\n"
        f"Manage your email preferences: {unsubscribe_url}\n"
        f"Unsubscribe: {unsubscribe_url}\n\n"
        f"{company} | Serving Austin & Central Texas\n"
        f"© {date.today().year} All rights reserved\n"
    )

"""
Email delivery via Resend.

Two entry points:
- send_resend_email: synchronous send that returns the Resend email id.
  Used by the nurture drip, which logs the id for webhook matching.
- notify_staff: fire-and-forget plain-text notice to MAIL_STAFF_TO
  (referral credited, booking failed). Sent in a background thread.

Usage:
    from backoffice.services.email_service import send_resend_email

    email_id = send_resend_email(
        to="customer@example.com",
        subject="Hello",
        html="<p>Hi</p>",
        text="Hi",
        unsubscribe_url="https://example.com/email-preferences/abc",
    )
"""

import logging
import threading

import resend
from flask import current_app
from markupsafe import escape

logger = logging.getLogger(__name__)


class EmailNotConfigured(Exception):
    """RESEND_API_KEY is missing."""


class EmailSendError(Exception):
    """Resend rejected or failed the send."""


def unsubscribe_headers(unsubscribe_url):
    return {
        "List-Unsubscribe": f"<{unsubscribe_url}>",
        "List-Unsubscribe-Post": "List-Unsubscribe=One-Click",
    }


def send_resend_email(to, subject, html, text=None, unsubscribe_url=None,
                      reply_to=None, tags=None, api_key=None, from_email=None):
    """Send one email through Resend and return its provider id.

    Raises:
        EmailNotConfigured: no API key.
        EmailSendError: Resend call failed.
    """
    config = current_app.config
    api_key = api_key or config.get("RESEND_API_KEY")
    if not api_key:
        logger.warning("Email not sent — RESEND_API_KEY not configured.")
        raise EmailNotConfigured("RESEND_API_KEY not configured")

    resend.api_key = api_key

    params = {
        "from": from_email or config.get("RESEND_FROM_EMAIL"),
        "to": [to] if isinstance(to, str) else list(to),
        "subject": subject,
        "html": html,
    }
    if text:
        params["text"] = text
    reply_to = reply_to or config.get("RESEND_REPLY_TO")
    if reply_to:
        params["reply_to"] = reply_to
    if unsubscribe_url:
        params["headers"] = unsubscribe_headers(unsubscribe_url)
    if tags:
        params["tags"] = [{"name": k, "value": str(v)} for k, v in tags.items()]

    try:
        response = resend.Emails.send(params)
    except Exception as e:
        logger.error(f"Failed to send email to {params['to']}: {e}")
        raise EmailSendError(f"Failed to send email: {e}") from e

    email_id = response.get("id") if isinstance(response, dict) else getattr(response, "id", None)
    logger.info(f"Email sent to {params['to']} — {subject} (id {email_id})")
    return email_id


def _send_in_background(app, to, subject, text):
    with app.app_context():
        try:
            send_resend_email(to=to, subject=subject, html=f"<pre>{escape(text)}</pre>", text=text)
        except (EmailNotConfigured, EmailSendError) as e:
            logger.warning(f"Staff notification not sent: {e}")


def notify_staff(subject, text):
    """Send a plain staff notice without blocking the request."""
    app = current_app._get_current_object()
    to = app.config.get("MAIL_STAFF_TO")
    if not to:
        return

    thread = threading.Thread(target=_send_in_background, args=(app, to, subject, text))
    thread.daemon = True
    thread.start()

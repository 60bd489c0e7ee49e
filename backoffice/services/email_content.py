"""Drip email content — admin templates first, OpenAI generation second.

Both sources render to the same EmailContent(subject, html_body, text_body).
Merge fields like {{customerName}} and {{referralLink}} are filled in for
either source.

Seasonal marketing context only goes into generated emails; admin-authored
templates are sent as written.
"""

import json
import logging
import re
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Optional

from openai import OpenAI

from backoffice.models.nurture import ReviewEmailTemplate

logger = logging.getLogger(__name__)

CAMPAIGN_TYPES = ("review_request", "referral_nurture", "quote_followup")


class EmailContentError(Exception):
    """Content could not be produced for a drip email."""


# ──────────────────────────────────────────────
# Seasons
# ──────────────────────────────────────────────

class Season(Enum):
    WINTER = "winter"
    SPRING = "spring"
    SUMMER = "summer"
    FALL = "fall"


SEASON_CONTEXT = {
    Season.WINTER: (
        "Winter freeze protection is critical in Texas. Mention protecting pipes, "
        "water heater maintenance before cold snaps, and emergency service availability."
    ),
    Season.SPRING: (
        "Spring is the perfect time for plumbing maintenance. Mention checking for "
        "winter damage, preparing for summer heat, and scheduling annual inspections."
    ),
    Season.SUMMER: (
        "Summer heat stresses plumbing systems. Mention water heater efficiency, "
        "increased water usage, A/C condensate line maintenance, and irrigation checks."
    ),
    Season.FALL: (
        "Fall is ideal for preparing plumbing for winter. Mention water heater "
        "inspections, outdoor faucet winterization, and booking service before the holidays."
    ),
}

# Calendar month (1-12) -> season
MONTH_SEASONS = {
    12: Season.WINTER, 1: Season.WINTER, 2: Season.WINTER,
    3: Season.SPRING, 4: Season.SPRING, 5: Season.SPRING,
    6: Season.SUMMER, 7: Season.SUMMER, 8: Season.SUMMER,
    9: Season.FALL, 10: Season.FALL, 11: Season.FALL,
}


def season_for(today=None):
    today = today or date.today()
    return MONTH_SEASONS[today.month]


# ──────────────────────────────────────────────
# Strategies
# ──────────────────────────────────────────────

class Strategy(Enum):
    VALUE = "value"
    TRUST = "trust"
    SOCIAL_PROOF = "social_proof"
    URGENCY = "urgency"
    SEASONAL = "seasonal"


# Campaign type -> strategy for emails 1..4
STRATEGY_TABLE = {
    "review_request": (Strategy.VALUE, Strategy.TRUST, Strategy.SOCIAL_PROOF, Strategy.URGENCY),
    "referral_nurture": (Strategy.VALUE, Strategy.TRUST, Strategy.SOCIAL_PROOF, Strategy.URGENCY),
    "quote_followup": (Strategy.VALUE, Strategy.TRUST, Strategy.SEASONAL, Strategy.URGENCY),
}

# Campaign type -> days after the trigger event for emails 1..4
SEND_DAYS = {
    "review_request": (1, 7, 14, 21),
    "referral_nurture": (14, 60, 150, 210),
    "quote_followup": (1, 7, 14, 21),
}


def strategy_for(campaign_type, email_number, override=None):
    """An explicit override wins, then the table, then VALUE."""
    if override:
        return Strategy(override) if not isinstance(override, Strategy) else override
    table = STRATEGY_TABLE.get(campaign_type)
    if table and 1 <= email_number <= len(table):
        return table[email_number - 1]
    return Strategy.VALUE


def send_day_for(campaign_type, email_number):
    return SEND_DAYS.get(campaign_type, SEND_DAYS["review_request"])[email_number - 1]


# ──────────────────────────────────────────────
# Content
# ──────────────────────────────────────────────

@dataclass
class EmailContent:
    subject: str
    html_body: str
    text_body: str
    preheader: Optional[str] = None
    source: str = "template"  # template | generated
    strategy: Optional[str] = None


@dataclass
class Recipient:
    customer_id: int
    customer_name: str
    referral_link: Optional[str] = None
    phone_number: Optional[str] = None
    service_type: Optional[str] = None
    location: Optional[str] = None

    def merge_fields(self):
        return {
            "customerName": self.customer_name or "there",
            "referralLink": self.referral_link or "",
            "phoneNumber": self.phone_number or "",
            "serviceType": self.service_type or "plumbing service",
            "location": self.location or "Central Texas",
        }


MERGE_FIELD_RE = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def apply_merge_fields(text, values):
    """Replace {{field}} with values[field]; unknown fields are left alone."""
    if not text:
        return text
    return MERGE_FIELD_RE.sub(
        lambda m: str(values[m.group(1)]) if m.group(1) in values else m.group(0),
        text,
    )


class TemplateSource:
    """An admin-authored review_email_templates row."""

    kind = "template"

    def __init__(self, template):
        self.template = template

    def render(self, recipient):
        values = recipient.merge_fields()
        return EmailContent(
            subject=apply_merge_fields(self.template.subject, values),
            html_body=apply_merge_fields(self.template.html_content, values),
            text_body=apply_merge_fields(self.template.plain_text_content, values),
            preheader=apply_merge_fields(self.template.preheader, values),
            source=self.kind,
            strategy=self.template.strategy,
        )


class GeneratedSource:
    """On-demand OpenAI chat completion returning subject/preheader/bodyHtml/bodyPlain."""

    kind = "generated"

    def __init__(self, campaign_type, email_number, api_key=None, model="gpt-4o",
                 company_name="Economy Plumbing Services", strategy=None,
                 today=None, client=None):
        if client is None and not api_key:
            raise EmailContentError("OPENAI_API_KEY not configured")
        self.campaign_type = campaign_type
        self.email_number = email_number
        self.model = model
        self.company_name = company_name
        self.strategy = strategy_for(campaign_type, email_number, strategy)
        self.season = season_for(today)
        self.client = client or OpenAI(api_key=api_key)

    def _system_prompt(self, recipient):
        phone = recipient.phone_number
        return (
            f"You are an expert email copywriter for {self.company_name}, a "
            f"family-owned plumbing company serving Austin and Central Texas.\n"
            f"Voice: friendly, professional, trustworthy, Texas-local without overdoing it.\n"
            f"Subject lines under 50 characters; preheader 40-80 characters.\n"
            f"HTML must be simple, mobile-friendly, with one clear call-to-action button.\n"
            f"You may use merge fields {{{{customerName}}}}, {{{{serviceType}}}}, "
            f"{{{{location}}}} and {{{{referralLink}}}}.\n"
            + (f"Sign off with: Questions? Call us at {phone}\n" if phone else "")
        )

    def _user_prompt(self, recipient):
        day = send_day_for(self.campaign_type, self.email_number)
        lines = [
            f"Write email {self.email_number} of 4 for a {self.campaign_type.replace('_', ' ')} campaign,",
            f"sent {day} days after the trigger event.",
            f"Strategy: {self.strategy.value}",
            f"Season: {self.season.value}",
            f"Seasonal context: {SEASON_CONTEXT[self.season]}",
        ]
        if self.campaign_type == "referral_nurture":
            lines.append(
                "The customer recently left us a positive review. Invite them to refer "
                "friends and family: they earn a $25 account credit for every referral "
                "who books a qualifying job."
            )
            if recipient.referral_link:
                lines.append(
                    f"Feature their personal referral link prominently, as a button and "
                    f"as plain text: {recipient.referral_link}"
                )
        lines.append(
            'Return JSON: {"subject": "...", "preheader": "...", '
            '"bodyHtml": "...", "bodyPlain": "..."}'
        )
        return "\n".join(lines)

    def render(self, recipient):
        try:
            completion = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": self._system_prompt(recipient)},
                    {"role": "user", "content": self._user_prompt(recipient)},
                ],
                response_format={"type": "json_object"},
                temperature=0.7,
            )
            raw = completion.choices[0].message.content
            parsed = json.loads(raw or "")
        except Exception as e:
            logger.error(f"Email generation failed: {e}")
            raise EmailContentError(f"Failed to generate email: {e}") from e

        missing = [k for k in ("subject", "bodyHtml", "bodyPlain") if not parsed.get(k)]
        if missing:
            raise EmailContentError(f"Generated email missing {', '.join(missing)}")

        values = recipient.merge_fields()
        return EmailContent(
            subject=apply_merge_fields(parsed["subject"], values),
            html_body=apply_merge_fields(parsed["bodyHtml"], values),
            text_body=apply_merge_fields(parsed["bodyPlain"], values),
            preheader=apply_merge_fields(parsed.get("preheader"), values),
            source=self.kind,
            strategy=self.strategy.value,
        )


def select_content_source(campaign_type, email_number, config, strategy=None,
                          openai_client=None, today=None):
    """Stored template when one exists, else an OpenAI generator."""
    template = ReviewEmailTemplate.query.filter_by(
        campaign_type=campaign_type, email_number=email_number
    ).first()
    if template is not None:
        return TemplateSource(template)

    return GeneratedSource(
        campaign_type,
        email_number,
        api_key=config.get("OPENAI_API_KEY"),
        model=config.get("OPENAI_MODEL", "gpt-4o"),
        company_name=config.get("COMPANY_NAME", "Economy Plumbing Services"),
        strategy=strategy,
        today=today,
        client=openai_client,
    )

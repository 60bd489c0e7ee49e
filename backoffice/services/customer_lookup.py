"""Customer lookup service — resolve a customer from phone/email.

Two data sources:
- XlsxLookupAdapter: the local customers_xlsx / contacts_xlsx cache
  (fast, may be stale, never creates anything)
- ServiceTitanLookupAdapter: the live CRM (authoritative, slower, can
  create a placeholder customer)

CustomerLookupService picks the order with a source strategy. A hybrid
strategy only falls back to the other adapter on a clean "not found";
an adapter error is returned as-is.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from backoffice.extensions import db
from backoffice.models.customer_cache import CachedContact, CachedCustomer
from backoffice.services.servicetitan import ServiceTitanError

logger = logging.getLogger(__name__)

SOURCES = (
    "xlsx-only",
    "servicetitan-only",
    "hybrid-prefer-xlsx",
    "hybrid-prefer-servicetitan",
)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

PLACEHOLDER_NAME = "Web Visitor"
PLACEHOLDER_ADDRESS = {
    "street": "To be provided",
    "city": "Austin",
    "state": "TX",
    "zip": "78701",
}


# ──────────────────────────────────────────────
# Result types
# ──────────────────────────────────────────────

@dataclass
class LookupFailure:
    type: str  # validation | servicetitan_error | database_error
    message: str
    retryable: bool = False

    def to_dict(self):
        return {"type": self.type, "message": self.message, "retryable": self.retryable}


@dataclass
class CustomerMatch:
    customer_id: int
    name: str
    source: str  # xlsx | servicetitan
    phone: Optional[str] = None
    email: Optional[str] = None
    type: str = "Residential"
    address: Optional[dict] = None

    def to_dict(self):
        return {
            "customerId": self.customer_id,
            "serviceTitanId": self.customer_id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "type": self.type,
            "address": self.address,
            "source": self.source,
        }


@dataclass
class LookupResult:
    found: bool
    matches: list = field(default_factory=list)
    is_placeholder: bool = False
    error: Optional[LookupFailure] = None

    def to_dict(self):
        return {
            "found": self.found,
            "matches": [m.to_dict() for m in self.matches],
            "isPlaceholder": self.is_placeholder,
            "error": self.error.to_dict() if self.error else None,
        }


# ──────────────────────────────────────────────
# Normalization & scoring
# ──────────────────────────────────────────────

def normalize_phone(value):
    """Digits only, dropping a leading US country code from 11-digit numbers."""
    digits = re.sub(r"\D", "", value or "")
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    return digits


def normalize_email(value):
    return (value or "").strip().lower()


def is_valid_phone(value):
    return len(normalize_phone(value)) == 10


def is_complete_10_digit_phone(value):
    return bool(value) and len(normalize_phone(value)) == 10


def is_valid_email(value):
    return bool(EMAIL_RE.match((value or "").strip()))


def _has_complete_address(address):
    if not address:
        return False
    return all(address.get(key) for key in ("street", "city", "state", "zip"))


def score_match(match, phone=None, email=None):
    """+100 exact phone, +100 exact email, +10 complete address."""
    score = 0
    if phone and match.phone and normalize_phone(match.phone) == normalize_phone(phone):
        score += 100
    if email and match.email and normalize_email(match.email) == normalize_email(email):
        score += 100
    if _has_complete_address(match.address):
        score += 10
    return score


def _retryable(exc):
    if isinstance(exc, ServiceTitanError):
        return exc.retryable
    return False


# ──────────────────────────────────────────────
# Adapters
# ──────────────────────────────────────────────

class XlsxLookupAdapter:
    """Search the local customer cache by normalized contact value."""

    def search(self, phone=None, email=None, include_inactive=False):
        normalized_phone = normalize_phone(phone) if phone else ""
        normalized_email = normalize_email(email) if email else ""

        try:
            customers = []
            if normalized_phone:
                customers = self._find(normalized_phone, include_inactive)
            if not customers and normalized_email:
                customers = self._find(normalized_email, include_inactive)
        except SQLAlchemyError as e:
            logger.error(f"Customer cache lookup failed: {e}")
            db.session.rollback()
            return LookupResult(
                found=False,
                error=LookupFailure(
                    type="database_error",
                    message=f"Customer cache lookup failed: {e}",
                    retryable=True,
                ),
            )

        matches = [self._to_match(c) for c in customers]
        logger.info(f"Customer cache search found {len(matches)} customer(s)")
        return LookupResult(found=bool(matches), matches=matches)

    def _find(self, normalized_value, include_inactive):
        query = (
            CachedCustomer.query.join(CachedContact)
            .filter(CachedContact.normalized_value == normalized_value)
            .distinct()
        )
        if not include_inactive:
            query = query.filter(CachedCustomer.is_active.is_(True))
        return query.all()

    @staticmethod
    def _to_match(customer):
        return CustomerMatch(
            customer_id=customer.id,
            name=customer.name,
            source="xlsx",
            phone=normalize_phone(customer.phone) or None,
            email=normalize_email(customer.email) or None,
            type=customer.type or "Residential",
            address={
                "street": customer.street,
                "city": customer.city,
                "state": customer.state,
                "zip": customer.zip,
            },
        )


class ServiceTitanLookupAdapter:
    """Search the live CRM, optionally creating a placeholder customer."""

    def __init__(self, client):
        self.client = client

    def search(
        self,
        phone=None,
        email=None,
        include_inactive=False,
        create_placeholder_if_missing=False,
    ):
        normalized_phone = normalize_phone(phone) if phone else ""
        normalized_email = normalize_email(email) if email else ""

        if not normalized_phone and not normalized_email:
            return LookupResult(found=False)

        customers = []
        phone_error = None
        email_error = None

        if normalized_phone:
            try:
                customers = self.client.search_customers(
                    phone=normalized_phone, include_inactive=include_inactive
                )
                logger.info(f"ServiceTitan phone search found {len(customers)} customer(s)")
            except ServiceTitanError as e:
                logger.error(f"ServiceTitan phone search error: {e}")
                phone_error = e

        # Email is tried when phone found nothing or failed
        if not customers and normalized_email:
            try:
                customers = self.client.search_customers(
                    email=normalized_email, include_inactive=include_inactive
                )
                logger.info(f"ServiceTitan email search found {len(customers)} customer(s)")
            except ServiceTitanError as e:
                logger.error(f"ServiceTitan email search error: {e}")
                email_error = e

        if phone_error and email_error:
            return LookupResult(
                found=False,
                error=LookupFailure(
                    type="servicetitan_error",
                    message=(
                        f"ServiceTitan search failed (phone: {phone_error}, "
                        f"email: {email_error})"
                    ),
                    retryable=_retryable(phone_error) or _retryable(email_error),
                ),
            )
        if phone_error and not normalized_email:
            return LookupResult(
                found=False,
                error=LookupFailure(
                    type="servicetitan_error",
                    message=f"ServiceTitan phone search failed: {phone_error}",
                    retryable=_retryable(phone_error),
                ),
            )
        if email_error and not normalized_phone:
            return LookupResult(
                found=False,
                error=LookupFailure(
                    type="servicetitan_error",
                    message=f"ServiceTitan email search failed: {email_error}",
                    retryable=_retryable(email_error),
                ),
            )

        if not customers:
            if create_placeholder_if_missing:
                return self._create_placeholder(phone, normalized_phone, normalized_email)
            return LookupResult(found=False)

        matches = [
            self._to_match(customer, normalized_phone, normalized_email)
            for customer in customers
        ]
        return LookupResult(found=True, matches=matches)

    def _create_placeholder(self, phone, normalized_phone, normalized_email):
        if not is_complete_10_digit_phone(phone):
            logger.warning(
                f"Refusing to create placeholder customer, incomplete phone: {phone or 'none'}"
            )
            return LookupResult(
                found=False,
                error=LookupFailure(
                    type="validation",
                    message="Cannot create customer without complete 10-digit phone number",
                ),
            )

        try:
            customer_id = self.client.ensure_customer(
                PLACEHOLDER_NAME,
                phone=normalized_phone,
                email=normalized_email or None,
                address=dict(PLACEHOLDER_ADDRESS),
            )
        except ServiceTitanError as e:
            logger.error(f"Failed to create placeholder customer: {e}")
            return LookupResult(
                found=False,
                error=LookupFailure(
                    type="servicetitan_error",
                    message=f"Failed to create customer: {e}",
                ),
            )

        logger.info(f"Created placeholder ServiceTitan customer {customer_id}")
        match = CustomerMatch(
            customer_id=customer_id,
            name=PLACEHOLDER_NAME,
            source="servicetitan",
            phone=normalized_phone,
            email=normalized_email or None,
            address=dict(PLACEHOLDER_ADDRESS),
        )
        return LookupResult(found=True, matches=[match], is_placeholder=True)

    @staticmethod
    def _to_match(customer, normalized_phone, normalized_email):
        # CRM contact data wins over whatever the caller searched with
        contacts = customer.get("contacts") or []
        customer_phone = ""
        for contact in contacts:
            if contact.get("type") in ("MobilePhone", "Phone"):
                customer_phone = normalize_phone(contact.get("value"))
                break
        customer_email = ""
        for contact in contacts:
            if contact.get("type") == "Email":
                customer_email = contact.get("value") or ""
                break

        address = customer.get("address")
        return CustomerMatch(
            customer_id=customer["id"],
            name=customer.get("name") or "",
            source="servicetitan",
            phone=customer_phone or normalized_phone or None,
            email=customer_email or normalized_email or None,
            type=customer.get("type") or "Residential",
            address={
                "street": address.get("street"),
                "city": address.get("city"),
                "state": address.get("state"),
                "zip": address.get("zip"),
            } if address else None,
        )


# ──────────────────────────────────────────────
# Orchestrator
# ──────────────────────────────────────────────

class CustomerLookupService:
    def __init__(self, servicetitan_client, default_source="hybrid-prefer-xlsx"):
        self.xlsx = XlsxLookupAdapter()
        self.servicetitan = ServiceTitanLookupAdapter(servicetitan_client)
        self.default_source = default_source

    def search(
        self,
        phone=None,
        email=None,
        source=None,
        create_placeholder_if_missing=False,
        include_inactive=False,
    ):
        """Search for a customer using the given source strategy.

        Raises:
            ValueError: neither phone nor email given, or unknown source.
        """
        if not phone and not email:
            raise ValueError("Phone or email required for customer lookup")

        if phone and not is_valid_phone(phone):
            logger.warning(f"Phone format unusual: {phone}")
        if email and not is_valid_email(email):
            logger.warning(f"Email format unusual: {email}")

        source = source or self.default_source
        if source not in SOURCES:
            raise ValueError(f"Unknown lookup source: {source}")

        logger.info(f"Customer lookup with strategy {source}")

        def from_xlsx():
            return self.xlsx.search(
                phone=phone, email=email, include_inactive=include_inactive
            )

        def from_servicetitan():
            return self.servicetitan.search(
                phone=phone,
                email=email,
                include_inactive=include_inactive,
                create_placeholder_if_missing=create_placeholder_if_missing,
            )

        if source == "xlsx-only":
            return from_xlsx()
        if source == "servicetitan-only":
            return from_servicetitan()
        if source == "hybrid-prefer-xlsx":
            return self._hybrid(from_xlsx, from_servicetitan)
        return self._hybrid(from_servicetitan, from_xlsx)

    @staticmethod
    def _hybrid(primary, fallback):
        result = primary()
        if result.error:
            logger.info(f"Primary lookup failed, not falling back: {result.error.message}")
            return result
        if result.found and result.matches:
            return result
        logger.info("No matches from primary source, trying fallback")
        return fallback()

    @staticmethod
    def rank_matches(matches, phone=None, email=None):
        return sorted(
            matches,
            key=lambda m: score_match(m, phone=phone, email=email),
            reverse=True,
        )

    def get_best_match(self, result, phone=None, email=None):
        if not result.found or not result.matches:
            return None
        if len(result.matches) == 1:
            return result.matches[0]
        return self.rank_matches(result.matches, phone=phone, email=email)[0]

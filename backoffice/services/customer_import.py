"""Load a ServiceTitan customer export into the local lookup cache.

The export is the "Customers" report saved as CSV. Expected headers:
Customer ID, Customer Name, Type, Phone Number, Email, Full Address,
Customers Lifetime Revenue.

The import replaces the whole cache in one transaction. A failure rolls
back and leaves the previous cache untouched.
"""

import csv
import logging
import re

from backoffice.extensions import db
from backoffice.models.customer_cache import CachedContact, CachedCustomer
from backoffice.services.customer_lookup import normalize_email, normalize_phone

logger = logging.getLogger(__name__)

REQUIRED_HEADERS = ("Customer ID", "Customer Name")
STATE_ZIP_RE = re.compile(r"([A-Z]{2})\s+(\d{5})")


def parse_address(full_address):
    """Split "street, city, ST 12345" into parts. Missing parts are None."""
    empty = {"street": None, "city": None, "state": None, "zip": None}
    if not full_address:
        return empty

    parts = [p.strip() for p in full_address.split(",")]
    if len(parts) < 2:
        return {**empty, "street": full_address.strip()}

    result = {**empty, "street": parts[0], "city": parts[1]}
    match = STATE_ZIP_RE.search(parts[-1])
    if match:
        result["state"], result["zip"] = match.group(1), match.group(2)
    return result


def _revenue_cents(value):
    try:
        return int(round(float(str(value or 0).replace("$", "").replace(",", "")) * 100))
    except ValueError:
        return 0


def import_customers_csv(path):
    """Replace the customer cache with the rows in `path`.

    Returns:
        dict: customers, contacts, skipped counts.

    Raises:
        ValueError: missing headers or no rows.
    """
    with open(path, newline="", encoding="utf-8-sig") as f:
        reader = csv.DictReader(f)
        missing = [h for h in REQUIRED_HEADERS if h not in (reader.fieldnames or [])]
        if missing:
            raise ValueError(f"CSV is missing columns: {', '.join(missing)}")
        rows = list(reader)

    if not rows:
        raise ValueError("CSV contains no customer rows")

    stats = {"customers": 0, "contacts": 0, "skipped": 0}
    seen = set()

    try:
        CachedContact.query.delete()
        CachedCustomer.query.delete()

        for row in rows:
            raw_id = (row.get("Customer ID") or "").strip()
            if not raw_id.isdigit() or int(raw_id) in seen:
                stats["skipped"] += 1
                continue
            customer_id = int(raw_id)
            seen.add(customer_id)

            phone = (row.get("Phone Number") or "").strip() or None
            email = (row.get("Email") or "").strip() or None
            address = parse_address(row.get("Full Address"))

            db.session.add(CachedCustomer(
                id=customer_id,
                name=(row.get("Customer Name") or "").strip() or "Unknown",
                type=(row.get("Type") or "").strip() or "Residential",
                phone=phone,
                email=email,
                is_active=True,
                lifetime_revenue=_revenue_cents(row.get("Customers Lifetime Revenue")),
                **address,
            ))
            stats["customers"] += 1

            # --- Contacts ---
            if phone and normalize_phone(phone):
                db.session.add(CachedContact(
                    customer_id=customer_id,
                    contact_type="Phone",
                    value=phone,
                    normalized_value=normalize_phone(phone),
                ))
                stats["contacts"] += 1
            if email:
                db.session.add(CachedContact(
                    customer_id=customer_id,
                    contact_type="Email",
                    value=email,
                    normalized_value=normalize_email(email),
                ))
                stats["contacts"] += 1

        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception(f"Customer import from {path} failed, cache unchanged")
        raise

    logger.info(
        f"Imported {stats['customers']} customers / {stats['contacts']} contacts "
        f"({stats['skipped']} skipped)"
    )
    return stats

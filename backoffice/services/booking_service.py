"""Booking service — turn a scheduler request into a ServiceTitan job.

Flow for POST /api/scheduler/book:
1. validate the payload (400 on failure, nothing written)
2. persist a pending SchedulerRequest
3. check the appointment window
4. resolve campaign, job type, business unit
5. resolve customer + location, then technician
6. create the job and mark the request confirmed
7. convert a pending referral, if the visitor came through a referral link

Any failure after step 2 marks the request failed and raises a
BookingError with status 500. Step 7 never fails the booking.
"""

import logging
from datetime import date, datetime, timedelta, timezone

import bleach

from backoffice.extensions import db
from backoffice.models.audit import log_audit
from backoffice.models.scheduler_request import SchedulerRequest
from backoffice.models.tracking_number import TrackingNumber
from backoffice.services.customer_lookup import normalize_phone
from backoffice.services.email_service import notify_staff
from backoffice.services.referral_service import ConversionResult, convert_pending_referral
from backoffice.services.servicetitan import ServiceTitanError

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("customerName", "customerPhone", "address", "requestedService")

# Arrival windows for a preferred time slot: (start hour, length in hours)
TIME_SLOTS = {
    "morning": (8, 4),
    "afternoon": (13, 4),
    "evening": (17, 4),
}
DEFAULT_SLOT = (9, 4)
APPOINTMENT_HOURS = 2


class BookingError(Exception):
    """A booking failed. status_code is the HTTP status to answer with."""

    def __init__(self, message, status_code=500, request_id=None, details=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.request_id = request_id
        self.details = details or message


# ──────────────────────────────────────────────
# Parsing & validation
# ──────────────────────────────────────────────

def _text(data, key):
    value = data.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def parse_datetime(value, field_name):
    """Parse an ISO 8601 timestamp. Naive values are treated as UTC."""
    if value in (None, ""):
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise BookingError("Invalid request data", status_code=400,
                           details=f"Invalid {field_name}: {value}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_booking_payload(data):
    """Validate the raw JSON body and return a normalized dict.

    Raises:
        BookingError(400): missing/invalid fields.
    """
    if not isinstance(data, dict) or not data:
        raise BookingError("Invalid request data", status_code=400,
                           details="Request body must be a JSON object.")

    missing = [f for f in REQUIRED_FIELDS if not _text(data, f)]
    if missing:
        raise BookingError(
            "Invalid request data",
            status_code=400,
            details=f"Missing required fields: {', '.join(missing)}",
        )

    if len(normalize_phone(data["customerPhone"])) != 10:
        raise BookingError(
            "Invalid request data",
            status_code=400,
            details="customerPhone must be a 10-digit US phone number.",
        )

    preferred_date = _text(data, "preferredDate")
    if preferred_date:
        try:
            preferred_date = date.fromisoformat(preferred_date[:10])
        except ValueError:
            raise BookingError("Invalid request data", status_code=400,
                               details=f"Invalid preferredDate: {preferred_date}")

    return {
        "customer_name": bleach.clean(_text(data, "customerName"), tags=[], strip=True),
        "customer_email": (_text(data, "customerEmail") or "").lower() or None,
        "customer_phone": _text(data, "customerPhone"),
        "address": _text(data, "address"),
        "city": _text(data, "city"),
        "state": _text(data, "state"),
        "zip_code": _text(data, "zipCode"),
        "requested_service": _text(data, "requestedService"),
        "preferred_date": preferred_date,
        "preferred_time_slot": _text(data, "preferredTimeSlot"),
        "special_instructions": _text(data, "specialInstructions"),
        "problem_description": _text(data, "problemDescription"),
        "groupon_voucher": _text(data, "grouponVoucher"),
        "booking_source": _text(data, "bookingSource") or "website",
        "utm_source": _text(data, "utm_source"),
        "utm_medium": _text(data, "utm_medium"),
        "utm_campaign": _text(data, "utm_campaign"),
        "referral_token": _text(data, "referralToken"),
        "service_titan_id": data.get("serviceTitanId"),
        "location_id": data.get("locationId"),
        "technician_id": data.get("technicianId"),
        "arrival_window_start": parse_datetime(data.get("arrivalWindowStart"), "arrivalWindowStart"),
        "arrival_window_end": parse_datetime(data.get("arrivalWindowEnd"), "arrivalWindowEnd"),
        "appointment_start": parse_datetime(data.get("appointmentStart"), "appointmentStart"),
        "appointment_end": parse_datetime(data.get("appointmentEnd"), "appointmentEnd"),
    }


def build_special_instructions(problem_description=None, groupon_voucher=None,
                               special_instructions=None):
    """Customer problem, then voucher code, then existing instructions."""
    parts = []
    if problem_description:
        parts.append(problem_description)
    if groupon_voucher:
        parts.append(f"Groupon Voucher: {groupon_voucher}")
    if special_instructions:
        parts.append(special_instructions)
    text = "\n\n".join(parts)
    return bleach.clean(text, tags=[], strip=True) if text else None


def resolve_appointment_window(booking, now=None):
    """Work out (start, end, arrival_start, arrival_end) for the job.

    An explicit appointment slot must come as a start/end pair and, when an
    arrival window is also given, fit inside it. Without a slot the
    appointment takes the first two hours of the arrival window.
    """
    window_start = booking["arrival_window_start"]
    window_end = booking["arrival_window_end"]
    apt_start = booking["appointment_start"]
    apt_end = booking["appointment_end"]

    if (apt_start is None) != (apt_end is None):
        raise BookingError(
            "appointmentStart and appointmentEnd must be provided together"
        )
    if (window_start is None) != (window_end is None):
        raise BookingError(
            "arrivalWindowStart and arrivalWindowEnd must be provided together"
        )
    if apt_start and apt_end <= apt_start:
        raise BookingError("appointmentEnd must be after appointmentStart")

    if window_start and apt_start:
        if not (apt_start >= window_start and apt_end <= window_end):
            raise BookingError(
                f"Appointment slot {apt_start.isoformat()} - {apt_end.isoformat()} "
                f"falls outside the arrival window "
                f"{window_start.isoformat()} - {window_end.isoformat()}"
            )

    if window_start is None:
        if apt_start:
            window_start, window_end = apt_start, apt_end
        elif booking["preferred_date"]:
            hour, length = TIME_SLOTS.get(booking["preferred_time_slot"] or "", DEFAULT_SLOT)
            day = booking["preferred_date"]
            window_start = datetime(day.year, day.month, day.day, hour, tzinfo=timezone.utc)
            window_end = window_start + timedelta(hours=length)
        else:
            window_start = (now or datetime.now(timezone.utc)) + timedelta(days=1)
            window_end = window_start + timedelta(hours=DEFAULT_SLOT[1])

    if apt_start is None:
        apt_start = window_start
        apt_end = window_start + timedelta(hours=APPOINTMENT_HOURS)

    return apt_start, apt_end, window_start, window_end


# ──────────────────────────────────────────────
# ServiceTitan resolution steps
# ──────────────────────────────────────────────

def resolve_campaign_id(client, utm_source=None):
    source = utm_source or "website"

    tracking = TrackingNumber.query.filter_by(utm_source=source, is_active=True).first()
    if tracking and tracking.service_titan_campaign_id:
        logger.info(
            f"Campaign from tracking number {tracking.display_name or source} "
            f"(ID: {tracking.service_titan_campaign_id})"
        )
        return tracking.service_titan_campaign_id

    logger.info(f"No tracking number mapping for {source}, looking for \"website\" campaign")
    for campaign in client.get_campaigns():
        name = (campaign.get("name") or "").lower()
        campaign_source = (campaign.get("source") or "").lower()
        if name == "website" or campaign_source == "website":
            return campaign["id"]

    raise BookingError(
        f'No ServiceTitan campaign found for utm_source="{source}". '
        f"Configure a tracking number mapping or create a \"website\" "
        f"campaign in ServiceTitan as the default."
    )


def resolve_job_type(client, requested_service):
    job_type = client.find_job_type_by_name(requested_service)
    if not job_type:
        raise BookingError(f"Job type not found for service: {requested_service}")
    return job_type


def resolve_business_unit_id(client, job_type):
    if job_type.get("businessUnitId") or job_type.get("defaultBusinessUnitId"):
        return job_type.get("businessUnitId") or job_type.get("defaultBusinessUnitId")
    units = client.get_business_units()
    if not units:
        raise BookingError("No active business units found in ServiceTitan")
    return units[0]["id"]


def resolve_technician_id(client, technician_id=None):
    """Explicit technician, else the first active technician, else None."""
    if technician_id:
        return technician_id
    try:
        for employee in client.get_technicians():
            role = (employee.get("role") or "").lower()
            if "technician" in role and employee.get("active", True):
                return employee["id"]
    except ServiceTitanError as e:
        logger.warning(f"Technician lookup failed, booking unassigned: {e}")
        return None
    logger.info("No active technician found, booking unassigned")
    return None


def resolve_customer_and_location(client, booking):
    customer_id = booking["service_titan_id"]
    location_id = booking["location_id"]
    if customer_id and location_id:
        return int(customer_id), int(location_id)

    missing = [
        label
        for label, key in (("city", "city"), ("state", "state"), ("zip code", "zip_code"))
        if not booking[key]
    ]
    if missing:
        raise BookingError(f"Incomplete address: missing {', '.join(missing)}")

    address = {
        "street": booking["address"],
        "city": booking["city"],
        "state": booking["state"],
        "zip": booking["zip_code"],
    }
    if not customer_id:
        customer_id = client.ensure_customer(
            booking["customer_name"],
            phone=normalize_phone(booking["customer_phone"]),
            email=booking["customer_email"],
            address=address,
        )
    if not location_id:
        location_id = client.ensure_location(customer_id, booking["customer_name"], address)
    return int(customer_id), int(location_id)


# ──────────────────────────────────────────────
# Orchestration
# ──────────────────────────────────────────────

def _record_failure(scheduler_request, message):
    db.session.rollback()
    scheduler_request = db.session.get(SchedulerRequest, scheduler_request.id)
    scheduler_request.status = "failed"
    scheduler_request.error_message = message[:2000]
    log_audit(
        "booking.failed",
        subject_id=scheduler_request.id,
        requested_service=scheduler_request.requested_service,
        error=message[:500],
    )
    db.session.commit()
    notify_staff(
        f"Online booking failed: {scheduler_request.customer_name}",
        f"Request {scheduler_request.id} for {scheduler_request.requested_service} "
        f"({scheduler_request.customer_phone}) could not be booked:\n\n{message}",
    )


def _convert_referral(token, booking, customer_id, job):
    """Referral side effect. Its outcome is logged, never raised."""
    try:
        result = convert_pending_referral(
            token,
            referee_phone=booking["customer_phone"],
            referee_name=booking["customer_name"],
            referee_email=booking["customer_email"],
            referee_customer_id=customer_id,
            job_id=job.get("id"),
            job_date=datetime.now(timezone.utc),
        )
    except Exception as e:
        db.session.rollback()
        logger.exception(f"Referral conversion failed for token {token}: {e}")
        return ConversionResult("failed", reason=str(e))
    logger.info(f"Referral conversion for {token}: {result.status}")
    return result


def book_appointment(data, client):
    """Run the whole booking. Returns the JSON-ready success dict.

    Raises:
        BookingError: 400 before anything is saved, 500 afterwards.
    """
    booking = parse_booking_payload(data)

    scheduler_request = SchedulerRequest(
        customer_name=booking["customer_name"],
        customer_email=booking["customer_email"],
        customer_phone=booking["customer_phone"],
        address=booking["address"],
        city=booking["city"],
        state=booking["state"],
        zip_code=booking["zip_code"],
        requested_service=booking["requested_service"],
        preferred_date=booking["preferred_date"],
        preferred_time_slot=booking["preferred_time_slot"],
        special_instructions=booking["special_instructions"],
        booking_source=booking["booking_source"],
        utm_source=booking["utm_source"],
        utm_medium=booking["utm_medium"],
        utm_campaign=booking["utm_campaign"],
        referral_token=booking["referral_token"],
        status="pending",
    )
    db.session.add(scheduler_request)
    db.session.commit()

    try:
        start, end, window_start, window_end = resolve_appointment_window(booking)
        campaign_id = resolve_campaign_id(client, booking["utm_source"])
        job_type = resolve_job_type(client, booking["requested_service"])
        business_unit_id = resolve_business_unit_id(client, job_type)
        customer_id, location_id = resolve_customer_and_location(client, booking)
        technician_id = resolve_technician_id(client, booking["technician_id"])

        job = client.create_job(
            customer_id=customer_id,
            location_id=location_id,
            business_unit_id=business_unit_id,
            job_type_id=job_type["id"],
            campaign_id=campaign_id,
            start=start.isoformat(),
            end=end.isoformat(),
            arrival_window_start=window_start.isoformat(),
            arrival_window_end=window_end.isoformat(),
            technician_ids=[technician_id] if technician_id else [],
            summary=f"{booking['requested_service']} - Booked via {booking['booking_source']}",
            special_instructions=build_special_instructions(
                booking["problem_description"],
                booking["groupon_voucher"],
                booking["special_instructions"],
            ),
        )

        scheduler_request.status = "confirmed"
        scheduler_request.service_titan_customer_id = customer_id
        scheduler_request.service_titan_location_id = location_id
        scheduler_request.service_titan_job_id = job.get("id")
        scheduler_request.service_titan_appointment_id = job.get("firstAppointmentId")
        scheduler_request.job_number = str(job.get("jobNumber") or "")
        scheduler_request.booked_at = datetime.now(timezone.utc)
        db.session.commit()
    except Exception as e:
        message = getattr(e, "message", None) or str(e) or "Unknown error during booking"
        logger.error(f"Booking {scheduler_request.id} failed: {message}")
        _record_failure(scheduler_request, message)
        raise BookingError(
            "Failed to book appointment",
            status_code=500,
            request_id=scheduler_request.id,
            details=message,
        ) from e

    logger.info(f"Booking {scheduler_request.id} confirmed as job #{job.get('jobNumber')}")

    conversion = None
    if booking["referral_token"]:
        conversion = _convert_referral(booking["referral_token"], booking, customer_id, job)

    return {
        "success": True,
        "requestId": scheduler_request.id,
        "jobNumber": job.get("jobNumber"),
        "jobId": job.get("id"),
        "appointmentId": job.get("firstAppointmentId"),
        "message": f"Appointment successfully scheduled! Job #{job.get('jobNumber')}",
        "referralConversion": conversion.status if conversion else None,
    }

"""Tests for POST /api/scheduler/book and the booking service.

Covers:
- Payload validation (400, nothing persisted)
- Happy path: job created, request confirmed, response shape
- Appointment window rules (pairing, containment, time slots)
- Campaign resolution (tracking number, "website" fallback, none)
- Job type / business unit / address failures mark the request failed
- Special instructions assembly
- Referral conversion as a non-failing side effect
"""

import json
from datetime import date, datetime, timezone
from unittest.mock import patch

import pytest

from backoffice.extensions import db
from backoffice.models.audit import AuditEvent
from backoffice.models.referral import PendingReferral, Referral
from backoffice.models.scheduler_request import SchedulerRequest
from backoffice.models.tracking_number import TrackingNumber
from backoffice.services.booking_service import (
    BookingError,
    build_special_instructions,
    parse_booking_payload,
    resolve_appointment_window,
    resolve_campaign_id,
)
from backoffice.services.servicetitan import ServiceTitanError


def booking_payload(**overrides):
    payload = {
        "customerName": "Pat Plumbing",
        "customerEmail": "Pat@Example.com",
        "customerPhone": "(512) 555-0142",
        "address": "200 Lamar Blvd",
        "city": "Austin",
        "state": "TX",
        "zipCode": "78704",
        "requestedService": "Drain Cleaning",
        "preferredDate": "2026-11-03",
        "preferredTimeSlot": "morning",
        "problemDescription": "Kitchen sink backs up",
    }
    payload.update(overrides)
    return payload


def book(client, **overrides):
    return client.post("/api/scheduler/book", json=booking_payload(**overrides))


# ══════════════════════════════════════════════
#  VALIDATION
# ══════════════════════════════════════════════

class TestBookingValidation:

    def test_missing_fields_returns_400(self, client, servicetitan):
        resp = client.post("/api/scheduler/book", json={"customerName": "Pat"})
        assert resp.status_code == 400
        data = json.loads(resp.data)
        assert data["success"] is False
        assert data["error"] == "Invalid request data"
        assert SchedulerRequest.query.count() == 0

    def test_short_phone_returns_400(self, client, servicetitan):
        resp = book(client, customerPhone="555-0142")
        assert resp.status_code == 400
        assert SchedulerRequest.query.count() == 0
        servicetitan.create_job.assert_not_called()

    def test_empty_body_returns_400(self, client, servicetitan):
        resp = client.post("/api/scheduler/book", data="not json", content_type="text/plain")
        assert resp.status_code == 400

    def test_malformed_appointment_time_returns_400(self, client, servicetitan):
        resp = book(client, appointmentStart="not-a-date",
                    appointmentEnd="2026-11-03T11:00:00Z")
        assert resp.status_code == 400
        data = json.loads(resp.data)
        assert data["error"] == "Invalid request data"
        assert "Invalid appointmentStart" in data["details"]
        assert SchedulerRequest.query.count() == 0
        servicetitan.create_job.assert_not_called()

    def test_parse_normalizes_email_and_date(self):
        booking = parse_booking_payload(booking_payload())
        assert booking["customer_email"] == "pat@example.com"
        assert booking["preferred_date"] == date(2026, 11, 3)
        assert booking["booking_source"] == "website"


# ══════════════════════════════════════════════
#  HAPPY PATH
# ══════════════════════════════════════════════

class TestBookingSuccess:

    def test_books_job_and_confirms_request(self, client, servicetitan):
        resp = book(client)
        assert resp.status_code == 200
        data = json.loads(resp.data)
        assert data["success"] is True
        assert data["jobNumber"] == "J-1001"
        assert data["jobId"] == 9001
        assert data["appointmentId"] == 9101
        assert "J-1001" in data["message"]

        sr = db.session.get(SchedulerRequest, data["requestId"])
        assert sr.status == "confirmed"
        assert sr.service_titan_customer_id == 7001
        assert sr.service_titan_location_id == 8001
        assert sr.service_titan_job_id == 9001
        assert sr.job_number == "J-1001"

    def test_create_job_arguments(self, client, servicetitan):
        book(client)
        kwargs = servicetitan.create_job.call_args.kwargs
        assert kwargs["customer_id"] == 7001
        assert kwargs["location_id"] == 8001
        assert kwargs["business_unit_id"] == 401
        assert kwargs["job_type_id"] == 301
        assert kwargs["campaign_id"] == 501
        assert kwargs["technician_ids"] == [601]
        # morning slot: 08:00-12:00 window, 2h appointment
        assert kwargs["arrival_window_start"].startswith("2026-11-03T08:00")
        assert kwargs["arrival_window_end"].startswith("2026-11-03T12:00")
        assert kwargs["end"].startswith("2026-11-03T10:00")
        assert kwargs["special_instructions"] == "Kitchen sink backs up"

    def test_known_customer_and_location_skip_crm_resolution(self, client, servicetitan):
        resp = book(client, serviceTitanId=1234, locationId=5678)
        assert resp.status_code == 200
        servicetitan.ensure_customer.assert_not_called()
        servicetitan.ensure_location.assert_not_called()
        assert servicetitan.create_job.call_args.kwargs["customer_id"] == 1234

    def test_technician_lookup_failure_books_unassigned(self, client, servicetitan):
        servicetitan.get_technicians.side_effect = ServiceTitanError("down", retryable=True)
        resp = book(client)
        assert resp.status_code == 200
        assert servicetitan.create_job.call_args.kwargs["technician_ids"] == []


# ══════════════════════════════════════════════
#  FAILURES AFTER PERSISTING
# ══════════════════════════════════════════════

class TestBookingFailures:

    def _only_request(self):
        requests = SchedulerRequest.query.all()
        assert len(requests) == 1
        return requests[0]

    def test_unknown_job_type_marks_failed(self, client, servicetitan):
        servicetitan.find_job_type_by_name.return_value = None
        resp = book(client, requestedService="Unicorn Grooming")
        assert resp.status_code == 500
        data = json.loads(resp.data)
        assert data["error"] == "Failed to book appointment"
        assert "Job type not found for service: Unicorn Grooming" in data["details"]

        sr = self._only_request()
        assert sr.status == "failed"
        assert "Job type not found" in sr.error_message
        assert data["requestId"] == sr.id

    def test_failure_writes_audit_event(self, client, servicetitan):
        servicetitan.find_job_type_by_name.return_value = None
        book(client)
        event = AuditEvent.query.filter_by(action="booking.failed").one()
        assert event.subject_id == self._only_request().id

    def test_failure_notifies_staff(self, client, servicetitan):
        servicetitan.find_job_type_by_name.return_value = None
        with patch("backoffice.services.booking_service.notify_staff") as mock_notify:
            book(client)
        subject, text = mock_notify.call_args.args
        assert subject == "Online booking failed: Pat Plumbing"
        assert "Job type not found" in text

    def test_no_business_units_marks_failed(self, client, servicetitan):
        servicetitan.find_job_type_by_name.return_value = {"id": 301, "name": "Drain Cleaning"}
        servicetitan.get_business_units.return_value = []
        resp = book(client)
        assert resp.status_code == 500
        assert "No active business units" in json.loads(resp.data)["details"]
        assert self._only_request().status == "failed"

    def test_no_campaign_marks_failed(self, client, servicetitan):
        servicetitan.get_campaigns.return_value = []
        resp = book(client)
        assert resp.status_code == 500
        assert "No ServiceTitan campaign found" in json.loads(resp.data)["details"]
        sr = self._only_request()
        assert sr.status == "failed"
        servicetitan.create_job.assert_not_called()

    def test_incomplete_address_marks_failed(self, client, servicetitan):
        resp = book(client, city="", zipCode="")
        assert resp.status_code == 500
        details = json.loads(resp.data)["details"]
        assert "Incomplete address" in details
        assert "city" in details and "zip code" in details
        servicetitan.create_job.assert_not_called()

    def test_create_job_error_marks_failed(self, client, servicetitan):
        servicetitan.create_job.side_effect = ServiceTitanError(
            "ServiceTitan POST jobs returned 400: bad", status_code=400
        )
        resp = book(client)
        assert resp.status_code == 500
        assert self._only_request().status == "failed"

    def test_unpaired_appointment_marks_failed(self, client, servicetitan):
        resp = book(client, appointmentStart="2026-11-03T09:00:00Z")
        assert resp.status_code == 500
        assert "must be provided together" in json.loads(resp.data)["details"]
        assert self._only_request().status == "failed"


# ══════════════════════════════════════════════
#  APPOINTMENT WINDOW
# ══════════════════════════════════════════════

class TestAppointmentWindow:

    def _booking(self, **overrides):
        return parse_booking_payload(booking_payload(**overrides))

    def test_slot_inside_window(self):
        start, end, ws, we = resolve_appointment_window(self._booking(
            arrivalWindowStart="2026-11-03T08:00:00Z",
            arrivalWindowEnd="2026-11-03T12:00:00Z",
            appointmentStart="2026-11-03T09:00:00Z",
            appointmentEnd="2026-11-03T11:00:00Z",
        ))
        assert start == datetime(2026, 11, 3, 9, tzinfo=timezone.utc)
        assert we == datetime(2026, 11, 3, 12, tzinfo=timezone.utc)

    def test_slot_outside_window_rejected(self):
        with pytest.raises(BookingError) as exc:
            resolve_appointment_window(self._booking(
                arrivalWindowStart="2026-11-03T08:00:00Z",
                arrivalWindowEnd="2026-11-03T12:00:00Z",
                appointmentStart="2026-11-03T11:00:00Z",
                appointmentEnd="2026-11-03T13:00:00Z",
            ))
        assert "falls outside the arrival window" in exc.value.message

    def test_afternoon_slot(self):
        start, end, ws, we = resolve_appointment_window(
            self._booking(preferredTimeSlot="afternoon")
        )
        assert ws.hour == 13 and we.hour == 17
        assert (end - start).total_seconds() == 2 * 3600

    def test_unknown_slot_uses_default(self):
        start, end, ws, we = resolve_appointment_window(
            self._booking(preferredTimeSlot="whenever")
        )
        assert ws.hour == 9


# ══════════════════════════════════════════════
#  CAMPAIGN RESOLUTION
# ══════════════════════════════════════════════

class TestCampaignResolution:

    def test_tracking_number_wins(self, servicetitan):
        db.session.add(TrackingNumber(utm_source="google", service_titan_campaign_id=777))
        db.session.commit()
        assert resolve_campaign_id(servicetitan, "google") == 777
        servicetitan.get_campaigns.assert_not_called()

    def test_falls_back_to_website_campaign(self, servicetitan):
        assert resolve_campaign_id(servicetitan, "facebook") == 501

    def test_no_campaign_raises(self, servicetitan):
        servicetitan.get_campaigns.return_value = [{"id": 1, "name": "Radio", "source": "radio"}]
        with pytest.raises(BookingError) as exc:
            resolve_campaign_id(servicetitan, "facebook")
        assert 'No ServiceTitan campaign found for utm_source="facebook"' in exc.value.message


class TestSpecialInstructions:

    def test_order_and_voucher_prefix(self):
        text = build_special_instructions("Leaky faucet", "GRP-123", "Gate code 4321")
        assert text == "Leaky faucet\n\nGroupon Voucher: GRP-123\n\nGate code 4321"

    def test_empty(self):
        assert build_special_instructions() is None


# ══════════════════════════════════════════════
#  REFERRAL SIDE EFFECT
# ══════════════════════════════════════════════

class TestBookingReferralConversion:

    def _pending(self, token="tok-abc"):
        pending = PendingReferral(
            tracking_cookie=token,
            referrer_customer_id=1001,
            referrer_name="Rita Referrer",
            referee_name="Pat Landing",
            referee_phone="555-0000",
        )
        db.session.add(pending)
        db.session.commit()
        return pending

    def test_booking_converts_pending_referral(self, client, seed_data, servicetitan):
        self._pending()
        resp = book(client, referralToken="tok-abc")
        assert resp.status_code == 200
        assert json.loads(resp.data)["referralConversion"] == "converted"

        referral = Referral.query.filter_by(tracking_token="tok-abc").one()
        assert referral.status == "contacted"
        # booking phone replaces the landing-page phone
        assert referral.referee_phone == "(512) 555-0142"
        assert referral.referee_customer_id == 7001
        assert referral.first_job_id == "9001"

    def test_cookie_token_used_when_body_has_none(self, client, seed_data, servicetitan):
        self._pending("cookie-tok")
        client.set_cookie("referral_token", "cookie-tok", domain="localhost")
        resp = book(client)
        assert json.loads(resp.data)["referralConversion"] == "converted"

    def test_unknown_token_does_not_fail_booking(self, client, seed_data, servicetitan):
        resp = book(client, referralToken="nope")
        assert resp.status_code == 200
        assert json.loads(resp.data)["referralConversion"] == "not_found"

    def test_conversion_crash_does_not_fail_booking(self, client, seed_data, servicetitan, monkeypatch):
        self._pending()

        def explode(*args, **kwargs):
            raise RuntimeError("db hiccup")

        monkeypatch.setattr(
            "backoffice.services.booking_service.convert_pending_referral", explode
        )
        resp = book(client, referralToken="tok-abc")
        assert resp.status_code == 200
        data = json.loads(resp.data)
        assert data["success"] is True
        assert data["referralConversion"] == "failed"

"""Shared test fixtures for the back-office test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, CSRF off)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- seed_data: staff users, a referrer with a referral code, a cached customer
- servicetitan: MagicMock ServiceTitan client swapped into app.extensions
- admin_client / technician_client: test clients already logged in
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from werkzeug.security import generate_password_hash

from backoffice import create_app
from backoffice.extensions import db as _db
from backoffice.models.customer_cache import CachedContact, CachedCustomer
from backoffice.models.referral import ReferralCode
from backoffice.models.setting import SystemSetting
from backoffice.models.user import User
from backoffice.services.customer_lookup import CustomerLookupService
from backoffice.services.servicetitan import ServiceTitanClient


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def servicetitan(app):
    """A MagicMock ServiceTitan client with sensible happy-path answers.

    Replaces the process-wide client (and the lookup service built on it)
    for the duration of one test.
    """
    mock = MagicMock(spec=ServiceTitanClient)
    mock.get_campaigns.return_value = [{"id": 501, "name": "Website", "source": "website"}]
    mock.find_job_type_by_name.return_value = {
        "id": 301, "name": "Drain Cleaning", "businessUnitId": 401,
    }
    mock.get_business_units.return_value = [{"id": 401, "name": "Plumbing"}]
    mock.get_technicians.return_value = [
        {"id": 601, "name": "Tom Tech", "role": "Technician", "active": True},
    ]
    mock.ensure_customer.return_value = 7001
    mock.ensure_location.return_value = 8001
    mock.create_job.return_value = {
        "id": 9001, "jobNumber": "J-1001", "firstAppointmentId": 9101,
    }
    mock.search_customers.return_value = []

    saved = (app.extensions["servicetitan"], app.extensions["customer_lookup"])
    app.extensions["servicetitan"] = mock
    app.extensions["customer_lookup"] = CustomerLookupService(
        mock, app.config["CUSTOMER_LOOKUP_SOURCE"]
    )
    yield mock
    app.extensions["servicetitan"], app.extensions["customer_lookup"] = saved


@pytest.fixture
def seed_data(app, db_session):
    """Seed staff users, a referrer customer with a code, and email settings.

    Returns a dict of plain ids and values for easy access in tests.
    """
    # --- Staff ---
    admin = User(
        email="admin@backoffice.local",
        password_hash=generate_password_hash("admin123"),
        full_name="Office Admin",
        is_admin=True,
    )
    technician = User(
        email="tech@backoffice.local",
        password_hash=generate_password_hash("tech123"),
        full_name="Tom Tech",
        is_admin=False,
    )
    _db.session.add_all([admin, technician])

    # --- Referrer: cached customer + referral code ---
    referrer = CachedCustomer(
        id=1001,
        name="Rita Referrer",
        phone="5125550100",
        email="rita@example.com",
        street="100 Congress Ave",
        city="Austin",
        state="TX",
        zip="78701",
    )
    _db.session.add(referrer)
    _db.session.flush()
    _db.session.add_all([
        CachedContact(customer_id=1001, contact_type="Phone",
                      value="(512) 555-0100", normalized_value="5125550100"),
        CachedContact(customer_id=1001, contact_type="Email",
                      value="rita@example.com", normalized_value="rita@example.com"),
    ])
    code = ReferralCode(
        customer_id=1001,
        customer_name="Rita Referrer",
        customer_phone="5125550100",
        code="RITA1001",
    )
    _db.session.add(code)

    # --- Email gates on ---
    SystemSetting.set("review_master_email_switch", "true")
    SystemSetting.set("review_drip_enabled", "true")
    SystemSetting.set("referral_nurture_phone_number", "(512) 555-0199")

    _db.session.commit()

    return {
        "admin": admin,
        "admin_id": admin.id,
        "technician": technician,
        "technician_id": technician.id,
        "referrer_customer_id": 1001,
        "referral_code": "RITA1001",
        "now": datetime.now(timezone.utc),
        "yesterday": datetime.now(timezone.utc) - timedelta(days=1),
    }


def login(client, email, password):
    return client.post("/auth/login", json={"email": email, "password": password})


@pytest.fixture
def admin_client(client, seed_data):
    """Test client logged in as the office admin."""
    resp = login(client, "admin@backoffice.local", "admin123")
    assert resp.status_code == 200
    return client


@pytest.fixture
def technician_client(client, seed_data):
    """Test client logged in as a (non-admin) technician."""
    resp = login(client, "tech@backoffice.local", "tech123")
    assert resp.status_code == 200
    return client

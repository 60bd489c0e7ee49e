"""ServiceTitan service — thin HTTP client for the field-service CRM.

Covers just the calls the back-office needs:
- CRM: customer search/create, contacts, locations
- JPM: job creation, job types
- Settings: business units, employees (technicians)
- Marketing: campaigns

Auth is OAuth2 client-credentials. The access token and the slow-changing
lists (job types, business units, campaigns, technicians) are cached in
memory with a TTL. One client is built per process in create_app() and
registered as app.extensions["servicetitan"].
"""

import logging
import re
import threading
import time

import requests

logger = logging.getLogger(__name__)

# Refresh the token this many seconds before it actually expires
TOKEN_REFRESH_MARGIN = 60


class ServiceTitanError(Exception):
    """Raised when a ServiceTitan call fails.

    retryable is True for transport failures and 5xx responses (the CRM
    was unreachable or broken), False for 4xx (our request was wrong).
    """

    def __init__(self, message, status_code=None, retryable=False):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


def _normalize_name(value):
    return re.sub(r"[^a-z0-9]", "", (value or "").lower())


class ServiceTitanClient:
    def __init__(
        self,
        client_id,
        client_secret,
        app_key,
        tenant_id,
        api_base="https://api.servicetitan.io",
        auth_url="https://auth.servicetitan.io/connect/token",
        cache_ttl=300,
        timeout=20,
        session=None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.app_key = app_key
        self.tenant_id = tenant_id
        self.api_base = api_base.rstrip("/")
        self.auth_url = auth_url
        self.cache_ttl = cache_ttl
        self.timeout = timeout
        self.session = session or requests.Session()

        self._token = None
        self._token_expires_at = 0.0
        self._cache = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config):
        return cls(
            client_id=config.get("SERVICETITAN_CLIENT_ID"),
            client_secret=config.get("SERVICETITAN_CLIENT_SECRET"),
            app_key=config.get("SERVICETITAN_APP_KEY"),
            tenant_id=config.get("SERVICETITAN_TENANT_ID"),
            api_base=config.get("SERVICETITAN_API_BASE", "https://api.servicetitan.io"),
            auth_url=config.get(
                "SERVICETITAN_AUTH_URL", "https://auth.servicetitan.io/connect/token"
            ),
            cache_ttl=config.get("SERVICETITAN_CACHE_TTL", 300),
        )

    # ──────────────────────────────────────────────
    # Transport
    # ──────────────────────────────────────────────

    def _get_token(self):
        """Return a valid access token, fetching a new one when stale."""
        with self._lock:
            if self._token and time.time() < self._token_expires_at - TOKEN_REFRESH_MARGIN:
                return self._token

            try:
                resp = self.session.post(
                    self.auth_url,
                    data={"grant_type": "client_credentials"},
                    auth=(self.client_id or "", self.client_secret or ""),
                    timeout=self.timeout,
                )
            except requests.exceptions.RequestException as e:
                raise ServiceTitanError(
                    f"ServiceTitan auth request failed: {e}", retryable=True
                ) from e

            if resp.status_code != 200:
                raise ServiceTitanError(
                    f"ServiceTitan auth failed ({resp.status_code})",
                    status_code=resp.status_code,
                    retryable=resp.status_code >= 500,
                )

            payload = resp.json()
            self._token = payload["access_token"]
            self._token_expires_at = time.time() + int(payload.get("expires_in", 900))
            logger.info("Refreshed ServiceTitan access token")
            return self._token

    def _tenant_path(self, module, resource):
        return f"{self.api_base}/{module}/v2/tenant/{self.tenant_id}/{resource}"

    def _request(self, method, module, resource, params=None, json=None):
        url = self._tenant_path(module, resource)
        headers = {
            "Authorization": f"Bearer {self._get_token()}",
            "ST-App-Key": self.app_key or "",
        }

        try:
            resp = self.session.request(
                method,
                url,
                params=params,
                json=json,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.warning(f"ServiceTitan {method} {module}/{resource} failed: {e}")
            raise ServiceTitanError(
                f"ServiceTitan request failed: {e}", retryable=True
            ) from e

        if resp.status_code >= 400:
            body = resp.text[:500]
            logger.warning(
                f"ServiceTitan {method} {module}/{resource} -> {resp.status_code}: {body}"
            )
            raise ServiceTitanError(
                f"ServiceTitan {method} {resource} returned {resp.status_code}: {body}",
                status_code=resp.status_code,
                retryable=resp.status_code >= 500,
            )

        if not resp.content:
            return {}
        return resp.json()

    def _cached(self, key, loader):
        """Return a cached list, reloading it once the TTL has passed."""
        entry = self._cache.get(key)
        if entry and time.time() - entry[0] < self.cache_ttl:
            return entry[1]
        value = loader()
        self._cache[key] = (time.time(), value)
        return value

    def clear_cache(self):
        self._cache.clear()

    # ──────────────────────────────────────────────
    # Customers & contacts
    # ──────────────────────────────────────────────

    def search_customers(self, phone=None, email=None, include_inactive=False):
        """Search CRM customers by phone or email. Returns raw customer dicts."""
        params = {"pageSize": 50}
        if phone:
            params["phone"] = phone
        if email:
            params["email"] = email
        if not include_inactive:
            params["active"] = "True"
        data = self._request("GET", "crm", "customers", params=params)
        return data.get("data", [])

    def get_customer_contacts(self, customer_id):
        data = self._request("GET", "crm", f"customers/{customer_id}/contacts")
        return data.get("data", [])

    def create_customer(self, name, phone=None, email=None, address=None):
        """Create a CRM customer with an initial location at `address`."""
        contacts = []
        if phone:
            contacts.append({"type": "MobilePhone", "value": phone})
        if email:
            contacts.append({"type": "Email", "value": email})

        address = _st_address(address or {})
        body = {
            "name": name,
            "type": "Residential",
            "address": address,
            "contacts": contacts,
            "locations": [
                {"name": name, "address": address, "contacts": contacts}
            ],
        }
        customer = self._request("POST", "crm", "customers", json=body)
        logger.info(f"Created ServiceTitan customer {customer.get('id')} ({name})")
        return customer

    def ensure_customer(self, name, phone, email=None, address=None):
        """Return the id of the customer matching phone (then email), creating one if needed."""
        matches = self.search_customers(phone=phone) if phone else []
        if not matches and email:
            matches = self.search_customers(email=email)
        if matches:
            return matches[0]["id"]
        return self.create_customer(name, phone=phone, email=email, address=address)["id"]

    # ──────────────────────────────────────────────
    # Locations
    # ──────────────────────────────────────────────

    def get_locations(self, customer_id):
        data = self._request(
            "GET",
            "crm",
            "locations",
            params={"customerId": customer_id, "active": "true"},
        )
        return data.get("data", [])

    def ensure_location(self, customer_id, name, address):
        """Return the id of the customer's location at `address`, creating it if needed.

        Street addresses are compared loosely (case, punctuation, spacing)
        together with the zip code.
        """
        wanted_street = _normalize_name(address.get("street"))
        wanted_zip = (address.get("zip") or "").strip()[:5]

        for location in self.get_locations(customer_id):
            loc_addr = location.get("address") or {}
            street = _normalize_name(loc_addr.get("street"))
            zip_code = (loc_addr.get("zip") or "").strip()[:5]
            if street and street == wanted_street and (not wanted_zip or zip_code == wanted_zip):
                return location["id"]

        location = self._request(
            "POST",
            "crm",
            "locations",
            json={"customerId": customer_id, "name": name, "address": _st_address(address)},
        )
        logger.info(f"Created ServiceTitan location {location.get('id')} for customer {customer_id}")
        return location["id"]

    # ──────────────────────────────────────────────
    # Jobs
    # ──────────────────────────────────────────────

    def create_job(
        self,
        customer_id,
        location_id,
        business_unit_id,
        job_type_id,
        campaign_id,
        start,
        end,
        arrival_window_start=None,
        arrival_window_end=None,
        technician_ids=None,
        summary=None,
        special_instructions=None,
    ):
        """Create a job with a single appointment. Returns the raw job dict
        (id, jobNumber, firstAppointmentId)."""
        appointment = {
            "start": start,
            "end": end,
            "arrivalWindowStart": arrival_window_start,
            "arrivalWindowEnd": arrival_window_end,
            "specialInstructions": special_instructions,
            "technicianIds": technician_ids or [],
        }
        body = {
            "customerId": customer_id,
            "locationId": location_id,
            "businessUnitId": business_unit_id,
            "jobTypeId": job_type_id,
            "priority": "Normal",
            "campaignId": campaign_id,
            "summary": summary or "",
            "appointments": [appointment],
        }
        job = self._request("POST", "jpm", "jobs", json=body)
        logger.info(f"Created ServiceTitan job {job.get('id')} (#{job.get('jobNumber')})")
        return job

    def get_job_types(self):
        return self._cached(
            "job_types",
            lambda: self._request(
                "GET", "jpm", "job-types", params={"active": "True", "pageSize": 200}
            ).get("data", []),
        )

    def find_job_type_by_name(self, name):
        """Exact match on normalized name first, then substring either way."""
        wanted = _normalize_name(name)
        if not wanted:
            return None

        job_types = self.get_job_types()
        for job_type in job_types:
            if _normalize_name(job_type.get("name")) == wanted:
                return job_type
        for job_type in job_types:
            candidate = _normalize_name(job_type.get("name"))
            if candidate and (wanted in candidate or candidate in wanted):
                return job_type
        return None

    # ──────────────────────────────────────────────
    # Settings & marketing
    # ──────────────────────────────────────────────

    def get_business_units(self):
        return self._cached(
            "business_units",
            lambda: self._request(
                "GET", "settings", "business-units", params={"isActive": "true"}
            ).get("data", []),
        )

    def get_campaigns(self):
        return self._cached(
            "campaigns",
            lambda: self._request(
                "GET", "marketing", "campaigns", params={"status": "Active", "pageSize": 200}
            ).get("data", []),
        )

    def get_technicians(self):
        return self._cached(
            "technicians",
            lambda: self._request(
                "GET", "settings", "employees", params={"active": "true", "pageSize": 200}
            ).get("data", []),
        )


def _st_address(address):
    """Map our address dict to ServiceTitan's address shape."""
    return {
        "street": address.get("street") or "",
        "city": address.get("city") or "",
        "state": address.get("state") or "",
        "zip": address.get("zip") or "",
        "country": address.get("country") or "USA",
    }

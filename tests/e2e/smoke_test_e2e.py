"""
E2E Smoke Tests for the scheduling API.

These tests call a running instance over HTTP. They are skipped when the
service is not reachable.

Scenarios:
1. Health check - service is up
2. Availability - slot listing for a configured tenant
3. Booking - conflict-checked booking and idempotent replay
4. Error mapping - malformed input and unknown tenants

Usage:
    pytest tests/e2e/smoke_test_e2e.py -v

Prerequisites:
    - Service running at SCHEDULING_URL (default http://localhost:8000)
    - E2E_TENANT_ID has calendar settings configured
"""

import os
import uuid
from datetime import date, datetime, timedelta

import httpx
import pytest

# Configuration from environment
SCHEDULING_URL = os.getenv("SCHEDULING_URL", "http://localhost:8000").rstrip("/")
TENANT_ID = os.getenv("E2E_TENANT_ID", "test-clinic")
TIMEOUT = float(os.getenv("E2E_TIMEOUT", "30"))


def _service_up() -> bool:
    try:
        return httpx.get(f"{SCHEDULING_URL}/health", timeout=2).status_code == 200
    except httpx.HTTPError:
        return False


pytestmark = pytest.mark.skipif(not _service_up(), reason=f"No service at {SCHEDULING_URL}")


@pytest.fixture
def client():
    """HTTP client with the tenant header set."""
    with httpx.Client(
        base_url=SCHEDULING_URL,
        headers={"X-Tenant-ID": TENANT_ID},
        timeout=TIMEOUT,
    ) as c:
        yield c


def next_weekday(days_ahead: int = 7) -> date:
    day = date.today() + timedelta(days=days_ahead)
    while day.weekday() >= 5:
        day += timedelta(days=1)
    return day


# =============================================================================
# Test 1: Health Check
# =============================================================================


class TestHealthCheck:
    """Verify the service is up and responding."""

    def test_health_endpoint(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_readiness(self, client):
        response = client.get("/health/ready")
        assert response.status_code == 200
        assert response.json()["checks"]["redis"] in ("ok", "degraded")


# =============================================================================
# Test 2: Availability
# =============================================================================


class TestAvailability:
    """Slot listing for the configured tenant."""

    def test_slots_are_ordered_and_labelled(self, client):
        response = client.get("/availability", params={"date": next_weekday().isoformat()})
        assert response.status_code == 200

        slots = response.json()["slots"]
        assert slots, "Configured tenant should have business hours"
        starts = [s["start_of_slot"] for s in slots]
        assert starts == sorted(starts)
        assert all(s["display_label"].endswith(("AM", "PM")) for s in slots)


# =============================================================================
# Test 3: Booking
# =============================================================================


class TestBooking:
    """Book a free slot, then prove it is taken and replays are idempotent."""

    def test_book_conflict_and_replay(self, client):
        day = next_weekday(days_ahead=14)
        slots = client.get("/availability", params={"date": day.isoformat()}).json()["slots"]
        free = [s for s in slots if s["available"]]
        if not free:
            pytest.skip("No free slot to book")

        start = datetime.fromisoformat(free[-1]["start_of_slot"])
        key = str(uuid.uuid4())
        body = {
            "intent_payload": {
                "kind": "scheduling-intent",
                "date_time": start.isoformat(),
                "email": "e2e@example.com",
                "subject": "E2E smoke test",
                "duration_minutes": 30,
            },
            "conversation_context": {"contact_identifier": f"e2e-{key}"},
        }

        first = client.post("/booking", json=body, headers={"Idempotency-Key": key})
        assert first.status_code == 200
        assert first.json()["outcome"] in ("booked-external", "booked-local-only")

        replay = client.post("/booking", json=body, headers={"Idempotency-Key": key}).json()
        assert replay["duplicate_of"] == first.json()["meeting"]["id"]

        again = client.post("/booking", json=body).json()
        assert again["outcome"] == "rejected-conflict"


# =============================================================================
# Test 4: Error Mapping
# =============================================================================


class TestErrors:
    """Input and configuration errors map to documented status codes."""

    def test_malformed_date(self, client):
        assert client.get("/availability", params={"date": "not-a-date"}).status_code == 400

    def test_unknown_tenant(self, client):
        response = client.get(
            "/availability",
            params={"date": next_weekday().isoformat()},
            headers={"X-Tenant-ID": f"missing-{uuid.uuid4()}"},
        )
        assert response.status_code == 409

    def test_plain_reply_is_not_bookable(self, client):
        response = client.post(
            "/booking",
            json={
                "intent_payload": {"kind": "reply", "message": "Hello"},
                "conversation_context": {"contact_identifier": "e2e"},
            },
        )
        assert response.status_code == 422

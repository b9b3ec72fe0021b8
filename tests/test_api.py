"""
Integration tests for the HTTP API.
"""
import json
import uuid

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from event_payments.database.models import Event, PaymentStatus, Registration

from conftest import (
    EVENT_AMOUNT,
    TEST_ADMIN_KEY,
    TEST_REFERENCE,
    FakePaystack,
    charge_success_body,
    fetch_state,
    sign,
)

REGISTER_PAYLOAD = {
    "first_name": "Ada",
    "surname": "Okafor",
    "sex": "female",
    "date_of_birth": "02/09/2012",
    "age": 12,
    "state_of_residence": "Abuja",
    "state_of_origin": "Anambra",
    "position_of_play": "Goalkeeper",
    "guardian_full_name": "Chidi Okafor",
    "guardian_phone_number": "08098765432",
    "email": "chidi@example.com",
}

ADMIN_HEADERS = {"X-API-Key": TEST_ADMIN_KEY}


class TestPaymentFlow:
    """End-to-end registration, checkout, verification and receipt."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_register_pay_verify_receipt(
        self, api_client: httpx.AsyncClient, fake_paystack: FakePaystack, event: Event
    ) -> None:
        response = await api_client.post("/events/register", json=REGISTER_PAYLOAD)
        assert response.status_code == 201
        registration = response.json()
        reference = registration["reference"]
        assert registration["amount"] == EVENT_AMOUNT

        response = await api_client.post(
            "/payments/initialize",
            json={"registration_id": registration["registration_id"], "reference": reference},
        )
        assert response.status_code == 200
        assert response.json()["authorization_url"].endswith(reference)

        fake_paystack.add_transaction(reference)
        response = await api_client.get("/payments/verify", params={"reference": reference})
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Payment verified successfully"
        assert body["amount"] == 5000
        assert body["currency"] == "NGN"

        response = await api_client.get("/payments/verify", params={"reference": reference})
        assert response.json()["message"] == "Payment already verified"

        response = await api_client.get(f"/receipts/{reference}")
        assert response.status_code == 200
        receipt = response.json()
        assert receipt["receipt_number"] == reference
        assert receipt["name"] == "Ada Okafor"
        assert receipt["amount"] == 5000
        assert receipt["channel"] == "card"

        response = await api_client.get(f"/receipts/verify/{reference}")
        assert response.json() == {"valid": True, "status": "PAID"}

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_verify_failed_payment(
        self,
        api_client: httpx.AsyncClient,
        fake_paystack: FakePaystack,
        registration: Registration,
    ) -> None:
        fake_paystack.add_transaction(TEST_REFERENCE, status="failed")

        response = await api_client.get("/payments/verify", params={"reference": TEST_REFERENCE})

        assert response.status_code == 200
        assert response.json()["success"] is False
        assert response.json()["status"] == "failed"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_verify_errors_map_to_status_codes(
        self,
        api_client: httpx.AsyncClient,
        fake_paystack: FakePaystack,
        registration: Registration,
    ) -> None:
        response = await api_client.get("/payments/verify", params={"reference": "nonexistent"})
        assert response.status_code == 404
        assert response.json() == {
            "success": False,
            "error": "NotFoundError",
            "message": "Registration not found",
        }

        fake_paystack.add_transaction(TEST_REFERENCE, amount=100)
        response = await api_client.get("/payments/verify", params={"reference": TEST_REFERENCE})
        assert response.status_code == 400
        assert response.json()["error"] == "AmountMismatchError"

        fake_paystack.add_transaction(TEST_REFERENCE)
        fake_paystack.fail_next(1)
        response = await api_client.get("/payments/verify", params={"reference": TEST_REFERENCE})
        assert response.status_code == 503
        assert response.json()["error"] == "ProviderUnavailableError"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_verify_requires_reference(self, api_client: httpx.AsyncClient) -> None:
        response = await api_client.get("/payments/verify")

        assert response.status_code == 400
        assert response.json()["success"] is False


class TestWebhookEndpoint:
    """Test suite for POST /payments/webhook."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_signed_charge_success(
        self,
        api_client: httpx.AsyncClient,
        session_factory: async_sessionmaker[AsyncSession],
        registration: Registration,
    ) -> None:
        body = charge_success_body()

        response = await api_client.post(
            "/payments/webhook",
            content=body,
            headers={"X-Paystack-Signature": sign(body), "Content-Type": "application/json"},
        )

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "outcome": "processed"}
        stored, payments = await fetch_state(session_factory, TEST_REFERENCE)
        assert stored.payment_status == PaymentStatus.PAID.value
        assert len(payments) == 1

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_signature_checked_on_raw_bytes(
        self, api_client: httpx.AsyncClient, registration: Registration
    ) -> None:
        """Whitespace matters: the signature covers exactly what was sent."""
        body = b'{ "event": "charge.success", "data": {"reference": "EVT_ABC123", "amount": 500000, "currency": "NGN"} }'

        response = await api_client.post(
            "/payments/webhook", content=body, headers={"X-Paystack-Signature": sign(body)}
        )

        assert response.status_code == 200
        assert response.json()["outcome"] == "processed"

    @pytest.mark.integration
    @pytest.mark.asyncio
    @pytest.mark.parametrize("headers", [{}, {"X-Paystack-Signature": "0" * 128}])
    async def test_bad_signature_rejected(
        self,
        api_client: httpx.AsyncClient,
        session_factory: async_sessionmaker[AsyncSession],
        registration: Registration,
        headers: dict,
    ) -> None:
        response = await api_client.post(
            "/payments/webhook", content=charge_success_body(), headers=headers
        )

        assert response.status_code == 400
        assert response.json()["error"] == "SignatureInvalidError"
        stored, _ = await fetch_state(session_factory, TEST_REFERENCE)
        assert stored.payment_status == PaymentStatus.PENDING.value

    @pytest.mark.integration
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body,outcome",
        [
            (charge_success_body(reference="EVT_UNKNOWN"), "unknown_reference"),
            (charge_success_body(amount=1), "amount_mismatch"),
            (json.dumps({"event": "refund.processed", "data": {}}).encode(), "ignored"),
        ],
    )
    async def test_non_crediting_deliveries_are_acknowledged(
        self,
        api_client: httpx.AsyncClient,
        registration: Registration,
        body: bytes,
        outcome: str,
    ) -> None:
        response = await api_client.post(
            "/payments/webhook", content=body, headers={"X-Paystack-Signature": sign(body)}
        )

        assert response.status_code == 200
        assert response.json()["outcome"] == outcome


class TestEventEndpoints:
    """Test suite for public event and registration routes."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_active_event(self, api_client: httpx.AsyncClient, event: Event) -> None:
        response = await api_client.get("/events/active")

        assert response.status_code == 200
        assert response.json()["id"] == str(event.id)
        assert response.json()["amount"] == EVENT_AMOUNT

        response = await api_client.get(f"/events/{event.id}")
        assert response.status_code == 200

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_no_active_event(self, api_client: httpx.AsyncClient) -> None:
        response = await api_client.get("/events/active")

        assert response.status_code == 404
        assert response.json()["message"] == "Event not found. Please contact admin."

        response = await api_client.get(f"/events/{uuid.uuid4()}")
        assert response.status_code == 404

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_register_validation(self, api_client: httpx.AsyncClient, event: Event) -> None:
        payload = dict(REGISTER_PAYLOAD, sex="unknown")

        response = await api_client.post("/events/register", json=payload)

        assert response.status_code == 400
        assert response.json()["error"] == "InvalidRequestError"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_duplicate_registration(
        self, api_client: httpx.AsyncClient, event: Event
    ) -> None:
        first = await api_client.post("/events/register", json=REGISTER_PAYLOAD)
        second = await api_client.post("/events/register", json=REGISTER_PAYLOAD)

        assert first.status_code == 201
        assert second.status_code == 400
        assert second.json()["error"] == "DuplicateRegistrationError"


class TestAdminEndpoints:
    """Test suite for admin routes."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_requires_api_key(self, api_client: httpx.AsyncClient) -> None:
        payload = {"name": "Trials", "description": "Open trials", "amount": EVENT_AMOUNT}

        missing = await api_client.post("/admin/events", json=payload)
        wrong = await api_client.post(
            "/admin/events", json=payload, headers={"X-API-Key": "wrong"}
        )

        assert missing.status_code == 401
        assert wrong.status_code == 401

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_create_and_update_event(self, api_client: httpx.AsyncClient) -> None:
        payload = {"name": "Trials", "description": "Open trials", "amount": EVENT_AMOUNT}

        response = await api_client.post("/admin/events", json=payload, headers=ADMIN_HEADERS)
        assert response.status_code == 201
        event_id = response.json()["id"]
        assert response.json()["currency"] == "NGN"

        response = await api_client.post("/admin/events", json=payload, headers=ADMIN_HEADERS)
        assert response.status_code == 400
        assert response.json()["error"] == "EventAlreadyExistsError"

        response = await api_client.patch(
            f"/admin/events/{event_id}/amount", json={"amount": 600000}, headers=ADMIN_HEADERS
        )
        assert response.status_code == 200
        assert response.json()["amount"] == 600000

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_sweep(
        self,
        api_client: httpx.AsyncClient,
        registration: Registration,
    ) -> None:
        """Registrations younger than the minimum age are left alone."""
        response = await api_client.post("/admin/sweep", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        assert response.json() == {
            "examined": 0,
            "settled": 0,
            "already_paid": 0,
            "not_successful": 0,
            "failed": 0,
        }


class TestMonitoringEndpoints:
    """Test suite for health and metrics routes."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_health(self, api_client: httpx.AsyncClient) -> None:
        response = await api_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["status"] == "healthy"
        assert body["checks"]["paystack"]["status"] == "healthy"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_health_reports_paystack_outage(
        self, api_client: httpx.AsyncClient, fake_paystack: FakePaystack
    ) -> None:
        fake_paystack.fail_next(1)

        response = await api_client.get("/health")

        assert response.status_code == 503
        assert response.json()["checks"]["paystack"]["status"] == "unhealthy"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_liveness_and_metrics(self, api_client: httpx.AsyncClient) -> None:
        live = await api_client.get("/health/live")
        metrics = await api_client.get("/metrics")

        assert live.json()["status"] == "alive"
        assert metrics.status_code == 200
        assert "paystack_api_requests_total" in metrics.text

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_request_id_header(self, api_client: httpx.AsyncClient) -> None:
        response = await api_client.get("/")

        assert response.status_code == 200
        assert response.headers["X-Request-ID"]
        assert response.json()["service"] == "event-payments"

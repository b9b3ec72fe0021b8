"""
Pytest configuration and fixtures.
"""
import hashlib
import hmac
import json
import os
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Dict, List, Optional, Tuple

# Settings are read at import time by the API module
os.environ.setdefault("PAYSTACK_SECRET_KEY", "sk_test_event_payments_secret")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./event_payments_test.db")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import event as sa_event
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from event_payments.config import Settings
from event_payments.core.reconciler import PaymentReconciler
from event_payments.core.signature import SignatureVerifier
from event_payments.database.connection import create_session_factory
from event_payments.database.models import Base, Event, Payment, PaymentStatus, Registration
from event_payments.integrations.paystack_client import CircuitBreaker, PaystackClient

TEST_SECRET_KEY = "sk_test_event_payments_secret"
TEST_ADMIN_KEY = "test-admin-key"
TEST_REFERENCE = "EVT_ABC123"
EVENT_AMOUNT = 500000


class FakePaystack:
    """
    In-memory stand-in for the Paystack transaction API.

    Served through ``httpx.MockTransport``; records every request it sees.
    """

    def __init__(self) -> None:
        self.transactions: Dict[str, Dict[str, Any]] = {}
        self.requests: List[httpx.Request] = []
        self.failures_remaining = 0
        self.failure_status = 503

    def add_transaction(
        self,
        reference: str,
        status: str = "success",
        amount: int = EVENT_AMOUNT,
        currency: str = "NGN",
        channel: str = "card",
        paid_at: Optional[str] = "2024-01-01T00:00:00Z",
    ) -> Dict[str, Any]:
        data = {
            "id": 302961,
            "reference": reference,
            "status": status,
            "amount": amount,
            "currency": currency,
            "channel": channel,
            "paid_at": paid_at,
            "gateway_response": "Successful" if status == "success" else "Declined",
        }
        self.transactions[reference] = data
        return data

    def fail_next(self, count: int, status_code: int = 503) -> None:
        self.failures_remaining = count
        self.failure_status = status_code

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if self.failures_remaining:
            self.failures_remaining -= 1
            return httpx.Response(self.failure_status, json={"status": False, "message": "Down"})

        path = request.url.path
        if request.method == "GET" and path.startswith("/transaction/verify/"):
            reference = path.rsplit("/", 1)[-1]
            data = self.transactions.get(reference)
            if data is None:
                return httpx.Response(
                    400, json={"status": False, "message": "Transaction reference not found"}
                )
            return httpx.Response(
                200, json={"status": True, "message": "Verification successful", "data": data}
            )

        if request.method == "POST" and path == "/transaction/initialize":
            body = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "status": True,
                    "message": "Authorization URL created",
                    "data": {
                        "authorization_url": f"https://checkout.paystack.com/{body['reference']}",
                        "access_code": "access_code_test",
                        "reference": body["reference"],
                    },
                },
            )

        if request.method == "GET" and path == "/bank":
            return httpx.Response(200, json={"status": True, "message": "Banks retrieved", "data": []})

        return httpx.Response(404, json={"status": False, "message": "Not found"})

    def verify_calls(self) -> int:
        return sum(1 for r in self.requests if r.url.path.startswith("/transaction/verify/"))


def sign(body: bytes, secret: str = TEST_SECRET_KEY) -> str:
    """Signature Paystack would send for ``body``."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha512).hexdigest()


def charge_success_body(
    reference: str = TEST_REFERENCE,
    amount: int = EVENT_AMOUNT,
    currency: str = "NGN",
    channel: str = "card",
) -> bytes:
    return json.dumps(
        {
            "event": "charge.success",
            "data": {
                "reference": reference,
                "amount": amount,
                "currency": currency,
                "channel": channel,
                "status": "success",
                "paid_at": "2024-01-01T00:00:00Z",
            },
        }
    ).encode("utf-8")


@pytest.fixture
def test_settings(tmp_path: Any) -> Settings:
    """Create test settings."""
    return Settings(
        paystack_secret_key=TEST_SECRET_KEY,
        paystack_base_url="https://api.paystack.test",
        paystack_retry_attempts=1,
        paystack_retry_max_wait=0,
        frontend_url="http://frontend.test",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'event_payments.db'}",
        admin_api_key=TEST_ADMIN_KEY,
        app_env="test",
        log_level="DEBUG",
        debug=True,
    )


@pytest_asyncio.fixture
async def engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, Any]:
    """Create a throwaway SQLite database with all tables."""
    engine = create_async_engine(test_settings.database_url, poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest.fixture
def fake_paystack() -> FakePaystack:
    return FakePaystack()


@pytest_asyncio.fixture
async def paystack_client(
    test_settings: Settings, fake_paystack: FakePaystack
) -> AsyncGenerator[PaystackClient, Any]:
    """Paystack client wired to the fake API."""
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_paystack.handler)) as http:
        yield PaystackClient(
            test_settings, http_client=http, circuit_breaker=CircuitBreaker(failure_threshold=50)
        )


@pytest.fixture
def signature_verifier() -> SignatureVerifier:
    return SignatureVerifier(TEST_SECRET_KEY)


@pytest.fixture
def reconciler(
    session_factory: async_sessionmaker[AsyncSession],
    paystack_client: PaystackClient,
    signature_verifier: SignatureVerifier,
) -> PaymentReconciler:
    return PaymentReconciler(session_factory, paystack_client, signature_verifier)


@pytest_asyncio.fixture
async def event(session_factory: async_sessionmaker[AsyncSession]) -> Event:
    """The configured event: 5,000 NGN."""
    async with session_factory() as session:
        event = Event(
            name="Youth Football Trials",
            description="Open trials for under-16 players",
            amount=EVENT_AMOUNT,
            currency="NGN",
            is_active=True,
        )
        session.add(event)
        await session.commit()
    return event


async def create_registration(
    session_factory: async_sessionmaker[AsyncSession],
    event: Event,
    reference: str,
    registered_at: Optional[datetime] = None,
    **overrides: Any,
) -> Registration:
    values: Dict[str, Any] = {
        "event_id": event.id,
        "first_name": "Tobi",
        "surname": "Adeyemi",
        "sex": "male",
        "date_of_birth": "04/17/2013",
        "age": 11,
        "state_of_residence": "Lagos",
        "state_of_origin": "Oyo",
        "position_of_play": "Midfielder",
        "guardian_full_name": "Kemi Adeyemi",
        "guardian_phone_number": "08012345678",
        "email": "kemi@example.com",
        "payment_status": PaymentStatus.PENDING.value,
        "paystack_reference": reference,
        "receipt_generated": False,
        "registered_at": registered_at or datetime.now(timezone.utc),
    }
    values.update(overrides)
    async with session_factory() as session:
        registration = Registration(**values)
        session.add(registration)
        await session.commit()
    return registration


@pytest_asyncio.fixture
async def registration(
    session_factory: async_sessionmaker[AsyncSession], event: Event
) -> Registration:
    """A PENDING registration with reference EVT_ABC123."""
    return await create_registration(session_factory, event, TEST_REFERENCE)


@pytest_asyncio.fixture
async def api_client(
    test_settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    paystack_client: PaystackClient,
) -> AsyncGenerator[httpx.AsyncClient, Any]:
    """HTTP client for the app with database and Paystack overridden."""
    from event_payments.api.dependencies import get_db_session_factory, get_paystack_client
    from event_payments.api.main import app
    from event_payments.config import get_settings

    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_db_session_factory] = lambda: session_factory
    app.dependency_overrides[get_paystack_client] = lambda: paystack_client

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


async def fetch_state(
    session_factory: async_sessionmaker[AsyncSession], reference: str
) -> Tuple[Optional[Registration], List[Payment]]:
    """Committed registration and payments for ``reference``."""
    async with session_factory() as session:
        registration = await session.scalar(
            select(Registration).where(Registration.paystack_reference == reference)
        )
        payments = await session.scalars(
            select(Payment).where(Payment.receipt_number == reference)
        )
        return registration, list(payments)


class WriteRecorder:
    """Collects INSERT/UPDATE/DELETE statements issued on an engine."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.statements: List[str] = []

    def _record(self, conn: Any, cursor: Any, statement: str, *args: Any) -> None:
        if statement.lstrip().upper().startswith(("INSERT", "UPDATE", "DELETE")):
            self.statements.append(statement)

    def __enter__(self) -> "WriteRecorder":
        sa_event.listen(self.engine.sync_engine, "before_cursor_execute", self._record)
        return self

    def __exit__(self, *exc_info: Any) -> None:
        sa_event.remove(self.engine.sync_engine, "before_cursor_execute", self._record)

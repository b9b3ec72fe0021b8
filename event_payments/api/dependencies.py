"""FastAPI dependency providers for the service graph."""
import hmac
from functools import lru_cache

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from event_payments.config import Settings, get_settings
from event_payments.core.events import EventService
from event_payments.core.receipts import ReceiptService
from event_payments.core.reconciler import PaymentReconciler
from event_payments.core.registrations import RegistrationService
from event_payments.core.signature import SignatureVerifier
from event_payments.database.connection import get_session_factory
from event_payments.integrations.paystack_client import PaystackClient
from event_payments.monitoring.health import HealthCheck
from event_payments.workers.pending_sweep import PendingPaymentSweeper

SessionFactory = async_sessionmaker[AsyncSession]


def get_db_session_factory() -> SessionFactory:
    return get_session_factory()


@lru_cache()
def get_paystack_client() -> PaystackClient:
    return PaystackClient(get_settings())


def get_signature_verifier(settings: Settings = Depends(get_settings)) -> SignatureVerifier:
    return SignatureVerifier(settings.paystack_secret_key)


def get_reconciler(
    session_factory: SessionFactory = Depends(get_db_session_factory),
    paystack_client: PaystackClient = Depends(get_paystack_client),
    signature_verifier: SignatureVerifier = Depends(get_signature_verifier),
) -> PaymentReconciler:
    return PaymentReconciler(session_factory, paystack_client, signature_verifier)


def get_event_service(
    session_factory: SessionFactory = Depends(get_db_session_factory),
) -> EventService:
    return EventService(session_factory)


def get_registration_service(
    session_factory: SessionFactory = Depends(get_db_session_factory),
    paystack_client: PaystackClient = Depends(get_paystack_client),
    settings: Settings = Depends(get_settings),
) -> RegistrationService:
    return RegistrationService(session_factory, paystack_client, settings)


def get_receipt_service(
    session_factory: SessionFactory = Depends(get_db_session_factory),
) -> ReceiptService:
    return ReceiptService(session_factory)


def get_health_check(
    session_factory: SessionFactory = Depends(get_db_session_factory),
    paystack_client: PaystackClient = Depends(get_paystack_client),
) -> HealthCheck:
    return HealthCheck(session_factory, paystack_client)


def get_sweeper(
    session_factory: SessionFactory = Depends(get_db_session_factory),
    reconciler: PaymentReconciler = Depends(get_reconciler),
    settings: Settings = Depends(get_settings),
) -> PendingPaymentSweeper:
    return PendingPaymentSweeper(
        session_factory,
        reconciler,
        min_age_seconds=settings.sweep_min_age_seconds,
        batch_size=settings.sweep_batch_size,
    )


async def require_admin(request: Request, settings: Settings = Depends(get_settings)) -> None:
    """Reject admin requests without the configured API key."""
    provided = request.headers.get(settings.api_key_header, "")
    if not settings.admin_api_key or not hmac.compare_digest(
        provided.encode(), settings.admin_api_key.encode()
    ):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


async def close_dependencies() -> None:
    """Release clients created by the providers above."""
    if get_paystack_client.cache_info().currsize:
        await get_paystack_client().close()
        get_paystack_client.cache_clear()

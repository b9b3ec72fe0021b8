"""
API routes for event registration, payments and receipts.
"""
import time
import uuid
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, Header, Query, Request, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from event_payments.core.events import EventService
from event_payments.core.receipts import ReceiptService
from event_payments.core.reconciler import PaymentReconciler
from event_payments.core.registrations import RegistrationService
from event_payments.exceptions import (
    AmountMismatchError,
    NotFoundError,
    SignatureInvalidError,
)
from event_payments.monitoring.health import HealthCheck
from event_payments.monitoring.metrics import metrics
from event_payments.workers.pending_sweep import PendingPaymentSweeper

from .dependencies import (
    get_event_service,
    get_health_check,
    get_receipt_service,
    get_reconciler,
    get_registration_service,
    get_sweeper,
    require_admin,
)
from .schemas import (
    CreateEventRequest,
    EventResponse,
    HealthCheckResponse,
    InitializePaymentRequest,
    InitializePaymentResponse,
    ReceiptResponse,
    ReceiptStatusResponse,
    RegisterRequest,
    RegisterResponse,
    SweepResponse,
    UpdateEventAmountRequest,
    VerifyPaymentResponse,
    WebhookResponse,
)

logger = structlog.get_logger(__name__)

# Create routers
event_router = APIRouter(prefix="/events", tags=["events"])
payment_router = APIRouter(prefix="/payments", tags=["payments"])
receipt_router = APIRouter(prefix="/receipts", tags=["receipts"])
admin_router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])
monitoring_router = APIRouter(tags=["monitoring"])


@event_router.get("/active", response_model=EventResponse, summary="Get the active event")
async def get_active_event(service: EventService = Depends(get_event_service)) -> Any:
    return await service.get_active_event()


@event_router.get("/{event_id}", response_model=EventResponse, summary="Get an event by ID")
async def get_event(
    event_id: uuid.UUID, service: EventService = Depends(get_event_service)
) -> Any:
    return await service.get_event(event_id)


@event_router.post(
    "/register",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a child for the active event",
)
async def register_for_event(
    request: RegisterRequest,
    service: RegistrationService = Depends(get_registration_service),
) -> Dict[str, Any]:
    logger.info("api_register_request", guardian_phone=request.guardian_phone_number)
    created = await service.register(**request.model_dump())
    return {
        "registration_id": created.registration_id,
        "reference": created.reference,
        "event_name": created.event_name,
        "amount": created.amount,
        "currency": created.currency,
    }


@payment_router.post(
    "/initialize",
    response_model=InitializePaymentResponse,
    summary="Start Paystack checkout",
)
async def initialize_payment(
    request: InitializePaymentRequest,
    service: RegistrationService = Depends(get_registration_service),
) -> Dict[str, Any]:
    logger.info(
        "api_initialize_payment_request",
        registration_id=str(request.registration_id),
        reference=request.reference,
    )
    authorization = await service.initialize_payment(request.registration_id, request.reference)
    return {
        "authorization_url": authorization.authorization_url,
        "reference": request.reference,
    }


@payment_router.get(
    "/verify",
    response_model=VerifyPaymentResponse,
    summary="Verify a payment",
    description="Confirm a payment with Paystack and mark the registration paid",
)
async def verify_payment(
    reference: str = Query(..., min_length=1, max_length=64),
    reconciler: PaymentReconciler = Depends(get_reconciler),
) -> Dict[str, Any]:
    """
    Verify a payment.

    Safe to poll: once the registration is paid this returns success without
    further writes.
    """
    start_time = time.time()
    outcome = "error"

    try:
        result = await reconciler.verify(reference)
        if not result.success:
            outcome = "not_successful"
        elif result.already_verified:
            outcome = "already_paid"
        else:
            outcome = "settled"
    except NotFoundError:
        outcome = "not_found"
        raise
    except AmountMismatchError:
        outcome = "mismatch"
        raise
    finally:
        metrics.record_verification(outcome, time.time() - start_time)

    if not result.success:
        message = "Payment verification failed"
    elif result.already_verified:
        message = "Payment already verified"
    else:
        message = "Payment verified successfully"

    return {
        "success": result.success,
        "message": message,
        "reference": result.reference,
        "status": result.status,
        "amount": result.amount / 100 if result.amount is not None else None,
        "currency": result.currency,
        "registration_id": result.registration_id,
    }


@payment_router.post(
    "/webhook",
    response_model=WebhookResponse,
    summary="Paystack webhook endpoint",
    description="Handle Paystack webhook events",
)
async def paystack_webhook(
    request: Request,
    x_paystack_signature: Optional[str] = Header(default=None, alias="X-Paystack-Signature"),
    reconciler: PaymentReconciler = Depends(get_reconciler),
) -> Dict[str, Any]:
    """
    Handle Paystack webhook events.

    Responds 400 only for a bad signature; every other outcome is
    acknowledged with 200 so Paystack stops retrying.
    """
    start_time = time.time()
    body = await request.body()

    try:
        ack = await reconciler.handle_webhook(body, x_paystack_signature)
    except SignatureInvalidError:
        metrics.record_webhook_signature_failure()
        raise

    metrics.record_webhook_event(
        ack.event_type or "unknown", ack.outcome.value, time.time() - start_time
    )
    logger.info(
        "api_webhook_acknowledged",
        event_type=ack.event_type,
        reference=ack.reference,
        outcome=ack.outcome.value,
    )
    return {"status": "ok", "outcome": ack.outcome.value}


# Specific routes before the parameterized one
@receipt_router.get(
    "/verify/{reference}",
    response_model=ReceiptStatusResponse,
    summary="Check whether a reference is paid",
)
async def verify_receipt(
    reference: str, service: ReceiptService = Depends(get_receipt_service)
) -> Dict[str, Any]:
    receipt_status = await service.verify_receipt(reference)
    return {"valid": receipt_status.valid, "status": receipt_status.status}


@receipt_router.get("/{reference}", response_model=ReceiptResponse, summary="Get a receipt")
async def get_receipt(
    reference: str, service: ReceiptService = Depends(get_receipt_service)
) -> Dict[str, Any]:
    receipt = await service.get_receipt(reference)
    return {
        "receipt_number": receipt.receipt_number,
        "name": receipt.name,
        "guardian_name": receipt.guardian_name,
        "email": receipt.email,
        "event": receipt.event,
        "amount": float(receipt.amount),
        "currency": receipt.currency,
        "paid_at": receipt.paid_at,
        "channel": receipt.channel,
    }


@admin_router.post(
    "/events",
    response_model=EventResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create the event",
)
async def create_event(
    request: CreateEventRequest, service: EventService = Depends(get_event_service)
) -> Any:
    return await service.create_event(
        name=request.name,
        description=request.description,
        amount=request.amount,
        currency=request.currency,
    )


@admin_router.patch(
    "/events/{event_id}/amount",
    response_model=EventResponse,
    summary="Change the event fee",
)
async def update_event_amount(
    event_id: uuid.UUID,
    request: UpdateEventAmountRequest,
    service: EventService = Depends(get_event_service),
) -> Any:
    return await service.update_event_amount(event_id, request.amount)


@admin_router.post(
    "/sweep",
    response_model=SweepResponse,
    summary="Re-verify stale pending payments",
)
async def run_sweep(sweeper: PendingPaymentSweeper = Depends(get_sweeper)) -> Dict[str, Any]:
    summary = await sweeper.run_once()
    return summary.to_dict()


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Readiness probe checking the database and Paystack",
)
async def health(
    response: Response, health_check: HealthCheck = Depends(get_health_check)
) -> Dict[str, Any]:
    result = await health_check.check_all()
    if result["status"] != "healthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return result


@monitoring_router.get("/health/live", summary="Liveness probe")
async def liveness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    return await health_check.liveness()


@monitoring_router.get("/metrics", summary="Prometheus metrics")
async def prometheus_metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

"""Receipt rendering and lookup."""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from event_payments.database.models import Event, Payment, Registration
from event_payments.exceptions import NotFoundError

logger = structlog.get_logger(__name__)

MINOR_UNITS_PER_MAJOR = Decimal(100)


@dataclass(frozen=True)
class ReceiptView:
    """Human-oriented receipt. ``amount`` is in major currency units."""

    receipt_number: str
    name: str
    guardian_name: str
    email: Optional[str]
    event: str
    amount: Decimal
    currency: str
    paid_at: datetime
    channel: str


@dataclass(frozen=True)
class ReceiptStatus:
    valid: bool
    status: str


def to_major_units(amount: int) -> Decimal:
    """Convert minor currency units (e.g. kobo) to major units (e.g. naira)."""
    return Decimal(amount) / MINOR_UNITS_PER_MAJOR


def format_receipt(payment: Payment, registration: Registration, event: Event) -> ReceiptView:
    """Flatten a settled payment, its registration and the event into a receipt."""
    return ReceiptView(
        receipt_number=payment.receipt_number,
        name=registration.full_name,
        guardian_name=registration.guardian_full_name,
        email=registration.email,
        event=event.name,
        amount=to_major_units(payment.amount),
        currency=payment.currency,
        paid_at=payment.paid_at,
        channel=payment.channel,
    )


class ReceiptService:
    """Looks up receipts by payment reference."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_receipt(self, reference: str) -> ReceiptView:
        """
        Render the receipt for ``reference``.

        Raises:
            NotFoundError: No payment, registration or event for the reference
        """
        async with self.session_factory() as session:
            payment = await session.scalar(
                select(Payment).where(Payment.receipt_number == reference)
            )
            if payment is None:
                raise NotFoundError("Receipt not found")

            registration = await session.get(Registration, payment.registration_id)
            if registration is None:
                logger.error("receipt_registration_missing", reference=reference)
                raise NotFoundError("Registration not found")

            event = await session.get(Event, registration.event_id)
            if event is None:
                logger.error("receipt_event_missing", reference=reference)
                raise NotFoundError("Event not found")

        return format_receipt(payment, registration, event)

    async def verify_receipt(self, reference: str) -> ReceiptStatus:
        """Report whether ``reference`` belongs to a paid registration."""
        async with self.session_factory() as session:
            payment_status = await session.scalar(
                select(Registration.payment_status).where(
                    Registration.paystack_reference == reference
                )
            )
        if payment_status is None:
            return ReceiptStatus(valid=False, status="NOT_FOUND")
        return ReceiptStatus(valid=payment_status == "PAID", status=payment_status)

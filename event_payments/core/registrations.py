"""Registration of children for the event and Paystack checkout initialization."""
import uuid
from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from event_payments.config import Settings
from event_payments.core.references import generate_reference
from event_payments.database.connection import session_scope
from event_payments.database.models import Event, PaymentStatus, Registration
from event_payments.exceptions import (
    DuplicateRegistrationError,
    InvalidRequestError,
    NotFoundError,
    TransactionAbortedError,
)
from event_payments.integrations.paystack_client import PaystackClient, TransactionAuthorization
from event_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

MAX_REFERENCE_ATTEMPTS = 3


def is_reference_collision(error: IntegrityError) -> bool:
    """True if ``error`` comes from the unique constraint on the payment reference."""
    return "paystack_reference" in str(error.orig)


@dataclass(frozen=True)
class RegistrationCreated:
    registration_id: uuid.UUID
    reference: str
    event_name: str
    amount: int
    currency: str


class RegistrationService:
    """
    Creates PENDING registrations and starts their Paystack checkout.

    Payment state is never changed here; only the reconciler marks a
    registration PAID.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        paystack_client: PaystackClient,
        settings: Settings,
    ):
        self.session_factory = session_factory
        self.paystack_client = paystack_client
        self.settings = settings

    async def register(
        self,
        first_name: str,
        surname: str,
        sex: str,
        date_of_birth: str,
        age: int,
        state_of_residence: str,
        state_of_origin: str,
        position_of_play: str,
        guardian_full_name: str,
        guardian_phone_number: str,
        email: Optional[str] = None,
    ) -> RegistrationCreated:
        """
        Register a child for the active event.

        Raises:
            NotFoundError: No active event
            DuplicateRegistrationError: Same guardian already registered this child
            TransactionAbortedError: Could not allocate a unique reference
        """
        for attempt in range(1, MAX_REFERENCE_ATTEMPTS + 1):
            reference = generate_reference()
            try:
                async with session_scope(self.session_factory) as session:
                    event = await session.scalar(
                        select(Event).where(Event.is_active.is_(True)).limit(1)
                    )
                    if event is None:
                        raise NotFoundError("Event not found or inactive")

                    duplicate = await session.scalar(
                        select(Registration.id).where(
                            Registration.event_id == event.id,
                            Registration.guardian_phone_number == guardian_phone_number,
                            func.lower(Registration.first_name) == first_name.lower(),
                            func.lower(Registration.surname) == surname.lower(),
                        )
                    )
                    if duplicate is not None:
                        raise DuplicateRegistrationError(
                            "This child has already been registered by this guardian "
                            "for this event"
                        )

                    registration = Registration(
                        event_id=event.id,
                        first_name=first_name,
                        surname=surname,
                        sex=sex,
                        date_of_birth=date_of_birth,
                        age=age,
                        state_of_residence=state_of_residence,
                        state_of_origin=state_of_origin,
                        position_of_play=position_of_play,
                        guardian_full_name=guardian_full_name,
                        guardian_phone_number=guardian_phone_number,
                        email=email.lower() if email else None,
                        payment_status=PaymentStatus.PENDING.value,
                        paystack_reference=reference,
                        receipt_generated=False,
                    )
                    session.add(registration)
                    await session.flush()

            except IntegrityError as e:
                if not is_reference_collision(e):
                    raise
                logger.warning("registration_reference_collision", attempt=attempt, error=str(e))
                continue

            metrics.record_registration_created()
            logger.info(
                "registration_created",
                registration_id=str(registration.id),
                reference=reference,
                event_id=str(event.id),
            )
            return RegistrationCreated(
                registration_id=registration.id,
                reference=reference,
                event_name=event.name,
                amount=event.amount,
                currency=event.currency,
            )

        raise TransactionAbortedError("Could not allocate a unique payment reference")

    async def initialize_payment(
        self, registration_id: uuid.UUID, reference: str
    ) -> TransactionAuthorization:
        """
        Start Paystack checkout for a pending registration.

        The amount and currency always come from the event, never the client.

        Raises:
            NotFoundError: Unknown registration or event
            InvalidRequestError: Reference mismatch or already paid
            ProviderUnavailableError: Paystack unreachable
            ProviderRejectedError: Paystack refused the request
        """
        async with self.session_factory() as session:
            registration = await session.get(Registration, registration_id)
            if registration is None:
                raise NotFoundError("Registration not found")
            if registration.paystack_reference != reference:
                raise InvalidRequestError("Invalid reference")
            if registration.is_paid:
                raise InvalidRequestError("Payment already completed")
            event = await session.get(Event, registration.event_id)
            if event is None:
                raise NotFoundError("Event not found")

        contact_email = registration.email or (
            f"{registration.guardian_phone_number}@{self.settings.contact_email_domain}"
        )

        return await self.paystack_client.initialize_transaction(
            email=contact_email,
            amount=event.amount,
            reference=registration.paystack_reference,
            currency=event.currency,
            callback_url=self.settings.payment_callback_url,
            metadata={
                "registrationId": str(registration.id),
                "eventId": str(event.id),
                "playerName": registration.full_name,
                "guardianName": registration.guardian_full_name,
                "guardianPhone": registration.guardian_phone_number,
            },
        )

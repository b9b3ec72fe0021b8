"""Event management. The system holds at most one event."""
import uuid

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from event_payments.database.connection import session_scope
from event_payments.database.models import Event
from event_payments.exceptions import (
    EventAlreadyExistsError,
    InvalidRequestError,
    NotFoundError,
)

logger = structlog.get_logger(__name__)


class EventService:
    """Reads and administers the single event."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_active_event(self) -> Event:
        async with self.session_factory() as session:
            event = await session.scalar(
                select(Event).where(Event.is_active.is_(True)).order_by(Event.created_at).limit(1)
            )
        if event is None:
            raise NotFoundError("Event not found. Please contact admin.")
        return event

    async def get_event(self, event_id: uuid.UUID) -> Event:
        async with self.session_factory() as session:
            event = await session.get(Event, event_id)
        if event is None:
            raise NotFoundError("Event not found")
        return event

    async def create_event(
        self, name: str, description: str, amount: int, currency: str = "NGN"
    ) -> Event:
        """
        Create the event.

        Args:
            name: Event name
            description: Event description
            amount: Registration fee in minor currency units
            currency: Currency code

        Raises:
            InvalidRequestError: Non-positive amount
            EventAlreadyExistsError: An event already exists
        """
        if amount <= 0:
            raise InvalidRequestError("Amount must be positive")

        async with session_scope(self.session_factory) as session:
            existing = await session.scalar(select(Event.id).limit(1))
            if existing is not None:
                raise EventAlreadyExistsError("An event already exists")

            event = Event(
                name=name,
                description=description,
                amount=amount,
                currency=currency.upper(),
                is_active=True,
            )
            session.add(event)
            await session.flush()

        logger.info("event_created", event_id=str(event.id), amount=event.amount)
        return event

    async def update_event_amount(self, event_id: uuid.UUID, amount: int) -> Event:
        """
        Change the registration fee.

        Registrations already settled keep their recorded payment; pending
        ones are checked against the new amount when they are verified.
        """
        if amount <= 0:
            raise InvalidRequestError("Amount must be positive")

        async with session_scope(self.session_factory) as session:
            event = await session.get(Event, event_id)
            if event is None:
                raise NotFoundError("Event not found")
            previous_amount = event.amount
            event.amount = amount

        logger.info(
            "event_amount_updated",
            event_id=str(event_id),
            previous_amount=previous_amount,
            amount=amount,
        )
        return event

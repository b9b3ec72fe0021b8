"""SQLAlchemy database models for event registration and payment collection."""
import enum
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class PaymentStatus(str, enum.Enum):
    """Registration payment lifecycle. Only PENDING -> PAID is allowed."""

    PENDING = "PENDING"
    PAID = "PAID"


class Event(Base):
    """
    The single configurable event registrants pay for.

    Amounts are stored in minor currency units (kobo for NGN). At most one
    row exists; this is enforced when events are created.
    """

    __tablename__ = "events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="NGN")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="event_positive_amount"),
        CheckConstraint("length(currency) = 3", name="event_valid_currency"),
    )

    def __repr__(self) -> str:
        """String representation of Event."""
        return f"<Event(id={self.id}, name={self.name}, amount={self.amount})>"


class Registration(Base):
    """
    One guardian's registration of a child for the event.

    Created PENDING with a unique reference; only the payment reconciler
    moves it to PAID. Never deleted.
    """

    __tablename__ = "registrations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    event_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("events.id"), nullable=False, index=True
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    surname: Mapped[str] = mapped_column(String(100), nullable=False)
    sex: Mapped[str] = mapped_column(String(10), nullable=False)
    date_of_birth: Mapped[str] = mapped_column(String(10), nullable=False)
    age: Mapped[int] = mapped_column(Integer, nullable=False)
    state_of_residence: Mapped[str] = mapped_column(String(100), nullable=False)
    state_of_origin: Mapped[str] = mapped_column(String(100), nullable=False)
    position_of_play: Mapped[str] = mapped_column(String(100), nullable=False)
    guardian_full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    guardian_phone_number: Mapped[str] = mapped_column(String(32), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    payment_status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=PaymentStatus.PENDING.value, index=True
    )
    paystack_reference: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    receipt_generated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    registered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, index=True
    )

    __table_args__ = (
        CheckConstraint("payment_status IN ('PENDING', 'PAID')", name="valid_payment_status"),
        CheckConstraint("sex IN ('male', 'female')", name="valid_sex"),
        CheckConstraint("age >= 0 AND age <= 150", name="valid_age"),
        Index("idx_registrations_guardian_phone", "event_id", "guardian_phone_number"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.surname}"

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID.value

    def __repr__(self) -> str:
        """String representation of Registration."""
        return (
            f"<Registration(id={self.id}, reference={self.paystack_reference}, "
            f"status={self.payment_status})>"
        )


class Payment(Base):
    """
    Provider-confirmed payment for a registration.

    Immutable once written. ``receipt_number`` equals the registration's
    reference and is unique, so a reference can be credited at most once.
    """

    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    registration_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("registrations.id"), nullable=False, index=True
    )
    receipt_number: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="NGN")
    channel: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="success")
    provider_response: Mapped[Dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=False
    )
    paid_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="payment_positive_amount"),
        CheckConstraint("status = 'success'", name="payment_success_only"),
        Index("idx_payments_paid_at", "paid_at"),
    )

    def __repr__(self) -> str:
        """String representation of Payment."""
        return (
            f"<Payment(id={self.id}, receipt_number={self.receipt_number}, "
            f"amount={self.amount})>"
        )

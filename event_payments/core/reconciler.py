"""
Payment reconciliation: moves a registration from PENDING to PAID exactly once.

Two independent triggers converge here:
1. Client verification poll (``verify``)
2. Paystack webhook push (``handle_webhook``)

Neither takes a lock. Settlement is optimistic: one transaction opens with a
compare-and-set of ``payment_status`` from PENDING to PAID and inserts the
Payment row only when none exists for the reference. Whichever trigger loses
the race finds zero rows to update and writes nothing. Unique constraints on
``paystack_reference`` and ``receipt_number`` back this up at the storage
level.
"""
import enum
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Tuple

import structlog
from pydantic import BaseModel, ValidationError
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from event_payments.core.signature import SignatureVerifier
from event_payments.database.connection import session_scope
from event_payments.database.models import Event, Payment, PaymentStatus, Registration
from event_payments.exceptions import (
    AmountMismatchError,
    InvalidRequestError,
    NotFoundError,
    ProviderRejectedError,
    SignatureInvalidError,
    TransactionAbortedError,
)
from event_payments.integrations.paystack_client import PaystackClient, PaystackTransaction
from event_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

CHARGE_SUCCESS_EVENT = "charge.success"


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of a client-initiated verification. Amounts are in minor units."""

    success: bool
    reference: str
    status: str
    amount: Optional[int] = None
    currency: Optional[str] = None
    registration_id: Optional[uuid.UUID] = None
    already_verified: bool = False


class WebhookOutcome(str, enum.Enum):
    """What a webhook delivery did. Every outcome is acknowledged to Paystack."""

    PROCESSED = "processed"
    IGNORED = "ignored"
    DUPLICATE = "duplicate"
    UNKNOWN_REFERENCE = "unknown_reference"
    AMOUNT_MISMATCH = "amount_mismatch"
    FAILED = "failed"


@dataclass(frozen=True)
class WebhookAck:
    outcome: WebhookOutcome
    event_type: Optional[str] = None
    reference: Optional[str] = None


class WebhookEnvelope(BaseModel):
    event: str
    data: dict = {}


class PaymentReconciler:
    """
    Reconciles Paystack's view of a payment with local registration state.

    Guarantees at most one Payment row and one PENDING -> PAID transition per
    reference, however ``verify`` and ``handle_webhook`` interleave.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        paystack_client: PaystackClient,
        signature_verifier: SignatureVerifier,
    ):
        """
        Initialize payment reconciler.

        Args:
            session_factory: Factory for database sessions
            paystack_client: Client used to query authoritative transaction status
            signature_verifier: Verifier for inbound webhook signatures
        """
        self.session_factory = session_factory
        self.paystack_client = paystack_client
        self.signature_verifier = signature_verifier

    async def verify(self, reference: str) -> VerificationResult:
        """
        Verify a payment the client believes has completed.

        Flow:
        1. Ask Paystack for the transaction status (client data is never trusted)
        2. Return a non-success result, without writes, if Paystack disagrees
        3. Load the registration (NotFoundError if unknown)
        4. Return success with no writes if it is already PAID
        5. Check amount and currency against the event (AmountMismatchError)
        6. Settle in one transaction

        Args:
            reference: Payment reference

        Returns:
            VerificationResult: Verification outcome

        Raises:
            InvalidRequestError: Empty reference
            NotFoundError: Unknown registration or event
            AmountMismatchError: Paystack amount/currency differ from the event
            ProviderUnavailableError: Paystack unreachable; retry later
            ProviderRejectedError: Paystack refused the lookup of a known reference
            TransactionAbortedError: Storage read or settlement failed; retry later
        """
        if not reference:
            raise InvalidRequestError("Payment reference is required")

        log = logger.bind(reference=reference, trigger="verify")

        try:
            transaction = await self.paystack_client.verify_transaction(reference)
        except ProviderRejectedError:
            # Paystack refuses lookups for references it never saw
            registration, _ = await self._load(reference)
            if registration is None:
                log.warning("verify_reference_unknown")
                raise NotFoundError("Registration not found")
            raise

        if not transaction.is_successful:
            log.info("payment_not_successful", provider_status=transaction.status)
            return VerificationResult(
                success=False,
                reference=reference,
                status=transaction.status or "unknown",
                amount=transaction.amount,
                currency=transaction.currency,
            )

        registration, event = await self._load(reference)
        if registration is None:
            log.warning("verify_registration_not_found")
            raise NotFoundError("Registration not found")

        if registration.is_paid:
            log.info("payment_already_verified")
            return VerificationResult(
                success=True,
                reference=reference,
                status="success",
                amount=transaction.amount,
                currency=transaction.currency,
                registration_id=registration.id,
                already_verified=True,
            )

        if event is None:
            log.error("verify_event_not_found", event_id=str(registration.event_id))
            raise NotFoundError("Event not found")

        self._check_amount(reference, transaction, event)

        settled = await self._settle(registration.id, reference, transaction, source="verify")
        return VerificationResult(
            success=True,
            reference=reference,
            status="success",
            amount=transaction.amount,
            currency=transaction.currency,
            registration_id=registration.id,
            already_verified=not settled,
        )

    async def handle_webhook(self, raw_body: bytes, signature: Optional[str]) -> WebhookAck:
        """
        Process a Paystack webhook delivery.

        The signature is checked against the raw body before anything else,
        including any database access. After that every outcome is
        acknowledged: Paystack retries non-2xx responses, and retries are not
        how internal failures get fixed. Failures are logged and left for the
        client's ``verify`` poll or the pending payment sweep.

        Args:
            raw_body: Request body exactly as received
            signature: ``X-Paystack-Signature`` header value

        Returns:
            WebhookAck: What the delivery did

        Raises:
            SignatureInvalidError: Missing or mismatched signature
        """
        if not self.signature_verifier.verify(raw_body, signature):
            logger.warning("webhook_signature_invalid", signature_present=bool(signature))
            raise SignatureInvalidError("Invalid signature")

        try:
            envelope = WebhookEnvelope.model_validate_json(raw_body)
        except ValidationError as e:
            logger.warning("webhook_payload_malformed", error=str(e))
            return WebhookAck(outcome=WebhookOutcome.IGNORED)

        if envelope.event != CHARGE_SUCCESS_EVENT:
            logger.info("webhook_event_ignored", event_type=envelope.event)
            return WebhookAck(outcome=WebhookOutcome.IGNORED, event_type=envelope.event)

        try:
            transaction = PaystackTransaction.from_payload(envelope.data)
        except ValidationError as e:
            logger.warning("webhook_charge_malformed", error=str(e))
            return WebhookAck(outcome=WebhookOutcome.IGNORED, event_type=envelope.event)

        try:
            outcome = await self._apply_charge(transaction)
        except Exception:
            logger.error(
                "webhook_processing_failed",
                reference=transaction.reference,
                exc_info=True,
            )
            outcome = WebhookOutcome.FAILED

        return WebhookAck(
            outcome=outcome,
            event_type=envelope.event,
            reference=transaction.reference,
        )

    async def _apply_charge(self, transaction: PaystackTransaction) -> WebhookOutcome:
        reference = transaction.reference
        log = logger.bind(reference=reference, trigger="webhook")

        registration, event = await self._load(reference)
        if registration is None:
            log.info("webhook_registration_not_found")
            return WebhookOutcome.UNKNOWN_REFERENCE

        if registration.is_paid:
            log.info("webhook_payment_already_settled")
            return WebhookOutcome.DUPLICATE

        if event is None:
            log.error("webhook_event_not_found", event_id=str(registration.event_id))
            return WebhookOutcome.FAILED

        try:
            self._check_amount(reference, transaction, event)
        except AmountMismatchError:
            return WebhookOutcome.AMOUNT_MISMATCH

        settled = await self._settle(registration.id, reference, transaction, source="webhook")
        return WebhookOutcome.PROCESSED if settled else WebhookOutcome.DUPLICATE

    async def _load(self, reference: str) -> Tuple[Optional[Registration], Optional[Event]]:
        """
        Read the registration for ``reference`` and its event.

        Raises:
            TransactionAbortedError: Storage unavailable; retry later
        """
        try:
            async with self.session_factory() as session:
                registration = await session.scalar(
                    select(Registration).where(Registration.paystack_reference == reference)
                )
                if registration is None:
                    return None, None
                event = await session.get(Event, registration.event_id)
                return registration, event
        except SQLAlchemyError as e:
            logger.error("registration_lookup_failed", reference=reference, error=str(e))
            raise TransactionAbortedError("Payment state could not be read; retry later") from e

    @staticmethod
    def _check_amount(reference: str, transaction: PaystackTransaction, event: Event) -> None:
        if transaction.amount == event.amount and transaction.currency == event.currency:
            return
        logger.error(
            "payment_amount_mismatch",
            reference=reference,
            expected_amount=event.amount,
            expected_currency=event.currency,
            received_amount=transaction.amount,
            received_currency=transaction.currency,
        )
        raise AmountMismatchError(
            reference=reference,
            expected_amount=event.amount,
            expected_currency=event.currency,
            received_amount=transaction.amount,
            received_currency=transaction.currency,
        )

    async def _settle(
        self,
        registration_id: uuid.UUID,
        reference: str,
        transaction: PaystackTransaction,
        source: str,
    ) -> bool:
        """
        Mark the registration PAID and record its Payment in one transaction.

        Returns:
            bool: False if another trigger settled the reference first

        Raises:
            TransactionAbortedError: Storage failed; nothing was written
        """
        log = logger.bind(reference=reference, trigger=source)

        try:
            async with session_scope(self.session_factory) as session:
                result = await session.execute(
                    update(Registration)
                    .where(
                        Registration.paystack_reference == reference,
                        Registration.payment_status == PaymentStatus.PENDING.value,
                    )
                    .values(
                        payment_status=PaymentStatus.PAID.value,
                        receipt_generated=True,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    log.info("settlement_skipped_already_paid")
                    return False

                inserted = await self._insert_payment(
                    session, registration_id, reference, transaction
                )

        except SQLAlchemyError as e:
            log.error("settlement_transaction_aborted", error=str(e))
            raise TransactionAbortedError(
                "Payment settlement was rolled back; retry later"
            ) from e

        if not inserted:
            log.warning(
                "settlement_kept_existing_payment", registration_id=str(registration_id)
            )
            return True

        metrics.record_settlement(source, transaction.amount)
        log.info(
            "payment_settled",
            registration_id=str(registration_id),
            amount=transaction.amount,
            currency=transaction.currency,
            channel=transaction.channel,
        )
        return True

    async def _insert_payment(
        self,
        session: AsyncSession,
        registration_id: uuid.UUID,
        reference: str,
        transaction: PaystackTransaction,
    ) -> bool:
        """Insert the Payment row unless one already exists for ``reference``."""
        existing = await session.scalar(
            select(Payment.id).where(Payment.receipt_number == reference)
        )
        if existing is not None:
            logger.warning("payment_record_already_exists", reference=reference)
            return False

        session.add(
            Payment(
                registration_id=registration_id,
                receipt_number=reference,
                amount=transaction.amount,
                currency=transaction.currency,
                channel=transaction.channel or "unknown",
                status="success",
                provider_response=transaction.raw,
                paid_at=transaction.paid_at or datetime.now(timezone.utc),
            )
        )
        await session.flush()
        return True

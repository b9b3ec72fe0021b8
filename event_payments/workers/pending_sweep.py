"""
Pending payment sweep.

Webhook failures are acknowledged to Paystack and only logged, so a paid
registration can stay PENDING if the payer never returns to trigger a
verification. This worker re-verifies stale PENDING registrations through
the reconciler, which makes repeated runs safe.
"""
import argparse
import asyncio
import json
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from event_payments.config import get_settings
from event_payments.core.reconciler import PaymentReconciler
from event_payments.core.signature import SignatureVerifier
from event_payments.database.connection import close_db, get_session_factory
from event_payments.database.models import PaymentStatus, Registration
from event_payments.exceptions import EventPaymentsError
from event_payments.integrations.paystack_client import PaystackClient
from event_payments.monitoring.logging import setup_logging
from event_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


@dataclass
class SweepSummary:
    examined: int = 0
    settled: int = 0
    already_paid: int = 0
    not_successful: int = 0
    failed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class PendingPaymentSweeper:
    """Re-runs verification for PENDING registrations older than a cutoff."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        reconciler: PaymentReconciler,
        min_age_seconds: int = 900,
        batch_size: int = 100,
    ):
        """
        Initialize sweeper.

        Args:
            session_factory: Factory for database sessions
            reconciler: Reconciler used to verify each reference
            min_age_seconds: Skip registrations younger than this
            batch_size: Maximum registrations per run
        """
        self.session_factory = session_factory
        self.reconciler = reconciler
        self.min_age_seconds = min_age_seconds
        self.batch_size = batch_size

    async def find_stale_references(self) -> List[str]:
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=self.min_age_seconds)
        async with self.session_factory() as session:
            result = await session.scalars(
                select(Registration.paystack_reference)
                .where(
                    Registration.payment_status == PaymentStatus.PENDING.value,
                    Registration.registered_at <= cutoff,
                )
                .order_by(Registration.registered_at)
                .limit(self.batch_size)
            )
            return list(result)

    async def run_once(self) -> SweepSummary:
        """
        Verify each stale reference once.

        A failure on one reference is logged and counted; the sweep moves on.
        """
        summary = SweepSummary()
        references = await self.find_stale_references()
        logger.info("pending_sweep_started", candidates=len(references))

        for reference in references:
            summary.examined += 1
            try:
                result = await self.reconciler.verify(reference)
            except EventPaymentsError as e:
                summary.failed += 1
                outcome = "failed"
                logger.warning(
                    "pending_sweep_verification_failed",
                    reference=reference,
                    error_type=type(e).__name__,
                    error=str(e),
                )
            except Exception:
                summary.failed += 1
                outcome = "failed"
                logger.error(
                    "pending_sweep_verification_crashed", reference=reference, exc_info=True
                )
            else:
                if not result.success:
                    summary.not_successful += 1
                    outcome = "not_successful"
                elif result.already_verified:
                    summary.already_paid += 1
                    outcome = "already_paid"
                else:
                    summary.settled += 1
                    outcome = "settled"
            metrics.record_sweep_outcome(outcome)

        metrics.mark_sweep_run()
        logger.info("pending_sweep_completed", **summary.to_dict())
        return summary


async def run_sweep(
    min_age_seconds: Optional[int] = None, batch_size: Optional[int] = None
) -> SweepSummary:
    """Build the service graph from settings and run one sweep."""
    setup_logging()
    settings = get_settings()
    session_factory = get_session_factory()
    paystack_client = PaystackClient(settings)
    try:
        reconciler = PaymentReconciler(
            session_factory,
            paystack_client,
            SignatureVerifier(settings.paystack_secret_key),
        )
        sweeper = PendingPaymentSweeper(
            session_factory,
            reconciler,
            min_age_seconds=(
                settings.sweep_min_age_seconds if min_age_seconds is None else min_age_seconds
            ),
            batch_size=batch_size or settings.sweep_batch_size,
        )
        return await sweeper.run_once()
    finally:
        await paystack_client.close()
        await close_db()


def main() -> None:
    parser = argparse.ArgumentParser(description="Re-verify stale pending payments")
    parser.add_argument("--min-age", type=int, default=None, help="Minimum age in seconds")
    parser.add_argument("--batch-size", type=int, default=None, help="Registrations per run")
    args = parser.parse_args()

    summary = asyncio.run(run_sweep(min_age_seconds=args.min_age, batch_size=args.batch_size))
    print(json.dumps(summary.to_dict()))


if __name__ == "__main__":
    main()

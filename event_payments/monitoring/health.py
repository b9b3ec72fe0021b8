"""
Readiness and liveness checks.

Readiness needs the database and an authenticated round trip to Paystack;
liveness only says the process is serving requests.
"""
import time
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from event_payments.exceptions import EventPaymentsError

if TYPE_CHECKING:
    from event_payments.integrations.paystack_client import PaystackClient

logger = structlog.get_logger(__name__)


class HealthCheckError(Exception):
    """Raised when a dependency is not usable."""


class HealthCheck:
    """Probes the dependencies a payment verification needs."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        paystack_client: Optional["PaystackClient"] = None,
    ) -> None:
        """
        Args:
            session_factory: Factory for database sessions
            paystack_client: Optional client; the Paystack check is skipped without one
        """
        self.session_factory = session_factory
        self.paystack_client = paystack_client

    async def check_database(self) -> Dict[str, Any]:
        try:
            async with self.session_factory() as session:
                await session.scalar(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as e:
            raise HealthCheckError(f"Database unreachable: {e}") from e
        return {"status": "healthy"}

    async def check_paystack(self) -> Dict[str, Any]:
        if self.paystack_client is None:
            return {"status": "skipped"}
        try:
            await self.paystack_client.check_connectivity()
        except EventPaymentsError as e:
            raise HealthCheckError(f"Paystack unreachable: {e.message}") from e
        return {
            "status": "healthy",
            "test_mode": self.paystack_client.settings.is_test_mode,
        }

    async def check_all(self) -> Dict[str, Any]:
        """
        Run every check, timing each one.

        Returns:
            Dict[str, Any]: ``status`` is ``healthy`` only if no check failed
        """
        probes: Dict[str, Callable[[], Awaitable[Dict[str, Any]]]] = {
            "database": self.check_database,
            "paystack": self.check_paystack,
        }
        checks: Dict[str, Any] = {}

        for name, probe in probes.items():
            started = time.perf_counter()
            try:
                result = await probe()
            except HealthCheckError as e:
                logger.error("health_check_failed", dependency=name, error=str(e))
                result = {"status": "unhealthy", "error": str(e)}
            result["latency_ms"] = round((time.perf_counter() - started) * 1000, 2)
            checks[name] = result

        healthy = all(check["status"] != "unhealthy" for check in checks.values())
        return {"status": "healthy" if healthy else "unhealthy", "checks": checks}

    async def liveness(self) -> Dict[str, Any]:
        return {"status": "alive"}

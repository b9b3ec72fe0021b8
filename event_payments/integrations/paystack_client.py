"""
Paystack API client with retry logic and error classification.

Implements:
- Bounded timeouts on every outbound call
- Exponential backoff for retryable reads
- Circuit breaker pattern
- Typed results for each endpoint
"""
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar
from urllib.parse import quote

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, ValidationError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from event_payments.config import Settings
from event_payments.exceptions import ProviderRejectedError, ProviderUnavailableError
from event_payments.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class PaystackEnvelope(BaseModel):
    """Outer shape shared by every Paystack API response."""

    status: bool
    message: str = ""
    data: Optional[Any] = None


class PaystackTransaction(BaseModel):
    """
    Transaction as reported by ``/transaction/verify`` or a ``charge.success`` webhook.

    ``amount`` is in minor currency units. ``raw`` keeps the provider payload
    verbatim for the payment record. The financial fields are strict: a
    string amount is a malformed payload, not a number to coerce.
    """

    model_config = ConfigDict(extra="ignore")

    reference: str
    amount: StrictInt
    currency: StrictStr
    status: Optional[str] = None
    channel: Optional[str] = None
    paid_at: Optional[datetime] = None
    raw: Dict[str, Any] = Field(default_factory=dict, exclude=True)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "PaystackTransaction":
        """Validate a provider ``data`` object, keeping the original payload."""
        transaction = cls.model_validate(payload)
        transaction.raw = dict(payload)
        return transaction

    @property
    def is_successful(self) -> bool:
        return self.status == "success"


class TransactionAuthorization(BaseModel):
    """Result of ``/transaction/initialize``."""

    model_config = ConfigDict(extra="ignore")

    authorization_url: str
    access_code: Optional[str] = None
    reference: Optional[str] = None


class CircuitBreaker:
    """
    Circuit breaker for Paystack API calls.

    Prevents cascading failures by temporarily stopping requests
    when the provider keeps failing. Only ``ProviderUnavailableError``
    counts as a failure; rejected requests mean the provider is up.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: int = 60,
        success_threshold: int = 2,
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Number of failures before opening circuit
            timeout: Seconds before attempting to close circuit
            success_threshold: Successful calls needed to close circuit
        """
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.success_threshold = success_threshold
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = "closed"  # closed, open, half_open

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Await ``func`` with circuit breaker protection.

        Raises:
            ProviderUnavailableError: If circuit is open
        """
        if self.state == "open":
            if (
                self.last_failure_time
                and time.monotonic() - self.last_failure_time > self.timeout
            ):
                self._set_state("half_open")
                self.success_count = 0
            else:
                raise ProviderUnavailableError("Paystack circuit breaker is open")

        try:
            result = await func(*args, **kwargs)
        except ProviderUnavailableError:
            self.on_failure()
            raise
        self.on_success()
        return result

    def on_success(self) -> None:
        """Record successful call."""
        self.failure_count = 0
        if self.state == "half_open":
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self._set_state("closed")

    def on_failure(self) -> None:
        """Record failed call."""
        self.failure_count += 1
        self.last_failure_time = time.monotonic()
        if self.state == "half_open" or self.failure_count >= self.failure_threshold:
            if self.state != "open":
                logger.warning("circuit_breaker_opened", failure_count=self.failure_count)
            self._set_state("open")

    def _set_state(self, state: str) -> None:
        if state != self.state:
            logger.info("circuit_breaker_state_changed", previous=self.state, state=state)
        self.state = state
        metrics.set_circuit_breaker_state(state)


class PaystackClient:
    """
    Async wrapper for the Paystack transaction API.

    Features:
    - Bearer authentication with the configured secret key
    - Bounded per-request timeout
    - Retries for verification (a safe, repeatable read)
    - Errors classified as unavailable (retry later) or rejected (permanent)
    """

    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ) -> None:
        """
        Initialize Paystack client.

        Args:
            settings: Application settings carrying the secret key and base URL
            http_client: Optional shared HTTP client (one is created if omitted)
            circuit_breaker: Optional circuit breaker
        """
        self.settings = settings
        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient()
        self.circuit_breaker = circuit_breaker or CircuitBreaker()

        logger.info(
            "paystack_client_initialized",
            base_url=settings.paystack_base_url,
            test_mode=settings.is_test_mode,
        )

    @property
    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.settings.paystack_secret_key}",
            "Content-Type": "application/json",
        }

    async def _send(self, method: str, path: str, **kwargs: Any) -> Any:
        """Send one request and return the envelope's ``data``."""
        try:
            response = await self.http_client.request(
                method,
                f"{self.settings.paystack_base_url}{path}",
                headers=self._headers,
                timeout=self.settings.paystack_timeout_seconds,
                **kwargs,
            )
        except httpx.TimeoutException as e:
            raise ProviderUnavailableError("Paystack request timed out") from e
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(f"Paystack request failed: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            raise ProviderUnavailableError(
                f"Paystack responded with HTTP {response.status_code}"
            )

        try:
            body = response.json()
        except ValueError as e:
            raise ProviderUnavailableError("Paystack returned a non-JSON response") from e

        if response.status_code >= 400:
            message = body.get("message") if isinstance(body, dict) else None
            raise ProviderRejectedError(
                message or f"Paystack rejected the request (HTTP {response.status_code})",
                provider_status=response.status_code,
            )

        try:
            envelope = PaystackEnvelope.model_validate(body)
        except ValidationError as e:
            raise ProviderUnavailableError("Unexpected Paystack response shape") from e

        if not envelope.status:
            raise ProviderRejectedError(
                envelope.message or "Paystack rejected the request",
                provider_status=response.status_code,
            )
        return envelope.data

    async def _request(self, operation: str, method: str, path: str, **kwargs: Any) -> Any:
        """Send a request through the circuit breaker, recording metrics."""
        start_time = time.monotonic()
        try:
            data = await self.circuit_breaker.call(self._send, method, path, **kwargs)
        except ProviderUnavailableError as e:
            metrics.record_paystack_api_call(operation, "unavailable", time.monotonic() - start_time)
            metrics.record_paystack_api_error("unavailable")
            logger.error("paystack_api_unavailable", operation=operation, error=str(e))
            raise
        except ProviderRejectedError as e:
            metrics.record_paystack_api_call(operation, "rejected", time.monotonic() - start_time)
            metrics.record_paystack_api_error("rejected")
            logger.warning(
                "paystack_api_rejected",
                operation=operation,
                provider_status=e.provider_status,
                error=str(e),
            )
            raise

        metrics.record_paystack_api_call(operation, "ok", time.monotonic() - start_time)
        return data

    async def initialize_transaction(
        self,
        email: str,
        amount: int,
        reference: str,
        currency: str,
        callback_url: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> TransactionAuthorization:
        """
        Initialize a Paystack transaction for ``reference``.

        Not retried: a repeated initialize for the same reference is refused
        by Paystack, so the caller decides whether to try again.

        Args:
            email: Payer email
            amount: Amount in minor currency units
            reference: Local payment reference
            currency: Currency code (e.g., 'NGN')
            callback_url: Where Paystack redirects after checkout
            metadata: Optional metadata echoed back by Paystack

        Returns:
            TransactionAuthorization: Checkout URL and access code

        Raises:
            ProviderUnavailableError: Paystack unreachable or answered unusably
            ProviderRejectedError: Paystack refused the request
        """
        logger.info(
            "initializing_transaction",
            reference=reference,
            amount=amount,
            currency=currency,
        )

        data = await self._request(
            "initialize",
            "POST",
            "/transaction/initialize",
            json={
                "email": email,
                "amount": amount,
                "reference": reference,
                "currency": currency,
                "callback_url": callback_url,
                "metadata": metadata or {},
            },
        )

        try:
            authorization = TransactionAuthorization.model_validate(data)
        except ValidationError as e:
            raise ProviderUnavailableError("Unexpected Paystack initialize response") from e

        logger.info("transaction_initialized", reference=reference)
        return authorization

    async def verify_transaction(self, reference: str) -> PaystackTransaction:
        """
        Fetch the authoritative status of a transaction.

        Args:
            reference: Payment reference

        Returns:
            PaystackTransaction: Provider-reported transaction

        Raises:
            ProviderUnavailableError: After retries are exhausted
            ProviderRejectedError: Paystack refused the request
        """
        logger.info("verifying_transaction", reference=reference)

        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(ProviderUnavailableError),
            stop=stop_after_attempt(self.settings.paystack_retry_attempts),
            wait=wait_exponential(multiplier=0.5, max=self.settings.paystack_retry_max_wait),
            reraise=True,
        ):
            with attempt:
                data = await self._request(
                    "verify", "GET", f"/transaction/verify/{quote(reference, safe='')}"
                )

        if not isinstance(data, dict):
            raise ProviderUnavailableError("Unexpected Paystack verify response")
        try:
            transaction = PaystackTransaction.from_payload(data)
        except ValidationError as e:
            raise ProviderUnavailableError("Unexpected Paystack verify response") from e

        logger.info(
            "transaction_verified",
            reference=reference,
            provider_status=transaction.status,
            amount=transaction.amount,
            currency=transaction.currency,
        )
        return transaction

    async def check_connectivity(self) -> None:
        """Make a minimal authenticated call to confirm Paystack is reachable."""
        await self._request("health", "GET", "/bank", params={"perPage": 1})

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_http_client:
            await self.http_client.aclose()

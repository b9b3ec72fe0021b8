"""Exception hierarchy shared by the services, the provider client and the API."""
from typing import Optional


class EventPaymentsError(Exception):
    """Base exception for all service errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRequestError(EventPaymentsError):
    """Raised when a request is malformed or not allowed in the current state."""

    status_code = 400


class DuplicateRegistrationError(InvalidRequestError):
    """Raised when a guardian registers the same child twice for one event."""


class EventAlreadyExistsError(InvalidRequestError):
    """Raised when creating an event while one already exists."""


class NotFoundError(EventPaymentsError):
    """Raised when a reference, registration, payment or event is unknown."""

    status_code = 404


class SignatureInvalidError(EventPaymentsError):
    """Raised when a webhook signature does not match its body."""

    status_code = 400


class AmountMismatchError(EventPaymentsError):
    """Raised when provider-reported financials disagree with the event."""

    status_code = 400

    def __init__(
        self,
        reference: str,
        expected_amount: int,
        expected_currency: str,
        received_amount: int,
        received_currency: str,
    ):
        super().__init__("Payment amount mismatch")
        self.reference = reference
        self.expected_amount = expected_amount
        self.expected_currency = expected_currency
        self.received_amount = received_amount
        self.received_currency = received_currency


class ProviderUnavailableError(EventPaymentsError):
    """
    Raised when the payment provider cannot be reached or answers unusably.

    Covers timeouts, transport errors, 5xx/429 responses and response bodies
    that do not match the expected shape. Always safe to retry.
    """

    status_code = 503


class ProviderRejectedError(EventPaymentsError):
    """Raised when the payment provider refuses a request (4xx or status false)."""

    status_code = 400

    def __init__(self, message: str, provider_status: Optional[int] = None):
        super().__init__(message)
        self.provider_status = provider_status


class TransactionAbortedError(EventPaymentsError):
    """Raised when a settlement transaction was rolled back. Safe to retry."""

    status_code = 503

"""External integrations for payment collection."""
from .paystack_client import (
    CircuitBreaker,
    PaystackClient,
    PaystackTransaction,
    TransactionAuthorization,
)

__all__ = [
    "CircuitBreaker",
    "PaystackClient",
    "PaystackTransaction",
    "TransactionAuthorization",
]

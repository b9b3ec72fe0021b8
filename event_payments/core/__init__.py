"""Core registration, reconciliation and receipt logic."""
from .events import EventService
from .receipts import ReceiptService, ReceiptStatus, ReceiptView, format_receipt
from .reconciler import PaymentReconciler, VerificationResult, WebhookAck, WebhookOutcome
from .references import generate_reference
from .registrations import RegistrationCreated, RegistrationService
from .signature import SignatureVerifier

__all__ = [
    "EventService",
    "PaymentReconciler",
    "ReceiptService",
    "ReceiptStatus",
    "ReceiptView",
    "RegistrationCreated",
    "RegistrationService",
    "SignatureVerifier",
    "VerificationResult",
    "WebhookAck",
    "WebhookOutcome",
    "format_receipt",
    "generate_reference",
]

"""Database package for the event payments service."""
from .connection import close_db, get_session_factory, init_db, session_scope
from .models import Base, Event, Payment, PaymentStatus, Registration

__all__ = [
    "Base",
    "Event",
    "Registration",
    "Payment",
    "PaymentStatus",
    "get_session_factory",
    "init_db",
    "close_db",
    "session_scope",
]

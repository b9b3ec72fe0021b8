"""Monitoring and observability for the event payments service."""
from .logging import setup_logging
from .metrics import metrics

__all__ = ["metrics", "setup_logging"]

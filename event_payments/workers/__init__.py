"""Background workers."""
from .pending_sweep import PendingPaymentSweeper, SweepSummary

__all__ = ["PendingPaymentSweeper", "SweepSummary"]

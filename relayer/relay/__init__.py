from .engine import AccountReader, DestinationLedger, ReconciliationEngine, SubmitGuard, pending_counters

__all__ = [
    "AccountReader",
    "DestinationLedger",
    "ReconciliationEngine",
    "SubmitGuard",
    "pending_counters",
]

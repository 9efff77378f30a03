"""Audit ledger and transaction log."""

from flowrail.ledger.ledger import AuditLedger, TransactionLogSink
from flowrail.ledger.models import (
    ChainValidationResult,
    EventType,
    LedgerEntry,
    TransactionLogEntry,
    TransactionStatus,
)

__all__ = [
    "AuditLedger",
    "TransactionLogSink",
    "ChainValidationResult",
    "EventType",
    "LedgerEntry",
    "TransactionLogEntry",
    "TransactionStatus",
]

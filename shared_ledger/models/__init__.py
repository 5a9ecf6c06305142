"""
Data Models Package

This package contains all Pydantic models used in the Shared Ledger system.
All data flowing through the system must conform to these schemas.
"""

from shared_ledger.models.transaction import (
    BalancedTransaction,
    FilterCriteria,
    LedgerEdge,
    LedgerTotals,
    LedgerView,
    Transaction,
    TransactionType,
    UserIdentity,
    ValidationIssue,
    ValidationResult,
)
from shared_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "BalancedTransaction",
    "FilterCriteria",
    "LedgerEdge",
    "LedgerTotals",
    "LedgerView",
    "Transaction",
    "TransactionType",
    "UserIdentity",
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]

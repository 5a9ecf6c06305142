"""
Audit Models for Shared Ledger

Every write to a ledger is logged for audit purposes.
Because each shared transaction touches TWO users' ledgers, the audit
trail is the only place that shows both halves of a write together.

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Ledger writes
    TRANSACTION_ADDED = "transaction_added"
    TRANSACTION_MIRRORED = "transaction_mirrored"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"
    SAVE_FAILED = "save_failed"

    # Ingestion
    VALIDATION_FAILED = "validation_failed"
    MALFORMED_ROW_SKIPPED = "malformed_row_skipped"

    # Views
    LEDGER_REFRESHED = "ledger_refreshed"
    FILTERS_APPLIED = "filters_applied"

    # Store outages
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Whose ledger, and which row
    ledger_owner: Optional[str] = Field(
        default=None,
        description="Email of the user whose ledger was touched"
    )
    transaction_id: Optional[str] = None

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="Ties together the events of one user action (e.g. both mirrored writes)"
    )

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None

    is_user_action: bool = False

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "ledger_owner": self.ledger_owner,
            "transaction_id": self.transaction_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, ledger_owner, transaction_id,
         correlation_id, description, details_json, error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.ledger_owner or "",
            self.transaction_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_added(owner, txn_id, "credit", "100", cid)
    """

    @staticmethod
    def transaction_added(
        ledger_owner: str,
        transaction_id: str,
        counterparty: str,
        transaction_type: str,
        amount: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_ADDED,
            ledger_owner=ledger_owner,
            transaction_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction added: {transaction_type} {amount} with {counterparty}",
            details={
                "counterparty": counterparty,
                "type": transaction_type,
                "amount": amount,
            },
            is_user_action=True,
        )

    @staticmethod
    def transaction_mirrored(
        ledger_owner: str,
        transaction_id: str,
        source_owner: str,
        transaction_type: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_MIRRORED,
            ledger_owner=ledger_owner,
            transaction_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Mirrored {transaction_type} from {source_owner}",
            details={
                "source_owner": source_owner,
                "type": transaction_type,
            },
        )

    @staticmethod
    def transaction_updated(
        ledger_owner: str,
        transaction_id: str,
        row_index: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_UPDATED,
            ledger_owner=ledger_owner,
            transaction_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction updated at row {row_index}",
            details={"row_index": row_index},
            is_user_action=True,
        )

    @staticmethod
    def transaction_deleted(
        ledger_owner: str,
        transaction_id: Optional[str],
        row_index: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            ledger_owner=ledger_owner,
            transaction_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction deleted at row {row_index}",
            details={"row_index": row_index},
            is_user_action=True,
        )

    @staticmethod
    def validation_failed(
        ledger_owner: str,
        transaction_id: Optional[str],
        issues: list[dict],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            ledger_owner=ledger_owner,
            transaction_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction rejected with {len(issues)} issues",
            details={"issues": issues},
        )

    @staticmethod
    def malformed_row_skipped(
        ledger_owner: str,
        row_index: int,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MALFORMED_ROW_SKIPPED,
            severity=AuditSeverity.WARNING,
            ledger_owner=ledger_owner,
            description=f"Skipped malformed row {row_index}",
            details={"row_index": row_index},
            error_message=error_message,
        )

    @staticmethod
    def ledger_refreshed(
        ledger_owner: str,
        row_count: int,
        entry_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LEDGER_REFRESHED,
            severity=AuditSeverity.DEBUG,
            ledger_owner=ledger_owner,
            correlation_id=correlation_id,
            description=f"Ledger refreshed: {entry_count} of {row_count} rows in view",
            details={
                "row_count": row_count,
                "entry_count": entry_count,
            },
        )

    @staticmethod
    def filters_applied(
        ledger_owner: str,
        active_filters: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.FILTERS_APPLIED,
            ledger_owner=ledger_owner,
            correlation_id=correlation_id,
            description=f"Filters applied: {', '.join(sorted(active_filters)) or 'none'}",
            details={"filters": active_filters},
            is_user_action=True,
        )

    @staticmethod
    def save_failed(
        ledger_owner: str,
        transaction_id: Optional[str],
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SAVE_FAILED,
            severity=AuditSeverity.ERROR,
            ledger_owner=ledger_owner,
            transaction_id=transaction_id,
            correlation_id=correlation_id,
            description="Failed to write transaction",
            error_message=error_message,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"External service error: {service}",
            error_message=error_message,
            details={"service": service},
            correlation_id=correlation_id,
        )

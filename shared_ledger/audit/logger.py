"""
Audit Logger

DESIGN DECISION: Every write to a ledger is logged.
A shared transaction touches two ledgers, so both halves are logged
under one correlation ID; that is how a half-finished mirrored write
can be spotted and repaired.

The audit logger:
- Is async so it composes with the async service layer
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

import logging
from typing import Any, Optional
from uuid import UUID, uuid4

import structlog

from shared_ledger.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from shared_ledger.services.storage import AuditStorageInterface


def configure_logging(level: str = "INFO") -> None:
    """
    Configure structlog for local JSON logging.

    Safe to call more than once; the last call wins.
    """
    logging.basicConfig(format="%(message)s", level=getattr(logging, level.upper(), logging.INFO))
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("shared_ledger.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_transaction_added(
        self,
        ledger_owner: str,
        transaction_id: str,
        counterparty: str,
        transaction_type: str,
        amount: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_added(
            ledger_owner=ledger_owner,
            transaction_id=transaction_id,
            counterparty=counterparty,
            transaction_type=transaction_type,
            amount=amount,
            correlation_id=correlation_id,
        ))

    async def log_transaction_mirrored(
        self,
        ledger_owner: str,
        transaction_id: str,
        source_owner: str,
        transaction_type: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_mirrored(
            ledger_owner=ledger_owner,
            transaction_id=transaction_id,
            source_owner=source_owner,
            transaction_type=transaction_type,
            correlation_id=correlation_id,
        ))

    async def log_transaction_updated(
        self,
        ledger_owner: str,
        transaction_id: str,
        row_index: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_updated(
            ledger_owner=ledger_owner,
            transaction_id=transaction_id,
            row_index=row_index,
            correlation_id=correlation_id,
        ))

    async def log_transaction_deleted(
        self,
        ledger_owner: str,
        transaction_id: Optional[str],
        row_index: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_deleted(
            ledger_owner=ledger_owner,
            transaction_id=transaction_id,
            row_index=row_index,
            correlation_id=correlation_id,
        ))

    async def log_validation_failed(
        self,
        ledger_owner: str,
        transaction_id: Optional[str],
        issues: list[dict],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.validation_failed(
            ledger_owner=ledger_owner,
            transaction_id=transaction_id,
            issues=issues,
            correlation_id=correlation_id,
        ))

    async def log_ledger_refreshed(
        self,
        ledger_owner: str,
        row_count: int,
        entry_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.ledger_refreshed(
            ledger_owner=ledger_owner,
            row_count=row_count,
            entry_count=entry_count,
            correlation_id=correlation_id,
        ))

    async def log_filters_applied(
        self,
        ledger_owner: str,
        active_filters: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.filters_applied(
            ledger_owner=ledger_owner,
            active_filters=active_filters,
            correlation_id=correlation_id,
        ))

    async def log_save_failed(
        self,
        ledger_owner: str,
        transaction_id: Optional[str],
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.save_failed(
            ledger_owner=ledger_owner,
            transaction_id=transaction_id,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., adding a transaction).
    Pass it through all subsequent operations.
    """
    return uuid4()

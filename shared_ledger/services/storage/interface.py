"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep the mirrored-write logic out of every backend

Every user has their OWN ledger (one worksheet per user in Google Sheets).
A backend only knows how to read and write rows in one ledger at a time;
writing both halves of a shared transaction is the service layer's job.

Rows are addressed by `row_index`: the 0-based position of the row among
the ledger's data rows, assigned by the store.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional
from uuid import UUID

from shared_ledger.models.audit import AuditEvent
from shared_ledger.models.transaction import Transaction


class TransactionStorageInterface(ABC):
    """
    Abstract interface for per-user ledger storage.

    Any storage implementation (Google Sheets, PostgreSQL, etc.)
    must implement these methods.
    """

    @abstractmethod
    async def ensure_ledger(self, owner_email: str) -> str:
        """
        Make sure `owner_email` has a ledger, creating it if needed.

        Returns:
            An identifier for the ledger (e.g. the worksheet title)
        """
        pass

    @abstractmethod
    async def list_transactions(self, owner_email: str) -> list[Transaction]:
        """
        All rows in a user's ledger, in storage order.

        Each returned transaction carries its `row_index`.
        A ledger that doesn't exist yet is empty.
        """
        pass

    @abstractmethod
    async def append_transaction(
        self,
        owner_email: str,
        transaction: Transaction,
        balance: Optional[Decimal] = None,
    ) -> Transaction:
        """
        Append a row to a user's ledger.

        Args:
            owner_email: Whose ledger to write to
            transaction: The row to append
            balance: Informational balance to store alongside the row

        Returns:
            The stored row, with `row_index` assigned

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def update_transaction(
        self,
        owner_email: str,
        row_index: int,
        transaction: Transaction,
        balance: Optional[Decimal] = None,
    ) -> Transaction:
        """
        Overwrite the row at `row_index`.

        Raises:
            NotFoundError: If there is no row at that index
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def delete_transaction(self, owner_email: str, row_index: int) -> bool:
        """
        Delete the row at `row_index`. Later rows shift up by one.

        Returns:
            True if a row was deleted, False if there was none
        """
        pass

    async def get_transaction(
        self,
        owner_email: str,
        row_index: int,
    ) -> Optional[Transaction]:
        """The row at `row_index`, or None."""
        for transaction in await self.list_transactions(owner_email):
            if transaction.row_index == row_index:
                return transaction
        return None

    async def find_row_index(
        self,
        owner_email: str,
        transaction_id: str,
    ) -> Optional[int]:
        """Locate a row by transaction id (used to find mirrored copies)."""
        for transaction in await self.list_transactions(owner_email):
            if transaction.id == transaction_id:
                return transaction.row_index
        return None


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """All events of one user action, in chronological order."""
        pass

    @abstractmethod
    async def get_events_for_transaction(
        self,
        transaction_id: str,
    ) -> list[AuditEvent]:
        """All events about one transaction (both ledgers), oldest first."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """The most recent events, newest first."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass

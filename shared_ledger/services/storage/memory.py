"""
In-Memory Storage Implementation

Keeps ledgers in plain dicts. Used by the test suite and for running the
service without Google credentials. Behaves like the Sheets backend:
row indexes are positions, and deleting a row shifts later rows up.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

from shared_ledger.models.audit import AuditEvent
from shared_ledger.models.transaction import Transaction
from shared_ledger.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    NotFoundError,
    TransactionStorageInterface,
)


class InMemoryTransactionStorage(TransactionStorageInterface):
    """Ledgers held in process memory, one list of rows per owner."""

    def __init__(self):
        self._ledgers: dict[str, list[Transaction]] = {}
        self._balances: dict[str, list[Optional[Decimal]]] = {}

    def _rows(self, owner_email: str) -> list[Transaction]:
        return self._ledgers.setdefault(owner_email, [])

    def stored_balance(self, owner_email: str, row_index: int) -> Optional[Decimal]:
        """The informational balance written with a row."""
        return self._balances.get(owner_email, [])[row_index]

    async def ensure_ledger(self, owner_email: str) -> str:
        self._rows(owner_email)
        self._balances.setdefault(owner_email, [])
        return owner_email

    async def list_transactions(self, owner_email: str) -> list[Transaction]:
        return [
            row.model_copy(update={"row_index": index})
            for index, row in enumerate(self._ledgers.get(owner_email, []))
        ]

    async def append_transaction(
        self,
        owner_email: str,
        transaction: Transaction,
        balance: Optional[Decimal] = None,
    ) -> Transaction:
        await self.ensure_ledger(owner_email)
        rows = self._rows(owner_email)
        if any(row.id == transaction.id for row in rows):
            raise DuplicateError(
                f"Transaction {transaction.id} already exists in {owner_email}'s ledger"
            )
        rows.append(transaction)
        self._balances[owner_email].append(balance)
        return transaction.model_copy(update={"row_index": len(rows) - 1})

    async def update_transaction(
        self,
        owner_email: str,
        row_index: int,
        transaction: Transaction,
        balance: Optional[Decimal] = None,
    ) -> Transaction:
        rows = self._ledgers.get(owner_email, [])
        if not 0 <= row_index < len(rows):
            raise NotFoundError(f"No row {row_index} in {owner_email}'s ledger")
        rows[row_index] = transaction
        self._balances[owner_email][row_index] = balance
        return transaction.model_copy(update={"row_index": row_index})

    async def delete_transaction(self, owner_email: str, row_index: int) -> bool:
        rows = self._ledgers.get(owner_email, [])
        if not 0 <= row_index < len(rows):
            return False
        del rows[row_index]
        del self._balances[owner_email][row_index]
        return True


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self.events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_events_for_transaction(
        self,
        transaction_id: str,
    ) -> list[AuditEvent]:
        events = [e for e in self.events if e.transaction_id == transaction_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return sorted(self.events, key=lambda e: e.timestamp, reverse=True)[:limit]

"""
Main Orchestrator for Shared Ledger

This module ties together storage, validation, auditing and the pure
ledger core, and defines the end-to-end flows for:
1. Viewing (fetch rows -> filter -> running balances -> display order)
2. Writing (validate -> write owner's row -> write mirrored row)
3. Refreshing (re-run the view on a fixed interval)

DESIGN DECISION: The orchestrator owns the mirrored write.
A shared transaction is modelled as one LedgerEdge; both ledger rows
are derived from it, written under one correlation ID and audited
separately so a half-finished write is visible in the audit log.

The ledger core never performs I/O; everything here awaits storage
and then calls the core synchronously on rows already in memory.
"""

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Mapping
from decimal import Decimal
from typing import Any, Optional, Union
from uuid import UUID

import structlog

from shared_ledger.audit import AuditLogger, configure_logging, create_correlation_id
from shared_ledger.config import get_settings
from shared_ledger.ledger import (
    LedgerError,
    balances_by_counterparty,
    build_ledger_view,
    final_balance,
)
from shared_ledger.models.transaction import (
    FilterCriteria,
    LedgerEdge,
    LedgerView,
    Transaction,
    UserIdentity,
    ValidationResult,
)
from shared_ledger.services.storage import (
    DuplicateError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsTransactionStorage,
    InMemoryAuditStorage,
    InMemoryTransactionStorage,
    NotFoundError,
    StorageError,
    TransactionStorageInterface,
)
from shared_ledger.validation import TransactionValidator


logger = structlog.get_logger(__name__)

TransactionPayload = Union[Transaction, Mapping[str, Any]]
RefreshCallback = Callable[[LedgerView], Union[None, Awaitable[None]]]

# External (camelCase) key -> model field name
_FIELD_BY_ALIAS = {
    field.alias: name
    for name, field in Transaction.model_fields.items()
    if field.alias
}


class TransactionRejectedError(Exception):
    """The transaction failed ingestion validation and was not written."""

    def __init__(self, result: ValidationResult):
        messages = [i.message for i in result.issues if i.severity == "error"]
        super().__init__("; ".join(messages) or "Transaction rejected")
        self.result = result


def _pair_balance(rows: list[Transaction], ledger_owner: str, counterparty: str) -> Decimal:
    """The ledger owner's balance with one counterparty over `rows`."""
    return final_balance(rows, ledger_owner, counterparty=counterparty)


class LedgerService:
    """
    Reads and writes users' ledgers.

    Flow for a write:
    1. Validate -> reject with TransactionRejectedError on errors
    2. Build the LedgerEdge from the owner's row
    3. Write the owner's row (with their balance vs. the counterparty)
    4. Write/keep in step the counterparty's mirrored row

    Self entries (counterparty email == owner email) have no mirror.
    """

    def __init__(
        self,
        storage: TransactionStorageInterface,
        validator: Optional[TransactionValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._storage = storage
        self._validator = validator or TransactionValidator()
        self._audit_logger = audit_logger

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------

    async def load_view(
        self,
        user_email: str,
        criteria: Optional[FilterCriteria] = None,
        counterparty: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> LedgerView:
        """
        Fetch a user's rows and run the view pipeline over them.

        Raises:
            StorageError: If the ledger can't be read
        """
        try:
            rows = await self._storage.list_transactions(user_email)
        except StorageError as e:
            if self._audit_logger:
                await self._audit_logger.log_external_service_error(
                    service=type(self._storage).__name__,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            raise

        view = build_ledger_view(
            rows,
            user_email,
            criteria=criteria,
            counterparty=counterparty,
        )

        if self._audit_logger:
            await self._audit_logger.log_ledger_refreshed(
                ledger_owner=user_email,
                row_count=len(rows),
                entry_count=len(view.entries),
                correlation_id=correlation_id,
            )

        return view

    async def apply_filters(
        self,
        user_email: str,
        payload: Optional[Mapping[str, Any]],
        counterparty: Optional[str] = None,
    ) -> LedgerView:
        """
        Build fresh criteria from a filter form and load the view.

        The new criteria replace any previous ones wholesale.
        """
        criteria = FilterCriteria.from_ui(payload)
        correlation_id = create_correlation_id()

        if self._audit_logger:
            await self._audit_logger.log_filters_applied(
                ledger_owner=user_email,
                active_filters=criteria.active_fields() if criteria else {},
                correlation_id=correlation_id,
            )

        return await self.load_view(
            user_email,
            criteria=criteria,
            counterparty=counterparty,
            correlation_id=correlation_id,
        )

    async def balances_by_counterparty(self, user_email: str) -> dict[str, Decimal]:
        """Every pairwise balance for a user, computed separately."""
        rows = await self._storage.list_transactions(user_email)
        return balances_by_counterparty(rows, user_email)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def _validate(
        self,
        payload: TransactionPayload,
        owner: UserIdentity,
        correlation_id: UUID,
    ) -> Transaction:
        result = self._validator.validate(payload, owner.email)
        if not result.is_valid:
            if self._audit_logger:
                await self._audit_logger.log_validation_failed(
                    ledger_owner=owner.email,
                    transaction_id=result.transaction_id,
                    issues=[issue.model_dump() for issue in result.issues],
                    correlation_id=correlation_id,
                )
            raise TransactionRejectedError(result)
        return result.transaction

    async def _write_mirror(
        self,
        edge: LedgerEdge,
        correlation_id: UUID,
    ) -> Optional[Transaction]:
        """Append or overwrite the counterparty's copy of an edge."""
        if edge.is_self_entry:
            return None

        counterparty = edge.party_b
        mirrored = edge.row_for(counterparty)
        rows = await self._storage.list_transactions(counterparty)
        row_index = next((r.row_index for r in rows if r.id == edge.id), None)

        try:
            if row_index is None:
                balance = _pair_balance(rows + [mirrored], counterparty, edge.party_a)
                stored = await self._storage.append_transaction(counterparty, mirrored, balance)
            else:
                after = [mirrored if r.row_index == row_index else r for r in rows]
                balance = _pair_balance(after, counterparty, edge.party_a)
                stored = await self._storage.update_transaction(
                    counterparty, row_index, mirrored, balance
                )
        except StorageError as e:
            if self._audit_logger:
                await self._audit_logger.log_save_failed(
                    ledger_owner=counterparty,
                    transaction_id=edge.id,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            raise

        if self._audit_logger:
            await self._audit_logger.log_transaction_mirrored(
                ledger_owner=counterparty,
                transaction_id=edge.id,
                source_owner=edge.party_a,
                transaction_type=mirrored.type.value,
                correlation_id=correlation_id,
            )
        return stored

    async def _delete_mirror(
        self,
        counterparty: str,
        transaction_id: str,
        correlation_id: UUID,
    ) -> bool:
        row_index = await self._storage.find_row_index(counterparty, transaction_id)
        if row_index is None:
            return False
        deleted = await self._storage.delete_transaction(counterparty, row_index)
        if deleted and self._audit_logger:
            await self._audit_logger.log_transaction_deleted(
                ledger_owner=counterparty,
                transaction_id=transaction_id,
                row_index=row_index,
                correlation_id=correlation_id,
            )
        return deleted

    async def add_transaction(
        self,
        owner: UserIdentity,
        payload: TransactionPayload,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Record a new transaction in the owner's ledger and mirror it.

        Returns:
            The owner's stored row (with row_index)

        Raises:
            TransactionRejectedError: If validation fails (nothing is written)
            StorageError: If either write fails
        """
        correlation_id = correlation_id or create_correlation_id()
        transaction = await self._validate(payload, owner, correlation_id)
        edge = LedgerEdge.from_row(owner, transaction)
        row = edge.row_for(owner.email)

        existing = await self._storage.list_transactions(owner.email)
        if any(r.id == row.id for r in existing):
            raise DuplicateError(f"Transaction {row.id} already exists")
        balance = _pair_balance(existing + [row], owner.email, edge.party_b)

        try:
            stored = await self._storage.append_transaction(owner.email, row, balance)
        except StorageError as e:
            if self._audit_logger:
                await self._audit_logger.log_save_failed(
                    ledger_owner=owner.email,
                    transaction_id=row.id,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            raise

        if self._audit_logger:
            await self._audit_logger.log_transaction_added(
                ledger_owner=owner.email,
                transaction_id=row.id,
                counterparty=row.user_email,
                transaction_type=row.type.value,
                amount=str(row.amount),
                correlation_id=correlation_id,
            )

        await self._write_mirror(edge, correlation_id)
        return stored

    async def update_transaction(
        self,
        owner: UserIdentity,
        row_index: int,
        changes: TransactionPayload,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Edit the row at `row_index` in the owner's ledger.

        `changes` may be a full Transaction or only the fields being
        edited. The transaction id never changes. If the counterparty
        email changed, the old counterparty's mirrored copy is removed.

        Raises:
            NotFoundError: If there is no row at `row_index`
            TransactionRejectedError: If the edited row fails validation
        """
        correlation_id = correlation_id or create_correlation_id()
        rows = await self._storage.list_transactions(owner.email)
        current = next((r for r in rows if r.row_index == row_index), None)
        if current is None:
            raise NotFoundError(f"No row {row_index} in {owner.email}'s ledger")

        if isinstance(changes, Transaction):
            edited = changes.model_dump(exclude={"row_index"})
        else:
            edited = {_FIELD_BY_ALIAS.get(k, k): v for k, v in changes.items()}
        merged = {
            **current.model_dump(exclude={"row_index"}),
            **edited,
            "id": current.id,
        }
        merged.pop("row_index", None)

        transaction = await self._validate(merged, owner, correlation_id)
        edge = LedgerEdge.from_row(owner, transaction)
        row = edge.row_for(owner.email)

        after = [row if r.row_index == row_index else r for r in rows]
        balance = _pair_balance(after, owner.email, edge.party_b)
        stored = await self._storage.update_transaction(owner.email, row_index, row, balance)

        if self._audit_logger:
            await self._audit_logger.log_transaction_updated(
                ledger_owner=owner.email,
                transaction_id=row.id,
                row_index=row_index,
                correlation_id=correlation_id,
            )

        previous_counterparty = current.user_email
        if previous_counterparty not in (owner.email, edge.party_b):
            await self._delete_mirror(previous_counterparty, current.id, correlation_id)

        await self._write_mirror(edge, correlation_id)
        return stored

    async def delete_transaction(
        self,
        owner: UserIdentity,
        row_index: int,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """
        Delete a row from the owner's ledger, and its mirrored copy.

        Returns:
            False if there was no row at `row_index`
        """
        correlation_id = correlation_id or create_correlation_id()
        current = await self._storage.get_transaction(owner.email, row_index)
        if current is None:
            return False

        deleted = await self._storage.delete_transaction(owner.email, row_index)
        if not deleted:
            return False

        if self._audit_logger:
            await self._audit_logger.log_transaction_deleted(
                ledger_owner=owner.email,
                transaction_id=current.id,
                row_index=row_index,
                correlation_id=correlation_id,
            )

        if current.user_email != owner.email:
            await self._delete_mirror(current.user_email, current.id, correlation_id)

        return True


class LedgerPoller:
    """
    Re-runs a user's ledger view on a fixed interval.

    The store is polled, never pushed, so this is how changes made by
    counterparties (their mirrored writes) show up. Each fresh view is
    handed to `on_refresh` (sync or async). A failed refresh is logged
    and the loop carries on at the next tick.
    """

    def __init__(
        self,
        service: LedgerService,
        user_email: str,
        on_refresh: RefreshCallback,
        interval_seconds: Optional[float] = None,
        criteria: Optional[FilterCriteria] = None,
        counterparty: Optional[str] = None,
    ):
        self._service = service
        self._user_email = user_email
        self._on_refresh = on_refresh
        self.interval_seconds = (
            interval_seconds
            if interval_seconds is not None
            else get_settings().app.poll_interval_seconds
        )
        self._criteria = criteria
        self._counterparty = counterparty
        self._stop_event = asyncio.Event()
        self._is_running = False
        self.last_view: Optional[LedgerView] = None

    @property
    def is_running(self) -> bool:
        return self._is_running

    def set_criteria(self, criteria: Optional[FilterCriteria]) -> None:
        """Replace the active filters (wholesale) from the next tick on."""
        self._criteria = criteria

    async def poll_once(self) -> Optional[LedgerView]:
        """One refresh. Returns None if it failed."""
        try:
            view = await self._service.load_view(
                self._user_email,
                criteria=self._criteria,
                counterparty=self._counterparty,
            )
        except (StorageError, LedgerError) as e:
            logger.warning(
                "ledger_poll_failed",
                ledger_owner=self._user_email,
                error=str(e),
            )
            return None

        self.last_view = view
        try:
            result = self._on_refresh(view)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            # A broken consumer must not stop the refresh loop
            logger.error(
                "ledger_refresh_callback_failed",
                ledger_owner=self._user_email,
                error=str(e),
                exc_info=True,
            )
        return view

    async def run(self) -> None:
        """Poll until `stop()` is called."""
        self._stop_event.clear()
        self._is_running = True
        logger.info(
            "ledger_poller_started",
            ledger_owner=self._user_email,
            interval_seconds=self.interval_seconds,
        )
        try:
            while not self._stop_event.is_set():
                await self.poll_once()
                try:
                    await asyncio.wait_for(
                        self._stop_event.wait(),
                        timeout=self.interval_seconds,
                    )
                except asyncio.TimeoutError:
                    continue
        finally:
            self._is_running = False
            logger.info("ledger_poller_stopped", ledger_owner=self._user_email)

    def stop(self) -> None:
        self._stop_event.set()


def create_app_components(
    use_storage: bool = True,
) -> tuple[LedgerService, Optional[GoogleSheetsClient]]:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to initialize Google Sheets storage.
                    Set to False to run on in-memory ledgers.

    Returns:
        (ledger_service, sheets_client)
    """
    settings = get_settings().app
    configure_logging(settings.log_level)

    sheets_client = None
    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
            storage: TransactionStorageInterface = GoogleSheetsTransactionStorage(
                sheets_client,
                default_country_code=settings.default_country_code,
            )
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        except Exception as e:
            # Storage not configured - continue in memory
            logger.warning("storage_not_configured", error=str(e))
            sheets_client = None
            storage = InMemoryTransactionStorage()
            audit_logger = AuditLogger(InMemoryAuditStorage())
    else:
        storage = InMemoryTransactionStorage()
        audit_logger = AuditLogger(InMemoryAuditStorage())

    service = LedgerService(
        storage=storage,
        validator=TransactionValidator(),
        audit_logger=audit_logger,
    )
    return service, sheets_client

"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is the storage backend because:
1. Users can open their own ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

LAYOUT:
- One spreadsheet (configured by ID)
- One worksheet per user, titled "<email>-transactions"
- One AuditLog worksheet shared by everyone

TRADEOFFS:
- No transactions: the two halves of a mirrored write are separate
  appends, so the service layer orders them and audits both
- Row indexes shift when a row is deleted, exactly like the sheet
- Filtering happens in Python, never in the sheet
"""

import json
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from pydantic import ValidationError
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from shared_ledger.config import GoogleSheetsSettings, get_settings
from shared_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from shared_ledger.models.transaction import Transaction
from shared_ledger.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    NotFoundError,
    StorageError,
    TransactionStorageInterface,
)


logger = structlog.get_logger(__name__)


# Column layout of every ledger worksheet (row 1 is this header)
TRANSACTION_COLUMNS = [
    "ID",
    "Timestamp",
    "User Email",
    "Name",
    "Type",
    "Amount",
    "Description",
    "Balance",
    "Country Code",
    "Phone",
]

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "ledger_owner",
    "transaction_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]

# Data starts on sheet row 2; row_index 0 is sheet row 2
HEADER_ROWS = 1


def sheet_row_number(row_index: int) -> int:
    """1-based sheet row for a 0-based data row index."""
    return row_index + HEADER_ROWS + 1


def _column_letter(count: int) -> str:
    return chr(ord("A") + count - 1)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def ledger_title(self, owner_email: str) -> str:
        return f"{owner_email}{self._settings.ledger_sheet_suffix}"

    def get_ledger_sheet(
        self,
        owner_email: str,
        create: bool = True,
    ) -> Optional[gspread.Worksheet]:
        """
        Get a user's ledger worksheet.

        Creates it (with headers) when missing and `create` is set;
        otherwise returns None for a user with no ledger yet.
        """
        spreadsheet = self.get_spreadsheet()
        title = self.ledger_title(owner_email)
        try:
            return spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            if not create:
                return None
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=1000,
                cols=len(TRANSACTION_COLUMNS),
            )
            sheet.append_row(TRANSACTION_COLUMNS)
            logger.info("ledger_sheet_created", title=title)
            return sheet

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(self._settings.audit_sheet_name)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=self._settings.audit_sheet_name,
                rows=5000,  # More rows for audit log
                cols=len(AUDIT_COLUMNS),
            )
            sheet.append_row(AUDIT_COLUMNS)
        return sheet


class GoogleSheetsTransactionStorage(TransactionStorageInterface):
    """
    Google Sheets implementation of ledger storage.

    One transaction per row. The Balance column is informational only:
    balances are always recomputed from the rows, never read back as truth.
    """

    def __init__(
        self,
        client: Optional[GoogleSheetsClient] = None,
        default_country_code: Optional[str] = None,
    ):
        self._client = client or GoogleSheetsClient()
        self._default_country_code = (
            default_country_code or get_settings().app.default_country_code
        )

    def _transaction_to_row(
        self,
        transaction: Transaction,
        balance: Optional[Decimal] = None,
    ) -> list:
        """Convert a Transaction to a spreadsheet row."""
        return [
            transaction.id,
            transaction.timestamp.isoformat(),
            transaction.user_email,
            transaction.name,
            transaction.type.value,
            str(transaction.amount),
            transaction.description or "",
            str(balance) if balance is not None else "",
            transaction.country_code or self._default_country_code,
            transaction.phone or "",
        ]

    def _row_to_transaction(self, row: list, row_index: int) -> Transaction:
        """
        Convert a spreadsheet row to a Transaction.

        Raises:
            ValidationError: If the row is structurally unusable
        """
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return Transaction(
            id=safe_get(0),
            timestamp=safe_get(1),
            user_email=safe_get(2),
            name=safe_get(3),
            type=safe_get(4).strip().lower(),
            amount=safe_get(5).replace(",", ""),
            description=safe_get(6) or None,
            country_code=safe_get(8) or None,
            phone=safe_get(9) or None,
            row_index=row_index,
        )

    def _data_rows(self, sheet: gspread.Worksheet) -> list[list]:
        return sheet.get_all_values()[HEADER_ROWS:]

    async def ensure_ledger(self, owner_email: str) -> str:
        try:
            sheet = self._client.get_ledger_sheet(owner_email, create=True)
            return sheet.title
        except ConnectionError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to prepare ledger for {owner_email}: {e}")

    async def list_transactions(self, owner_email: str) -> list[Transaction]:
        """All parseable rows; malformed rows are logged and skipped."""
        try:
            sheet = self._client.get_ledger_sheet(owner_email, create=False)
            if sheet is None:
                return []
            rows = self._data_rows(sheet)
        except ConnectionError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to list transactions: {e}")

        transactions = []
        for row_index, row in enumerate(rows):
            if not row or not any(cell.strip() for cell in row):
                continue
            try:
                transactions.append(self._row_to_transaction(row, row_index))
            except ValidationError as e:
                event = AuditEventBuilder.malformed_row_skipped(
                    ledger_owner=owner_email,
                    row_index=row_index,
                    error_message=f"{e.error_count()} invalid fields",
                )
                logger.warning("audit_event", **event.to_log_dict())
        return transactions

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_transaction(
        self,
        owner_email: str,
        transaction: Transaction,
        balance: Optional[Decimal] = None,
    ) -> Transaction:
        try:
            sheet = self._client.get_ledger_sheet(owner_email, create=True)
            row_index = len(self._data_rows(sheet))
            sheet.append_row(
                self._transaction_to_row(transaction, balance),
                value_input_option="RAW",
            )
            return transaction.model_copy(update={"row_index": row_index})
        except Exception as e:
            raise StorageError(f"Failed to save transaction: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_not_exception_type(NotFoundError),
        reraise=True,
    )
    async def update_transaction(
        self,
        owner_email: str,
        row_index: int,
        transaction: Transaction,
        balance: Optional[Decimal] = None,
    ) -> Transaction:
        try:
            sheet = self._client.get_ledger_sheet(owner_email, create=False)
            if sheet is None or not 0 <= row_index < len(self._data_rows(sheet)):
                raise NotFoundError(f"No row {row_index} in {owner_email}'s ledger")

            number = sheet_row_number(row_index)
            last_column = _column_letter(len(TRANSACTION_COLUMNS))
            sheet.update(
                range_name=f"A{number}:{last_column}{number}",
                values=[self._transaction_to_row(transaction, balance)],
                value_input_option="RAW",
            )
            return transaction.model_copy(update={"row_index": row_index})
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update transaction: {e}")

    async def delete_transaction(self, owner_email: str, row_index: int) -> bool:
        try:
            sheet = self._client.get_ledger_sheet(owner_email, create=False)
            if sheet is None or not 0 <= row_index < len(self._data_rows(sheet)):
                return False
            sheet.delete_rows(sheet_row_number(row_index))
            return True
        except Exception as e:
            raise StorageError(f"Failed to delete transaction: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            ledger_owner=safe_get(4) or None,
            transaction_id=safe_get(5) or None,
            correlation_id=UUID(safe_get(6)) if safe_get(6) else None,
            description=safe_get(7),
            details=json.loads(safe_get(8)) if safe_get(8) else {},
            error_message=safe_get(9) or None,
            is_user_action=safe_get(10).lower() == "true",
        )

    def _all_events(self) -> list[AuditEvent]:
        try:
            rows = self._client.get_audit_sheet().get_all_values()[HEADER_ROWS:]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        events = []
        for row in rows:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except (ValueError, ValidationError) as e:
                logger.warning("audit_row_skipped", event_id=row[0], error=str(e))
        return events

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            # Audit logging must not break the main flow
            logger.warning(
                "audit_write_failed",
                event_id=str(event.event_id),
                error=str(e),
            )
            return False

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._all_events() if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_for_transaction(
        self,
        transaction_id: str,
    ) -> list[AuditEvent]:
        events = [e for e in self._all_events() if e.transaction_id == transaction_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = self._all_events()
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]

"""
Core Data Models for Shared Ledger

These models define the strict schemas for all data flowing through the system.
They are designed to:
1. Enforce type safety at runtime
2. Keep amounts unsigned - direction lives in `type` plus the reader's perspective
3. Be serializable for storage and logging
4. Keep the ledger core free of loosely-typed dicts

DESIGN DECISION: A transaction is always read from SOMEONE's point of view.
Nothing in these models stores a signed amount or a "current user";
perspective is supplied by the caller at computation time.
"""

from collections.abc import Mapping
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from shared_ledger.parsing import parse_date, parse_decimal


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class TransactionType(str, Enum):
    """
    Direction of a transaction, relative to the row's subject.

    DEBIT: the row's subject owes the counterparty.
    CREDIT: the counterparty owes the row's subject.
    """
    DEBIT = "debit"
    CREDIT = "credit"

    def inverted(self) -> "TransactionType":
        """The same movement seen from the other side of the ledger edge."""
        if self is TransactionType.DEBIT:
            return TransactionType.CREDIT
        return TransactionType.DEBIT


# =============================================================================
# LEDGER ROWS
# =============================================================================

class Transaction(BaseModel):
    """
    One ledger row, as materialized in a single user's ledger.

    `user_email` is the party the row records a movement with.
    `row_index` is assigned by the store and used only for
    update/delete addressing.

    Rows are immutable; edits produce a new instance via `model_copy`.
    """
    model_config = ConfigDict(
        str_strip_whitespace=True,
        populate_by_name=True,
        frozen=True,
    )

    id: str = Field(
        default_factory=lambda: str(uuid4()),
        min_length=1,
        description="Opaque unique identifier, shared by both mirrored rows"
    )
    timestamp: datetime = Field(
        ...,
        description="When the transaction is effective"
    )
    name: str = Field(
        default="",
        max_length=200,
        description="Display name of the counterparty on this row"
    )
    user_email: str = Field(
        ...,
        min_length=1,
        alias="userEmail",
        description="Party whose perspective the type/amount are expressed from"
    )
    type: TransactionType
    amount: Decimal = Field(
        ...,
        gt=0,
        allow_inf_nan=False,
        description="Unsigned magnitude of the movement"
    )
    description: Optional[str] = Field(
        default=None,
        max_length=1000,
    )
    phone: Optional[str] = Field(default=None, max_length=30)
    country_code: Optional[str] = Field(
        default=None,
        max_length=8,
        alias="countryCode",
    )
    row_index: Optional[int] = Field(
        default=None,
        ge=0,
        alias="rowIndex",
        description="Position in the backing store (0-based data row)"
    )

    @field_validator('type', mode='before')
    @classmethod
    def normalize_type(cls, v: Any) -> Any:
        """Accept 'Credit' or ' DEBIT ' the way the sheet reader does."""
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator('description', 'phone', 'country_code', mode='before')
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        """Spreadsheet cells come back as '' when empty."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @classmethod
    def create(cls, **fields: Any) -> "Transaction":
        """
        Build a brand new transaction.

        The timestamp defaults to now unless a backdated value is supplied.
        """
        if fields.get("timestamp") is None:
            fields["timestamp"] = datetime.now(timezone.utc)
        return cls(**fields)

    def to_record(self) -> dict:
        """Serialize with the external (camelCase) field names."""
        return self.model_dump(mode="json", by_alias=True)


class UserIdentity(BaseModel):
    """What the identity provider hands over after sign-in."""

    email: str = Field(..., min_length=3)
    display_name: Optional[str] = None

    @property
    def sender_name(self) -> str:
        """Name written on the counterparty's mirrored row."""
        return self.display_name or self.email


class LedgerEdge(BaseModel):
    """
    The canonical, bidirectional form of one shared transaction.

    The store keeps two rows per edge (one in each party's ledger).
    The edge is the single source both rows are derived from:

        A's row: user_email=B, name=B's name, type=type_from_a
        B's row: user_email=A, name=A's name, type=type_from_a inverted

    Both rows carry the same id and amount.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    timestamp: datetime
    party_a: str = Field(..., min_length=1)
    party_a_name: str = ""
    party_b: str = Field(..., min_length=1)
    party_b_name: str = ""
    amount: Decimal = Field(..., gt=0, allow_inf_nan=False)
    type_from_a: TransactionType
    description: Optional[str] = None
    phone: Optional[str] = None
    country_code: Optional[str] = None

    @property
    def is_self_entry(self) -> bool:
        """A row a user recorded against their own email has no mirror."""
        return self.party_a == self.party_b

    @classmethod
    def from_row(cls, owner: UserIdentity, row: Transaction) -> "LedgerEdge":
        """Build the edge from the row `owner` entered in their own ledger."""
        return cls(
            id=row.id,
            timestamp=row.timestamp,
            party_a=owner.email,
            party_a_name=owner.sender_name,
            party_b=row.user_email,
            party_b_name=row.name,
            amount=row.amount,
            type_from_a=row.type,
            description=row.description,
            phone=row.phone,
            country_code=row.country_code,
        )

    def row_for(self, owner_email: str) -> Transaction:
        """Materialize the row that belongs in `owner_email`'s ledger."""
        if owner_email == self.party_a:
            return Transaction(
                id=self.id,
                timestamp=self.timestamp,
                name=self.party_b_name,
                user_email=self.party_b,
                type=self.type_from_a,
                amount=self.amount,
                description=self.description,
                phone=self.phone,
                country_code=self.country_code,
            )
        if owner_email == self.party_b:
            # Contact details were entered about B, so they don't describe A
            return Transaction(
                id=self.id,
                timestamp=self.timestamp,
                name=self.party_a_name,
                user_email=self.party_a,
                type=self.type_from_a.inverted(),
                amount=self.amount,
                description=self.description,
            )
        raise ValueError(
            f"{owner_email} is not a party to transaction {self.id}"
        )

    def rows(self) -> dict[str, Transaction]:
        """Every ledger row this edge materializes, keyed by ledger owner."""
        result = {self.party_a: self.row_for(self.party_a)}
        if not self.is_self_entry:
            result[self.party_b] = self.row_for(self.party_b)
        return result


# =============================================================================
# FILTER CRITERIA
# =============================================================================

class FilterCriteria(BaseModel):
    """
    A sparse set of predicates applied to a ledger view.

    DESIGN DECISION: `None` is the one and only "unset" marker.
    Values coming from a form ('' for an untouched input, 'all' for
    an untouched dropdown, 'abc' typed into a number box) are
    normalized to None on construction, so the filter engine
    never has to guess what an empty string meant.

    A criteria set is built fresh for every apply and replaces the
    previous one wholesale.
    """
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        extra="ignore",
    )

    # Substring predicates (case-insensitive)
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    description: Optional[str] = None

    # Exact predicates
    country_code: Optional[str] = Field(default=None, alias="countryCode")
    type: Optional[TransactionType] = None

    # Numeric ranges (inclusive)
    amount_min: Optional[Decimal] = Field(default=None, alias="amountMin")
    amount_max: Optional[Decimal] = Field(default=None, alias="amountMax")
    balance_min: Optional[Decimal] = Field(default=None, alias="balanceMin")
    balance_max: Optional[Decimal] = Field(default=None, alias="balanceMax")

    # Local calendar days (inclusive)
    date_from: Optional[date] = Field(default=None, alias="dateFrom")
    date_to: Optional[date] = Field(default=None, alias="dateTo")

    @field_validator('name', 'email', 'phone', 'description', mode='before')
    @classmethod
    def blank_is_unset(cls, v: Any) -> Optional[str]:
        if v is None or isinstance(v, bool):
            return None
        text = v if isinstance(v, str) else str(v)
        return text if text.strip() else None

    @field_validator('country_code', mode='before')
    @classmethod
    def all_is_unset(cls, v: Any) -> Optional[str]:
        if v is None or isinstance(v, bool):
            return None
        text = str(v).strip()
        if text.lower() in ("", "all"):
            return None
        return text

    @field_validator('type', mode='before')
    @classmethod
    def unknown_type_is_unset(cls, v: Any) -> Optional[TransactionType]:
        """'Credit' means credit; 'all', '' or anything unknown means no constraint."""
        if isinstance(v, TransactionType):
            return v
        if not isinstance(v, str):
            return None
        try:
            return TransactionType(v.strip().lower())
        except ValueError:
            return None

    @field_validator('amount_min', 'amount_max', 'balance_min', 'balance_max', mode='before')
    @classmethod
    def invalid_number_is_unset(cls, v: Any) -> Optional[Decimal]:
        return parse_decimal(v)

    @field_validator('date_from', 'date_to', mode='before')
    @classmethod
    def invalid_date_is_unset(cls, v: Any) -> Optional[date]:
        return parse_date(v)

    @classmethod
    def from_ui(cls, payload: Optional[Mapping[str, Any]]) -> Optional["FilterCriteria"]:
        """
        Build criteria from a filter form payload.

        Returns None when nothing in the payload constrains the view,
        so callers can treat "no filters" uniformly.
        """
        if not payload:
            return None
        criteria = cls.model_validate(dict(payload))
        return None if criteria.is_empty else criteria

    @property
    def is_empty(self) -> bool:
        """True if no predicate is active."""
        return all(value is None for value in self.model_dump().values())

    @property
    def has_balance_range(self) -> bool:
        return self.balance_min is not None or self.balance_max is not None

    def active_fields(self) -> dict[str, Any]:
        """Only the predicates that constrain the view (for logging)."""
        return self.model_dump(mode="json", exclude_none=True)


# =============================================================================
# COMPUTED VIEWS
# =============================================================================

class BalancedTransaction(BaseModel):
    """A transaction annotated with the viewer's balance right after it."""
    model_config = ConfigDict(frozen=True)

    transaction: Transaction
    running_balance: Decimal


class LedgerTotals(BaseModel):
    """Credit/debit totals over a set of rows."""

    total_credit: Decimal = Decimal("0")
    total_debit: Decimal = Decimal("0")
    transaction_count: int = Field(default=0, ge=0)

    @property
    def balance(self) -> Decimal:
        return self.total_credit - self.total_debit

    @property
    def is_leading(self) -> bool:
        """Non-negative balance: the viewer is owed (or square)."""
        return self.balance >= 0


class LedgerView(BaseModel):
    """
    The result of one pass of the view pipeline.

    `entries` are in display order (newest first).
    `closing_balance` is the running balance after the chronologically
    last transaction in the filtered set, before any balance-range filter.
    """

    current_user_email: str
    counterparty: Optional[str] = None
    criteria: Optional[FilterCriteria] = None
    entries: list[BalancedTransaction] = Field(default_factory=list)
    totals: LedgerTotals = Field(default_factory=LedgerTotals)
    closing_balance: Decimal = Decimal("0")
    computed_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def transactions(self) -> list[Transaction]:
        return [entry.transaction for entry in self.entries]

    @property
    def is_empty(self) -> bool:
        return not self.entries


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'suspicious_value')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )
    suggested_fix: Optional[str] = None


class ValidationResult(BaseModel):
    """
    Result of the two-stage ingestion validation.

    Stage 1: Schema validation (types, required fields)
    Stage 2: Semantic validation (logic checks)
    """

    validation_id: UUID = Field(default_factory=uuid4)
    transaction_id: Optional[str] = None
    validated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    schema_valid: bool
    semantic_valid: bool
    is_valid: bool

    issues: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    # Set only when stage 1 produced a usable row
    transaction: Optional[Transaction] = None

    @model_validator(mode='after')
    def check_transaction_present(self) -> 'ValidationResult':
        """A valid result always carries the parsed transaction."""
        if self.is_valid and self.transaction is None:
            raise ValueError("A valid result must carry the parsed transaction")
        return self

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

"""
Tests for Shared Ledger models

Test strategy:
1. Unit tests for individual components (models, ledger core, validator)
2. Integration tests for the service layer (in-memory and fake Sheets storage)
3. No real API calls in tests
"""

import pytest
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

from pydantic import ValidationError

from shared_ledger.models import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
    FilterCriteria,
    LedgerEdge,
    LedgerTotals,
    Transaction,
    TransactionType,
    UserIdentity,
    ValidationIssue,
    ValidationResult,
)


class TestTransaction:
    """Tests for the ledger row model."""

    def test_from_camel_case_record(self):
        """Test external field names are accepted."""
        t = Transaction.model_validate({
            "id": "t1",
            "timestamp": "2024-03-01T12:00:00+00:00",
            "userEmail": "b@x.com",
            "name": "Bob",
            "type": "debit",
            "amount": "25.50",
            "countryCode": "+44",
            "rowIndex": 3,
        })
        assert t.user_email == "b@x.com"
        assert t.type == TransactionType.DEBIT
        assert t.amount == Decimal("25.50")
        assert t.country_code == "+44"
        assert t.row_index == 3

    def test_strips_whitespace(self):
        t = Transaction(
            timestamp=datetime(2024, 3, 1),
            user_email="  b@x.com ",
            name="  Bob  ",
            type="credit",
            amount=Decimal("1"),
        )
        assert t.user_email == "b@x.com"
        assert t.name == "Bob"

    def test_blank_optional_cells_become_none(self):
        """Test spreadsheet blanks read as missing."""
        t = Transaction(
            timestamp=datetime(2024, 3, 1),
            user_email="b@x.com",
            type="credit",
            amount=Decimal("1"),
            description="",
            phone="  ",
            country_code="",
        )
        assert t.description is None
        assert t.phone is None
        assert t.country_code is None

    @pytest.mark.parametrize("amount", ["0", "-5", "NaN", "abc"])
    def test_rejects_bad_amounts(self, amount):
        with pytest.raises(ValidationError):
            Transaction(
                timestamp=datetime(2024, 3, 1),
                user_email="b@x.com",
                type="credit",
                amount=amount,
            )

    def test_type_is_case_insensitive(self):
        t = Transaction(
            timestamp=datetime(2024, 3, 1),
            user_email="b@x.com",
            type=" Credit ",
            amount=Decimal("1"),
        )
        assert t.type == TransactionType.CREDIT

    def test_rejects_unknown_type(self):
        with pytest.raises(ValidationError):
            Transaction(
                timestamp=datetime(2024, 3, 1),
                user_email="b@x.com",
                type="refund",
                amount=Decimal("1"),
            )

    def test_rows_are_immutable(self):
        t = Transaction.create(user_email="b@x.com", type="credit", amount=Decimal("1"))
        with pytest.raises(ValidationError):
            t.amount = Decimal("2")

    def test_create_stamps_now(self):
        """Test that create() fills in an aware timestamp and an id."""
        t = Transaction.create(user_email="b@x.com", type="credit", amount=Decimal("1"))
        assert t.timestamp.tzinfo is not None
        assert t.id

    def test_create_keeps_backdated_timestamp(self):
        moment = datetime(2023, 1, 1, tzinfo=timezone.utc)
        t = Transaction.create(
            user_email="b@x.com", type="debit", amount=Decimal("1"), timestamp=moment
        )
        assert t.timestamp == moment

    def test_to_record_uses_external_names(self):
        t = Transaction.create(
            id="t1", user_email="b@x.com", type="debit", amount=Decimal("9.99")
        )
        record = t.to_record()
        assert record["userEmail"] == "b@x.com"
        assert record["type"] == "debit"
        assert record["amount"] == "9.99"
        assert "user_email" not in record


class TestTransactionType:
    def test_inverted(self):
        assert TransactionType.DEBIT.inverted() is TransactionType.CREDIT
        assert TransactionType.CREDIT.inverted() is TransactionType.DEBIT

    def test_values(self):
        assert TransactionType("debit") is TransactionType.DEBIT
        assert TransactionType.CREDIT.value == "credit"


class TestLedgerEdge:
    """Tests for the bidirectional form of a shared transaction."""

    @pytest.fixture
    def edge(self):
        owner = UserIdentity(email="a@x.com", display_name="Alice")
        row = Transaction(
            id="t1",
            timestamp=datetime(2024, 3, 1, 12, 0),
            user_email="b@x.com",
            name="Bob",
            type="debit",
            amount=Decimal("40"),
            description="Dinner",
            phone="5551234",
            country_code="+1",
        )
        return LedgerEdge.from_row(owner, row)

    def test_owner_row_matches_input(self, edge):
        row = edge.row_for("a@x.com")
        assert row.user_email == "b@x.com"
        assert row.name == "Bob"
        assert row.type == TransactionType.DEBIT
        assert row.phone == "5551234"

    def test_counterparty_row_is_inverted(self, edge):
        """Test the mirrored row points back at the owner with the type flipped."""
        row = edge.row_for("b@x.com")
        assert row.id == "t1"
        assert row.user_email == "a@x.com"
        assert row.name == "Alice"
        assert row.type == TransactionType.CREDIT
        assert row.amount == Decimal("40")
        assert row.description == "Dinner"
        assert row.phone is None
        assert row.country_code is None

    def test_non_party_rejected(self, edge):
        with pytest.raises(ValueError, match="not a party"):
            edge.row_for("c@x.com")

    def test_rows_for_both_parties(self, edge):
        assert set(edge.rows()) == {"a@x.com", "b@x.com"}
        assert not edge.is_self_entry

    def test_self_entry_has_one_row(self):
        owner = UserIdentity(email="a@x.com")
        row = Transaction.create(user_email="a@x.com", type="credit", amount=Decimal("5"))
        edge = LedgerEdge.from_row(owner, row)
        assert edge.is_self_entry
        assert list(edge.rows()) == ["a@x.com"]

    def test_sender_name_falls_back_to_email(self):
        assert UserIdentity(email="a@x.com").sender_name == "a@x.com"


class TestFilterCriteria:
    """Tests for form payload normalization."""

    def test_empty_payload_is_no_criteria(self):
        assert FilterCriteria.from_ui(None) is None
        assert FilterCriteria.from_ui({}) is None

    def test_untouched_form_is_no_criteria(self):
        """Test '' inputs and 'all' dropdowns don't constrain anything."""
        payload = {
            "name": "",
            "email": "  ",
            "type": "all",
            "countryCode": "all",
            "amountMin": "",
            "dateFrom": "",
        }
        assert FilterCriteria.from_ui(payload) is None

    def test_invalid_numbers_and_dates_are_unset(self):
        criteria = FilterCriteria(amountMin="abc", balanceMax="", dateTo="not-a-date")
        assert criteria.amount_min is None
        assert criteria.balance_max is None
        assert criteria.date_to is None
        assert criteria.is_empty

    def test_parses_values(self):
        criteria = FilterCriteria.from_ui({
            "type": "credit",
            "amountMin": "10",
            "balanceMin": 0,
            "dateFrom": "2024-03-01",
            "name": "bo",
        })
        assert criteria.type == TransactionType.CREDIT
        assert criteria.amount_min == Decimal("10")
        assert criteria.balance_min == Decimal("0")
        assert criteria.has_balance_range
        assert criteria.date_from == date(2024, 3, 1)

    def test_zero_is_a_real_bound(self):
        criteria = FilterCriteria(balanceMin="0")
        assert criteria.balance_min == Decimal("0")
        assert not criteria.is_empty

    def test_type_is_case_insensitive(self):
        criteria = FilterCriteria.from_ui({"type": " Credit "})
        assert criteria.type == TransactionType.CREDIT

    def test_unknown_type_is_no_constraint(self):
        """Test an unrecognised type degrades to no filter instead of raising."""
        assert FilterCriteria.from_ui({"type": "pending"}) is None
        assert FilterCriteria(type=3).type is None

    def test_non_string_text_fields_coerced(self):
        criteria = FilterCriteria.from_ui({"phone": 98765, "name": 0, "countryCode": 91})
        assert criteria.phone == "98765"
        assert criteria.name == "0"
        assert criteria.country_code == "91"

    def test_booleans_are_no_constraint(self):
        assert FilterCriteria.from_ui({"description": True, "countryCode": False}) is None

    def test_unknown_keys_ignored(self):
        assert FilterCriteria.from_ui({"sortBy": "amount"}) is None

    def test_active_fields(self):
        criteria = FilterCriteria(type="debit", name="bob")
        assert criteria.active_fields() == {"type": "debit", "name": "bob"}


class TestLedgerTotals:
    def test_balance_and_leading(self):
        totals = LedgerTotals(
            total_credit=Decimal("30"), total_debit=Decimal("50"), transaction_count=2
        )
        assert totals.balance == Decimal("-20")
        assert totals.is_leading is False

    def test_empty_is_square(self):
        totals = LedgerTotals()
        assert totals.balance == 0
        assert totals.is_leading is True


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.TRANSACTION_ADDED,
            description="Transaction added",
        )
        assert event.event_type == AuditEventType.TRANSACTION_ADDED
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEvent(
            event_type=AuditEventType.TRANSACTION_MIRRORED,
            ledger_owner="b@x.com",
            description="Mirrored",
            details={"source_owner": "a@x.com"},
        )
        log_dict = event.to_log_dict()
        assert "event_id" in log_dict
        assert log_dict["event_type"] == "transaction_mirrored"
        assert log_dict["ledger_owner"] == "b@x.com"
        assert log_dict["details"]["source_owner"] == "a@x.com"

    def test_audit_event_to_sheets_row(self):
        """Test conversion to sheets row."""
        event = AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            description="Deleted",
            is_user_action=True,
        )
        row = event.to_sheets_row()
        assert len(row) == 11
        assert row[2] == "transaction_deleted"
        assert row[10] == "True"

    def test_builder_transaction_added(self):
        correlation_id = uuid4()
        event = AuditEventBuilder.transaction_added(
            ledger_owner="a@x.com",
            transaction_id="t1",
            counterparty="b@x.com",
            transaction_type="debit",
            amount="40",
            correlation_id=correlation_id,
        )
        assert event.event_type == AuditEventType.TRANSACTION_ADDED
        assert event.transaction_id == "t1"
        assert event.correlation_id == correlation_id
        assert event.is_user_action is True

    def test_builder_validation_failed_is_warning(self):
        event = AuditEventBuilder.validation_failed(
            ledger_owner="a@x.com",
            transaction_id=None,
            issues=[{"field": "amount"}],
            correlation_id=uuid4(),
        )
        assert event.severity == AuditSeverity.WARNING
        assert "1 issues" in event.description


class TestValidationResult:
    """Tests for ValidationResult model."""

    def test_validation_result_has_errors(self):
        """Test has_errors property."""
        result = ValidationResult(
            schema_valid=False,
            semantic_valid=False,
            is_valid=False,
            issues=[
                ValidationIssue(
                    field="amount",
                    issue_type="missing",
                    message="Amount required",
                    severity="error",
                ),
            ],
        )
        assert result.has_errors is True
        assert result.error_count == 1

    def test_validation_result_warnings_only(self):
        """Test that warnings don't count as errors."""
        result = ValidationResult(
            schema_valid=True,
            semantic_valid=True,
            is_valid=True,
            issues=[
                ValidationIssue(
                    field="timestamp",
                    issue_type="future_date",
                    message="Date in future",
                    severity="warning",
                ),
            ],
            transaction=Transaction.create(
                user_email="b@x.com", type="credit", amount=Decimal("1")
            ),
        )
        assert result.has_errors is False
        assert result.error_count == 0

    def test_valid_result_needs_transaction(self):
        with pytest.raises(ValidationError):
            ValidationResult(schema_valid=True, semantic_valid=True, is_valid=True)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

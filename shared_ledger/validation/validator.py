"""
Two-Stage Transaction Validation

This is the ingestion boundary. Anything that gets past it is a
well-formed Transaction, so the ledger core never re-validates amounts
and never sees a NaN.

STAGE 1 - SCHEMA VALIDATION:
- Required fields (user email, type, amount)
- Amount is a finite number greater than zero
- Type is debit or credit
- Email has a plausible shape

STAGE 2 - SEMANTIC VALIDATION:
- Dated too far in the future
- Absurdly large amounts
- More precision than money has
- Recorded against the owner's own email (no mirror will be written)
- No counterparty name

IMPORTANT: Validation NEVER silently fixes issues.
It reports them; warnings don't block, errors do.
"""

from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional, Union

from pydantic import ValidationError

from shared_ledger.config import get_settings
from shared_ledger.models.transaction import (
    Transaction,
    ValidationIssue,
    ValidationResult,
)


# Friendlier wording for the fields users actually type into
FIELD_MESSAGES = {
    "amount": "Amount must be a number greater than zero",
    "user_email": "Counterparty email is required",
    "type": "Type must be either 'debit' or 'credit'",
    "timestamp": "Date must be a valid date and time",
    "id": "Transaction id must not be empty",
}

FIELD_ALIASES = {
    "userEmail": "user_email",
    "countryCode": "country_code",
    "rowIndex": "row_index",
}


class TransactionValidator:
    """
    Validates transactions before they are written to any ledger.

    Stage 1: Schema validation (builds the Transaction)
    Stage 2: Semantic validation (only if stage 1 passed)
    """

    def __init__(
        self,
        max_amount: Optional[float] = None,
        future_tolerance_days: Optional[int] = None,
    ):
        settings = get_settings().app
        self._max_amount = Decimal(str(
            max_amount if max_amount is not None else settings.max_transaction_amount
        ))
        self._future_tolerance = timedelta(days=(
            future_tolerance_days
            if future_tolerance_days is not None
            else settings.future_date_tolerance_days
        ))

    def _validate_schema(
        self,
        payload: Union[Transaction, Mapping[str, Any]],
    ) -> tuple[Optional[Transaction], list[ValidationIssue]]:
        """
        Stage 1: Schema validation.

        Returns: (transaction_or_None, list_of_issues)
        """
        issues: list[ValidationIssue] = []

        if isinstance(payload, Transaction):
            transaction = payload
        else:
            fields = dict(payload)
            if fields.get("timestamp") in (None, ""):
                fields.pop("timestamp", None)
            try:
                transaction = Transaction.create(**fields)
            except ValidationError as e:
                for error in e.errors():
                    field = str(error["loc"][0]) if error["loc"] else "transaction"
                    field = FIELD_ALIASES.get(field, field)
                    issue_type = "missing" if error["type"] == "missing" else "invalid_value"
                    issues.append(ValidationIssue(
                        field=field,
                        issue_type=issue_type,
                        message=FIELD_MESSAGES.get(field, error["msg"]),
                        severity="error",
                    ))
                return None, issues

        local, _, domain = transaction.user_email.partition("@")
        if not local or "." not in domain:
            issues.append(ValidationIssue(
                field="user_email",
                issue_type="invalid_format",
                message=f"'{transaction.user_email}' is not a valid email address",
                severity="error",
                suggested_fix="Check the counterparty's email for typos",
            ))
            return None, issues

        return transaction, issues

    def _validate_semantic(
        self,
        transaction: Transaction,
        owner_email: str,
    ) -> list[ValidationIssue]:
        """
        Stage 2: Semantic validation.

        Returns: list_of_issues
        """
        issues: list[ValidationIssue] = []

        now = datetime.now(timezone.utc)
        timestamp = transaction.timestamp
        if timestamp.tzinfo is None:
            timestamp = timestamp.astimezone()
        if timestamp > now + self._future_tolerance:
            issues.append(ValidationIssue(
                field="timestamp",
                issue_type="future_date",
                message=f"Transaction date ({transaction.timestamp:%Y-%m-%d}) is in the future",
                severity="warning",
                suggested_fix="Please verify the date is correct",
            ))

        if transaction.amount > self._max_amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message=f"Amount ({transaction.amount:,.2f}) seems unusually high",
                severity="warning",
                suggested_fix="Please verify this amount is correct",
            ))

        exponent = transaction.amount.as_tuple().exponent
        if isinstance(exponent, int) and exponent < -2:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message=f"Amount ({transaction.amount}) has more than two decimal places",
                severity="warning",
            ))

        if transaction.user_email == owner_email:
            issues.append(ValidationIssue(
                field="user_email",
                issue_type="self_entry",
                message="This transaction is recorded against your own email",
                severity="warning",
                suggested_fix="No copy will be written to anyone else's ledger",
            ))

        if not transaction.name:
            issues.append(ValidationIssue(
                field="name",
                issue_type="missing",
                message="No name was given for the counterparty",
                severity="warning",
            ))

        return issues

    def validate(
        self,
        payload: Union[Transaction, Mapping[str, Any]],
        owner_email: str,
    ) -> ValidationResult:
        """
        Run full two-stage validation pipeline.

        Args:
            payload: A Transaction, or the raw fields from a form
            owner_email: Whose ledger the transaction is being written to

        Returns:
            ValidationResult carrying the parsed Transaction when stage 1 passed
        """
        transaction, all_issues = self._validate_schema(payload)
        schema_valid = transaction is not None

        semantic_valid = False
        if transaction is not None:
            semantic_issues = self._validate_semantic(transaction, owner_email)
            all_issues.extend(semantic_issues)
            semantic_valid = not any(i.severity == "error" for i in semantic_issues)

        warnings = [i.message for i in all_issues if i.severity == "warning"]

        return ValidationResult(
            transaction_id=transaction.id if transaction else None,
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            is_valid=schema_valid and semantic_valid,
            issues=all_issues,
            warnings=warnings,
            transaction=transaction,
        )

    def get_user_friendly_summary(self, result: ValidationResult) -> str:
        """
        Generate a short summary of validation results for display.
        """
        if result.is_valid and not result.warnings:
            return "All checks passed."

        lines = []

        if result.has_errors:
            lines.append("This transaction can't be saved:")
            for issue in result.issues:
                if issue.severity == "error":
                    lines.append(f"   • {issue.message}")
                    if issue.suggested_fix:
                        lines.append(f"     {issue.suggested_fix}")

        if result.warnings:
            if lines:
                lines.append("")
            lines.append("Please verify the following:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")

        return "\n".join(lines)

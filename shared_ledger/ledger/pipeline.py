"""
Ledger View Pipeline

Composes the filter engine and the balance calculator in a fixed order:

1. Filter by every criterion except the balance range      -> S1
2. Sort S1 ascending by timestamp                           -> S2
3. Running balances over S2                                 -> S3
4. Balance-range filter over S3                             -> S4
5. Sort S4 descending by timestamp (stable)                 -> view

DESIGN DECISION: balances are computed AFTER step 1, so they describe
the filtered subset's own history, not the full ledger's. Filters
reshape the view and the balance is recomputed within it.
Reordering these steps changes the numbers.
"""

from collections.abc import Mapping, Sequence
from typing import Any, Optional, Union

from pydantic import ValidationError

from shared_ledger.ledger.balance import ZERO, compute_totals, with_running_balances
from shared_ledger.ledger.errors import LedgerValidationError
from shared_ledger.ledger.filters import filter_by_balance, filter_transactions
from shared_ledger.models.transaction import (
    BalancedTransaction,
    FilterCriteria,
    LedgerView,
    Transaction,
)
from shared_ledger.parsing import chronological_key


TransactionLike = Union[Transaction, Mapping[str, Any]]


def coerce_transactions(records: Sequence[TransactionLike]) -> list[Transaction]:
    """
    Accept Transaction objects or raw records (camelCase or snake_case keys).

    Raises:
        LedgerValidationError: If a record is missing timestamp, type or
            user email, or its amount isn't a positive number
    """
    transactions = []
    for index, record in enumerate(records):
        if isinstance(record, Transaction):
            transactions.append(record)
            continue
        try:
            transactions.append(Transaction.model_validate(dict(record)))
        except ValidationError as e:
            fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
            raise LedgerValidationError(
                f"Record {index} is malformed: {', '.join(fields)}",
                record_index=index,
                errors=e.errors(include_url=False),
            ) from e
    return transactions


def sort_chronologically(transactions: Sequence[Transaction]) -> list[Transaction]:
    """Oldest first; rows with equal timestamps keep their relative order."""
    return sorted(transactions, key=lambda t: chronological_key(t.timestamp))


def sort_for_display(entries: Sequence[BalancedTransaction]) -> list[BalancedTransaction]:
    """Newest first; rows with equal timestamps keep their relative order."""
    return sorted(
        entries,
        key=lambda e: chronological_key(e.transaction.timestamp),
        reverse=True,
    )


def build_ledger_view(
    transactions: Sequence[TransactionLike],
    current_user_email: str,
    criteria: Optional[FilterCriteria] = None,
    counterparty: Optional[str] = None,
) -> LedgerView:
    """
    Run the full pipeline for one user's view of their ledger.

    Args:
        transactions: The user's materialized rows, in any order
        current_user_email: The viewer; balances are from their side
        criteria: Active filters, or None for the unfiltered ledger
        counterparty: Restrict balances to one relationship

    Returns:
        LedgerView with entries newest-first
    """
    rows = coerce_transactions(transactions)

    filtered = filter_transactions(rows, criteria)
    chronological = sort_chronologically(filtered)
    balanced = with_running_balances(
        chronological,
        current_user_email,
        counterparty=counterparty,
    )
    closing_balance = balanced[-1].running_balance if balanced else ZERO
    in_balance_range = filter_by_balance(balanced, criteria)
    entries = sort_for_display(in_balance_range)

    return LedgerView(
        current_user_email=current_user_email,
        counterparty=counterparty,
        criteria=criteria,
        entries=entries,
        totals=compute_totals([entry.transaction for entry in entries]),
        closing_balance=closing_balance,
    )

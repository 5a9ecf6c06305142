"""
Running Balance Calculator

Folds a chronologically ordered list of transactions into the current
user's running balance.

SIGN CONVENTION (from the current user's point of view):
- A row expressed from the current user's own perspective:
    debit  -> -amount (the current user owes)
    credit -> +amount (the current user is owed)
- A row expressed from a counterparty's perspective:
    credit -> +amount
    debit  -> -amount

Both branches collapse to "credit adds, debit subtracts", because the
store already inverted `type` when it wrote the counterparty's mirrored
copy. The branches are kept separate so the perspective rule stays
visible where it is applied.

SCOPE: a single scalar accumulator over rows with several counterparties
mixes their balances together. Callers choose explicitly:
- counterparty=None   -> aggregate net position against everyone
- counterparty=email  -> only the relationship with that one person

`balances_by_counterparty` gives every pairwise balance at once.

PRECONDITION: input is sorted ascending by timestamp. This is not
checked; out-of-order input silently gives wrong running balances.
"""

from collections.abc import Sequence
from decimal import Decimal
from typing import Optional

from shared_ledger.models.transaction import (
    BalancedTransaction,
    LedgerTotals,
    Transaction,
    TransactionType,
)


ZERO = Decimal("0")


def same_email(a: Optional[str], b: Optional[str]) -> bool:
    """Email addresses compare case-insensitively."""
    if a is None or b is None:
        return False
    return a.casefold() == b.casefold()


def signed_delta(transaction: Transaction, current_user_email: str) -> Decimal:
    """The change a single row makes to the current user's balance."""
    amount = transaction.amount

    if same_email(transaction.user_email, current_user_email):
        if transaction.type is TransactionType.DEBIT:
            return -amount
        return amount

    # Counterparty's perspective; its type was inverted when mirrored
    if transaction.type is TransactionType.CREDIT:
        return amount
    return -amount


def in_scope(
    transaction: Transaction,
    current_user_email: str,
    counterparty: Optional[str],
) -> bool:
    """Whether a row belongs to the relationship being evaluated."""
    if counterparty is None:
        return True
    return (
        same_email(transaction.user_email, current_user_email)
        or same_email(transaction.user_email, counterparty)
    )


def with_running_balances(
    transactions: Sequence[Transaction],
    current_user_email: str,
    counterparty: Optional[str] = None,
) -> list[BalancedTransaction]:
    """
    Annotate each transaction with the balance right after it.

    Args:
        transactions: Rows in ascending chronological order
        current_user_email: Whose balance is being computed
        counterparty: Restrict to one relationship; rows with anyone
            else are skipped and left out of the result

    Returns:
        The in-scope rows, in input order, each with its running balance
    """
    balance = ZERO
    entries: list[BalancedTransaction] = []

    for transaction in transactions:
        if not in_scope(transaction, current_user_email, counterparty):
            continue
        balance += signed_delta(transaction, current_user_email)
        entries.append(
            BalancedTransaction(transaction=transaction, running_balance=balance)
        )

    return entries


def final_balance(
    transactions: Sequence[Transaction],
    current_user_email: str,
    counterparty: Optional[str] = None,
) -> Decimal:
    """The balance after the last transaction (0 for an empty ledger)."""
    # Order doesn't change a sum, so no sort precondition here
    return sum(
        (
            signed_delta(t, current_user_email)
            for t in transactions
            if in_scope(t, current_user_email, counterparty)
        ),
        ZERO,
    )


def balances_by_counterparty(
    transactions: Sequence[Transaction],
    current_user_email: str,
) -> dict[str, Decimal]:
    """
    Net balance against each counterparty, computed separately.

    Keys are casefolded emails. Rows the current user recorded against
    their own email are grouped under their own address.
    """
    balances: dict[str, Decimal] = {}
    for transaction in transactions:
        key = transaction.user_email.casefold()
        balances[key] = balances.get(key, ZERO) + signed_delta(
            transaction, current_user_email
        )
    return balances


def compute_totals(transactions: Sequence[Transaction]) -> LedgerTotals:
    """Sum credits and debits; the balance is credit minus debit."""
    total_credit = ZERO
    total_debit = ZERO
    for transaction in transactions:
        if transaction.type is TransactionType.CREDIT:
            total_credit += transaction.amount
        else:
            total_debit += transaction.amount

    return LedgerTotals(
        total_credit=total_credit,
        total_debit=total_debit,
        transaction_count=len(transactions),
    )

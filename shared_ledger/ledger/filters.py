"""
Ledger Filter Engine

Narrows a list of transactions to the ones matching every active
predicate in a FilterCriteria. Pure: the input list is never mutated
and the relative order of survivors is preserved.

Ordering is NOT this module's job - the view pipeline re-sorts.
Balance bounds are not applied here either, because balances don't
exist until the running-balance pass has run (see `filter_by_balance`).
"""

from collections.abc import Callable, Sequence
from decimal import Decimal
from typing import Optional

from shared_ledger.models.transaction import (
    BalancedTransaction,
    FilterCriteria,
    Transaction,
)
from shared_ledger.parsing import local_date


Predicate = Callable[[Transaction], bool]


def _contains(haystack: Optional[str], needle: str) -> bool:
    """Case-insensitive substring; a missing field never matches."""
    if not haystack:
        return False
    return needle.casefold() in haystack.casefold()


def _in_range(
    value: Decimal,
    minimum: Optional[Decimal],
    maximum: Optional[Decimal],
) -> bool:
    if minimum is not None and value < minimum:
        return False
    if maximum is not None and value > maximum:
        return False
    return True


def build_predicates(criteria: FilterCriteria) -> list[Predicate]:
    """
    One predicate per active (non-balance) criterion.

    Cheap exact checks come first so most rows are rejected early.
    """
    predicates: list[Predicate] = []

    if criteria.type is not None:
        wanted_type = criteria.type
        predicates.append(lambda t: t.type == wanted_type)

    if criteria.country_code is not None:
        wanted_code = criteria.country_code
        predicates.append(lambda t: t.country_code == wanted_code)

    if criteria.amount_min is not None or criteria.amount_max is not None:
        low, high = criteria.amount_min, criteria.amount_max
        predicates.append(lambda t: _in_range(t.amount, low, high))

    if criteria.date_from is not None or criteria.date_to is not None:
        # Inclusive local days: [date_from 00:00:00.000, date_to 23:59:59.999]
        first, last = criteria.date_from, criteria.date_to

        def in_days(t: Transaction) -> bool:
            day = local_date(t.timestamp)
            if first is not None and day < first:
                return False
            if last is not None and day > last:
                return False
            return True

        predicates.append(in_days)

    if criteria.name is not None:
        name = criteria.name
        predicates.append(lambda t: _contains(t.name, name))

    if criteria.email is not None:
        email = criteria.email
        predicates.append(lambda t: _contains(t.user_email, email))

    if criteria.phone is not None:
        phone = criteria.phone
        predicates.append(lambda t: _contains(t.phone, phone))

    if criteria.description is not None:
        text = criteria.description
        predicates.append(lambda t: _contains(t.description, text))

    return predicates


def matches(transaction: Transaction, criteria: Optional[FilterCriteria]) -> bool:
    """True if a single transaction passes every active predicate."""
    if criteria is None:
        return True
    return all(predicate(transaction) for predicate in build_predicates(criteria))


def filter_transactions(
    transactions: Sequence[Transaction],
    criteria: Optional[FilterCriteria],
) -> list[Transaction]:
    """
    Apply every active predicate (logical AND).

    Args:
        transactions: Rows to filter, in any order
        criteria: Predicates to apply; None means no filtering

    Returns:
        A new list with the surviving rows in their original order
    """
    if criteria is None:
        return list(transactions)

    predicates = build_predicates(criteria)
    if not predicates:
        return list(transactions)

    return [
        transaction
        for transaction in transactions
        if all(predicate(transaction) for predicate in predicates)
    ]


def filter_by_balance(
    entries: Sequence[BalancedTransaction],
    criteria: Optional[FilterCriteria],
) -> list[BalancedTransaction]:
    """
    Keep entries whose running balance lies within
    [balance_min, balance_max]; either bound may be absent.
    """
    if criteria is None or not criteria.has_balance_range:
        return list(entries)

    low, high = criteria.balance_min, criteria.balance_max
    return [
        entry
        for entry in entries
        if _in_range(entry.running_balance, low, high)
    ]

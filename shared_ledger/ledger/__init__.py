"""
Ledger core: filtering, running balances and the view pipeline.

Everything in this package is pure and synchronous. It never touches
storage; callers hand it rows already materialized in memory.
"""

from shared_ledger.ledger.balance import (
    balances_by_counterparty,
    compute_totals,
    final_balance,
    signed_delta,
    with_running_balances,
)
from shared_ledger.ledger.errors import LedgerError, LedgerValidationError
from shared_ledger.ledger.filters import (
    filter_by_balance,
    filter_transactions,
    matches,
)
from shared_ledger.ledger.pipeline import (
    build_ledger_view,
    coerce_transactions,
    sort_chronologically,
    sort_for_display,
)

__all__ = [
    "balances_by_counterparty",
    "build_ledger_view",
    "coerce_transactions",
    "compute_totals",
    "filter_by_balance",
    "filter_transactions",
    "final_balance",
    "LedgerError",
    "LedgerValidationError",
    "matches",
    "signed_delta",
    "sort_chronologically",
    "sort_for_display",
    "with_running_balances",
]

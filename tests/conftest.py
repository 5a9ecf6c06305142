"""Shared fixtures for the ledger tests."""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from shared_ledger.models import Transaction, TransactionType


BASE_TIME = datetime(2024, 3, 1, 12, 0, 0)


def make_transaction(
    amount="100",
    type="credit",
    user_email="a@x.com",
    minutes=0,
    **fields,
) -> Transaction:
    """A row `minutes` after BASE_TIME (naive, so read as local time)."""
    fields.setdefault("timestamp", BASE_TIME + timedelta(minutes=minutes))
    return Transaction(
        amount=Decimal(amount),
        type=TransactionType(type),
        user_email=user_email,
        **fields,
    )


@pytest.fixture
def txn():
    return make_transaction

"""Exceptions raised by the ledger core."""

from typing import Any, Optional


class LedgerError(Exception):
    """Base exception for ledger computations."""
    pass


class LedgerValidationError(LedgerError):
    """
    A record is structurally unusable (missing timestamp, type or
    user email, or an amount that isn't a positive number).
    """

    def __init__(
        self,
        message: str,
        record_index: Optional[int] = None,
        errors: Optional[list[dict[str, Any]]] = None,
    ):
        super().__init__(message)
        self.record_index = record_index
        self.errors = errors or []

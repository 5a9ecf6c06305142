"""Ingestion validation package."""

from shared_ledger.validation.validator import TransactionValidator

__all__ = ["TransactionValidator"]

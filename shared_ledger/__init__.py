"""
Shared Ledger - Source Package

A shared-expense ledger: users record debit/credit transactions against
counterparties and see a running balance for each relationship.

DESIGN PRINCIPLES:
1. Balances are computed, never stored as truth
2. Perspective is a parameter, not state
3. Fail early at ingestion, degrade gracefully when filtering
4. Every write is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Shared Ledger Team"

"""Inventory and credit ledger -- append-only logs behind derived balances.

Provides:
- plan_inventory_change / plan_credit_change: pure decision helpers
- LedgerService: PostgreSQL application of ledger writes inside a caller's transaction
"""

from src.sampling.ledger.schemas import (
    CreditChange,
    CreditTransactionRead,
    CreditTransactionType,
    InventoryChange,
    InventoryTransactionRead,
    InventoryTransactionType,
)
from src.sampling.ledger.service import (
    LedgerService,
    plan_credit_change,
    plan_inventory_change,
)

__all__ = [
    "CreditChange",
    "CreditTransactionRead",
    "CreditTransactionType",
    "InventoryChange",
    "InventoryTransactionRead",
    "InventoryTransactionType",
    "LedgerService",
    "plan_credit_change",
    "plan_inventory_change",
]

"""Pydantic schemas for the inventory and credit ledgers."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel


class InventoryTransactionType(str, Enum):
    """Why an inventory balance changed."""

    INITIAL_SETUP = "initial_setup"
    CORRECTION = "correction"
    SALE = "sale"
    ADJUSTMENT = "adjustment"


class CreditTransactionType(str, Enum):
    """Direction of a credit balance change."""

    EARNED = "earned"
    SPENT = "spent"


class InventoryChange(BaseModel):
    """A decided (not yet persisted) inventory write."""

    sku: str
    previous: int | None
    delta: int
    balance_after: int
    type: InventoryTransactionType


class CreditChange(BaseModel):
    """A decided (not yet persisted) credit balance change."""

    amount: Decimal
    balance_after: Decimal
    type: CreditTransactionType


class InventoryTransactionRead(BaseModel):
    """Persisted inventory transaction row."""

    store_id: str
    sku: str
    type: InventoryTransactionType
    delta: int
    balance_after: int
    notes: str | None = None
    created_at: datetime | None = None


class CreditTransactionRead(BaseModel):
    """Persisted credit transaction row."""

    store_id: str
    amount: Decimal
    type: CreditTransactionType
    reason: str
    related_unit_id: str | None = None
    balance_after: Decimal
    created_at: datetime | None = None

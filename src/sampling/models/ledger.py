"""Ledger persistence models -- derived balances and their append-only logs.

- StoreInventoryModel: current quantities per (store, SKU)
- InventoryTransactionModel: one immutable row per inventory-affecting write
- StoreCreditTransactionModel: one immutable row per credit balance change

Transaction rows are never updated or deleted.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.sampling.core.database import Base

INVENTORY_TRANSACTION_TYPES = ("initial_setup", "correction", "sale", "adjustment")
CREDIT_TRANSACTION_TYPES = ("earned", "spent")


class StoreInventoryModel(Base):
    """On-hand, reserved and available quantity for one SKU at one store."""

    __tablename__ = "store_inventory"
    __table_args__ = (
        UniqueConstraint("store_id", "sku", name="uq_store_inventory_store_sku"),
        CheckConstraint("quantity_on_hand >= 0", name="on_hand_non_negative"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    store_id: Mapped[str] = mapped_column(String(50), nullable=False)
    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    quantity_on_hand: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0")
    )
    quantity_reserved: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0")
    )
    quantity_available: Mapped[int] = mapped_column(
        Integer, default=0, server_default=text("0")
    )
    is_presale: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )


class InventoryTransactionModel(Base):
    """Immutable record of a signed change to StoreInventory.quantity_on_hand."""

    __tablename__ = "inventory_transactions"
    __table_args__ = (
        CheckConstraint(
            "type IN ('initial_setup', 'correction', 'sale', 'adjustment')",
            name="type_valid",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    store_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    delta: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class StoreCreditTransactionModel(Base):
    """Immutable record of a signed change to StoreModel.credit_balance."""

    __tablename__ = "store_credit_transactions"
    __table_args__ = (
        CheckConstraint("type IN ('earned', 'spent')", name="type_valid"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    store_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    type: Mapped[str] = mapped_column(String(10), nullable=False)
    reason: Mapped[str] = mapped_column(String(200), nullable=False)
    related_unit_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    balance_after: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

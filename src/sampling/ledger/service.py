"""Inventory and credit ledger -- derived balances backed by append-only logs.

Decision helpers (plan_inventory_change, plan_credit_change) are pure and
shared by every persistence backend. LedgerService applies them against
PostgreSQL inside the caller's transaction:

- Inventory writes lock the (store, SKU) row with SELECT ... FOR UPDATE before
  computing the delta, then upsert the balance and insert exactly one
  InventoryTransaction. Read, decision and both writes commit or roll back
  together.
- Credit writes are a single conditional UPDATE ... RETURNING on the store
  row followed by the transaction insert; a zero-row update means nothing is
  written.

LedgerService never commits; the owning unit of work does.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from src.sampling.core.errors import LedgerError, NotFoundError
from src.sampling.ledger.schemas import (
    CreditChange,
    CreditTransactionRead,
    CreditTransactionType,
    InventoryChange,
    InventoryTransactionRead,
    InventoryTransactionType,
)
from src.sampling.models.ledger import (
    InventoryTransactionModel,
    StoreCreditTransactionModel,
    StoreInventoryModel,
)
from src.sampling.models.retail import StoreModel

logger = structlog.get_logger(__name__)


# ── Decision Helpers ────────────────────────────────────────────────────────


def plan_inventory_change(
    sku: str,
    previous: int | None,
    target: int,
    transaction_type: InventoryTransactionType,
) -> InventoryChange | None:
    """Decide the ledger write that brings a SKU to the target quantity.

    Args:
        sku: Product SKU.
        previous: Current on-hand quantity, or None if no inventory row exists.
        target: Desired on-hand quantity.
        transaction_type: Reason recorded on the transaction row.

    Returns:
        The change to persist, or None when there is no prior row and the
        target is zero (nothing to record).

    Raises:
        ValueError: If target is negative.
    """
    if target < 0:
        raise ValueError(f"Inventory target for {sku} cannot be negative: {target}")

    delta = target - (previous or 0)
    if previous is None and delta == 0:
        return None

    return InventoryChange(
        sku=sku,
        previous=previous,
        delta=delta,
        balance_after=target,
        type=transaction_type,
    )


def plan_credit_change(
    balance: Decimal,
    amount: Decimal,
    transaction_type: CreditTransactionType,
) -> CreditChange:
    """Decide a credit balance change.

    Args:
        balance: Current credit balance.
        amount: Positive magnitude of the change.
        transaction_type: EARNED adds, SPENT subtracts.

    Raises:
        ValueError: If amount is not positive.
        LedgerError: If spending more than the balance.
    """
    if amount <= 0:
        raise ValueError(f"Credit amount must be positive: {amount}")

    signed = amount if transaction_type == CreditTransactionType.EARNED else -amount
    balance_after = balance + signed
    if balance_after < 0:
        raise LedgerError(
            f"Insufficient credit balance: {balance} available, {amount} requested"
        )
    return CreditChange(amount=signed, balance_after=balance_after, type=transaction_type)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_inventory_txn(model: InventoryTransactionModel) -> InventoryTransactionRead:
    return InventoryTransactionRead(
        store_id=model.store_id,
        sku=model.sku,
        type=InventoryTransactionType(model.type),
        delta=model.delta,
        balance_after=model.balance_after,
        notes=model.notes,
        created_at=model.created_at,
    )


def _model_to_credit_txn(model: StoreCreditTransactionModel) -> CreditTransactionRead:
    return CreditTransactionRead(
        store_id=model.store_id,
        amount=model.amount,
        type=CreditTransactionType(model.type),
        reason=model.reason,
        related_unit_id=model.related_unit_id,
        balance_after=model.balance_after,
        created_at=model.created_at,
    )


# ── Ledger Service ──────────────────────────────────────────────────────────


class LedgerService:
    """Applies ledger writes inside an open transaction on the given session.

    Args:
        session: AsyncSession with an active transaction owned by the caller.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    # ── Inventory ───────────────────────────────────────────────────────────

    async def _lock_inventory_row(
        self, store_id: str, sku: str
    ) -> StoreInventoryModel | None:
        stmt = (
            select(StoreInventoryModel)
            .where(
                StoreInventoryModel.store_id == store_id,
                StoreInventoryModel.sku == sku,
            )
            .with_for_update()
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def _write_inventory(
        self,
        store_id: str,
        change: InventoryChange,
        notes: str | None,
        is_presale: bool,
    ) -> InventoryTransactionRead:
        stmt = pg_insert(StoreInventoryModel).values(
            store_id=store_id,
            sku=change.sku,
            quantity_on_hand=change.balance_after,
            quantity_reserved=0,
            quantity_available=change.balance_after,
            is_presale=is_presale,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[StoreInventoryModel.store_id, StoreInventoryModel.sku],
            set_={
                "quantity_on_hand": stmt.excluded.quantity_on_hand,
                "quantity_available": func.greatest(
                    stmt.excluded.quantity_on_hand - StoreInventoryModel.quantity_reserved,
                    0,
                ),
                "is_presale": stmt.excluded.is_presale,
                "updated_at": func.now(),
            },
        )
        await self._session.execute(stmt)

        txn = InventoryTransactionModel(
            store_id=store_id,
            sku=change.sku,
            type=change.type.value,
            delta=change.delta,
            balance_after=change.balance_after,
            notes=notes,
            created_at=datetime.now(timezone.utc),
        )
        self._session.add(txn)
        await self._session.flush()

        logger.info(
            "ledger.inventory_written",
            store_id=store_id,
            sku=change.sku,
            type=change.type.value,
            delta=change.delta,
            balance_after=change.balance_after,
        )
        return _model_to_inventory_txn(txn)

    async def set_inventory_level(
        self,
        store_id: str,
        sku: str,
        target: int,
        transaction_type: InventoryTransactionType,
        notes: str | None = None,
        is_presale: bool = False,
    ) -> InventoryTransactionRead | None:
        """Bring a SKU's on-hand quantity to target and log the signed delta.

        Returns:
            The transaction row written, or None when skipped (no prior row and
            a zero target).
        """
        row = await self._lock_inventory_row(store_id, sku)
        previous = row.quantity_on_hand if row is not None else None

        change = plan_inventory_change(sku, previous, target, transaction_type)
        if change is None:
            logger.debug("ledger.inventory_noop_skipped", store_id=store_id, sku=sku)
            return None

        return await self._write_inventory(store_id, change, notes, is_presale)

    async def adjust_inventory(
        self,
        store_id: str,
        sku: str,
        delta: int,
        transaction_type: InventoryTransactionType = InventoryTransactionType.ADJUSTMENT,
        notes: str | None = None,
    ) -> InventoryTransactionRead | None:
        """Apply a signed delta (e.g. a sale of -1) to a SKU's on-hand quantity.

        Raises:
            LedgerError: If the resulting on-hand quantity would be negative.
        """
        row = await self._lock_inventory_row(store_id, sku)
        previous = row.quantity_on_hand if row is not None else None
        target = (previous or 0) + delta
        if target < 0:
            raise LedgerError(
                f"Adjustment of {delta} for {sku} at {store_id} would leave "
                f"negative stock ({previous or 0} on hand)"
            )

        change = plan_inventory_change(sku, previous, target, transaction_type)
        if change is None:
            return None
        is_presale = row.is_presale if row is not None else False
        return await self._write_inventory(store_id, change, notes, is_presale)

    async def inventory_history(
        self, store_id: str, sku: str | None = None, limit: int = 100
    ) -> list[InventoryTransactionRead]:
        """Most recent inventory transactions for a store, newest first."""
        stmt = select(InventoryTransactionModel).where(
            InventoryTransactionModel.store_id == store_id
        )
        if sku is not None:
            stmt = stmt.where(InventoryTransactionModel.sku == sku)
        stmt = stmt.order_by(
            InventoryTransactionModel.created_at.desc(),
            InventoryTransactionModel.id.desc(),
        ).limit(limit)
        result = await self._session.execute(stmt)
        return [_model_to_inventory_txn(m) for m in result.scalars().all()]

    # ── Credit ──────────────────────────────────────────────────────────────

    async def _append_credit_txn(
        self,
        store_id: str,
        amount: Decimal,
        transaction_type: CreditTransactionType,
        reason: str,
        related_unit_id: str | None,
        balance_after: Decimal,
    ) -> CreditTransactionRead:
        txn = StoreCreditTransactionModel(
            store_id=store_id,
            amount=amount,
            type=transaction_type.value,
            reason=reason,
            related_unit_id=related_unit_id,
            balance_after=balance_after,
            created_at=datetime.now(timezone.utc),
        )
        self._session.add(txn)
        await self._session.flush()
        logger.info(
            "ledger.credit_written",
            store_id=store_id,
            amount=str(amount),
            type=transaction_type.value,
            balance_after=str(balance_after),
        )
        return _model_to_credit_txn(txn)

    async def grant_credit_once(
        self,
        store_id: str,
        amount: Decimal,
        reason: str,
        related_unit_id: str | None = None,
    ) -> CreditTransactionRead | None:
        """Grant the one-time setup credit.

        The grant flag flip and the balance increment are one conditional
        UPDATE; if the flag was already set no row matches and nothing is
        written.

        Returns:
            The earned transaction, or None if the credit was already granted.
        """
        stmt = (
            update(StoreModel)
            .where(
                StoreModel.store_id == store_id,
                StoreModel.setup_credit_granted.is_(False),
            )
            .values(
                setup_credit_granted=True,
                credit_balance=StoreModel.credit_balance + amount,
            )
            .returning(StoreModel.credit_balance)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        balance_after = result.scalar_one_or_none()
        if balance_after is None:
            logger.info("ledger.setup_credit_already_granted", store_id=store_id)
            return None

        return await self._append_credit_txn(
            store_id,
            amount,
            CreditTransactionType.EARNED,
            reason,
            related_unit_id,
            balance_after,
        )

    async def record_credit(
        self,
        store_id: str,
        amount: Decimal,
        transaction_type: CreditTransactionType,
        reason: str,
        related_unit_id: str | None = None,
    ) -> CreditTransactionRead:
        """Earn or spend credit.

        Raises:
            ValueError: If amount is not positive.
            NotFoundError: If the store does not exist.
            LedgerError: If spending more than the current balance.
        """
        if amount <= 0:
            raise ValueError(f"Credit amount must be positive: {amount}")

        signed = amount if transaction_type == CreditTransactionType.EARNED else -amount
        stmt = update(StoreModel).where(StoreModel.store_id == store_id)
        if transaction_type == CreditTransactionType.SPENT:
            stmt = stmt.where(StoreModel.credit_balance >= amount)
        stmt = (
            stmt.values(credit_balance=StoreModel.credit_balance + signed)
            .returning(StoreModel.credit_balance)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        balance_after = result.scalar_one_or_none()

        if balance_after is None:
            exists = await self._session.scalar(
                select(StoreModel.id).where(StoreModel.store_id == store_id)
            )
            if exists is None:
                raise NotFoundError(f"Store {store_id} not found")
            raise LedgerError(f"Insufficient credit balance at {store_id} for {amount}")

        return await self._append_credit_txn(
            store_id, signed, transaction_type, reason, related_unit_id, balance_after
        )

    async def credit_history(
        self, store_id: str, limit: int = 100
    ) -> list[CreditTransactionRead]:
        """Most recent credit transactions for a store, newest first."""
        stmt = (
            select(StoreCreditTransactionModel)
            .where(StoreCreditTransactionModel.store_id == store_id)
            .order_by(
                StoreCreditTransactionModel.created_at.desc(),
                StoreCreditTransactionModel.id.desc(),
            )
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return [_model_to_credit_txn(m) for m in result.scalars().all()]

"""Unit tests for ledger decision helpers and LedgerService control flow.

Decision helpers are pure. LedgerService is exercised against a mocked
AsyncSession to check which writes it issues; SQL semantics are covered by
the PostgreSQL constraints in the migration.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from src.sampling.core.errors import LedgerError
from src.sampling.ledger.schemas import CreditTransactionType, InventoryTransactionType
from src.sampling.ledger.service import (
    LedgerService,
    plan_credit_change,
    plan_inventory_change,
)
from src.sampling.models.ledger import InventoryTransactionModel, StoreCreditTransactionModel

INITIAL = InventoryTransactionType.INITIAL_SETUP
CORRECTION = InventoryTransactionType.CORRECTION


class TestPlanInventoryChange:
    def test_first_write_records_full_quantity(self):
        change = plan_inventory_change("SKU-1", None, 12, INITIAL)
        assert change is not None
        assert change.delta == 12
        assert change.balance_after == 12
        assert change.type == INITIAL

    def test_correction_records_signed_delta(self):
        change = plan_inventory_change("SKU-1", 12, 9, CORRECTION)
        assert change.delta == -3
        assert change.balance_after == 9

    def test_unchanged_existing_row_still_recorded(self):
        """Verification at activation leaves an audit row even with delta 0."""
        change = plan_inventory_change("SKU-1", 5, 5, CORRECTION)
        assert change is not None
        assert change.delta == 0

    def test_zero_without_prior_row_is_skipped(self):
        assert plan_inventory_change("SKU-1", None, 0, INITIAL) is None

    def test_negative_target_rejected(self):
        with pytest.raises(ValueError, match="negative"):
            plan_inventory_change("SKU-1", 3, -1, CORRECTION)

    def test_balance_equals_sum_of_deltas(self):
        previous = None
        total = 0
        for target in (10, 7, 7, 15, 0):
            change = plan_inventory_change("SKU-1", previous, target, CORRECTION)
            if change is None:
                continue
            total += change.delta
            previous = change.balance_after
            assert total == change.balance_after


class TestPlanCreditChange:
    def test_earned(self):
        change = plan_credit_change(Decimal("5.00"), Decimal("10.00"), CreditTransactionType.EARNED)
        assert change.amount == Decimal("10.00")
        assert change.balance_after == Decimal("15.00")

    def test_spent(self):
        change = plan_credit_change(Decimal("15.00"), Decimal("4.50"), CreditTransactionType.SPENT)
        assert change.amount == Decimal("-4.50")
        assert change.balance_after == Decimal("10.50")

    def test_overspend_rejected(self):
        with pytest.raises(LedgerError, match="Insufficient"):
            plan_credit_change(Decimal("1.00"), Decimal("2.00"), CreditTransactionType.SPENT)

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-1")])
    def test_non_positive_amount_rejected(self, amount):
        with pytest.raises(ValueError):
            plan_credit_change(Decimal("10"), amount, CreditTransactionType.EARNED)


def _session(scalar_result=None) -> MagicMock:
    session = MagicMock()
    result = MagicMock()
    result.scalar_one_or_none.return_value = scalar_result
    session.execute = AsyncMock(return_value=result)
    session.flush = AsyncMock()
    session.scalar = AsyncMock()
    return session


class TestLedgerService:
    @pytest.mark.asyncio
    async def test_zero_target_without_row_writes_nothing(self):
        session = _session(scalar_result=None)

        txn = await LedgerService(session).set_inventory_level("SID-001", "SKU-1", 0, INITIAL)

        assert txn is None
        assert session.execute.await_count == 1  # the row lock only
        session.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_set_level_writes_balance_and_transaction(self):
        existing = MagicMock(quantity_on_hand=4, is_presale=False)
        session = _session(scalar_result=existing)

        txn = await LedgerService(session).set_inventory_level(
            "SID-001", "SKU-1", 10, CORRECTION, notes="verified"
        )

        assert txn.delta == 6
        assert txn.balance_after == 10
        assert txn.notes == "verified"
        assert session.execute.await_count == 2  # lock + upsert
        added = session.add.call_args.args[0]
        assert isinstance(added, InventoryTransactionModel)
        assert added.type == "correction"

    @pytest.mark.asyncio
    async def test_adjustment_below_zero_rejected(self):
        existing = MagicMock(quantity_on_hand=1, is_presale=False)
        session = _session(scalar_result=existing)

        with pytest.raises(LedgerError, match="negative stock"):
            await LedgerService(session).adjust_inventory("SID-001", "SKU-1", -2)
        session.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_grant_credit_once_already_granted(self):
        session = _session(scalar_result=None)

        txn = await LedgerService(session).grant_credit_once(
            "SID-001", Decimal("10.00"), "setup_photo", "D-1"
        )

        assert txn is None
        session.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_grant_credit_once_writes_earned_row(self):
        session = _session(scalar_result=Decimal("10.00"))

        txn = await LedgerService(session).grant_credit_once(
            "SID-001", Decimal("10.00"), "setup_photo", "D-1"
        )

        assert txn.type == CreditTransactionType.EARNED
        assert txn.amount == Decimal("10.00")
        assert txn.balance_after == Decimal("10.00")
        assert txn.related_unit_id == "D-1"

    @pytest.mark.asyncio
    async def test_spend_more_than_balance(self):
        session = _session(scalar_result=None)
        session.scalar.return_value = 1  # store exists

        with pytest.raises(LedgerError):
            await LedgerService(session).record_credit(
                "SID-001", Decimal("50.00"), CreditTransactionType.SPENT, "redemption"
            )


def _compiled(session: MagicMock) -> str:
    stmt = session.execute.await_args.args[0]
    sql = stmt.compile(dialect=postgresql.dialect(), compile_kwargs={"literal_binds": True})
    return " ".join(str(sql).split())


class TestLedgerHistory:
    @pytest.mark.asyncio
    async def test_inventory_history_newest_first(self):
        rows = [
            InventoryTransactionModel(
                store_id="SID-001", sku="SKU-1", type="sale", delta=-2, balance_after=10,
                created_at=datetime(2026, 10, 2, tzinfo=timezone.utc),
            ),
            InventoryTransactionModel(
                store_id="SID-001", sku="SKU-1", type="initial_setup", delta=12,
                balance_after=12, notes="setup",
                created_at=datetime(2026, 10, 1, tzinfo=timezone.utc),
            ),
        ]
        session = _session()
        session.execute.return_value.scalars.return_value.all.return_value = rows

        history = await LedgerService(session).inventory_history("SID-001")

        assert [(t.type, t.delta, t.balance_after) for t in history] == [
            (InventoryTransactionType.SALE, -2, 10),
            (INITIAL, 12, 12),
        ]
        sql = _compiled(session)
        assert "inventory_transactions.store_id = 'SID-001'" in sql
        where = sql.split(" WHERE ")[1].split(" ORDER BY ")[0]
        assert "sku" not in where
        assert (
            "ORDER BY inventory_transactions.created_at DESC, inventory_transactions.id DESC"
            in sql
        )
        assert "LIMIT 100" in sql

    @pytest.mark.asyncio
    async def test_inventory_history_sku_filter_and_limit(self):
        session = _session()
        session.execute.return_value.scalars.return_value.all.return_value = []

        history = await LedgerService(session).inventory_history("SID-001", sku="SKU-1", limit=5)

        assert history == []
        sql = _compiled(session)
        assert "inventory_transactions.sku = 'SKU-1'" in sql
        assert "LIMIT 5" in sql

    @pytest.mark.asyncio
    async def test_credit_history(self):
        rows = [
            StoreCreditTransactionModel(
                store_id="SID-001", amount=Decimal("-4.00"), type="spent",
                reason="redemption", balance_after=Decimal("6.00"),
            ),
            StoreCreditTransactionModel(
                store_id="SID-001", amount=Decimal("10.00"), type="earned",
                reason="setup_photo", related_unit_id="D-1", balance_after=Decimal("10.00"),
            ),
        ]
        session = _session()
        session.execute.return_value.scalars.return_value.all.return_value = rows

        history = await LedgerService(session).credit_history("SID-001", limit=2)

        assert [t.type for t in history] == [
            CreditTransactionType.SPENT,
            CreditTransactionType.EARNED,
        ]
        assert history[1].related_unit_id == "D-1"
        sql = _compiled(session)
        assert "store_credit_transactions.store_id = 'SID-001'" in sql
        assert (
            "ORDER BY store_credit_transactions.created_at DESC, "
            "store_credit_transactions.id DESC" in sql
        )
        assert "LIMIT 2" in sql

"""Shared test doubles for activation tests.

Provides:
- InMemoryActivationRepository: ActivationRepository with the same claim,
  store and ledger rules as the PostgreSQL implementation
- RecordingNotifier: NotificationDispatcher that records every send
- Fixtures for settings, a seeded repository and a valid activation payload
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import pytest

from src.sampling.activation.repository import (
    ActivationRepository,
    CommittedActivation,
    format_store_id,
)
from src.sampling.activation.schemas import ActivationMode, DisplayRead, StoreRead
from src.sampling.activation.transitions import ACTIVATABLE_STATUSES, ActivationPlan
from src.sampling.config import Settings
from src.sampling.core.errors import ConflictError, NotFoundError
from src.sampling.crm.schemas import BrandAccountRead
from src.sampling.ledger.schemas import (
    CreditTransactionRead,
    CreditTransactionType,
    InventoryTransactionRead,
)
from src.sampling.ledger.service import plan_credit_change, plan_inventory_change
from src.sampling.notifications.dispatcher import NotificationDispatcher


# ── In-Memory Test Doubles ───────────────────────────────────────────────────


class InMemoryActivationRepository(ActivationRepository):
    """In-memory ActivationRepository for testing without a database."""

    def __init__(self, prefix: str = "SID-") -> None:
        self.displays: dict[str, DisplayRead] = {}
        self.stores: dict[str, StoreRead] = {}
        self.brands: dict[str, BrandAccountRead] = {}
        self.inventory: dict[tuple[str, str], int] = {}
        self.inventory_log: list[InventoryTransactionRead] = []
        self.credit_log: list[CreditTransactionRead] = []
        self.links: dict[tuple[str, str, str], str] = {}
        self.commits = 0
        self._next_store_number = 1
        self._prefix = prefix

    # ── Seeding ──────────────────────────────────────────────────────────────

    def add_display(self, display_id: str, **fields: Any) -> DisplayRead:
        display = DisplayRead(display_id=display_id, **fields)
        self.displays[display_id] = display
        return display

    def add_store(self, store_id: str, **fields: Any) -> StoreRead:
        fields.setdefault("org_id", "BRAND-1")
        fields.setdefault("store_name", f"Store {store_id}")
        store = StoreRead(store_id=store_id, **fields)
        self.stores[store_id] = store
        return store

    def add_brand(self, org_id: str, **fields: Any) -> BrandAccountRead:
        fields.setdefault("name", f"Brand {org_id}")
        brand = BrandAccountRead(org_id=org_id, **fields)
        self.brands[org_id] = brand
        return brand

    # ── Reads ────────────────────────────────────────────────────────────────

    async def get_display(self, display_id: str) -> DisplayRead | None:
        return self.displays.get(display_id)

    async def store_exists(self, store_id: str) -> bool:
        return store_id in self.stores

    async def get_store(self, store_id: str) -> StoreRead | None:
        return self.stores.get(store_id)

    async def get_brand(self, org_id: str) -> BrandAccountRead | None:
        return self.brands.get(org_id)

    async def reserve_store_id(self) -> str:
        number = self._next_store_number
        self._next_store_number += 1
        return format_store_id(number, self._prefix)

    # ── Writes ───────────────────────────────────────────────────────────────

    def _claimable(self, display: DisplayRead, plan: ActivationPlan) -> bool:
        if display.status != plan.expected_status or display.store_id != plan.expected_store_id:
            return False
        if display.status in ACTIVATABLE_STATUSES:
            return True
        return display.status == "active" and display.store_id not in self.stores

    async def commit_activation(self, plan: ActivationPlan) -> CommittedActivation:
        display = self.displays.get(plan.display_id)
        if display is None or not self._claimable(display, plan):
            raise ConflictError(
                "Display has already been activated",
                store_id=display.store_id if display else None,
            )
        for other in self.displays.values():
            if other.display_id != plan.display_id and other.store_id == plan.store_id:
                raise ConflictError(
                    "Display or store was activated concurrently", store_id=plan.store_id
                )

        fields = {k: v for k, v in plan.store_fields.items() if k in StoreRead.model_fields}
        if plan.mode == ActivationMode.LINK:
            if plan.store_id not in self.stores:
                raise NotFoundError(f"Store {plan.store_id} not found")
            store = self.stores[plan.store_id].model_copy(update=fields)
        else:
            existing = self.stores.get(plan.store_id)
            if existing is not None:
                store = existing.model_copy(update=fields)
            else:
                store = StoreRead(store_id=plan.store_id, **fields)

        # Decide every ledger write before applying anything
        changes = []
        for target in plan.inventory:
            previous = self.inventory.get((plan.store_id, target.sku))
            change = plan_inventory_change(
                target.sku, previous, target.quantity, plan.inventory_reason
            )
            if change is not None:
                changes.append(change)

        self.stores[plan.store_id] = store
        self.displays[plan.display_id] = display.model_copy(
            update={
                "status": "active",
                "store_id": plan.store_id,
                "activated_at": datetime.now(timezone.utc),
                "activation_fingerprint": plan.fingerprint,
                "setup_photo_url": plan.setup_photo_url or display.setup_photo_url,
            }
        )
        transactions = []
        for change in changes:
            self.inventory[(plan.store_id, change.sku)] = change.balance_after
            txn = InventoryTransactionRead(
                store_id=plan.store_id,
                sku=change.sku,
                type=change.type,
                delta=change.delta,
                balance_after=change.balance_after,
                notes=plan.inventory_note,
            )
            self.inventory_log.append(txn)
            transactions.append(txn)

        self.commits += 1
        return CommittedActivation(store=store, inventory_transactions=transactions)

    async def grant_setup_credit(
        self,
        store_id: str,
        amount: Decimal,
        reason: str,
        related_unit_id: str | None = None,
    ) -> CreditTransactionRead | None:
        store = self.stores[store_id]
        if store.setup_credit_granted:
            return None
        change = plan_credit_change(store.credit_balance, amount, CreditTransactionType.EARNED)
        self.stores[store_id] = store.model_copy(
            update={"setup_credit_granted": True, "credit_balance": change.balance_after}
        )
        txn = CreditTransactionRead(
            store_id=store_id,
            amount=change.amount,
            type=change.type,
            reason=reason,
            related_unit_id=related_unit_id,
            balance_after=change.balance_after,
        )
        self.credit_log.append(txn)
        return txn

    async def get_customer_link(
        self, entity_type: str, entity_id: str, brand_org_id: str
    ) -> str | None:
        return self.links.get((entity_type, entity_id, brand_org_id))

    async def save_customer_link(
        self,
        entity_type: str,
        entity_id: str,
        brand_org_id: str,
        external_customer_id: str,
    ) -> None:
        self.links[(entity_type, entity_id, brand_org_id)] = external_customer_id


class RecordingNotifier(NotificationDispatcher):
    """NotificationDispatcher that records (channel, to, template, context)."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str, dict[str, Any]]] = []

    async def send_sms(self, to: str, template: str, context: dict[str, Any]) -> None:
        self.sent.append(("sms", to, template, context))

    async def send_email(self, to: str, template: str, context: dict[str, Any]) -> None:
        self.sent.append(("email", to, template, context))


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def settings() -> Settings:
    return Settings(
        EFFECT_TIMEOUT_SECONDS=1.0,
        CRM_SYNC_DELAY_SECONDS=0,
        STORE_ID_PREFIX="SID-",
        DEFAULT_PROMO_OFFER="20% Off 1st In-Store Purchase",
        SETUP_PHOTO_CREDIT_AMOUNT=Decimal("10.00"),
        PUBLIC_BASE_URL="https://app.example.com",
    )


@pytest.fixture
def repo() -> InMemoryActivationRepository:
    """Repository seeded with one brand and displays in each lifecycle state."""
    repository = InMemoryActivationRepository()
    repository.add_brand(
        "BRAND-1",
        name="Acme Snacks",
        owner_name="Olivia Owner",
        owner_email="owner@acme.example",
        owner_phone="5125550199",
    )
    repository.add_display("D-100", status="inventory", owner_org_id="BRAND-1")
    repository.add_display(
        "D-200", status="sold", owner_org_id="BRAND-9", assigned_org_id="BRAND-1"
    )
    return repository


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def activation_payload() -> dict[str, Any]:
    """A valid camelCase activation form submission for display D-100."""
    return {
        "displayId": "D-100",
        "storeName": "Corner Market",
        "contactName": "Dana Reyes",
        "email": "dana@corner.example",
        "phone": "(512) 555-0100",
        "address": "100 Main St",
        "city": "Austin",
        "state": "TX",
        "zip": "78701",
        "timezone": "America/Chicago",
        "followupDays": [3, 7],
        "pin": "1234",
        "sampleSkus": ["SKU-1", "SKU-2"],
        "productSkus": ["SKU-10"],
        "initialInventory": {"SKU-1": {"quantity": 12}},
    }

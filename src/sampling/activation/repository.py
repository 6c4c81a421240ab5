"""Activation persistence -- abstract repository and PostgreSQL implementation.

commit_activation() is the only write path for the authoritative mutation.
It runs as one transaction:

1. Claim the display with a conditional UPDATE ... RETURNING that only
   matches if the row still has the status/store observed when planning
   (inventory/sold, or active with its linked store missing). Zero rows
   means another request got there first.
2. Create-mode store upsert (keyed by store_id) or link-mode UPDATE.
3. Ledger writes through LedgerService (row-locked, one transaction row per
   changed SKU).

Unique violations (displays.store_id, stores.store_id) surface as
ConflictError; nothing is committed in that case.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable

import structlog
from sqlalchemy import Sequence, and_, exists, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.sampling.activation.schemas import ActivationMode, DisplayRead, StoreRead
from src.sampling.activation.transitions import ACTIVATABLE_STATUSES, ActivationPlan
from src.sampling.config import Settings, get_settings
from src.sampling.core.errors import ConflictError, NotFoundError
from src.sampling.crm.links import SqlCustomerLinkRepository
from src.sampling.crm.schemas import BrandAccountRead
from src.sampling.ledger.schemas import CreditTransactionRead, InventoryTransactionRead
from src.sampling.ledger.service import LedgerService
from src.sampling.models.retail import BrandAccountModel, DisplayModel, StoreModel

logger = structlog.get_logger(__name__)

store_number_seq = Sequence("store_number_seq")


def format_store_id(number: int, prefix: str = "SID-") -> str:
    return f"{prefix}{number:03d}"


@dataclass
class CommittedActivation:
    """Result of a committed activation transaction."""

    store: StoreRead
    inventory_transactions: list[InventoryTransactionRead] = field(default_factory=list)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_display(model: DisplayModel) -> DisplayRead:
    return DisplayRead(
        display_id=model.display_id,
        status=model.status,
        owner_org_id=model.owner_org_id,
        assigned_org_id=model.assigned_org_id,
        store_id=model.store_id,
        activated_at=model.activated_at,
        activation_fingerprint=model.activation_fingerprint,
        setup_photo_url=model.setup_photo_url,
    )


def _model_to_store(model: StoreModel) -> StoreRead:
    return StoreRead(
        store_id=model.store_id,
        org_id=model.org_id,
        store_name=model.store_name,
        contact_name=model.contact_name,
        contact_email=model.contact_email,
        contact_phone=model.contact_phone,
        street_address=model.street_address,
        city=model.city,
        state=model.state,
        zip_code=model.zip_code,
        timezone=model.timezone,
        promo_offer=model.promo_offer,
        followup_days=list(model.followup_days or []),
        available_samples=list(model.available_samples or []),
        available_products=list(model.available_products or []),
        subscription_tier=model.subscription_tier,
        setup_credit_granted=model.setup_credit_granted,
        credit_balance=model.credit_balance,
    )


def _model_to_brand(model: BrandAccountModel) -> BrandAccountRead:
    return BrandAccountRead(
        org_id=model.org_id,
        name=model.name,
        shopify_store_domain=model.shopify_store_domain,
        shopify_access_token_enc=model.shopify_access_token_enc,
        owner_name=model.owner_name,
        owner_email=model.owner_email,
        owner_phone=model.owner_phone,
    )


# ── Abstract Repository ─────────────────────────────────────────────────────


class ActivationRepository(ABC):
    """Storage operations the activation orchestrator depends on."""

    @abstractmethod
    async def get_display(self, display_id: str) -> DisplayRead | None:
        ...

    @abstractmethod
    async def store_exists(self, store_id: str) -> bool:
        ...

    @abstractmethod
    async def get_store(self, store_id: str) -> StoreRead | None:
        ...

    @abstractmethod
    async def get_brand(self, org_id: str) -> BrandAccountRead | None:
        ...

    @abstractmethod
    async def reserve_store_id(self) -> str:
        """Allocate a fresh store id that no other request can receive."""
        ...

    @abstractmethod
    async def commit_activation(self, plan: ActivationPlan) -> CommittedActivation:
        """Apply claim, store write and ledger writes in one transaction.

        Raises:
            ConflictError: The display was claimed concurrently or a unique
                constraint was violated.
            NotFoundError: Link mode target store does not exist.
        """
        ...

    @abstractmethod
    async def grant_setup_credit(
        self,
        store_id: str,
        amount: Decimal,
        reason: str,
        related_unit_id: str | None = None,
    ) -> CreditTransactionRead | None:
        """Grant the one-time setup credit; None if already granted."""
        ...

    @abstractmethod
    async def get_customer_link(
        self, entity_type: str, entity_id: str, brand_org_id: str
    ) -> str | None:
        ...

    @abstractmethod
    async def save_customer_link(
        self,
        entity_type: str,
        entity_id: str,
        brand_org_id: str,
        external_customer_id: str,
    ) -> None:
        ...


# ── PostgreSQL Repository ───────────────────────────────────────────────────


class SqlActivationRepository(ActivationRepository):
    """ActivationRepository backed by PostgreSQL via SQLAlchemy async.

    Each public method opens its own session from the factory; only
    commit_activation() and grant_setup_credit() write.

    Args:
        session_factory: async_sessionmaker bound to the application engine.
        settings: Application settings (defaults to get_settings()).
    """

    def __init__(
        self,
        session_factory: Callable[..., AsyncSession],
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings or get_settings()
        self._links = SqlCustomerLinkRepository(session_factory)

    async def get_display(self, display_id: str) -> DisplayRead | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(DisplayModel).where(DisplayModel.display_id == display_id)
            )
            model = result.scalar_one_or_none()
            return _model_to_display(model) if model is not None else None

    async def store_exists(self, store_id: str) -> bool:
        async with self._session_factory() as session:
            found = await session.scalar(
                select(StoreModel.id).where(StoreModel.store_id == store_id)
            )
            return found is not None

    async def get_store(self, store_id: str) -> StoreRead | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(StoreModel).where(StoreModel.store_id == store_id)
            )
            model = result.scalar_one_or_none()
            return _model_to_store(model) if model is not None else None

    async def get_brand(self, org_id: str) -> BrandAccountRead | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(BrandAccountModel).where(BrandAccountModel.org_id == org_id)
            )
            model = result.scalar_one_or_none()
            return _model_to_brand(model) if model is not None else None

    async def reserve_store_id(self) -> str:
        async with self._session_factory() as session:
            number = await session.scalar(select(store_number_seq.next_value()))
            await session.commit()
        return format_store_id(int(number), self._settings.STORE_ID_PREFIX)

    # ── Activation Transaction ───────────────────────────────────────────────

    async def _claim_display(self, session: AsyncSession, plan: ActivationPlan) -> bool:
        linked_store_missing = ~exists(
            select(StoreModel.id).where(StoreModel.store_id == DisplayModel.store_id)
        )
        claimable = or_(
            DisplayModel.status.in_(ACTIVATABLE_STATUSES),
            and_(DisplayModel.status == "active", linked_store_missing),
        )
        observed = [DisplayModel.status == plan.expected_status]
        if plan.expected_store_id is None:
            observed.append(DisplayModel.store_id.is_(None))
        else:
            observed.append(DisplayModel.store_id == plan.expected_store_id)

        values = {
            "status": "active",
            "store_id": plan.store_id,
            "activated_at": func.now(),
            "activation_fingerprint": plan.fingerprint,
        }
        if plan.setup_photo_url:
            values["setup_photo_url"] = plan.setup_photo_url

        stmt = (
            update(DisplayModel)
            .where(DisplayModel.display_id == plan.display_id, claimable, *observed)
            .values(**values)
            .returning(DisplayModel.display_id)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def _create_store(self, session: AsyncSession, plan: ActivationPlan) -> None:
        fields = dict(plan.store_fields)
        stmt = pg_insert(StoreModel).values(store_id=plan.store_id, **fields)
        stmt = stmt.on_conflict_do_update(
            index_elements=[StoreModel.store_id],
            set_={**{k: stmt.excluded[k] for k in fields}, "updated_at": func.now()},
        )
        await session.execute(stmt)

    async def _link_store(self, session: AsyncSession, plan: ActivationPlan) -> None:
        stmt = (
            update(StoreModel)
            .where(StoreModel.store_id == plan.store_id)
            .values(**plan.store_fields, updated_at=func.now())
            .returning(StoreModel.store_id)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        if result.scalar_one_or_none() is None:
            raise NotFoundError(f"Store {plan.store_id} not found")

    async def commit_activation(self, plan: ActivationPlan) -> CommittedActivation:
        transactions: list[InventoryTransactionRead] = []
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    if not await self._claim_display(session, plan):
                        current = await session.scalar(
                            select(DisplayModel.store_id).where(
                                DisplayModel.display_id == plan.display_id
                            )
                        )
                        raise ConflictError(
                            "Display has already been activated",
                            store_id=current,
                        )

                    if plan.mode == ActivationMode.CREATE:
                        await self._create_store(session, plan)
                    else:
                        await self._link_store(session, plan)

                    ledger = LedgerService(session)
                    for target in plan.inventory:
                        txn = await ledger.set_inventory_level(
                            plan.store_id,
                            target.sku,
                            target.quantity,
                            plan.inventory_reason,
                            notes=plan.inventory_note,
                            is_presale=target.is_presale,
                        )
                        if txn is not None:
                            transactions.append(txn)

                    result = await session.execute(
                        select(StoreModel)
                        .where(StoreModel.store_id == plan.store_id)
                        .execution_options(populate_existing=True)
                    )
                    store = _model_to_store(result.scalar_one())
        except IntegrityError as exc:
            logger.warning(
                "activation.commit_conflict",
                display_id=plan.display_id,
                store_id=plan.store_id,
                error=str(exc.orig),
            )
            raise ConflictError(
                "Display or store was activated concurrently",
                store_id=plan.store_id,
            ) from exc

        logger.info(
            "activation.committed",
            display_id=plan.display_id,
            store_id=plan.store_id,
            mode=plan.mode.value,
            inventory_transactions=len(transactions),
        )
        return CommittedActivation(store=store, inventory_transactions=transactions)

    # ── Post-commit Writes ───────────────────────────────────────────────────

    async def grant_setup_credit(
        self,
        store_id: str,
        amount: Decimal,
        reason: str,
        related_unit_id: str | None = None,
    ) -> CreditTransactionRead | None:
        async with self._session_factory() as session:
            async with session.begin():
                return await LedgerService(session).grant_credit_once(
                    store_id, amount, reason, related_unit_id
                )

    async def get_customer_link(
        self, entity_type: str, entity_id: str, brand_org_id: str
    ) -> str | None:
        return await self._links.get_link(entity_type, entity_id, brand_org_id)

    async def save_customer_link(
        self,
        entity_type: str,
        entity_id: str,
        brand_org_id: str,
        external_customer_id: str,
    ) -> None:
        await self._links.save_link(
            entity_type, entity_id, brand_org_id, external_customer_id
        )

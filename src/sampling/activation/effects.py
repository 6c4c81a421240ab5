"""Post-commit activation side effects.

Effects are plain descriptors built by plan_effects() once the activation has
committed, then executed by EffectRunner. Each effect runs under its own
timeout and its own try/except: a failure or timeout becomes an
EffectOutcome, never an exception, and never changes the activation result.

Delivery is at-least-once. A client retry after a partial failure that
re-runs the activation may re-send notifications. An identical retry of a
committed activation re-runs only REPLAYABLE_EFFECTS, so a setup credit or
CRM tag sync that failed the first time is applied by the retry.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Union

import structlog

from src.sampling.activation.repository import ActivationRepository
from src.sampling.activation.schemas import (
    ActivationRequest,
    EffectOutcome,
    EffectStatus,
    StoreRead,
)
from src.sampling.config import Settings, get_settings
from src.sampling.core.monitoring import track_effect
from src.sampling.crm.schemas import BrandAccountRead, SyncOutcome
from src.sampling.crm.sync import CustomerSyncService, is_failure
from src.sampling.notifications.dispatcher import NotificationDispatcher

logger = structlog.get_logger(__name__)

STORE_ENTITY = "store"


# ── Effect Descriptors ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class CrmTagSyncEffect:
    """Tag the brand's CRM customer linked to the store with activation facts."""

    brand_org_id: str
    store_id: str
    display_id: str
    state: str
    activated_at: datetime
    customer_id: str | None = None
    name: str = "crm_tag_sync"

    @property
    def tags(self) -> list[str]:
        return [
            f"store:{self.store_id}",
            f"display:{self.display_id}",
            f"state:{self.state}",
            "status:active",
            f"activated:{self.activated_at.date().isoformat()}",
        ]


@dataclass(frozen=True)
class SetupCreditEffect:
    """Grant the one-time setup credit when a setup photo was supplied."""

    store_id: str
    display_id: str
    amount: Decimal
    setup_photo_url: str | None = None
    name: str = "setup_credit"


@dataclass(frozen=True)
class NotificationEffect:
    """One templated message on one channel to one recipient."""

    channel: str
    audience: str
    to: str | None
    template: str
    context: dict[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return f"notify_{self.audience}_{self.channel}"


Effect = Union[CrmTagSyncEffect, SetupCreditEffect, NotificationEffect]

# Re-run on an identical retry: the credit is guarded by the store flag and the
# tag merge converges. Notifications are not repeated.
REPLAYABLE_EFFECTS: tuple[type, ...] = (CrmTagSyncEffect, SetupCreditEffect)


def plan_effects(
    request: ActivationRequest,
    store: StoreRead,
    brand: BrandAccountRead,
    display_id: str,
    activated_at: datetime,
    settings: Settings | None = None,
) -> list[Effect]:
    """Build the ordered list of side effects for a committed activation."""
    settings = settings or get_settings()
    effects: list[Effect] = [
        CrmTagSyncEffect(
            brand_org_id=brand.org_id,
            store_id=store.store_id,
            display_id=display_id,
            state=store.state or request.state,
            activated_at=activated_at,
            customer_id=request.shopify_customer_id,
        ),
        SetupCreditEffect(
            store_id=store.store_id,
            display_id=display_id,
            amount=settings.SETUP_PHOTO_CREDIT_AMOUNT,
            setup_photo_url=request.setup_photo_url,
        ),
    ]

    context = {
        "brand_name": brand.name,
        "store_id": store.store_id,
        "store_name": store.store_name,
        "contact_name": store.contact_name or request.contact_name,
        "contact_phone": store.contact_phone or request.phone,
        "display_id": display_id,
        "city": store.city,
        "state": store.state,
        "promo_offer": store.promo_offer,
        "followup_days": list(store.followup_days),
        "timezone": store.timezone,
        "dashboard_url": f"{settings.PUBLIC_BASE_URL.rstrip('/')}/store/{store.store_id}",
    }

    contact_email = store.contact_email or request.email
    contact_phone = store.contact_phone or request.phone
    effects.append(
        NotificationEffect("sms", "store", contact_phone, "activation.store.sms", context)
    )
    effects.append(
        NotificationEffect("email", "store", contact_email, "activation.store.email", context)
    )

    owner_context = {**context, "owner_name": brand.owner_name or "Brand Owner"}
    if brand.owner_phone:
        effects.append(
            NotificationEffect(
                "sms", "brand_owner", brand.owner_phone, "activation.brand_owner.sms", owner_context
            )
        )
    if brand.owner_email:
        effects.append(
            NotificationEffect(
                "email",
                "brand_owner",
                brand.owner_email,
                "activation.brand_owner.email",
                owner_context,
            )
        )
    return effects


# ── Effect Runner ───────────────────────────────────────────────────────────


class EffectRunner:
    """Executes effects sequentially, isolating each one.

    Args:
        repository: Activation repository (credit grants, customer links).
        notifier: Notification dispatcher.
        crm_sync: Customer sync service, or None when CRM is disabled.
        settings: Application settings (defaults to get_settings()).
    """

    def __init__(
        self,
        repository: ActivationRepository,
        notifier: NotificationDispatcher,
        crm_sync: CustomerSyncService | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._repo = repository
        self._notifier = notifier
        self._crm_sync = crm_sync
        self._settings = settings or get_settings()

    async def run(
        self, effects: list[Effect], brand: BrandAccountRead
    ) -> list[EffectOutcome]:
        outcomes: list[EffectOutcome] = []
        for effect in effects:
            outcomes.append(await self._run_one(effect, brand))
        return outcomes

    async def _run_one(self, effect: Effect, brand: BrandAccountRead) -> EffectOutcome:
        try:
            async with track_effect(effect.name) as tracker:
                try:
                    outcome = await asyncio.wait_for(
                        self._dispatch(effect, brand),
                        timeout=self._settings.EFFECT_TIMEOUT_SECONDS,
                    )
                except asyncio.TimeoutError:
                    outcome = EffectOutcome(
                        name=effect.name,
                        status=EffectStatus.SKIPPED,
                        detail="Timed out",
                    )
                tracker["status"] = outcome.status.value
        except Exception as exc:
            logger.error(
                "activation.effect_failed",
                effect=effect.name,
                error=str(exc),
            )
            return EffectOutcome(name=effect.name, status=EffectStatus.FAILED, detail=str(exc))

        log = logger.warning if outcome.status == EffectStatus.FAILED else logger.info
        log(
            "activation.effect_complete",
            effect=effect.name,
            status=outcome.status.value,
            detail=outcome.detail,
        )
        return outcome

    async def _dispatch(self, effect: Effect, brand: BrandAccountRead) -> EffectOutcome:
        if isinstance(effect, CrmTagSyncEffect):
            return await self._sync_crm_tags(effect, brand)
        if isinstance(effect, SetupCreditEffect):
            return await self._grant_setup_credit(effect)
        return await self._notify(effect)

    # ── Handlers ─────────────────────────────────────────────────────────────

    async def _sync_crm_tags(
        self, effect: CrmTagSyncEffect, brand: BrandAccountRead
    ) -> EffectOutcome:
        if self._crm_sync is None:
            return EffectOutcome(
                name=effect.name, status=EffectStatus.SKIPPED, detail="CRM integration disabled"
            )

        customer_id = effect.customer_id
        if customer_id:
            await self._repo.save_customer_link(
                STORE_ENTITY, effect.store_id, effect.brand_org_id, customer_id
            )
        else:
            customer_id = await self._repo.get_customer_link(
                STORE_ENTITY, effect.store_id, effect.brand_org_id
            )
        if not customer_id:
            return EffectOutcome(
                name=effect.name, status=EffectStatus.SKIPPED, detail="No linked CRM customer"
            )

        result = await self._crm_sync.sync_activation_tags(
            brand,
            customer_id,
            effect.tags,
            note=f"Display {effect.display_id} activated at store {effect.store_id}",
        )
        if result.success:
            await self._crm_sync.record_event(
                brand, customer_id, f"Display {effect.display_id} activated"
            )
        return _from_sync_outcome(effect.name, result)

    async def _grant_setup_credit(self, effect: SetupCreditEffect) -> EffectOutcome:
        if not effect.setup_photo_url:
            return EffectOutcome(
                name=effect.name, status=EffectStatus.SKIPPED, detail="No setup photo"
            )
        txn = await self._repo.grant_setup_credit(
            effect.store_id,
            effect.amount,
            reason="setup_photo",
            related_unit_id=effect.display_id,
        )
        if txn is None:
            return EffectOutcome(
                name=effect.name, status=EffectStatus.SKIPPED, detail="Already granted"
            )
        return EffectOutcome(
            name=effect.name,
            status=EffectStatus.OK,
            detail=f"Granted {txn.amount}, balance {txn.balance_after}",
        )

    async def _notify(self, effect: NotificationEffect) -> EffectOutcome:
        if not effect.to:
            return EffectOutcome(
                name=effect.name, status=EffectStatus.SKIPPED, detail="No recipient"
            )
        if effect.channel == "sms":
            await self._notifier.send_sms(effect.to, effect.template, effect.context)
        else:
            await self._notifier.send_email(effect.to, effect.template, effect.context)
        return EffectOutcome(name=effect.name, status=EffectStatus.OK)


def _from_sync_outcome(name: str, result: SyncOutcome) -> EffectOutcome:
    if result.success:
        return EffectOutcome(name=name, status=EffectStatus.OK, detail=result.external_id)
    status = EffectStatus.FAILED if is_failure(result) else EffectStatus.SKIPPED
    return EffectOutcome(name=name, status=status, detail=result.error)

"""Display activation orchestrator.

Turns a display unit into a live store:

1. Validate the request (field-level errors, no mutation)
2. Load the display and resolve its brand
3. Idempotency guard (replay / conflict / re-entry)
4. Resolve the store (link to an existing one, or create under a reserved id)
5-6. Commit claim + store + ledger in one transaction
7. Best-effort side effects (CRM tags, setup credit, notifications)

Steps 1-6 either all apply or none do. Step 7 is reported per effect and
never changes the outcome.
"""

from __future__ import annotations

from datetime import datetime, timezone

import structlog

from src.sampling.activation.effects import REPLAYABLE_EFFECTS, EffectRunner, plan_effects
from src.sampling.activation.repository import ActivationRepository
from src.sampling.activation.schemas import (
    ActivationMode,
    ActivationReport,
    ActivationRequest,
    DisplayRead,
    EffectOutcome,
)
from src.sampling.activation.transitions import (
    Replay,
    fingerprint,
    guard_activation,
    needs_new_store_id,
    plan_activation,
    resolve_brand,
)
from src.sampling.activation.validation import validate_activation_request
from src.sampling.config import Settings, get_settings
from src.sampling.core.errors import (
    ActivationCoreError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from src.sampling.core.monitoring import activations_total
from src.sampling.crm.schemas import BrandAccountRead

logger = structlog.get_logger(__name__)

_RESULT_LABELS: tuple[tuple[type[ActivationCoreError], str], ...] = (
    (ValidationError, "invalid"),
    (NotFoundError, "not_found"),
    (ConflictError, "conflict"),
)


class ActivationOrchestrator:
    """Runs display activations against a repository and effect runner.

    Args:
        repository: Persistence for displays, stores, brands and ledgers.
        effects: Runner for post-commit side effects.
        settings: Application settings (defaults to get_settings()).
    """

    def __init__(
        self,
        repository: ActivationRepository,
        effects: EffectRunner,
        settings: Settings | None = None,
    ) -> None:
        self._repo = repository
        self._effects = effects
        self._settings = settings or get_settings()

    async def activate(self, request: ActivationRequest) -> ActivationReport:
        """Activate the display named in the request.

        Returns:
            ActivationReport with the resolved store and per-effect outcomes.

        Raises:
            ValidationError: Missing or malformed fields.
            NotFoundError: Display, brand or link-mode store does not exist.
            ConflictError: Display already active with a live store.
        """
        structlog.contextvars.bind_contextvars(display_id=request.display_id)
        mode = "link" if request.existing_store_id else "create"
        try:
            report = await self._activate(request)
        except ActivationCoreError as exc:
            label = next(
                (name for kind, name in _RESULT_LABELS if isinstance(exc, kind)),
                "error",
            )
            activations_total.labels(mode=mode, result=label).inc()
            logger.warning(
                "activation.rejected",
                display_id=request.display_id,
                result=label,
                error=exc.message,
            )
            raise
        except Exception:
            activations_total.labels(mode=mode, result="error").inc()
            raise
        finally:
            structlog.contextvars.unbind_contextvars("display_id")

        activations_total.labels(
            mode=report.mode.value,
            result="replayed" if report.replayed else "success",
        ).inc()
        return report

    async def _activate(self, request: ActivationRequest) -> ActivationReport:
        validate_activation_request(request)

        display = await self._repo.get_display(request.display_id)
        if display is None:
            raise NotFoundError(f"Display {request.display_id} not found")

        brand_org_id = resolve_brand(display)
        brand = await self._repo.get_brand(brand_org_id)
        if brand is None:
            raise NotFoundError(f"Brand {brand_org_id} not found")

        linked_store_exists = bool(
            display.store_id and await self._repo.store_exists(display.store_id)
        )
        replay = guard_activation(display, fingerprint(request), linked_store_exists)
        if replay is not None:
            return await self._replay_report(replay, request, display, brand)

        if request.existing_store_id and not await self._repo.store_exists(
            request.existing_store_id
        ):
            raise NotFoundError(f"Store {request.existing_store_id} not found")

        reserved_store_id = None
        if needs_new_store_id(display, request):
            reserved_store_id = await self._repo.reserve_store_id()

        plan = plan_activation(
            display,
            request,
            brand_org_id=brand_org_id,
            linked_store_exists=linked_store_exists,
            reserved_store_id=reserved_store_id,
            default_promo_offer=self._settings.DEFAULT_PROMO_OFFER,
        )
        if isinstance(plan, Replay):
            return await self._replay_report(plan, request, display, brand)

        committed = await self._repo.commit_activation(plan)
        activated_at = datetime.now(timezone.utc)

        effects = plan_effects(
            request,
            committed.store,
            brand,
            display.display_id,
            activated_at,
            settings=self._settings,
        )
        outcomes = await self._effects.run(effects, brand)

        logger.info(
            "activation.completed",
            display_id=display.display_id,
            store_id=committed.store.store_id,
            mode=plan.mode.value,
            re_entry=display.status == "active",
            effects={o.name: o.status.value for o in outcomes},
        )
        return ActivationReport(
            store_id=committed.store.store_id,
            store_name=committed.store.store_name,
            mode=plan.mode,
            inventory_transactions=len(committed.inventory_transactions),
            effects=outcomes,
        )

    async def _replay_report(
        self,
        replay: Replay,
        request: ActivationRequest,
        display: DisplayRead,
        brand: BrandAccountRead,
    ) -> ActivationReport:
        """Answer an identical retry without re-committing.

        Idempotent effects are run again so that ones which failed on the
        first attempt still get applied.
        """
        store = await self._repo.get_store(replay.store_id)
        outcomes: list[EffectOutcome] = []
        if store is not None:
            effects = plan_effects(
                request,
                store,
                brand,
                display.display_id,
                display.activated_at or datetime.now(timezone.utc),
                settings=self._settings,
            )
            outcomes = await self._effects.run(
                [e for e in effects if isinstance(e, REPLAYABLE_EFFECTS)], brand
            )
        logger.info(
            "activation.replayed",
            display_id=request.display_id,
            store_id=replay.store_id,
            effects={o.name: o.status.value for o in outcomes},
        )
        return ActivationReport(
            store_id=replay.store_id,
            store_name=store.store_name if store else request.store_name,
            mode=ActivationMode.LINK if request.existing_store_id else ActivationMode.CREATE,
            replayed=True,
            message="Display already activated with this request",
            effects=outcomes,
        )

"""Customer sync between local stores and brand Shopify accounts.

Search by email -> update if the customer exists -> create if not. Every
operation returns a SyncOutcome instead of raising: a CRM outage must never
fail the caller (activation has already committed by the time it syncs).

Key behaviours:
- One search round trip per sync; the matched id is persisted as a link
- Managed tags are replaced per writer: entity sync and activation each
  rewrite only the prefixes they own, everything else is kept
- Notes are only ever appended to
- Multi-brand fan-out is sequential with a fixed delay between brands to stay
  under Shopify's REST rate limit
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Awaitable, Callable

import httpx
import structlog
from sqlalchemy.exc import SQLAlchemyError

from src.sampling.config import Settings, get_settings
from src.sampling.core.errors import ConfigurationError, ExternalSyncError
from src.sampling.core.monitoring import crm_sync_total
from src.sampling.crm.adapter import CRMAdapter
from src.sampling.crm.links import CustomerLinkRepository
from src.sampling.crm.schemas import (
    BrandAccountRead,
    BrandSyncResult,
    BrandSyncSummary,
    CrmEntity,
    CustomerCreate,
    CustomerStage,
    CustomerUpdate,
    Metafield,
    SyncAction,
    SyncOutcome,
)
from src.sampling.crm.tags import (
    ACTIVATION_TAG_PREFIXES,
    ENTITY_TAG_PREFIXES,
    append_event,
    append_note,
    apply_stage_tag,
    merge_tags,
)

logger = structlog.get_logger(__name__)

AdapterFactory = Callable[[BrandAccountRead], CRMAdapter]

ACTIVITY_LOG_KEY = "activity_log"

NO_EMAIL = "No email address"
NOT_CONFIGURED = "CRM not configured"
TIMED_OUT = "CRM timeout"
_SKIP_REASONS = frozenset({NO_EMAIL, NOT_CONFIGURED, TIMED_OUT})

# Errors a CRM call may raise that are reported as a failed outcome
_SYNC_ERRORS = (httpx.HTTPError, ExternalSyncError, KeyError, ValueError)


def is_failure(outcome: SyncOutcome) -> bool:
    """True when a CRM call errored, as opposed to being skipped on purpose."""
    return not outcome.success and outcome.error not in _SKIP_REASONS


def entity_tags(entity: CrmEntity) -> list[str]:
    """Full managed tag set describing the entity's current snapshot."""
    tags = ["wholesale", f"tier:{entity.subscription_tier}"]
    if entity.state:
        tags.append(f"state:{entity.state}")
    if entity.city:
        tags.append(f"city:{entity.city}")
    tags.append(f"store:{entity.entity_id}")
    tags.append("sampling:active")
    return tags


def _split_name(entity: CrmEntity) -> tuple[str, str]:
    if not entity.contact_name:
        return entity.display_name, ""
    first, _, last = entity.contact_name.strip().partition(" ")
    return first, last.strip()


class CustomerSyncService:
    """Mirrors local entities into brand CRMs.

    Args:
        adapter_factory: Builds a CRMAdapter for a brand. Raises
            ConfigurationError when the brand cannot be connected.
        links: Storage for entity -> external customer id links.
        settings: Application settings (defaults to get_settings()).
    """

    def __init__(
        self,
        adapter_factory: AdapterFactory,
        links: CustomerLinkRepository,
        settings: Settings | None = None,
    ) -> None:
        self._adapter_factory = adapter_factory
        self._links = links
        self._settings = settings or get_settings()

    def _metafields(self, entity: CrmEntity, now: datetime) -> list[Metafield]:
        namespace = self._settings.CRM_METAFIELD_NAMESPACE
        return [
            Metafield(namespace=namespace, key="store_id", value=entity.entity_id),
            Metafield(
                namespace=namespace,
                key="subscription_tier",
                value=entity.subscription_tier,
            ),
            Metafield(namespace=namespace, key="last_sync", value=now.isoformat()),
        ]

    def _adapter_for(self, brand: BrandAccountRead) -> CRMAdapter | None:
        if not brand.has_crm_credentials:
            return None
        try:
            return self._adapter_factory(brand)
        except ConfigurationError as exc:
            logger.warning(
                "crm.adapter_unavailable",
                brand_org_id=brand.org_id,
                error=str(exc),
            )
            return None

    # ── Entity Sync ──────────────────────────────────────────────────────────

    async def sync_entity(
        self, entity: CrmEntity, brand: BrandAccountRead
    ) -> SyncOutcome:
        """Search-or-create the entity as a customer in the brand's CRM.

        Args:
            entity: Local record to mirror.
            brand: Brand account whose CRM receives the record.

        Returns:
            SyncOutcome. Missing email or credentials and timeouts produce
            action=skipped; HTTP and CRM errors produce success=False.
        """
        if not entity.email:
            logger.warning(
                "crm.sync_skipped_no_email",
                entity_id=entity.entity_id,
                brand_org_id=brand.org_id,
            )
            return self._count(
                SyncOutcome(action=SyncAction.SKIPPED, success=False, error=NO_EMAIL)
            )

        adapter = self._adapter_for(brand)
        if adapter is None:
            return self._count(
                SyncOutcome(
                    action=SyncAction.SKIPPED,
                    success=False,
                    error=NOT_CONFIGURED,
                )
            )

        try:
            matches = await adapter.search_customers("email", entity.email)
            if matches:
                outcome = await self._update_existing(adapter, entity, matches[0].id)
            else:
                outcome = await self._create_new(adapter, entity)
        except (httpx.TimeoutException, asyncio.TimeoutError) as exc:
            logger.warning(
                "crm.sync_timeout",
                entity_id=entity.entity_id,
                brand_org_id=brand.org_id,
                error=str(exc),
            )
            return self._count(
                SyncOutcome(action=SyncAction.SKIPPED, success=False, error=TIMED_OUT)
            )
        except _SYNC_ERRORS as exc:
            logger.error(
                "crm.sync_error",
                entity_id=entity.entity_id,
                brand_org_id=brand.org_id,
                error=str(exc),
            )
            return self._count(
                SyncOutcome(action=SyncAction.SKIPPED, success=False, error=str(exc))
            )

        if outcome.external_id:
            try:
                await self._links.save_link(
                    entity.entity_type, entity.entity_id, brand.org_id, outcome.external_id
                )
            except SQLAlchemyError as exc:
                logger.error(
                    "crm.link_save_failed",
                    entity_id=entity.entity_id,
                    brand_org_id=brand.org_id,
                    error=str(exc),
                )
        logger.info(
            "crm.sync_complete",
            entity_id=entity.entity_id,
            brand_org_id=brand.org_id,
            action=outcome.action.value,
            external_id=outcome.external_id,
        )
        return self._count(outcome)

    async def _update_existing(
        self, adapter: CRMAdapter, entity: CrmEntity, customer_id: str
    ) -> SyncOutcome:
        now = datetime.now(timezone.utc)
        existing = await adapter.get_customer(customer_id)
        current_tags = existing.tags if existing else []
        current_note = existing.note if existing else ""

        line = (
            f"Sampling update | Store: {entity.entity_id} | {entity.display_name} | "
            f"Tier: {entity.subscription_tier} | Location: {entity.city}, {entity.state}"
        )
        await adapter.update_customer(
            customer_id,
            CustomerUpdate(
                tags=merge_tags(current_tags, entity_tags(entity), ENTITY_TAG_PREFIXES),
                note=append_note(current_note, line, now=now),
                metafields=self._metafields(entity, now),
            ),
        )
        return SyncOutcome(action=SyncAction.UPDATED, external_id=customer_id)

    async def _create_new(self, adapter: CRMAdapter, entity: CrmEntity) -> SyncOutcome:
        now = datetime.now(timezone.utc)
        first_name, last_name = _split_name(entity)
        note = "\n".join(
            [
                f"Sampling store: {entity.entity_id}",
                f"Business: {entity.display_name}",
                f"City: {entity.city}, {entity.state}",
                f"Tier: {entity.subscription_tier}",
                f"Created: {now.isoformat()}",
            ]
        )
        created = await adapter.create_customer(
            CustomerCreate(
                email=entity.email or "",
                phone=entity.phone,
                first_name=first_name,
                last_name=last_name,
                tags=entity_tags(entity),
                note=note,
                metafields=self._metafields(entity, now),
                tax_exempt=True,
            )
        )
        return SyncOutcome(action=SyncAction.CREATED, external_id=created.id)

    @staticmethod
    def _count(outcome: SyncOutcome) -> SyncOutcome:
        label = "failed" if is_failure(outcome) else outcome.action.value
        crm_sync_total.labels(action=label).inc()
        return outcome

    async def sync_entity_to_brands(
        self, entity: CrmEntity, brands: list[BrandAccountRead]
    ) -> BrandSyncSummary:
        """Sync one entity into several brand CRMs, one brand at a time.

        A fixed CRM_SYNC_DELAY_SECONDS pause separates consecutive brands.
        """
        summary = BrandSyncSummary(total=len(brands))

        for index, brand in enumerate(brands):
            if index > 0 and self._settings.CRM_SYNC_DELAY_SECONDS > 0:
                await asyncio.sleep(self._settings.CRM_SYNC_DELAY_SECONDS)

            outcome = await self.sync_entity(entity, brand)
            summary.results.append(
                BrandSyncResult(
                    brand_org_id=brand.org_id,
                    brand_name=brand.name,
                    outcome=outcome,
                )
            )
            if is_failure(outcome):
                summary.failed += 1
            elif outcome.action == SyncAction.SKIPPED:
                summary.skipped += 1
            elif outcome.action == SyncAction.CREATED:
                summary.created += 1
            else:
                summary.updated += 1

        summary.finished_at = datetime.now(timezone.utc)
        logger.info(
            "crm.multi_brand_sync_complete",
            entity_id=entity.entity_id,
            total=summary.total,
            created=summary.created,
            updated=summary.updated,
            failed=summary.failed,
            skipped=summary.skipped,
        )
        return summary

    # ── Customer Annotations ─────────────────────────────────────────────────

    async def _annotate(
        self,
        brand: BrandAccountRead,
        customer_id: str,
        operation: str,
        action: Callable[[CRMAdapter], Awaitable[None]],
    ) -> SyncOutcome:
        adapter = self._adapter_for(brand)
        if adapter is None:
            return SyncOutcome(
                action=SyncAction.SKIPPED, success=False, error=NOT_CONFIGURED
            )
        try:
            await action(adapter)
        except (httpx.TimeoutException, asyncio.TimeoutError) as exc:
            logger.warning(
                f"crm.{operation}_timeout",
                brand_org_id=brand.org_id,
                customer_id=customer_id,
                error=str(exc),
            )
            return SyncOutcome(action=SyncAction.SKIPPED, success=False, error=TIMED_OUT)
        except _SYNC_ERRORS as exc:
            logger.error(
                f"crm.{operation}_error",
                brand_org_id=brand.org_id,
                customer_id=customer_id,
                error=str(exc),
            )
            return SyncOutcome(
                action=SyncAction.UPDATED,
                success=False,
                external_id=customer_id,
                error=str(exc),
            )
        return SyncOutcome(action=SyncAction.UPDATED, external_id=customer_id)

    async def record_event(
        self, brand: BrandAccountRead, customer_id: str, message: str
    ) -> SyncOutcome:
        """Append a message to the customer's bounded JSON activity log."""
        namespace = self._settings.CRM_METAFIELD_NAMESPACE

        async def _apply(adapter: CRMAdapter) -> None:
            raw = await adapter.get_metafield(customer_id, namespace, ACTIVITY_LOG_KEY)
            events = append_event(raw, message)
            await adapter.set_metafield(
                customer_id, namespace, ACTIVITY_LOG_KEY, json.dumps(events), "json"
            )

        return await self._annotate(brand, customer_id, "record_event", _apply)

    async def set_stage(
        self, brand: BrandAccountRead, customer_id: str, stage: CustomerStage | str
    ) -> SyncOutcome:
        """Make stage the customer's only funnel-stage tag.

        Raises:
            ValueError: If stage is not a known CustomerStage.
        """
        stage = CustomerStage(stage)

        async def _apply(adapter: CRMAdapter) -> None:
            customer = await adapter.get_customer(customer_id)
            if customer is None:
                raise ExternalSyncError(f"Customer {customer_id} not found", status_code=404)
            await adapter.update_customer(
                customer_id, CustomerUpdate(tags=apply_stage_tag(customer.tags, stage))
            )

        return await self._annotate(brand, customer_id, "set_stage", _apply)

    async def sync_activation_tags(
        self,
        brand: BrandAccountRead,
        customer_id: str,
        tags: list[str],
        note: str | None = None,
    ) -> SyncOutcome:
        """Merge activation tags into a known customer, optionally noting it."""

        async def _apply(adapter: CRMAdapter) -> None:
            customer = await adapter.get_customer(customer_id)
            if customer is None:
                raise ExternalSyncError(f"Customer {customer_id} not found", status_code=404)
            update = CustomerUpdate(
                tags=merge_tags(customer.tags, tags, ACTIVATION_TAG_PREFIXES)
            )
            if note:
                update.note = append_note(customer.note, note)
            await adapter.update_customer(customer_id, update)

        outcome = await self._annotate(brand, customer_id, "activation_tags", _apply)
        return self._count(outcome)

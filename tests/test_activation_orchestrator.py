"""Tests for ActivationOrchestrator and EffectRunner.

Uses InMemoryActivationRepository and RecordingNotifier from conftest, and an
AsyncMock(spec=CustomerSyncService) where CRM behaviour matters. Covers
create mode, link mode, re-entry after a store disappeared, replay,
conflicts, the one-time setup credit and side-effect isolation.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from prometheus_client import REGISTRY

from src.sampling.activation.effects import (
    CrmTagSyncEffect,
    EffectRunner,
    SetupCreditEffect,
    plan_effects,
)
from src.sampling.activation.orchestrator import ActivationOrchestrator
from src.sampling.activation.schemas import (
    ActivationMode,
    ActivationRequest,
    EffectStatus,
)
from src.sampling.core.errors import ConflictError, NotFoundError, ValidationError
from src.sampling.crm.schemas import SyncAction, SyncOutcome
from src.sampling.crm.sync import CustomerSyncService
from src.sampling.ledger.schemas import InventoryTransactionType


def _request(payload: dict, **overrides) -> ActivationRequest:
    data = dict(payload)
    data.update(overrides)
    return ActivationRequest.model_validate(data)


def _orchestrator(repo, notifier, settings, crm_sync=None) -> ActivationOrchestrator:
    runner = EffectRunner(repo, notifier, crm_sync=crm_sync, settings=settings)
    return ActivationOrchestrator(repo, runner, settings=settings)


def _effects(report) -> dict[str, EffectStatus]:
    return {e.name: e.status for e in report.effects}


# ── Create Mode ─────────────────────────────────────────────────────────────


class TestCreateMode:
    @pytest.mark.asyncio
    async def test_inventory_display_creates_store(
        self, repo, notifier, settings, activation_payload
    ):
        orchestrator = _orchestrator(repo, notifier, settings)

        report = await orchestrator.activate(_request(activation_payload))

        assert report.ok is True
        assert report.mode == ActivationMode.CREATE
        assert report.store_id == "SID-001"
        assert report.store_name == "Corner Market"
        assert report.inventory_transactions == 1

        display = repo.displays["D-100"]
        assert display.status == "active"
        assert display.store_id == "SID-001"

        store = repo.stores["SID-001"]
        assert store.org_id == "BRAND-1"
        assert store.promo_offer == "20% Off 1st In-Store Purchase"
        assert store.available_samples == ["SKU-1", "SKU-2"]

        assert repo.inventory[("SID-001", "SKU-1")] == 12
        [txn] = repo.inventory_log
        assert txn.type == InventoryTransactionType.INITIAL_SETUP
        assert txn.delta == 12

    @pytest.mark.asyncio
    async def test_sold_display_uses_assigned_brand(
        self, repo, notifier, settings, activation_payload
    ):
        orchestrator = _orchestrator(repo, notifier, settings)

        report = await orchestrator.activate(_request(activation_payload, displayId="D-200"))

        assert repo.stores[report.store_id].org_id == "BRAND-1"

    @pytest.mark.asyncio
    async def test_store_ids_are_unique(self, repo, notifier, settings, activation_payload):
        repo.add_display("D-101", status="inventory", owner_org_id="BRAND-1")
        orchestrator = _orchestrator(repo, notifier, settings)

        first = await orchestrator.activate(_request(activation_payload))
        second = await orchestrator.activate(_request(activation_payload, displayId="D-101"))

        assert first.store_id == "SID-001"
        assert second.store_id == "SID-002"

    @pytest.mark.asyncio
    async def test_notifications_sent(self, repo, notifier, settings, activation_payload):
        orchestrator = _orchestrator(repo, notifier, settings)

        report = await orchestrator.activate(_request(activation_payload))

        templates = sorted(template for _, _, template, _ in notifier.sent)
        assert templates == [
            "activation.brand_owner.email",
            "activation.brand_owner.sms",
            "activation.store.email",
            "activation.store.sms",
        ]
        context = notifier.sent[0][3]
        assert context["dashboard_url"] == "https://app.example.com/store/SID-001"
        assert context["store_id"] == "SID-001"
        effects = _effects(report)
        assert effects["crm_tag_sync"] == EffectStatus.SKIPPED
        assert effects["setup_credit"] == EffectStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_brand_owner_without_contact_not_notified(
        self, repo, notifier, settings, activation_payload
    ):
        repo.add_brand("BRAND-1", name="Acme Snacks")
        orchestrator = _orchestrator(repo, notifier, settings)

        await orchestrator.activate(_request(activation_payload))

        assert {template for _, _, template, _ in notifier.sent} == {
            "activation.store.sms",
            "activation.store.email",
        }


# ── Link Mode ───────────────────────────────────────────────────────────────


class TestLinkMode:
    @pytest.mark.asyncio
    async def test_links_existing_store(self, repo, notifier, settings, activation_payload):
        repo.add_store("SID-050", store_name="Existing Shop", city="Dallas", promo_offer="BOGO")
        repo.inventory[("SID-050", "SKU-1")] = 20
        orchestrator = _orchestrator(repo, notifier, settings)

        report = await orchestrator.activate(
            _request(activation_payload, existingStoreId="SID-050")
        )

        assert report.mode == ActivationMode.LINK
        assert report.store_id == "SID-050"
        assert report.store_name == "Existing Shop"
        store = repo.stores["SID-050"]
        assert store.city == "Dallas"
        assert store.promo_offer == "BOGO"
        assert store.contact_email == "dana@corner.example"
        assert repo.displays["D-100"].store_id == "SID-050"

        [txn] = repo.inventory_log
        assert txn.type == InventoryTransactionType.CORRECTION
        assert txn.delta == -8
        assert repo.inventory[("SID-050", "SKU-1")] == 12

    @pytest.mark.asyncio
    async def test_link_does_not_reserve_store_id(
        self, repo, notifier, settings, activation_payload
    ):
        repo.add_store("SID-050")
        orchestrator = _orchestrator(repo, notifier, settings)

        await orchestrator.activate(_request(activation_payload, existingStoreId="SID-050"))

        assert await repo.reserve_store_id() == "SID-001"

    @pytest.mark.asyncio
    async def test_missing_store_is_not_found(self, repo, notifier, settings, activation_payload):
        orchestrator = _orchestrator(repo, notifier, settings)

        with pytest.raises(NotFoundError, match="SID-404"):
            await orchestrator.activate(_request(activation_payload, existingStoreId="SID-404"))

        assert repo.displays["D-100"].status == "inventory"
        assert repo.commits == 0


# ── Re-entry, Replay and Conflicts ──────────────────────────────────────────


class TestIdempotency:
    @pytest.mark.asyncio
    async def test_reentry_recreates_missing_store_under_same_id(
        self, repo, notifier, settings, activation_payload
    ):
        repo.add_display(
            "D-300",
            status="active",
            owner_org_id="BRAND-1",
            store_id="SID-077",
            activation_fingerprint="from-an-earlier-attempt",
        )
        orchestrator = _orchestrator(repo, notifier, settings)

        report = await orchestrator.activate(_request(activation_payload, displayId="D-300"))

        assert report.mode == ActivationMode.CREATE
        assert report.store_id == "SID-077"
        assert "SID-077" in repo.stores
        assert await repo.reserve_store_id() == "SID-001"

    @pytest.mark.asyncio
    async def test_identical_retry_is_replayed(self, repo, notifier, settings, activation_payload):
        orchestrator = _orchestrator(repo, notifier, settings)
        request = _request(activation_payload)

        first = await orchestrator.activate(request)
        sent_after_first = len(notifier.sent)
        second = await orchestrator.activate(_request(activation_payload))

        assert second.replayed is True
        assert second.store_id == first.store_id
        assert second.store_name == "Corner Market"
        assert set(_effects(second)) == {"crm_tag_sync", "setup_credit"}
        assert repo.commits == 1
        assert len(repo.inventory_log) == 1
        assert len(notifier.sent) == sent_after_first

    @pytest.mark.asyncio
    async def test_identical_retry_applies_failed_setup_credit(
        self, repo, notifier, settings, activation_payload
    ):
        orchestrator = _orchestrator(repo, notifier, settings)
        payload = dict(activation_payload, setupPhotoUrl="https://cdn.example/photo.jpg")
        grant = repo.grant_setup_credit
        attempts: list[str] = []

        async def flaky_grant(store_id, *args, **kwargs):
            attempts.append(store_id)
            if len(attempts) == 1:
                raise RuntimeError("database went away")
            return await grant(store_id, *args, **kwargs)

        repo.grant_setup_credit = flaky_grant

        first = await orchestrator.activate(_request(payload))
        assert _effects(first)["setup_credit"] == EffectStatus.FAILED
        assert repo.stores["SID-001"].setup_credit_granted is False

        second = await orchestrator.activate(_request(payload))
        third = await orchestrator.activate(_request(payload))

        assert second.replayed is True
        assert _effects(second)["setup_credit"] == EffectStatus.OK
        assert repo.stores["SID-001"].setup_credit_granted is True
        assert repo.stores["SID-001"].credit_balance == Decimal("10.00")
        assert _effects(third)["setup_credit"] == EffectStatus.SKIPPED
        assert len(repo.credit_log) == 1
        assert repo.commits == 1

    @pytest.mark.asyncio
    async def test_different_request_conflicts(self, repo, notifier, settings, activation_payload):
        orchestrator = _orchestrator(repo, notifier, settings)
        await orchestrator.activate(_request(activation_payload))

        with pytest.raises(ConflictError) as exc_info:
            await orchestrator.activate(_request(activation_payload, pin="9999"))

        assert exc_info.value.store_id == "SID-001"
        assert repo.commits == 1

    @pytest.mark.asyncio
    async def test_concurrent_claim_loses(self, repo, notifier, settings, activation_payload):
        """A request planned against a stale snapshot cannot claim the display."""
        stale = repo.displays["D-100"]
        orchestrator = _orchestrator(repo, notifier, settings)
        await orchestrator.activate(_request(activation_payload))

        repo.get_display = AsyncMock(return_value=stale)
        with pytest.raises(ConflictError) as exc_info:
            await orchestrator.activate(_request(activation_payload, pin="9999"))

        assert exc_info.value.store_id == "SID-001"
        assert repo.commits == 1
        assert len(repo.inventory_log) == 1

    @pytest.mark.asyncio
    async def test_conflict_is_counted(self, repo, notifier, settings, activation_payload):
        labels = {"mode": "create", "result": "conflict"}
        before = REGISTRY.get_sample_value("activations_total", labels) or 0.0
        orchestrator = _orchestrator(repo, notifier, settings)
        await orchestrator.activate(_request(activation_payload))

        with pytest.raises(ConflictError):
            await orchestrator.activate(_request(activation_payload, pin="9999"))

        assert REGISTRY.get_sample_value("activations_total", labels) == before + 1


# ── Rejections ──────────────────────────────────────────────────────────────


class TestRejections:
    @pytest.mark.asyncio
    async def test_invalid_request_mutates_nothing(self, repo, notifier, settings, activation_payload):
        orchestrator = _orchestrator(repo, notifier, settings)

        with pytest.raises(ValidationError) as exc_info:
            await orchestrator.activate(_request(activation_payload, zip="ABCDE"))

        assert "zip" in exc_info.value.invalid_fields
        assert repo.commits == 0
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_unknown_display(self, repo, notifier, settings, activation_payload):
        orchestrator = _orchestrator(repo, notifier, settings)
        with pytest.raises(NotFoundError, match="D-999"):
            await orchestrator.activate(_request(activation_payload, displayId="D-999"))

    @pytest.mark.asyncio
    async def test_unknown_brand(self, repo, notifier, settings, activation_payload):
        repo.add_display("D-400", status="inventory", owner_org_id="BRAND-GONE")
        orchestrator = _orchestrator(repo, notifier, settings)
        with pytest.raises(NotFoundError, match="BRAND-GONE"):
            await orchestrator.activate(_request(activation_payload, displayId="D-400"))


# ── Side Effects ────────────────────────────────────────────────────────────


class FailingNotifier:
    """Dispatcher whose SMS channel is down and whose email channel hangs."""

    def __init__(self) -> None:
        self.emails: list[str] = []

    async def send_sms(self, to, template, context):
        raise RuntimeError("SMS gateway unavailable")

    async def send_email(self, to, template, context):
        await asyncio.sleep(5)
        self.emails.append(to)


class TestSideEffects:
    @pytest.mark.asyncio
    async def test_setup_photo_grants_credit(self, repo, notifier, settings, activation_payload):
        orchestrator = _orchestrator(repo, notifier, settings)

        report = await orchestrator.activate(
            _request(activation_payload, setupPhotoUrl="https://cdn.example/photo.jpg")
        )

        assert _effects(report)["setup_credit"] == EffectStatus.OK
        store = repo.stores["SID-001"]
        assert store.setup_credit_granted is True
        assert store.credit_balance == Decimal("10.00")
        [credit] = repo.credit_log
        assert credit.reason == "setup_photo"
        assert credit.related_unit_id == "D-100"

    @pytest.mark.asyncio
    async def test_setup_credit_granted_once(self, repo, notifier, settings):
        repo.add_store("SID-050")
        runner = EffectRunner(repo, notifier, settings=settings)
        effect = SetupCreditEffect(
            store_id="SID-050",
            display_id="D-100",
            amount=Decimal("10.00"),
            setup_photo_url="https://cdn.example/photo.jpg",
        )
        brand = repo.brands["BRAND-1"]

        first = await runner.run([effect], brand)
        second = await runner.run([effect], brand)

        assert first[0].status == EffectStatus.OK
        assert second[0].status == EffectStatus.SKIPPED
        assert second[0].detail == "Already granted"
        assert repo.stores["SID-050"].credit_balance == Decimal("10.00")
        assert len(repo.credit_log) == 1

    @pytest.mark.asyncio
    async def test_failing_effects_do_not_fail_activation(
        self, repo, settings, activation_payload
    ):
        fast = settings.model_copy(update={"EFFECT_TIMEOUT_SECONDS": 0.05})
        orchestrator = _orchestrator(repo, FailingNotifier(), fast)

        report = await orchestrator.activate(_request(activation_payload))

        assert report.ok is True
        assert repo.displays["D-100"].status == "active"
        effects = {e.name: e for e in report.effects}
        assert effects["notify_store_sms"].status == EffectStatus.FAILED
        assert "SMS gateway" in effects["notify_store_sms"].detail
        assert effects["notify_store_email"].status == EffectStatus.SKIPPED
        assert effects["notify_store_email"].detail == "Timed out"
        assert effects["notify_brand_owner_sms"].status == EffectStatus.FAILED

    @pytest.mark.asyncio
    async def test_crm_tags_with_supplied_customer(
        self, repo, notifier, settings, activation_payload
    ):
        crm_sync = AsyncMock(spec=CustomerSyncService)
        crm_sync.sync_activation_tags.return_value = SyncOutcome(
            action=SyncAction.UPDATED, external_id="42"
        )
        crm_sync.record_event.return_value = SyncOutcome(
            action=SyncAction.UPDATED, external_id="42"
        )
        orchestrator = _orchestrator(repo, notifier, settings, crm_sync=crm_sync)

        report = await orchestrator.activate(
            _request(activation_payload, shopifyCustomerId="42")
        )

        assert _effects(report)["crm_tag_sync"] == EffectStatus.OK
        assert repo.links[("store", "SID-001", "BRAND-1")] == "42"
        brand, customer_id, tags = crm_sync.sync_activation_tags.await_args.args
        assert brand.org_id == "BRAND-1"
        assert customer_id == "42"
        assert "store:SID-001" in tags
        assert "display:D-100" in tags
        assert "state:TX" in tags
        assert "status:active" in tags
        crm_sync.record_event.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_crm_tags_skipped_without_customer(
        self, repo, notifier, settings, activation_payload
    ):
        crm_sync = AsyncMock(spec=CustomerSyncService)
        orchestrator = _orchestrator(repo, notifier, settings, crm_sync=crm_sync)

        report = await orchestrator.activate(_request(activation_payload))

        outcome = next(e for e in report.effects if e.name == "crm_tag_sync")
        assert outcome.status == EffectStatus.SKIPPED
        assert outcome.detail == "No linked CRM customer"
        crm_sync.sync_activation_tags.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_crm_failure_reported(self, repo, notifier, settings, activation_payload):
        crm_sync = AsyncMock(spec=CustomerSyncService)
        crm_sync.sync_activation_tags.return_value = SyncOutcome(
            action=SyncAction.UPDATED, success=False, external_id="42", error="HTTP 500"
        )
        orchestrator = _orchestrator(repo, notifier, settings, crm_sync=crm_sync)

        report = await orchestrator.activate(
            _request(activation_payload, shopifyCustomerId="42")
        )

        assert report.ok is True
        assert _effects(report)["crm_tag_sync"] == EffectStatus.FAILED
        crm_sync.record_event.assert_not_awaited()


class TestPlanEffects:
    def test_crm_effect_tags(self, repo, settings, activation_payload):
        store = repo.add_store("SID-001", state="TX", contact_phone="5125550100")
        activated_at = datetime(2026, 4, 2, 15, 30, tzinfo=timezone.utc)

        effects = plan_effects(
            _request(activation_payload),
            store,
            repo.brands["BRAND-1"],
            "D-100",
            activated_at,
            settings=settings,
        )

        crm = next(e for e in effects if isinstance(e, CrmTagSyncEffect))
        assert crm.tags == [
            "store:SID-001",
            "display:D-100",
            "state:TX",
            "status:active",
            "activated:2026-04-02",
        ]
        assert [e.name for e in effects] == [
            "crm_tag_sync",
            "setup_credit",
            "notify_store_sms",
            "notify_store_email",
            "notify_brand_owner_sms",
            "notify_brand_owner_email",
        ]

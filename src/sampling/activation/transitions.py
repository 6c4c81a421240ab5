"""Pure activation state transitions.

Everything here decides; nothing here reads or writes storage. The
orchestrator loads a DisplayRead, asks these functions what to do, and hands
the resulting ActivationPlan to the repository to apply in one transaction.

Display lifecycle: inventory -> sold -> active. Active is terminal except
when the linked store has disappeared (a prior attempt half-failed, or the
store was removed out-of-band), in which case activation may run again.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Any, Union

from src.sampling.activation.schemas import ActivationMode, ActivationRequest, DisplayRead
from src.sampling.core.errors import ConflictError, NotFoundError
from src.sampling.ledger.schemas import InventoryTransactionType

ACTIVATABLE_STATUSES = ("inventory", "sold")


# ── Store Resolution ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class LinkToExisting:
    """Attach the display to a store that already exists."""

    store_id: str


@dataclass(frozen=True)
class CreateNew:
    """Create (or re-create) a store under a reserved id."""

    reserved_store_id: str | None = None


StoreResolution = Union[LinkToExisting, CreateNew]


@dataclass(frozen=True)
class Replay:
    """The same request already activated this display; report its store."""

    store_id: str


@dataclass(frozen=True)
class InventoryTarget:
    sku: str
    quantity: int
    is_presale: bool = False


@dataclass(frozen=True)
class ActivationPlan:
    """Everything the repository needs to apply an activation atomically.

    expected_status and expected_store_id describe the display as it was
    observed; the claim only succeeds if the row still looks like that.
    """

    display_id: str
    brand_org_id: str
    store_id: str
    mode: ActivationMode
    store_fields: dict[str, Any]
    inventory: tuple[InventoryTarget, ...]
    inventory_reason: InventoryTransactionType
    fingerprint: str
    expected_status: str
    expected_store_id: str | None = None
    setup_photo_url: str | None = None
    inventory_note: str = ""


# ── Decisions ───────────────────────────────────────────────────────────────


def fingerprint(request: ActivationRequest) -> str:
    """Stable SHA-256 of the normalized request, used to recognise replays."""
    payload = request.model_dump(mode="json")
    payload["sample_skus"] = sorted(payload["sample_skus"])
    payload["product_skus"] = sorted(payload["product_skus"])
    payload["followup_days"] = sorted(payload["followup_days"])
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def resolve_brand(display: DisplayRead) -> str:
    """Return the org id of the brand an activation belongs to.

    inventory uses the owning brand; sold (and active re-entry) uses the
    assigned brand, falling back to the owning brand.

    Raises:
        NotFoundError: If no brand can be resolved.
    """
    if display.status == "inventory":
        org_id = display.owner_org_id
    elif display.status in ("sold", "active"):
        org_id = display.assigned_org_id or display.owner_org_id
    else:
        org_id = None

    if not org_id:
        raise NotFoundError(
            f"Display {display.display_id} has not been assigned to a brand"
        )
    return org_id


def guard_activation(
    display: DisplayRead, request_fingerprint: str, linked_store_exists: bool
) -> Replay | None:
    """Reject or short-circuit activations of an already-active display.

    Returns:
        Replay when the display is active with a live store and the same
        request activated it; None when activation may proceed.

    Raises:
        ConflictError: If the display is active with a live store and the
            request differs from the one that activated it.
    """
    if display.status != "active" or not display.store_id or not linked_store_exists:
        return None
    if display.activation_fingerprint == request_fingerprint:
        return Replay(store_id=display.store_id)
    raise ConflictError(
        "Display has already been activated",
        store_id=display.store_id,
    )


def needs_new_store_id(display: DisplayRead, request: ActivationRequest) -> bool:
    """True when create mode has no id to reuse and one must be reserved."""
    if request.existing_store_id:
        return False
    return not (display.status == "active" and display.store_id)


def resolve_store(
    display: DisplayRead,
    request: ActivationRequest,
    reserved_store_id: str | None = None,
) -> StoreResolution:
    """Pick link mode or create mode.

    Create mode on a re-entered display reuses the id the display still
    points at, so a store removed out-of-band comes back under the same id.
    """
    if request.existing_store_id:
        return LinkToExisting(store_id=request.existing_store_id)
    if display.status == "active" and display.store_id:
        return CreateNew(reserved_store_id=display.store_id)
    return CreateNew(reserved_store_id=reserved_store_id)


def _store_fields(
    request: ActivationRequest,
    mode: ActivationMode,
    brand_org_id: str,
    default_promo_offer: str,
) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "contact_name": request.contact_name,
        "contact_email": request.email,
        "contact_phone": request.phone,
        "followup_days": list(request.followup_days),
        "staff_pin": request.pin,
        "available_samples": list(request.sample_skus),
    }
    if request.product_skus:
        fields["available_products"] = list(request.product_skus)

    if mode == ActivationMode.LINK:
        if request.promo_offer:
            fields["promo_offer"] = request.promo_offer
        return fields

    fields.update(
        {
            "org_id": brand_org_id,
            "store_name": request.store_name,
            "street_address": request.address,
            "city": request.city,
            "state": request.state,
            "zip_code": request.zip,
            "timezone": request.timezone,
            "promo_offer": request.promo_offer or default_promo_offer,
        }
    )
    fields.setdefault("available_products", [])
    return fields


def plan_activation(
    display: DisplayRead,
    request: ActivationRequest,
    *,
    brand_org_id: str,
    linked_store_exists: bool,
    reserved_store_id: str | None = None,
    default_promo_offer: str = "",
) -> ActivationPlan | Replay:
    """Decide the full activation for a display.

    Args:
        display: Display as currently stored.
        request: Validated activation request.
        brand_org_id: Brand resolved by resolve_brand().
        linked_store_exists: Whether display.store_id points at a live store.
        reserved_store_id: Fresh id for create mode when none can be reused.
        default_promo_offer: Promo used when the request leaves it empty.

    Returns:
        ActivationPlan to apply, or Replay for an identical repeated request.

    Raises:
        ConflictError: Display already active with a live store.
        ValueError: Create mode with no store id to use.
    """
    request_fingerprint = fingerprint(request)
    replay = guard_activation(display, request_fingerprint, linked_store_exists)
    if replay is not None:
        return replay

    resolution = resolve_store(display, request, reserved_store_id)
    if isinstance(resolution, LinkToExisting):
        mode = ActivationMode.LINK
        store_id = resolution.store_id
        reason = InventoryTransactionType.CORRECTION
    else:
        if not resolution.reserved_store_id:
            raise ValueError("Create mode requires a reserved store id")
        mode = ActivationMode.CREATE
        store_id = resolution.reserved_store_id
        reason = InventoryTransactionType.INITIAL_SETUP

    inventory = tuple(
        InventoryTarget(sku=sku, quantity=entry.quantity, is_presale=entry.is_presale)
        for sku, entry in sorted(request.initial_inventory.items())
    )
    note = (
        f"Initial setup at activation of {display.display_id}"
        if mode == ActivationMode.CREATE
        else f"Verified at activation of {display.display_id}"
    )

    return ActivationPlan(
        display_id=display.display_id,
        brand_org_id=brand_org_id,
        store_id=store_id,
        mode=mode,
        store_fields=_store_fields(request, mode, brand_org_id, default_promo_offer),
        inventory=inventory,
        inventory_reason=reason,
        fingerprint=request_fingerprint,
        expected_status=display.status,
        expected_store_id=display.store_id,
        setup_photo_url=request.setup_photo_url,
        inventory_note=note,
    )

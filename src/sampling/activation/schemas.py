"""Pydantic schemas for display activation -- request, report, read models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ActivationMode(str, Enum):
    """How the store behind an activation was resolved."""

    CREATE = "create"
    LINK = "link"


class EffectStatus(str, Enum):
    OK = "ok"
    SKIPPED = "skipped"
    FAILED = "failed"


class InventoryEntry(BaseModel):
    """Target on-hand quantity for one SKU at activation time."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    quantity: int
    is_presale: bool = False


class ActivationRequest(BaseModel):
    """Activation form submission (camelCase on the wire).

    Required fields default to empty values so that absent input is reported
    through validate_activation_request() as a field list rather than rejected
    during parsing.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    display_id: str = ""
    store_name: str = ""
    contact_name: str = ""
    email: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    zip: str = ""
    timezone: str = ""
    promo_offer: str | None = None
    followup_days: list[int] = Field(default_factory=list)
    pin: str = ""
    sample_skus: list[str] = Field(default_factory=list)
    product_skus: list[str] = Field(default_factory=list)
    existing_store_id: str | None = None
    shopify_customer_id: str | None = None
    initial_inventory: dict[str, InventoryEntry] = Field(default_factory=dict)
    setup_photo_url: str | None = None


class DisplayRead(BaseModel):
    """Display unit as loaded for an activation decision."""

    display_id: str
    status: str
    owner_org_id: str | None = None
    assigned_org_id: str | None = None
    store_id: str | None = None
    activated_at: datetime | None = None
    activation_fingerprint: str | None = None
    setup_photo_url: str | None = None


class StoreRead(BaseModel):
    """Store record as returned by the activation repository."""

    store_id: str
    org_id: str
    store_name: str
    contact_name: str | None = None
    contact_email: str | None = None
    contact_phone: str | None = None
    street_address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    timezone: str | None = None
    promo_offer: str | None = None
    followup_days: list[int] = Field(default_factory=list)
    available_samples: list[str] = Field(default_factory=list)
    available_products: list[str] = Field(default_factory=list)
    subscription_tier: str = "free"
    setup_credit_granted: bool = False
    credit_balance: Decimal = Decimal("0.00")


class EffectOutcome(BaseModel):
    """Result of one post-commit side effect."""

    name: str
    status: EffectStatus
    detail: str | None = None


class ActivationReport(BaseModel):
    """What an activation did. Effects never change ok/store_id."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    ok: bool = True
    store_id: str
    store_name: str
    mode: ActivationMode
    replayed: bool = False
    message: str = "Display activated successfully"
    inventory_transactions: int = 0
    effects: list[EffectOutcome] = Field(default_factory=list)

"""Pydantic schemas for CRM sync -- brand accounts, customer payloads, outcomes."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class SyncAction(str, Enum):
    """What a sync did against the external customer record."""

    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"


class CustomerStage(str, Enum):
    """Mutually exclusive conversion-funnel position of a customer."""

    REQUESTED = "requested"
    REDEEMED = "redeemed"
    PURCHASE_INTENT = "purchase-intent"
    CONVERTED_IN_STORE = "converted-in-store"
    CONVERTED_ONLINE = "converted-online"


class BrandAccountRead(BaseModel):
    """Brand account as seen by integrations; credential fields stay encrypted."""

    org_id: str
    name: str
    shopify_store_domain: str | None = None
    shopify_access_token_enc: str | None = None
    owner_name: str | None = None
    owner_email: str | None = None
    owner_phone: str | None = None

    @property
    def has_crm_credentials(self) -> bool:
        return bool(self.shopify_store_domain and self.shopify_access_token_enc)


class CrmEntity(BaseModel):
    """Local record being mirrored into a brand's CRM (a store, in practice)."""

    entity_type: str = "store"
    entity_id: str
    display_name: str
    contact_name: str | None = None
    email: str | None = None
    phone: str | None = None
    street_address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    subscription_tier: str = "free"


class Metafield(BaseModel):
    """Structured field on an external customer record."""

    namespace: str
    key: str
    value: str
    type: str = "single_line_text_field"


class CustomerRecord(BaseModel):
    """External customer as returned by the CRM."""

    id: str
    email: str | None = None
    phone: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    tags: list[str] = Field(default_factory=list)
    note: str = ""


class CustomerCreate(BaseModel):
    """Payload for creating an external customer."""

    email: str
    phone: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    tags: list[str] = Field(default_factory=list)
    note: str = ""
    metafields: list[Metafield] = Field(default_factory=list)
    tax_exempt: bool = False


class CustomerUpdate(BaseModel):
    """Partial update for an external customer; None fields are left untouched."""

    tags: list[str] | None = None
    note: str | None = None
    metafields: list[Metafield] | None = None


class DraftOrderLine(BaseModel):
    """Line item for a CRM draft order."""

    variant_id: str
    quantity: int = Field(default=1, ge=1)


class SyncOutcome(BaseModel):
    """Structured result of one CRM operation. Errors are reported, never raised."""

    action: SyncAction
    success: bool = True
    external_id: str | None = None
    error: str | None = None


class BrandSyncResult(BaseModel):
    """Per-brand entry in a multi-brand sync summary."""

    brand_org_id: str
    brand_name: str
    outcome: SyncOutcome


class BrandSyncSummary(BaseModel):
    """Totals for syncing one entity against several brand accounts."""

    total: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0
    skipped: int = 0
    results: list[BrandSyncResult] = Field(default_factory=list)
    finished_at: datetime | None = None

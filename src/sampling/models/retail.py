"""Retail persistence models -- brand accounts, products, displays and stores.

Four SQLAlchemy models:
- BrandAccountModel: Tenant organization with encrypted Shopify credentials
- ProductModel: Brand-scoped SKU catalogue (read-only for the activation core)
- DisplayModel: Physical QR-coded unit moving inventory -> sold -> active
- StoreModel: Retail location created or linked at activation time

Relationships between displays, stores and ledger rows use business keys
(display_id, store_id) with application-level referential integrity, so a
store removed out-of-band leaves its display and ledger history intact.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Integer,
    Numeric,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSON
from sqlalchemy.orm import Mapped, mapped_column

from src.sampling.core.database import Base

DISPLAY_STATUSES = ("inventory", "sold", "active")


class BrandAccountModel(Base):
    """Brand organization owning displays, products and a Shopify store.

    Shopify credential columns hold CredentialVault blobs, never plaintext.
    """

    __tablename__ = "brand_accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    org_id: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    shopify_store_domain: Mapped[str | None] = mapped_column(String(255), nullable=True)
    shopify_access_token_enc: Mapped[str | None] = mapped_column(Text, nullable=True)
    shopify_api_key_enc: Mapped[str | None] = mapped_column(Text, nullable=True)
    shopify_api_secret_enc: Mapped[str | None] = mapped_column(Text, nullable=True)
    owner_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    owner_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    owner_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class ProductModel(Base):
    """Brand-scoped catalogue entry."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sku: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    brand_org_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    product_type: Mapped[str] = mapped_column(
        String(20), default="retail", server_default=text("'retail'")
    )
    active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=text("true")
    )


class DisplayModel(Base):
    """Physical display unit.

    store_id is unique so two displays can never claim the same store, and an
    active display always carries a store_id.
    """

    __tablename__ = "displays"
    __table_args__ = (
        CheckConstraint(
            "status IN ('inventory', 'sold', 'active')",
            name="status_valid",
        ),
        CheckConstraint(
            "status <> 'active' OR store_id IS NOT NULL",
            name="active_has_store",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    display_id: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default="inventory", server_default=text("'inventory'")
    )
    owner_org_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    assigned_org_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    store_id: Mapped[str | None] = mapped_column(String(50), unique=True, nullable=True)
    activated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    activation_fingerprint: Mapped[str | None] = mapped_column(String(64), nullable=True)
    setup_photo_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class StoreModel(Base):
    """Retail location record that owns inventory and credit ledgers."""

    __tablename__ = "stores"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    store_id: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    org_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    store_name: Mapped[str] = mapped_column(String(300), nullable=False)
    contact_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    contact_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    contact_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    street_address: Mapped[str | None] = mapped_column(String(300), nullable=True)
    city: Mapped[str | None] = mapped_column(String(120), nullable=True)
    state: Mapped[str | None] = mapped_column(String(2), nullable=True)
    zip_code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    promo_offer: Mapped[str | None] = mapped_column(String(300), nullable=True)
    followup_days: Mapped[list] = mapped_column(
        JSON, default=list, server_default=text("'[]'::json")
    )
    staff_pin: Mapped[str | None] = mapped_column(String(4), nullable=True)
    available_samples: Mapped[list] = mapped_column(
        JSON, default=list, server_default=text("'[]'::json")
    )
    available_products: Mapped[list] = mapped_column(
        JSON, default=list, server_default=text("'[]'::json")
    )
    subscription_tier: Mapped[str] = mapped_column(
        String(30), default="free", server_default=text("'free'")
    )
    setup_credit_granted: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false")
    )
    credit_balance: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), default=Decimal("0.00"), server_default=text("0")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )

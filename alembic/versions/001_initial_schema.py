"""Initial activation-core schema.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19

Creates the retail tables (brand_accounts, products, displays, stores), the
ledger tables (store_inventory, inventory_transactions,
store_credit_transactions), crm_customer_links, and the store_number_seq
sequence used to allocate store ids.

No foreign key constraints between displays, stores and ledger rows
(application-level referential integrity via business keys), so ledger
history survives a store being removed out-of-band.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def upgrade() -> None:
    op.execute("CREATE SEQUENCE IF NOT EXISTS store_number_seq START 1")

    # ── brand_accounts ──────────────────────────────────────────────────

    op.create_table(
        "brand_accounts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("org_id", sa.String(50), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("shopify_store_domain", sa.String(255), nullable=True),
        sa.Column("shopify_access_token_enc", sa.Text(), nullable=True),
        sa.Column("shopify_api_key_enc", sa.Text(), nullable=True),
        sa.Column("shopify_api_secret_enc", sa.Text(), nullable=True),
        sa.Column("owner_name", sa.String(200), nullable=True),
        sa.Column("owner_email", sa.String(255), nullable=True),
        sa.Column("owner_phone", sa.String(32), nullable=True),
        _created_at(),
        sa.UniqueConstraint("org_id", name="uq_brand_accounts_org_id"),
    )

    # ── products ────────────────────────────────────────────────────────

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("sku", sa.String(100), nullable=False),
        sa.Column("brand_org_id", sa.String(50), nullable=False),
        sa.Column("name", sa.String(300), nullable=False),
        sa.Column(
            "product_type", sa.String(20), server_default=sa.text("'retail'"), nullable=False
        ),
        sa.Column("active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.UniqueConstraint("sku", name="uq_products_sku"),
    )
    op.create_index("ix_products_brand_org_id", "products", ["brand_org_id"])

    # ── displays ────────────────────────────────────────────────────────

    op.create_table(
        "displays",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("display_id", sa.String(50), nullable=False),
        sa.Column(
            "status", sa.String(20), server_default=sa.text("'inventory'"), nullable=False
        ),
        sa.Column("owner_org_id", sa.String(50), nullable=True),
        sa.Column("assigned_org_id", sa.String(50), nullable=True),
        sa.Column("store_id", sa.String(50), nullable=True),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("activation_fingerprint", sa.String(64), nullable=True),
        sa.Column("setup_photo_url", sa.Text(), nullable=True),
        _created_at(),
        sa.UniqueConstraint("display_id", name="uq_displays_display_id"),
        sa.UniqueConstraint("store_id", name="uq_displays_store_id"),
        sa.CheckConstraint(
            "status IN ('inventory', 'sold', 'active')",
            name="ck_displays_status_valid",
        ),
        sa.CheckConstraint(
            "status <> 'active' OR store_id IS NOT NULL",
            name="ck_displays_active_has_store",
        ),
    )

    # ── stores ──────────────────────────────────────────────────────────

    op.create_table(
        "stores",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("store_id", sa.String(50), nullable=False),
        sa.Column("org_id", sa.String(50), nullable=False),
        sa.Column("store_name", sa.String(300), nullable=False),
        sa.Column("contact_name", sa.String(200), nullable=True),
        sa.Column("contact_email", sa.String(255), nullable=True),
        sa.Column("contact_phone", sa.String(32), nullable=True),
        sa.Column("street_address", sa.String(300), nullable=True),
        sa.Column("city", sa.String(120), nullable=True),
        sa.Column("state", sa.String(2), nullable=True),
        sa.Column("zip_code", sa.String(10), nullable=True),
        sa.Column("timezone", sa.String(64), nullable=True),
        sa.Column("promo_offer", sa.String(300), nullable=True),
        sa.Column(
            "followup_days", sa.JSON(), server_default=sa.text("'[]'::json"), nullable=False
        ),
        sa.Column("staff_pin", sa.String(4), nullable=True),
        sa.Column(
            "available_samples",
            sa.JSON(),
            server_default=sa.text("'[]'::json"),
            nullable=False,
        ),
        sa.Column(
            "available_products",
            sa.JSON(),
            server_default=sa.text("'[]'::json"),
            nullable=False,
        ),
        sa.Column(
            "subscription_tier",
            sa.String(30),
            server_default=sa.text("'free'"),
            nullable=False,
        ),
        sa.Column(
            "setup_credit_granted",
            sa.Boolean(),
            server_default=sa.text("false"),
            nullable=False,
        ),
        sa.Column(
            "credit_balance",
            sa.Numeric(10, 2),
            server_default=sa.text("0"),
            nullable=False,
        ),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("store_id", name="uq_stores_store_id"),
    )
    op.create_index("ix_stores_org_id", "stores", ["org_id"])

    # ── store_inventory ─────────────────────────────────────────────────

    op.create_table(
        "store_inventory",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("store_id", sa.String(50), nullable=False),
        sa.Column("sku", sa.String(100), nullable=False),
        sa.Column("quantity_on_hand", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("quantity_reserved", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("quantity_available", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("is_presale", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("store_id", "sku", name="uq_store_inventory_store_sku"),
        sa.CheckConstraint(
            "quantity_on_hand >= 0",
            name="ck_store_inventory_on_hand_non_negative",
        ),
    )

    # ── inventory_transactions ──────────────────────────────────────────

    op.create_table(
        "inventory_transactions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("store_id", sa.String(50), nullable=False),
        sa.Column("sku", sa.String(100), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("delta", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        _created_at(),
        sa.CheckConstraint(
            "type IN ('initial_setup', 'correction', 'sale', 'adjustment')",
            name="ck_inventory_transactions_type_valid",
        ),
    )
    op.create_index(
        "ix_inventory_transactions_store_id", "inventory_transactions", ["store_id"]
    )

    # ── store_credit_transactions ───────────────────────────────────────

    op.create_table(
        "store_credit_transactions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("store_id", sa.String(50), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("type", sa.String(10), nullable=False),
        sa.Column("reason", sa.String(200), nullable=False),
        sa.Column("related_unit_id", sa.String(50), nullable=True),
        sa.Column("balance_after", sa.Numeric(10, 2), nullable=False),
        _created_at(),
        sa.CheckConstraint(
            "type IN ('earned', 'spent')",
            name="ck_store_credit_transactions_type_valid",
        ),
    )
    op.create_index(
        "ix_store_credit_transactions_store_id", "store_credit_transactions", ["store_id"]
    )

    # ── crm_customer_links ──────────────────────────────────────────────

    op.create_table(
        "crm_customer_links",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("entity_type", sa.String(30), nullable=False),
        sa.Column("entity_id", sa.String(50), nullable=False),
        sa.Column("brand_org_id", sa.String(50), nullable=False),
        sa.Column("external_customer_id", sa.String(64), nullable=False),
        _created_at(),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint(
            "entity_type",
            "entity_id",
            "brand_org_id",
            name="uq_crm_customer_link_entity_brand",
        ),
    )


def downgrade() -> None:
    op.drop_table("crm_customer_links")
    op.drop_index("ix_store_credit_transactions_store_id", table_name="store_credit_transactions")
    op.drop_table("store_credit_transactions")
    op.drop_index("ix_inventory_transactions_store_id", table_name="inventory_transactions")
    op.drop_table("inventory_transactions")
    op.drop_table("store_inventory")
    op.drop_index("ix_stores_org_id", table_name="stores")
    op.drop_table("stores")
    op.drop_table("displays")
    op.drop_index("ix_products_brand_org_id", table_name="products")
    op.drop_table("products")
    op.drop_table("brand_accounts")
    op.execute("DROP SEQUENCE IF EXISTS store_number_seq")

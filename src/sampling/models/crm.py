"""CRM link model -- maps a local entity to its customer id in a brand's Shopify."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from src.sampling.core.database import Base


class CrmCustomerLinkModel(Base):
    """One external customer id per (local entity, brand account) pair."""

    __tablename__ = "crm_customer_links"
    __table_args__ = (
        UniqueConstraint(
            "entity_type",
            "entity_id",
            "brand_org_id",
            name="uq_crm_customer_link_entity_brand",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_type: Mapped[str] = mapped_column(String(30), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(50), nullable=False)
    brand_org_id: Mapped[str] = mapped_column(String(50), nullable=False)
    external_customer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    last_synced_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

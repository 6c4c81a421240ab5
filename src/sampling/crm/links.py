"""Persistence of local entity -> external customer id links.

CustomerLinkRepository is the abstract seam used by CustomerSyncService;
SqlCustomerLinkRepository stores links in crm_customer_links with a
PostgreSQL upsert on (entity_type, entity_id, brand_org_id).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable

import structlog
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from src.sampling.models.crm import CrmCustomerLinkModel

logger = structlog.get_logger(__name__)


class CustomerLinkRepository(ABC):
    """Maps (entity_type, entity_id, brand_org_id) to an external customer id."""

    @abstractmethod
    async def get_link(
        self, entity_type: str, entity_id: str, brand_org_id: str
    ) -> str | None:
        """Return the linked external customer id, or None."""
        ...

    @abstractmethod
    async def save_link(
        self,
        entity_type: str,
        entity_id: str,
        brand_org_id: str,
        external_customer_id: str,
    ) -> None:
        """Create or overwrite the link and stamp last_synced_at."""
        ...


class SqlCustomerLinkRepository(CustomerLinkRepository):
    """Link storage backed by the crm_customer_links table.

    Each call opens its own session and commits, so link writes made by
    post-commit side effects never share a transaction with the activation.

    Args:
        session_factory: Callable returning an AsyncSession context manager.
    """

    def __init__(self, session_factory: Callable[..., AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_link(
        self, entity_type: str, entity_id: str, brand_org_id: str
    ) -> str | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(CrmCustomerLinkModel.external_customer_id).where(
                    CrmCustomerLinkModel.entity_type == entity_type,
                    CrmCustomerLinkModel.entity_id == entity_id,
                    CrmCustomerLinkModel.brand_org_id == brand_org_id,
                )
            )
            return result.scalar_one_or_none()

    async def save_link(
        self,
        entity_type: str,
        entity_id: str,
        brand_org_id: str,
        external_customer_id: str,
    ) -> None:
        now = datetime.now(timezone.utc)
        stmt = pg_insert(CrmCustomerLinkModel).values(
            entity_type=entity_type,
            entity_id=entity_id,
            brand_org_id=brand_org_id,
            external_customer_id=external_customer_id,
            last_synced_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            constraint="uq_crm_customer_link_entity_brand",
            set_={
                "external_customer_id": stmt.excluded.external_customer_id,
                "last_synced_at": stmt.excluded.last_synced_at,
            },
        )
        async with self._session_factory() as session:
            await session.execute(stmt)
            await session.commit()

        logger.debug(
            "crm.link_saved",
            entity_type=entity_type,
            entity_id=entity_id,
            brand_org_id=brand_org_id,
            external_customer_id=external_customer_id,
        )

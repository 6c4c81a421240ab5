"""CRM integration -- brand Shopify customer records kept in step with stores.

Provides:
- CRMAdapter: abstract customer-record interface
- ShopifyAdapter / ShopifyClient / build_adapter: Shopify Admin REST backend
- CustomerSyncService: search-or-create sync, tag merge, notes, event log, stages
- CustomerLinkRepository / SqlCustomerLinkRepository: entity -> customer id links
"""

from src.sampling.crm.adapter import CRMAdapter
from src.sampling.crm.links import CustomerLinkRepository, SqlCustomerLinkRepository
from src.sampling.crm.schemas import (
    BrandAccountRead,
    BrandSyncSummary,
    CrmEntity,
    CustomerStage,
    SyncAction,
    SyncOutcome,
)
from src.sampling.crm.shopify import ShopifyAdapter, ShopifyClient, build_adapter
from src.sampling.crm.sync import CustomerSyncService

__all__ = [
    "BrandAccountRead",
    "BrandSyncSummary",
    "CRMAdapter",
    "CrmEntity",
    "CustomerLinkRepository",
    "CustomerStage",
    "CustomerSyncService",
    "ShopifyAdapter",
    "ShopifyClient",
    "SqlCustomerLinkRepository",
    "SyncAction",
    "SyncOutcome",
    "build_adapter",
]

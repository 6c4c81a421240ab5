"""CRM adapter abstract base class -- defines the customer-record interface.

Every CRM backend (Shopify today) implements this ABC. CustomerSyncService
drives it; callers never talk to a backend directly, so tests substitute an
AsyncMock(spec=CRMAdapter).
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.sampling.crm.schemas import (
    CustomerCreate,
    CustomerRecord,
    CustomerUpdate,
    DraftOrderLine,
)


class CRMAdapter(ABC):
    """Abstract interface for external customer-record operations.

    Methods:
        search_customers: Find customers by a single field (email, phone).
        get_customer: Fetch one customer by external ID.
        create_customer: Create a customer, return the stored record.
        update_customer: Update tags/note/metafields of a customer.
        get_metafield: Read one structured field value.
        set_metafield: Create or overwrite one structured field value.
        create_draft_order: Create a draft order for a customer, return its ID.
        send_draft_order_invoice: Email the invoice for a draft order.
    """

    @abstractmethod
    async def search_customers(self, field: str, value: str) -> list[CustomerRecord]:
        """Search customers where field matches value."""
        ...

    @abstractmethod
    async def get_customer(self, customer_id: str) -> CustomerRecord | None:
        """Fetch customer by external ID."""
        ...

    @abstractmethod
    async def create_customer(self, customer: CustomerCreate) -> CustomerRecord:
        """Create customer, return the created record."""
        ...

    @abstractmethod
    async def update_customer(
        self, customer_id: str, data: CustomerUpdate
    ) -> CustomerRecord:
        """Update customer fields by external ID."""
        ...

    @abstractmethod
    async def get_metafield(
        self, customer_id: str, namespace: str, key: str
    ) -> str | None:
        """Return a structured field value, or None if unset."""
        ...

    @abstractmethod
    async def set_metafield(
        self,
        customer_id: str,
        namespace: str,
        key: str,
        value: str,
        value_type: str = "single_line_text_field",
    ) -> None:
        """Create or overwrite a structured field value."""
        ...

    @abstractmethod
    async def create_draft_order(
        self, customer_id: str, lines: list[DraftOrderLine], note: str | None = None
    ) -> str:
        """Create a draft order, return its external ID."""
        ...

    @abstractmethod
    async def send_draft_order_invoice(
        self, draft_order_id: str, to: str | None = None
    ) -> None:
        """Send the invoice email for a draft order."""
        ...

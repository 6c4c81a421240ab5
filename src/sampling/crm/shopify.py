"""Shopify Admin REST client and CRMAdapter implementation.

ShopifyClient is a thin async wrapper over the Admin REST API with retry logic
(tenacity, 3 attempts, exponential backoff 1-10s) for rate limiting (429),
server errors and transport failures. Other 4xx responses are raised
immediately as httpx.HTTPStatusError.

ShopifyAdapter maps CRMAdapter calls onto ShopifyClient and converts Shopify
payloads into CustomerRecord schemas. build_adapter() resolves a brand
account's encrypted credentials through the CredentialVault.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from src.sampling.config import Settings, get_settings
from src.sampling.core.errors import ConfigurationError, DecryptionError
from src.sampling.core.vault import CredentialVault
from src.sampling.crm.adapter import CRMAdapter
from src.sampling.crm.schemas import (
    BrandAccountRead,
    CustomerCreate,
    CustomerRecord,
    CustomerUpdate,
    DraftOrderLine,
)
from src.sampling.crm.tags import format_tags, parse_tags

logger = structlog.get_logger(__name__)


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code == 429 or exc.response.status_code >= 500
    return isinstance(exc, (httpx.ConnectError, httpx.TimeoutException))


_shopify_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception(_is_retryable),
    reraise=True,
)


class ShopifyClient:
    """Async client for one shop's Admin REST API.

    Args:
        store_domain: Shop host, e.g. "brand.myshopify.com".
        access_token: Admin API access token (plaintext, already decrypted).
        api_version: Admin API version segment, e.g. "2024-10".
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    def __init__(
        self,
        store_domain: str,
        access_token: str,
        api_version: str = "2024-10",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = f"https://{store_domain}/admin/api/{api_version}"
        self._headers = {
            "X-Shopify-Access-Token": access_token,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        self._timeout = timeout
        self._transport = transport
        self.store_domain = store_domain

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._headers,
            timeout=self._timeout,
            transport=self._transport,
        )

    @_shopify_retry
    async def get(self, path: str, params: dict[str, Any] | None = None) -> dict:
        async with self._client() as client:
            response = await client.get(path, params=params)
            response.raise_for_status()
            return response.json()

    @_shopify_retry
    async def post(self, path: str, payload: dict[str, Any]) -> dict:
        async with self._client() as client:
            response = await client.post(path, json=payload)
            response.raise_for_status()
            return response.json() if response.content else {}

    @_shopify_retry
    async def put(self, path: str, payload: dict[str, Any]) -> dict:
        async with self._client() as client:
            response = await client.put(path, json=payload)
            response.raise_for_status()
            return response.json() if response.content else {}


def _customer_from_payload(data: dict[str, Any]) -> CustomerRecord:
    return CustomerRecord(
        id=str(data["id"]),
        email=data.get("email"),
        phone=data.get("phone"),
        first_name=data.get("first_name"),
        last_name=data.get("last_name"),
        tags=parse_tags(data.get("tags")),
        note=data.get("note") or "",
    )


class ShopifyAdapter(CRMAdapter):
    """CRMAdapter backed by the Shopify Admin REST API.

    Args:
        client: Configured ShopifyClient for the brand's shop.
    """

    def __init__(self, client: ShopifyClient) -> None:
        self._client = client

    async def search_customers(self, field: str, value: str) -> list[CustomerRecord]:
        data = await self._client.get(
            "/customers/search.json",
            params={"query": f"{field}:{value}", "limit": 1},
        )
        customers = [_customer_from_payload(c) for c in data.get("customers", [])]
        logger.debug(
            "shopify.customer_search",
            shop=self._client.store_domain,
            field=field,
            found=len(customers),
        )
        return customers

    async def get_customer(self, customer_id: str) -> CustomerRecord | None:
        try:
            data = await self._client.get(f"/customers/{customer_id}.json")
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == 404:
                return None
            raise
        return _customer_from_payload(data["customer"])

    async def create_customer(self, customer: CustomerCreate) -> CustomerRecord:
        payload = customer.model_dump(exclude_none=True)
        payload["tags"] = format_tags(customer.tags)
        data = await self._client.post("/customers.json", {"customer": payload})
        record = _customer_from_payload(data["customer"])
        logger.info(
            "shopify.customer_created",
            shop=self._client.store_domain,
            customer_id=record.id,
        )
        return record

    async def update_customer(
        self, customer_id: str, data: CustomerUpdate
    ) -> CustomerRecord:
        payload: dict[str, Any] = {"id": customer_id}
        if data.tags is not None:
            payload["tags"] = format_tags(data.tags)
        if data.note is not None:
            payload["note"] = data.note
        if data.metafields is not None:
            payload["metafields"] = [m.model_dump() for m in data.metafields]

        response = await self._client.put(
            f"/customers/{customer_id}.json", {"customer": payload}
        )
        logger.info(
            "shopify.customer_updated",
            shop=self._client.store_domain,
            customer_id=customer_id,
            fields=sorted(k for k in payload if k != "id"),
        )
        if "customer" in response:
            return _customer_from_payload(response["customer"])
        return CustomerRecord(id=customer_id, tags=data.tags or [], note=data.note or "")

    async def _find_metafield(
        self, customer_id: str, namespace: str, key: str
    ) -> dict[str, Any] | None:
        data = await self._client.get(
            f"/customers/{customer_id}/metafields.json",
            params={"namespace": namespace, "key": key},
        )
        for metafield in data.get("metafields", []):
            if metafield.get("namespace") == namespace and metafield.get("key") == key:
                return metafield
        return None

    async def get_metafield(
        self, customer_id: str, namespace: str, key: str
    ) -> str | None:
        metafield = await self._find_metafield(customer_id, namespace, key)
        if metafield is None:
            return None
        value = metafield.get("value")
        return None if value is None else str(value)

    async def set_metafield(
        self,
        customer_id: str,
        namespace: str,
        key: str,
        value: str,
        value_type: str = "single_line_text_field",
    ) -> None:
        existing = await self._find_metafield(customer_id, namespace, key)
        if existing is not None:
            await self._client.put(
                f"/customers/{customer_id}/metafields/{existing['id']}.json",
                {"metafield": {"id": existing["id"], "value": value, "type": value_type}},
            )
        else:
            await self._client.post(
                f"/customers/{customer_id}/metafields.json",
                {
                    "metafield": {
                        "namespace": namespace,
                        "key": key,
                        "value": value,
                        "type": value_type,
                    }
                },
            )

    async def create_draft_order(
        self, customer_id: str, lines: list[DraftOrderLine], note: str | None = None
    ) -> str:
        payload: dict[str, Any] = {
            "line_items": [
                {"variant_id": int(line.variant_id), "quantity": line.quantity}
                for line in lines
            ],
            "customer": {"id": int(customer_id)},
            "use_customer_default_address": True,
        }
        if note:
            payload["note"] = note
        data = await self._client.post("/draft_orders.json", {"draft_order": payload})
        draft_order_id = str(data["draft_order"]["id"])
        logger.info(
            "shopify.draft_order_created",
            shop=self._client.store_domain,
            customer_id=customer_id,
            draft_order_id=draft_order_id,
        )
        return draft_order_id

    async def send_draft_order_invoice(
        self, draft_order_id: str, to: str | None = None
    ) -> None:
        invoice: dict[str, Any] = {}
        if to:
            invoice["to"] = to
        await self._client.post(
            f"/draft_orders/{draft_order_id}/send_invoice.json",
            {"draft_order_invoice": invoice},
        )
        logger.info(
            "shopify.invoice_sent",
            shop=self._client.store_domain,
            draft_order_id=draft_order_id,
        )


def build_adapter(
    brand: BrandAccountRead,
    vault: CredentialVault | None,
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> CRMAdapter:
    """Create a ShopifyAdapter for a brand account.

    Raises:
        ConfigurationError: If the brand has no shop/token, the vault is not
            configured, or the stored token cannot be decrypted (a credential
            that fails to decrypt is treated as absent).
    """
    settings = settings or get_settings()
    if not brand.has_crm_credentials:
        raise ConfigurationError(f"Shopify not connected for brand {brand.org_id}")
    if vault is None:
        raise ConfigurationError("Credential vault is not configured")

    try:
        access_token = vault.decrypt(brand.shopify_access_token_enc or "")
    except DecryptionError as exc:
        logger.warning(
            "shopify.credential_decrypt_failed",
            brand_org_id=brand.org_id,
            error=str(exc),
        )
        raise ConfigurationError(
            f"Stored Shopify token for brand {brand.org_id} is unreadable"
        ) from exc

    client = ShopifyClient(
        store_domain=brand.shopify_store_domain or "",
        access_token=access_token,
        api_version=settings.SHOPIFY_API_VERSION,
        timeout=settings.CRM_TIMEOUT_SECONDS,
        transport=transport,
    )
    return ShopifyAdapter(client)

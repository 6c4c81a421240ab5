#!/usr/bin/env python3
"""CLI script to connect a brand account to its Shopify store.

Usage:
    python scripts/connect_crm.py --org-id BRAND-1 --domain acme.myshopify.com --access-token shpat_xxx
    python scripts/connect_crm.py --org-id BRAND-1 --check

Connects directly to the database using DATABASE_URL from environment or .env file.
Credentials are encrypted with the credential vault (ENCRYPTION_KEY) before they
are written; --check decrypts the stored token to confirm the master secret matches.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Ensure project root is on sys.path so we can import src.sampling
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


async def connect(
    org_id: str,
    domain: str | None,
    access_token: str | None,
    api_key: str | None,
    api_secret: str | None,
    check: bool,
) -> int:
    """Store (or verify) encrypted Shopify credentials for one brand account."""
    from sqlalchemy import select

    from src.sampling.core.database import create_engine_from_settings, create_session_factory
    from src.sampling.core.errors import DecryptionError
    from src.sampling.core.vault import get_vault
    from src.sampling.models.retail import BrandAccountModel

    vault = get_vault()
    engine = create_engine_from_settings()
    session_factory = create_session_factory(engine)

    try:
        async with session_factory() as session:
            brand = (
                await session.execute(
                    select(BrandAccountModel).where(BrandAccountModel.org_id == org_id)
                )
            ).scalar_one_or_none()
            if brand is None:
                print(f"Brand account not found: {org_id}")
                return 1

            if check:
                try:
                    token = vault.decrypt_safe(brand.shopify_access_token_enc)
                except DecryptionError as exc:
                    print(f"Stored credentials cannot be decrypted: {exc}")
                    return 1
                if not brand.shopify_store_domain or not token:
                    print(f"{org_id}: Shopify not configured")
                    return 1
                print(f"{org_id}: Shopify configured for {brand.shopify_store_domain}")
                return 0

            brand.shopify_store_domain = domain
            brand.shopify_access_token_enc = vault.encrypt_safe(access_token)
            brand.shopify_api_key_enc = vault.encrypt_safe(api_key)
            brand.shopify_api_secret_enc = vault.encrypt_safe(api_secret)
            await session.commit()

        print(f"Shopify credentials stored for {org_id}:")
        print(f"  Domain:     {domain}")
        print(f"  API key:    {'set' if api_key else 'not set'}")
        print(f"  API secret: {'set' if api_secret else 'not set'}")
        return 0
    finally:
        await engine.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Connect a brand account to Shopify")
    parser.add_argument("--org-id", required=True, help="Brand organization id (e.g., BRAND-1)")
    parser.add_argument("--domain", default=None, help="Shopify store domain (acme.myshopify.com)")
    parser.add_argument("--access-token", default=None, help="Admin API access token")
    parser.add_argument("--api-key", default=None, help="App API key")
    parser.add_argument("--api-secret", default=None, help="App API secret")
    parser.add_argument("--check", action="store_true", help="Verify stored credentials decrypt")
    args = parser.parse_args()

    if not args.check and not (args.domain and args.access_token):
        parser.error("--domain and --access-token are required unless --check is given")

    sys.exit(
        asyncio.run(
            connect(
                args.org_id,
                args.domain,
                args.access_token,
                args.api_key,
                args.api_secret,
                args.check,
            )
        )
    )


if __name__ == "__main__":
    main()

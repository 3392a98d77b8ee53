#!/usr/bin/env python3
"""CLI script to seed an OAuth credential into the cache store.

Usage:
    uv run python scripts/seed_credentials.py --service hubspot --refresh-token <token>
    uv run python scripts/seed_credentials.py --service slack --access-token xoxe.xoxb-... \
        --refresh-token xoxe-1-... --expires-in 43200

Connects to Redis using REDIS_URL from environment or .env file. With only a
refresh token, the stored access token is left expired so the first request
performs a refresh exchange.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Ensure project root is on sys.path so we can import src.deal_context
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))

SERVICES = ("hubspot", "slack")


async def seed(service: str, access_token: str, refresh_token: str, expires_in: int) -> None:
    """Store one grant through the service's CredentialCache."""
    from src.deal_context.auth import TokenGrant
    from src.deal_context.config import get_settings
    from src.deal_context.core.cache import close_cache, init_cache
    from src.deal_context.main import build_credentials

    settings = get_settings()
    cache = init_cache(settings)
    try:
        credentials = build_credentials(settings, cache)[service]
        credential = await credentials.store(
            TokenGrant(access_token=access_token, refresh_token=refresh_token, expires_in=expires_in)
        )
    finally:
        await close_cache(cache)

    print(f"Seeded {service} credential:")
    print(f"  Refresh token stored: {bool(credential.refresh_token)}")
    print(f"  Expires at (ms):      {credential.expires_at_ms}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed an OAuth credential into Redis")
    parser.add_argument("--service", required=True, choices=SERVICES, help="Credential owner")
    parser.add_argument("--refresh-token", required=True, help="OAuth refresh token")
    parser.add_argument("--access-token", default="", help="Current access token, if known")
    parser.add_argument(
        "--expires-in",
        type=int,
        default=0,
        help="Seconds until the access token expires (0 forces a refresh on first use)",
    )
    args = parser.parse_args()

    asyncio.run(seed(args.service, args.access_token, args.refresh_token, args.expires_in))


if __name__ == "__main__":
    main()

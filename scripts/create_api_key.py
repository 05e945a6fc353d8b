"""
Issue an API key from the command line.

    python scripts/create_api_key.py "Matatu Tracker" ops@example.com --usage-type research --admin
"""

import argparse
import asyncio
import logging
import sys
import os
import uuid

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.database import async_session_maker, engine
from core.logging import setup_logging
from models.api_key import ApiKey
from models.base import Permission, UsageType

setup_logging()
logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Create a Nairobi Traffic API key")
    parser.add_argument("name", help="Application name")
    parser.add_argument("email", help="Contact email")
    parser.add_argument(
        "--usage-type",
        choices=[u.value for u in UsageType],
        default=UsageType.INTERNAL.value,
    )
    parser.add_argument("--daily-limit", type=int, default=None)
    parser.add_argument("--admin", action="store_true", help="Grant read, write and admin")
    return parser.parse_args(argv)


async def create_key(args) -> str:
    raw_key, prefix, key_hash = ApiKey.generate_key()
    permissions = [p.value for p in Permission] if args.admin else [Permission.READ.value]

    async with async_session_maker() as session:
        session.add(ApiKey(
            id=uuid.uuid4(),
            key_hash=key_hash,
            key_prefix=prefix,
            name=args.name,
            application_name=args.name,
            contact_email=args.email.lower(),
            usage_type=UsageType(args.usage_type),
            permissions=permissions,
            daily_limit=args.daily_limit,
            created_by="cli",
        ))
        await session.commit()

    await engine.dispose()
    logger.info(f"Created key {prefix} for {args.name} with permissions {permissions}")
    return raw_key


if __name__ == "__main__":
    key = asyncio.run(create_key(parse_args()))
    print(key)

#!/usr/bin/env python3
"""Create an admin account, or promote an existing user to admin.

Usage:
    python -m storefront.create_admin admin@example.com 'Password123' --name "Shop Admin"
"""
import argparse
import asyncio
import logging
import sys

from shared.utils import get_db_client, get_password_hash, settings
from shared.security_config import password_problems
from shared.logging_config import setup_logging
from storefront.models import UserDB, to_document

logger = logging.getLogger(__name__)


async def ensure_admin(db, email: str, password: str, full_name: str) -> str:
    """Return "created" or "promoted"."""
    existing = await db.users.find_one({"email": email})
    if existing:
        await db.users.update_one({"_id": existing["_id"]}, {"$set": {"role": "admin", "is_active": True}})
        return "promoted"

    user = UserDB(email=email, password_hash=get_password_hash(password), full_name=full_name, role="admin")
    await db.users.insert_one(to_document(user))
    return "created"


async def run(args) -> int:
    problems = password_problems(args.password)
    if problems:
        logger.error("Password must contain " + ", ".join(problems))
        return 1

    client = get_db_client()
    try:
        outcome = await ensure_admin(client[settings.DATABASE_NAME], args.email, args.password, args.name)
    finally:
        client.close()
    logger.info(f"Admin {args.email} {outcome}")
    return 0


def main():
    parser = argparse.ArgumentParser(description="Create or promote a storefront admin")
    parser.add_argument("email")
    parser.add_argument("password")
    parser.add_argument("--name", default="Administrator", help="Full name for a new account")
    args = parser.parse_args()

    setup_logging("create-admin", settings.LOG_LEVEL)
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()

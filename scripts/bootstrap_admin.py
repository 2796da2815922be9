#!/usr/bin/env python3
"""Create (or promote) a verified admin identity.

Usage:
    ADMIN_EMAIL=admin@example.com ADMIN_PASSWORD=Secure-Passw0rd python scripts/bootstrap_admin.py

    python scripts/bootstrap_admin.py --email admin@example.com --password Secure-Passw0rd --name "Site Admin"

Environment Variables:
    ADMIN_EMAIL: Email for the admin identity
    ADMIN_PASSWORD: Password for the admin identity
    DATABASE_URL: PostgreSQL connection string (in-memory store if not set)
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path
from typing import Optional

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


async def bootstrap_admin(
    runtime, email: str, password: str, name: Optional[str] = None, dry_run: bool = False
) -> dict:
    """Returns a dict with user_id, email and status.

    status is one of ``created``, ``promoted``, ``already_admin`` or ``dry_run``.
    """
    from authcore.service.passwords import validate_password_strength
    from authcore.storage.models import Role

    existing = runtime.store.find_by_email(email)
    if existing:
        if existing.role == Role.ADMIN:
            return {"user_id": existing.id, "email": existing.email, "status": "already_admin"}
        if dry_run:
            return {"user_id": existing.id, "email": existing.email, "status": "dry_run"}
        runtime.store.update_role(existing.id, Role.ADMIN)
        if not existing.email_verified:
            runtime.store.mark_email_verified(existing.id)
        return {"user_id": existing.id, "email": existing.email, "status": "promoted"}

    validate_password_strength(password)
    if dry_run:
        return {"user_id": None, "email": email, "status": "dry_run"}

    pwd_hash = await runtime.hasher.hash(password)
    user = runtime.store.create(email, pwd_hash, name=name, role=Role.ADMIN)
    runtime.store.mark_email_verified(user.id)
    return {"user_id": user.id, "email": user.email, "status": "created"}


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Bootstrap an admin identity",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--email",
        default=os.environ.get("ADMIN_EMAIL"),
        help="Admin email (or set ADMIN_EMAIL env var)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("ADMIN_PASSWORD"),
        help="Admin password (or set ADMIN_PASSWORD env var)",
    )
    parser.add_argument("--name", default=None, help="Display name")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )
    args = parser.parse_args()

    if not args.email:
        parser.error("--email or ADMIN_EMAIL environment variable required")
    if not args.password:
        parser.error("--password or ADMIN_PASSWORD environment variable required")

    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        os.environ.setdefault("TEST_MODE", "true")
        print("Note: Using in-memory store (set DATABASE_URL for persistence)")
    os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")

    # Imported late so the environment above is in place before settings load
    from authcore.service.errors import ServiceError
    from authcore.service.runtime import build_runtime

    async def run() -> dict:
        # One event loop for the work and the cleanup; async Redis clients
        # are bound to the loop that first used them
        runtime = build_runtime()
        try:
            return await bootstrap_admin(
                runtime, args.email, args.password, args.name, args.dry_run
            )
        finally:
            await runtime.close()

    try:
        result = asyncio.run(run())
    except ServiceError as exc:
        print(f"Error: {exc.message}")
        sys.exit(1)

    status = result["status"]
    if status == "created":
        print(f"Created admin {result['email']} (id: {result['user_id']})")
    elif status == "promoted":
        print(f"Promoted existing user {result['email']} to admin")
    elif status == "already_admin":
        print(f"No changes needed: {result['email']} is already an admin")
    else:
        print(f"[DRY RUN] Would set up admin {result['email']}")


if __name__ == "__main__":
    main()

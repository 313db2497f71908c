#!/usr/bin/env python3
"""Create or promote an administrator account.

Usage:
    ADMIN_EMAIL=admin@example.com ADMIN_PASSWORD=Sup3rSecret python scripts/bootstrap_admin.py

    python scripts/bootstrap_admin.py --email admin@example.com --password Sup3rSecret \
        --first-name Ada --last-name Admin

Environment Variables:
    ADMIN_EMAIL: Email for the admin account
    ADMIN_PASSWORD: Password (8+ characters with upper, lower and digit)
    DATABASE_URL: PostgreSQL connection string (memory store when unset)
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys


async def bootstrap_admin(
    email: str,
    password: str,
    *,
    first_name: str = "Admin",
    last_name: str = "User",
    dry_run: bool = False,
) -> dict:
    """Create ``email`` as an admin, or promote the existing account.

    Returns a dict with ``user_id``, ``email`` and ``status`` (``created``,
    ``promoted``, ``already_admin`` or ``dry_run``).
    """
    # Imported late so the environment defaults below are in place first
    from suiteauth.service.crypto import hash_password
    from suiteauth.service.runtime import get_runtime
    from suiteauth.storage.models import Role

    runtime = get_runtime()
    existing = runtime.store.get_user_by_email(email)

    if existing:
        if existing.role is Role.ADMIN:
            return {"user_id": existing.id, "email": existing.email, "status": "already_admin"}
        if dry_run:
            return {"user_id": existing.id, "email": existing.email, "status": "dry_run"}
        runtime.store.update_user_role(existing.id, Role.ADMIN)
        runtime.store.set_user_active(existing.id, True)
        return {"user_id": existing.id, "email": existing.email, "status": "promoted"}

    if dry_run:
        return {"user_id": None, "email": email, "status": "dry_run"}

    account = runtime.store.create_user(
        email,
        first_name=first_name,
        last_name=last_name,
        password_hash=hash_password(password, iterations=runtime.settings.pbkdf2_iterations),
        role=Role.ADMIN,
    )
    return {"user_id": account.id, "email": account.email, "status": "created"}


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Bootstrap an administrator account",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--email", default=os.environ.get("ADMIN_EMAIL"))
    parser.add_argument("--password", default=os.environ.get("ADMIN_PASSWORD"))
    parser.add_argument("--first-name", default="Admin")
    parser.add_argument("--last-name", default="User")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )
    args = parser.parse_args()

    from suiteauth.service.validation import is_valid_email, password_problems

    if not args.email or not is_valid_email(args.email):
        print("Error: a valid --email or ADMIN_EMAIL is required")
        sys.exit(1)
    if not args.password:
        print("Error: --password or ADMIN_PASSWORD environment variable required")
        sys.exit(1)
    problems = password_problems(args.password)
    if problems:
        print("Error: " + "; ".join(problems))
        sys.exit(1)

    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        os.environ.setdefault("TEST_MODE", "true")
        print("Note: using the in-memory store (set DATABASE_URL for persistence)")
    os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")

    try:
        result = asyncio.run(
            bootstrap_admin(
                args.email,
                args.password,
                first_name=args.first_name,
                last_name=args.last_name,
                dry_run=args.dry_run,
            )
        )
    except Exception as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    print(f"{result['status']}: {result['email']} (id: {result['user_id']})")


if __name__ == "__main__":
    main()

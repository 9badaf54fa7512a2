#!/usr/bin/env python3
"""Bootstrap an admin or superadmin account in the admin partition.

Usage:
    # Using environment variables:
    ADMIN_EMAIL=admin@gov.lk ADMIN_PASSWORD=SecurePassword123! python scripts/bootstrap_admin.py

    # Or with command line args:
    python scripts/bootstrap_admin.py --email admin@gov.lk --password SecurePassword123! --role superadmin

Environment Variables:
    ADMIN_EMAIL: Email for the admin account
    ADMIN_PASSWORD: Password for the admin account (must meet complexity requirements)
    DATABASE_URL: PostgreSQL connection string (optional, uses memory store if not set)
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

ADMIN_ROLES = ("admin", "superadmin")


def validate_password(password: str) -> bool:
    """Check password meets complexity requirements."""
    if len(password) < 12:
        return False
    has_upper = any(c.isupper() for c in password)
    has_lower = any(c.islower() for c in password)
    has_digit = any(c.isdigit() for c in password)
    has_special = any(c in "!@#$%^&*()_+-=[]{}|;':\",./<>?" for c in password)
    return sum([has_upper, has_lower, has_digit, has_special]) >= 3


async def bootstrap_admin(
    email: str, password: str, role: str = "admin", dry_run: bool = False
) -> dict:
    """Create an admin account, or promote and reactivate an existing one.

    Returns:
        dict with principal_id, email, role and status
        ('created', 'promoted', 'already_admin' or 'dry_run')
    """
    # Import here to avoid loading config before env vars are set
    from govlink.service.partitions import Partition
    from govlink.service.runtime import get_runtime
    from govlink.storage.models import AccountStatus

    if role not in ADMIN_ROLES:
        raise ValueError(f"role must be one of: {', '.join(ADMIN_ROLES)}")

    runtime = get_runtime()
    partition = Partition.ADMIN.value

    existing = await asyncio.to_thread(
        runtime.credentials.find_by_email, partition, email
    )

    if existing:
        if existing.role == role and existing.status == AccountStatus.ACTIVE.value:
            print(f"Account {email} already exists as {role} (id: {existing.id})")
            return {
                "principal_id": existing.id,
                "email": existing.email,
                "role": role,
                "status": "already_admin",
            }

        if dry_run:
            print(f"[DRY RUN] Would promote existing account {email} to {role}")
            return {"principal_id": existing.id, "email": existing.email, "role": role, "status": "dry_run"}

        await asyncio.to_thread(
            runtime.store.update_principal,
            partition,
            existing.id,
            {"role": role, "status": AccountStatus.ACTIVE.value},
        )
        print(f"Promoted existing account {email} to {role} (id: {existing.id})")
        return {
            "principal_id": existing.id,
            "email": existing.email,
            "role": role,
            "status": "promoted",
        }

    if dry_run:
        print(f"[DRY RUN] Would create {role} account: {email}")
        return {"principal_id": None, "email": email, "role": role, "status": "dry_run"}

    digest, algo = await asyncio.to_thread(runtime.credentials.hash_password, password)
    principal = await asyncio.to_thread(
        runtime.store.create_principal,
        partition,
        email,
        password_hash=digest,
        password_algo=algo,
        role=role,
        status=AccountStatus.ACTIVE.value,
        email_verified=True,
    )

    print(f"Created {role} account: {principal.email} (id: {principal.id})")
    return {
        "principal_id": principal.id,
        "email": principal.email,
        "role": role,
        "status": "created",
    }


def main():
    parser = argparse.ArgumentParser(
        description="Bootstrap an admin account for GovLink",
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
    parser.add_argument(
        "--role",
        choices=ADMIN_ROLES,
        default="admin",
        help="Admin role to grant",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )

    args = parser.parse_args()

    if not args.email:
        print("Error: --email or ADMIN_EMAIL environment variable required")
        sys.exit(1)

    if not args.password:
        print("Error: --password or ADMIN_PASSWORD environment variable required")
        sys.exit(1)

    if not validate_password(args.password):
        print("Error: Password must be at least 12 characters with 3+ character classes")
        print("       (uppercase, lowercase, digits, special characters)")
        sys.exit(1)

    if not os.environ.get("SHARED_FS_ROOT"):
        os.environ["SHARED_FS_ROOT"] = "/tmp/govlink-bootstrap"

    # Use memory store if no database configured
    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        print("Note: Using in-memory store (set DATABASE_URL for persistence)")

    # Rate limits are irrelevant for a one-shot script
    os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")

    try:
        result = asyncio.run(
            bootstrap_admin(args.email, args.password, args.role, args.dry_run)
        )

        if result["status"] == "created":
            print("\nAdmin account created successfully!")
            print(f"  Email: {result['email']}")
            print(f"  Role: {result['role']}")
            print(f"  Principal ID: {result['principal_id']}")
        elif result["status"] == "promoted":
            print(f"\nExisting account promoted to {result['role']}!")
        elif result["status"] == "already_admin":
            print("\nNo changes needed - account already has that role.")

    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()

"""Seed an admin account for local testing.

Usage:
    python fastapi-backend/scripts/seed_admin.py --name "Admin" --email admin@example.com --password secret --superuser
"""

import argparse
import asyncio
import sys
from pathlib import Path

from fastapi import HTTPException

ROOT = Path(__file__).resolve().parents[2]
sys.path.append(str(ROOT / "fastapi-backend"))

from hostel_tickets.database import get_session, init_db
from hostel_tickets.ticketing import ensure_ticket_counter
from hostel_tickets import auth


async def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--name", required=True)
    parser.add_argument("--email", required=True)
    parser.add_argument("--password", required=True)
    parser.add_argument("--department")
    parser.add_argument("--phone")
    parser.add_argument(
        "--superuser",
        action="store_true",
        help="Also grant user and admin management permissions",
    )
    args = parser.parse_args()

    # Ensure DB tables and the ticket counter exist
    print("Initializing DB...")
    await init_db()

    async for session in get_session():
        await ensure_ticket_counter(session)
        print(f"Creating admin {args.email}...")
        try:
            admin = await auth.create_admin(
                session,
                full_name=args.name,
                email=args.email,
                password=args.password,
                department=args.department,
                phone=args.phone,
                can_manage_users=args.superuser,
                can_manage_admins=args.superuser,
            )
        except HTTPException as exc:
            print(f"Skipped: {exc.detail}")
            return 1
        print(f"Created admin id={admin.id} email={admin.email} superuser={args.superuser}")
        token = auth.create_access_token(subject=admin.id, role=auth.ADMIN)
        print(token)
        break  # Use one session then exit
    return 0


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        pass

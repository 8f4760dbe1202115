"""
Seed a demo organization: an admin, a location manager, two locations and a few items.

Opening stock and the location assignment go through the same services the API uses,
so the ledger is consistent from the first row.

This script can be run from either:
- backend/: `python scripts/seed_demo_org.py`
- repo root: `python backend/scripts/seed_demo_org.py`
"""

import asyncio
import sys
import uuid
from pathlib import Path

# Allow running from repo root by ensuring `backend/` is on sys.path
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from fastapi_users.password import PasswordHelper  # noqa: E402
from sqlalchemy import select  # noqa: E402

from core.context import ActorContext  # noqa: E402
from db.database import (  # noqa: E402
    async_session_maker,
    create_db_and_tables,
    Item,
    Location,
    LocationManager,
    Organization,
    User,
)
from services import assignments as tracker  # noqa: E402
from services import ledger  # noqa: E402

password_helper = PasswordHelper()

DEMO_SLUG = "demo-stockroom"
DEMO_PASSWORD = "demo-password-123"

LOCATIONS = [
    ("Front Desk", "1 Main Street"),
    ("Warehouse", "99 Dock Road"),
]

ITEMS = [
    # name, sku, category, opening stock
    ("Event T-Shirt", "TSH-001", "apparel", 120),
    ("Sticker Pack", "STK-010", "swag", 500),
    ("Water Bottle", "BOT-002", "swag", 40),
]


async def get_or_create_user(session, org: Organization, email: str, role: str, display_name: str) -> User:
    result = await session.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if user:
        return user

    user = User(
        email=email,
        hashed_password=password_helper.hash(DEMO_PASSWORD),
        is_active=True,
        is_superuser=False,
        is_verified=True,
        organization_id=org.id,
        role=role,
        display_name=display_name,
    )
    session.add(user)
    await session.flush()
    return user


async def main() -> None:
    await create_db_and_tables()

    async with async_session_maker() as session:
        result = await session.execute(select(Organization).where(Organization.slug == DEMO_SLUG))
        if result.scalar_one_or_none():
            print("Demo organization already exists; nothing to do.")
            return

        org = Organization(name="Demo Stockroom", slug=DEMO_SLUG)
        session.add(org)
        await session.flush()

        admin = await get_or_create_user(session, org, "admin@demo-stockroom.io", "admin", "Demo Admin")
        manager = await get_or_create_user(session, org, "desk@demo-stockroom.io", "user", "Desk Manager")
        ctx = ActorContext(user_id=admin.id, role="admin", organization_id=org.id)

        locations = []
        for name, address in LOCATIONS:
            loc = Location(organization_id=org.id, name=name, address=address)
            session.add(loc)
            locations.append(loc)
        await session.flush()
        session.add(LocationManager(location_id=locations[0].id, user_id=manager.id, assigned_by=admin.id))

        items = []
        for name, sku, category, quantity in ITEMS:
            item = Item(id=uuid.uuid4(), organization_id=org.id, name=name, sku=sku, category=category, created_by=admin.id)
            session.add(item)
            await session.flush()
            ledger.record_initial_stock(session, ctx, item, quantity)
            items.append(item)
        await session.commit()

        # the front desk holds 30 shirts
        await tracker.create_assignment(session, ctx, items[0].id, location_id=locations[0].id, quantity=30)

        print(f"Seeded organization {org.slug}: {len(items)} items, {len(locations)} locations")
        print(f"Log in as admin@demo-stockroom.io or desk@demo-stockroom.io with password {DEMO_PASSWORD}")


if __name__ == "__main__":
    asyncio.run(main())

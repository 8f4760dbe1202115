import os

# Settings are read at import time; keep the module-level engine off Postgres.
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")

import uuid
from types import SimpleNamespace

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from core.context import ActorContext, get_actor_context
from db.database import (
    Base,
    get_async_session,
    Item,
    Location,
    LocationManager,
    Organization,
    User,
)
from services import ledger


@pytest.fixture
async def engine(tmp_path):
    # a file, so every session gets its own connection and sees only committed data
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'stockroom.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


def make_user(org, email, role="user", display_name=None):
    return User(
        id=uuid.uuid4(),
        email=email,
        hashed_password="not-a-real-hash",
        is_active=True,
        is_superuser=False,
        is_verified=True,
        organization_id=org.id,
        role=role,
        display_name=display_name,
    )


def ctx_for(user) -> ActorContext:
    return ActorContext(user_id=user.id, role=user.role, organization_id=user.organization_id)


async def add_item(db, ctx, name, quantity, sku=None):
    """Create an item with opening stock; returns its id."""
    item = Item(id=uuid.uuid4(), organization_id=ctx.organization_id, name=name, sku=sku, created_by=ctx.user_id)
    db.add(item)
    await db.flush()
    ledger.record_initial_stock(db, ctx, item, quantity)
    await db.commit()
    return item.id


@pytest.fixture
async def world(db):
    """
    One organization with an admin, a manager of the front desk, a plain member,
    two locations and one item with 10 units. A second organization is there to
    check scoping.
    """
    org = Organization(id=uuid.uuid4(), name="Acme", slug="acme")
    other_org = Organization(id=uuid.uuid4(), name="Globex", slug="globex")
    db.add_all([org, other_org])
    await db.flush()

    admin = make_user(org, "admin@acme.io", role="admin", display_name="Ada")
    manager = make_user(org, "desk@acme.io", display_name="Desmond")
    member = make_user(org, "member@acme.io")
    outsider = make_user(other_org, "boss@globex.io", role="admin")
    db.add_all([admin, manager, member, outsider])
    await db.flush()

    front_desk = Location(id=uuid.uuid4(), organization_id=org.id, name="Front Desk", address="1 Main St")
    warehouse = Location(id=uuid.uuid4(), organization_id=org.id, name="Warehouse")
    db.add_all([front_desk, warehouse])
    await db.flush()
    db.add(LocationManager(location_id=front_desk.id, user_id=manager.id, assigned_by=admin.id))
    await db.commit()

    admin_ctx = ctx_for(admin)
    shirt_id = await add_item(db, admin_ctx, "T-Shirt", 10, sku="TSH-1")

    # ids only: a rollback inside a service expires every loaded object
    return SimpleNamespace(
        org_id=org.id,
        other_org_id=other_org.id,
        admin_id=admin.id,
        manager_id=manager.id,
        member_id=member.id,
        outsider_id=outsider.id,
        front_desk_id=front_desk.id,
        warehouse_id=warehouse.id,
        shirt_id=shirt_id,
        admin_ctx=admin_ctx,
        manager_ctx=ctx_for(manager),
        member_ctx=ctx_for(member),
        outsider_ctx=ctx_for(outsider),
    )


@pytest.fixture
def actor(world):
    """Mutable holder for the caller of API requests; admin unless a test switches it."""
    return {"ctx": world.admin_ctx}


@pytest.fixture
async def api(session_maker, actor):
    from main import app

    async def override_session():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_async_session] = override_session
    app.dependency_overrides[get_actor_context] = lambda: actor["ctx"]
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()

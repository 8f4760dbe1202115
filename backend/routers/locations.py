import logging
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.context import ActorContext, get_actor_context
from core.errors import Conflict, NotFound
from db.database import (
    get_async_session,
    Assignment as AssignmentModel,
    InventoryRequest as InventoryRequestModel,
    LedgerEntry as LedgerEntryModel,
    Location as LocationModel,
    LocationManager as LocationManagerModel,
    User,
    utcnow,
)
from schemas.inventory import LedgerEntryRead
from schemas.locations import (
    LocationCreate,
    LocationManagerCreate,
    LocationManagerRead,
    LocationRead,
    LocationUpdate,
)
from services import ledger
from services.queries import get_location, get_member, managed_locations

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/", response_model=List[LocationRead])
async def list_locations(
    ctx: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    counts = (
        select(LocationManagerModel.location_id, func.count().label("n"))
        .where(LocationManagerModel.revoked_at.is_(None))
        .group_by(LocationManagerModel.location_id)
        .subquery()
    )
    res = await db.execute(
        select(LocationModel, counts.c.n)
        .outerjoin(counts, counts.c.location_id == LocationModel.id)
        .where(LocationModel.organization_id == ctx.organization_id)
        .order_by(func.lower(LocationModel.name).asc())
    )
    return [LocationRead(**loc.to_schema, manager_count=int(n or 0)) for (loc, n) in res.all()]


@router.get("/managed", response_model=List[LocationRead])
async def list_my_locations(
    ctx: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    return [LocationRead(**loc.to_schema) for loc in await managed_locations(db, ctx)]


@router.post("/", response_model=LocationRead, status_code=status.HTTP_201_CREATED)
async def create_location(
    payload: LocationCreate,
    ctx: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    ctx.require_admin("create locations")
    m = LocationModel(
        organization_id=ctx.organization_id,
        name=payload.name,
        address=payload.address,
        latitude=payload.latitude,
        longitude=payload.longitude,
    )
    db.add(m)
    await db.commit()
    await db.refresh(m)
    return LocationRead(**m.to_schema, manager_count=0)


@router.get("/{location_id}", response_model=LocationRead)
async def read_location(
    location_id: UUID,
    ctx: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    return LocationRead(**(await get_location(db, ctx, location_id)).to_schema)


@router.patch("/{location_id}", response_model=LocationRead)
async def update_location(
    location_id: UUID,
    payload: LocationUpdate,
    ctx: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    ctx.require_admin("edit locations")
    m = await get_location(db, ctx, location_id)

    data = payload.model_dump(exclude_unset=True)
    if data.get("name") is not None:
        m.name = data["name"]
    if "address" in data:
        m.address = (data["address"] or "").strip() or None
    if "latitude" in data:
        m.latitude = data["latitude"]
    if "longitude" in data:
        m.longitude = data["longitude"]

    await db.commit()
    await db.refresh(m)
    return LocationRead(**m.to_schema)


@router.delete("/{location_id}", response_model=dict)
async def delete_location(
    location_id: UUID,
    ctx: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    """Delete a location nothing refers to; its manager grants go with it."""
    ctx.require_admin("delete locations")
    m = await get_location(db, ctx, location_id)

    refs = {}
    for label, model, column in (
        ("assignments", AssignmentModel, AssignmentModel.location_id),
        ("ledger entries", LedgerEntryModel, LedgerEntryModel.location_id),
        ("requests", InventoryRequestModel, InventoryRequestModel.location_id),
    ):
        res = await db.execute(select(func.count()).select_from(model).where(column == m.id))
        n = int(res.scalar() or 0)
        if n:
            refs[label] = n
    if refs:
        summary = ", ".join(f"{n} {label}" for label, n in refs.items())
        raise Conflict(f"Location is still referenced by {summary}", location_id=m.id, references=summary)

    await db.execute(delete(LocationManagerModel).where(LocationManagerModel.location_id == m.id))
    await db.delete(m)
    await db.commit()
    logger.info("Location %s deleted by %s", location_id, ctx.user_id)
    return {"ok": True}


@router.get("/{location_id}/history", response_model=List[LedgerEntryRead])
async def location_history(
    location_id: UUID,
    limit: int = Query(100, ge=1, le=500),
    ctx: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    entries = await ledger.list_location_history(db, ctx, location_id, limit=limit)
    return [LedgerEntryRead(**e.to_schema) for e in entries]


@router.get("/{location_id}/managers", response_model=List[LocationManagerRead])
async def list_managers(
    location_id: UUID,
    include_revoked: bool = False,
    ctx: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    await get_location(db, ctx, location_id)
    stmt = (
        select(LocationManagerModel, User.email, User.display_name)
        .join(User, User.id == LocationManagerModel.user_id)
        .where(LocationManagerModel.location_id == location_id)
    )
    if not include_revoked:
        stmt = stmt.where(LocationManagerModel.revoked_at.is_(None))
    res = await db.execute(stmt.order_by(LocationManagerModel.assigned_at.asc()))
    return [
        LocationManagerRead(**lm.to_schema, email=email, display_name=display_name)
        for (lm, email, display_name) in res.all()
    ]


@router.post("/{location_id}/managers", response_model=LocationManagerRead, status_code=status.HTTP_201_CREATED)
async def add_manager(
    location_id: UUID,
    payload: LocationManagerCreate,
    ctx: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    ctx.require_admin("assign location managers")
    location = await get_location(db, ctx, location_id)
    member = await get_member(db, ctx, payload.user_id)

    existing = await db.execute(
        select(LocationManagerModel).where(
            LocationManagerModel.location_id == location.id,
            LocationManagerModel.user_id == member.id,
            LocationManagerModel.revoked_at.is_(None),
        )
    )
    if existing.scalars().first():
        raise Conflict("User already manages this location", location_id=location.id, user_id=member.id)

    lm = LocationManagerModel(location_id=location.id, user_id=member.id, assigned_by=ctx.user_id)
    db.add(lm)
    await db.commit()
    await db.refresh(lm)
    logger.info("User %s now manages location %s", member.id, location.id)
    return LocationManagerRead(**lm.to_schema, email=member.email, display_name=member.display_name)


@router.post("/{location_id}/managers/{manager_id}/revoke", response_model=LocationManagerRead)
async def revoke_manager(
    location_id: UUID,
    manager_id: UUID,
    ctx: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    ctx.require_admin("revoke location managers")
    await get_location(db, ctx, location_id)

    res = await db.execute(
        select(LocationManagerModel).where(
            LocationManagerModel.id == manager_id,
            LocationManagerModel.location_id == location_id,
        )
    )
    lm = res.scalar_one_or_none()
    if not lm:
        raise NotFound("Location manager", manager_id)

    if lm.revoked_at is None:
        lm.revoked_at = utcnow()
        await db.commit()
        await db.refresh(lm)
        logger.info("Manager grant %s revoked by %s", lm.id, ctx.user_id)
    return LocationManagerRead(**lm.to_schema)

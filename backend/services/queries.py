"""Organization-scoped lookups shared by the ledger services."""

from typing import Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.context import ActorContext
from core.errors import NotFound
from db.database import Assignment, AssignmentSync, Item, Location, LocationManager, User


async def get_item(
    db: AsyncSession,
    ctx: ActorContext,
    item_id: UUID,
    *,
    include_deleted: bool = False,
    fresh: bool = False,
) -> Item:
    stmt = select(Item).where(Item.id == item_id, Item.organization_id == ctx.organization_id)
    if not include_deleted:
        stmt = stmt.where(Item.deleted_at.is_(None))
    if fresh:
        stmt = stmt.execution_options(populate_existing=True)
    item = (await db.execute(stmt)).scalar_one_or_none()
    if item is None:
        raise NotFound("Item", item_id)
    return item


async def get_location(db: AsyncSession, ctx: ActorContext, location_id: UUID) -> Location:
    res = await db.execute(
        select(Location).where(Location.id == location_id, Location.organization_id == ctx.organization_id)
    )
    location = res.scalar_one_or_none()
    if location is None:
        raise NotFound("Location", location_id)
    return location


async def get_member(db: AsyncSession, ctx: ActorContext, user_id: UUID) -> User:
    res = await db.execute(
        select(User).where(User.id == user_id, User.organization_id == ctx.organization_id)
    )
    user = res.scalar_one_or_none()
    if user is None:
        raise NotFound("User", user_id)
    return user


async def get_assignment(
    db: AsyncSession, ctx: ActorContext, assignment_id: UUID, *, fresh: bool = False
) -> Assignment:
    stmt = (
        select(Assignment)
        .join(Item, Item.id == Assignment.item_id)
        .where(Assignment.id == assignment_id, Item.organization_id == ctx.organization_id)
    )
    if fresh:
        stmt = stmt.execution_options(populate_existing=True)
    assignment = (await db.execute(stmt)).scalar_one_or_none()
    if assignment is None:
        raise NotFound("Assignment", assignment_id)
    return assignment


async def active_assignments(db: AsyncSession, item_id: UUID, *, fresh: bool = False) -> List[Assignment]:
    stmt = (
        select(Assignment)
        .where(Assignment.item_id == item_id, Assignment.revoked_at.is_(None))
        .order_by(Assignment.assigned_at.asc())
    )
    if fresh:
        stmt = stmt.execution_options(populate_existing=True)
    return list((await db.execute(stmt)).scalars().all())


async def active_location_assignment(
    db: AsyncSession, item_id: UUID, location_id: UUID, *, fresh: bool = False
) -> Optional[Assignment]:
    stmt = select(Assignment).where(
        Assignment.item_id == item_id,
        Assignment.location_id == location_id,
        Assignment.revoked_at.is_(None),
    )
    if fresh:
        stmt = stmt.execution_options(populate_existing=True)
    return (await db.execute(stmt.limit(1))).scalars().first()


async def pending_sync_deltas(db: AsyncSession, assignment_ids: Iterable[UUID]) -> Dict[UUID, int]:
    """Net delta of the still-pending syncs per assignment id."""
    ids = list(assignment_ids)
    if not ids:
        return {}
    res = await db.execute(
        select(AssignmentSync.assignment_id, func.sum(AssignmentSync.delta))
        .where(AssignmentSync.assignment_id.in_(ids), AssignmentSync.status == "pending")
        .group_by(AssignmentSync.assignment_id)
    )
    return {assignment_id: int(total or 0) for assignment_id, total in res.all()}


def effective_quantity(assignment: Assignment, pending: Dict[UUID, int]) -> Optional[int]:
    """
    `quantity_assigned` with the pending syncs already counted, floored at 0
    like the sync itself. None for an unbounded assignment.
    """
    if assignment.quantity_assigned is None:
        return None
    return max(0, int(assignment.quantity_assigned) + pending.get(assignment.id, 0))


async def is_active_manager(db: AsyncSession, user_id: UUID, location_id: UUID) -> bool:
    res = await db.execute(
        select(LocationManager.id).where(
            LocationManager.user_id == user_id,
            LocationManager.location_id == location_id,
            LocationManager.revoked_at.is_(None),
        ).limit(1)
    )
    return res.scalar_one_or_none() is not None


async def managed_locations(db: AsyncSession, ctx: ActorContext) -> List[Location]:
    res = await db.execute(
        select(Location)
        .join(LocationManager, LocationManager.location_id == Location.id)
        .where(
            LocationManager.user_id == ctx.user_id,
            LocationManager.revoked_at.is_(None),
            Location.organization_id == ctx.organization_id,
        )
        .order_by(Location.name.asc())
    )
    return list(res.scalars().unique().all())

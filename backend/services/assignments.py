"""
Assignment tracker: active allocations of an item's stock to users or locations.

Totals are recomputed from the active rows on every call. Over-assignment
(more assigned than in stock) is reported as a warning and never corrected
here; an admin resolves it by revoking or restocking.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.context import ActorContext
from core.errors import (
    Conflict,
    ExceedsAvailable,
    InvalidAssignmentTarget,
    InvalidQuantity,
    NothingAvailable,
)
from db.database import Assignment, Item, utcnow
from services.queries import (
    active_assignments,
    effective_quantity,
    get_assignment,
    get_item,
    get_location,
    get_member,
    pending_sync_deltas,
)

logger = logging.getLogger(__name__)


@dataclass
class AssignmentSummary:
    item: Item
    assignments: List[Assignment]
    total_assigned: int
    available: int
    over_assigned_by: int
    warning: Optional[str] = None


def summarize(item: Item, assignments: List[Assignment], pending: Optional[Dict[UUID, int]] = None) -> AssignmentSummary:
    """`pending` maps assignment ids to the net delta of their unapplied syncs."""
    active = [a for a in assignments if a.is_active]
    total_assigned = sum(effective_quantity(a, pending or {}) or 0 for a in active)
    quantity = int(item.quantity or 0)
    available = max(0, quantity - total_assigned)
    over_by = max(0, total_assigned - quantity)
    warning = None
    if over_by:
        warning = (
            f"Over-assigned by {over_by} units: {total_assigned} assigned but only {quantity} in stock. "
            "Revoke some assignments or restock."
        )
    return AssignmentSummary(
        item=item,
        assignments=active,
        total_assigned=total_assigned,
        available=available,
        over_assigned_by=over_by,
        warning=warning,
    )


async def assignment_summary(db: AsyncSession, ctx: ActorContext, item_id: UUID) -> AssignmentSummary:
    item = await get_item(db, ctx, item_id, fresh=True)
    rows = await active_assignments(db, item.id, fresh=True)
    summary = summarize(item, rows, await pending_sync_deltas(db, [a.id for a in rows]))
    if summary.warning:
        logger.warning("Item %s is over-assigned: %s > %s", item.id, summary.total_assigned, item.quantity)
    return summary


async def create_assignment(
    db: AsyncSession,
    ctx: ActorContext,
    item_id: UUID,
    *,
    user_id: Optional[UUID] = None,
    location_id: Optional[UUID] = None,
    quantity: Optional[int] = None,
    notes: Optional[str] = None,
) -> Assignment:
    ctx.require_admin("assign items")

    if (user_id is None) == (location_id is None):
        raise InvalidAssignmentTarget("Assign to exactly one of a user or a location")
    if quantity is not None and quantity <= 0:
        raise InvalidQuantity("Quantity must be greater than 0", requested=quantity)

    summary = await assignment_summary(db, ctx, item_id)
    item = summary.item

    if user_id is not None:
        await get_member(db, ctx, user_id)
        same_target = [a for a in summary.assignments if a.user_id == user_id]
    else:
        await get_location(db, ctx, location_id)
        same_target = [a for a in summary.assignments if a.location_id == location_id]
    if same_target:
        raise Conflict(
            "This item already has an active assignment for that target; revoke it first",
            item_id=item.id,
            assignment_id=same_target[0].id,
        )

    if quantity is not None:
        if quantity > summary.available:
            raise ExceedsAvailable(
                f"Cannot assign {quantity} units. Only {summary.available} available to assign "
                f"({item.quantity} in stock - {summary.total_assigned} already assigned).",
                item_id=item.id,
                requested=quantity,
                available=summary.available,
                in_stock=int(item.quantity),
                assigned=summary.total_assigned,
            )
    elif summary.available <= 0:
        raise NothingAvailable(
            f"No units available to assign. All {item.quantity} units are already assigned.",
            item_id=item.id,
            available=summary.available,
            in_stock=int(item.quantity),
            assigned=summary.total_assigned,
        )

    assignment = Assignment(
        item_id=item.id,
        user_id=user_id,
        location_id=location_id,
        quantity_assigned=quantity,
        notes=(notes or "").strip() or None,
        assigned_by=ctx.user_id,
    )
    db.add(assignment)
    await db.commit()
    await db.refresh(assignment)
    logger.info(
        "Assignment %s: item %s -> %s %s (%s units) by %s",
        assignment.id, item.id,
        "user" if user_id else "location", user_id or location_id,
        quantity if quantity is not None else "unbounded", ctx.user_id,
    )
    return assignment


async def revoke_assignment(db: AsyncSession, ctx: ActorContext, assignment_id: UUID) -> Assignment:
    ctx.require_admin("revoke assignments")

    assignment = await get_assignment(db, ctx, assignment_id, fresh=True)
    if assignment.revoked_at is not None:
        return assignment

    assignment.revoked_at = utcnow()
    await db.commit()
    await db.refresh(assignment)
    logger.info("Assignment %s revoked by %s", assignment.id, ctx.user_id)
    return assignment


async def list_assignments(
    db: AsyncSession,
    ctx: ActorContext,
    *,
    item_id: Optional[UUID] = None,
    user_id: Optional[UUID] = None,
    location_id: Optional[UUID] = None,
    include_revoked: bool = False,
) -> List[Assignment]:
    stmt = (
        select(Assignment)
        .join(Item, Item.id == Assignment.item_id)
        .where(Item.organization_id == ctx.organization_id, Item.deleted_at.is_(None))
    )
    if item_id:
        stmt = stmt.where(Assignment.item_id == item_id)
    if user_id:
        stmt = stmt.where(Assignment.user_id == user_id)
    if location_id:
        stmt = stmt.where(Assignment.location_id == location_id)
    if not include_revoked:
        stmt = stmt.where(Assignment.revoked_at.is_(None))
    res = await db.execute(stmt.order_by(Assignment.assigned_at.desc()))
    return list(res.scalars().all())

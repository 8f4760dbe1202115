"""
Request intake: location managers ask for more stock of an item.

Requests never touch the ledger or the assignments. Approving or denying one
only records the answer.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.context import ActorContext
from core.errors import InvalidQuantity, InvalidTransition, NotAuthorized, NotFound
from db.database import InventoryRequest, Location, utcnow
from services.queries import (
    active_location_assignment,
    effective_quantity,
    get_item,
    get_location,
    is_active_manager,
    managed_locations,
    pending_sync_deltas,
)

logger = logging.getLogger(__name__)


@dataclass
class ManagedLocationContext:
    location: Location
    assigned_quantity: int


async def submit_request(
    db: AsyncSession,
    ctx: ActorContext,
    location_id: UUID,
    item_id: UUID,
    quantity: int,
    notes: Optional[str] = None,
) -> InventoryRequest:
    if quantity is None or quantity <= 0:
        raise InvalidQuantity("Please enter a valid quantity", requested=quantity)

    location = await get_location(db, ctx, location_id)
    item = await get_item(db, ctx, item_id)
    if not await is_active_manager(db, ctx.user_id, location.id):
        raise NotAuthorized(
            f"Only managers of {location.name} can request stock for it",
            user_id=ctx.user_id,
            location_id=location.id,
        )

    req = InventoryRequest(
        organization_id=ctx.organization_id,
        location_id=location.id,
        item_id=item.id,
        quantity_requested=int(quantity),
        status="pending",
        notes=(notes or "").strip() or None,
        requested_by=ctx.user_id,
    )
    db.add(req)
    await db.commit()
    await db.refresh(req)
    logger.info(
        "Request %s: %s x %s for location %s by %s",
        req.id, quantity, item.id, location.id, ctx.user_id,
    )
    return req


async def _respond(
    db: AsyncSession,
    ctx: ActorContext,
    request_id: UUID,
    new_status: str,
    response_notes: Optional[str],
) -> InventoryRequest:
    ctx.require_admin(f"mark requests {new_status}")

    res = await db.execute(
        select(InventoryRequest).where(
            InventoryRequest.id == request_id,
            InventoryRequest.organization_id == ctx.organization_id,
        )
    )
    req = res.scalar_one_or_none()
    if req is None:
        raise NotFound("Request", request_id)

    changed = await db.execute(
        update(InventoryRequest)
        .where(InventoryRequest.id == request_id, InventoryRequest.status == "pending")
        .values(
            status=new_status,
            responded_by=ctx.user_id,
            responded_at=utcnow(),
            response_notes=(response_notes or "").strip() or None,
        )
        .execution_options(synchronize_session=False)
    )
    if changed.rowcount != 1:
        await db.rollback()
        await db.refresh(req)
        raise InvalidTransition(
            f"Request is already {req.status}",
            request_id=request_id,
            status=req.status,
            requested_status=new_status,
        )
    await db.commit()
    await db.refresh(req)
    logger.info("Request %s %s by %s", req.id, new_status, ctx.user_id)
    return req


async def approve_request(
    db: AsyncSession, ctx: ActorContext, request_id: UUID, response_notes: Optional[str] = None
) -> InventoryRequest:
    return await _respond(db, ctx, request_id, "approved", response_notes)


async def deny_request(
    db: AsyncSession, ctx: ActorContext, request_id: UUID, response_notes: Optional[str] = None
) -> InventoryRequest:
    return await _respond(db, ctx, request_id, "denied", response_notes)


async def request_context(db: AsyncSession, ctx: ActorContext, item_id: UUID) -> List[ManagedLocationContext]:
    """Locations the actor manages, each with its active assigned quantity of the item."""
    item = await get_item(db, ctx, item_id)
    out = []
    for location in await managed_locations(db, ctx):
        assignment = await active_location_assignment(db, item.id, location.id)
        assigned = 0
        if assignment is not None:
            assigned = effective_quantity(assignment, await pending_sync_deltas(db, [assignment.id])) or 0
        out.append(ManagedLocationContext(location=location, assigned_quantity=assigned))
    return out


async def list_requests(
    db: AsyncSession,
    ctx: ActorContext,
    *,
    status: Optional[str] = None,
    location_id: Optional[UUID] = None,
) -> List[InventoryRequest]:
    stmt = select(InventoryRequest).where(InventoryRequest.organization_id == ctx.organization_id)
    if not ctx.is_admin:
        stmt = stmt.where(InventoryRequest.requested_by == ctx.user_id)
    if status:
        stmt = stmt.where(InventoryRequest.status == status)
    if location_id:
        stmt = stmt.where(InventoryRequest.location_id == location_id)
    res = await db.execute(stmt.order_by(InventoryRequest.requested_at.desc()))
    return list(res.scalars().all())

import logging
import uuid
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.context import ActorContext, get_actor_context
from core.errors import Conflict, LedgerError
from db.database import (
    get_async_session,
    Assignment as AssignmentModel,
    Item as ItemModel,
    LedgerEntry as LedgerEntryModel,
    utcnow,
)
from schemas.inventory import (
    AdjustmentCreate,
    AdjustmentRead,
    AssignmentSyncRead,
    ItemCreate,
    ItemRead,
    ItemUpdate,
    LedgerEntryRead,
    ReconcileResult,
)
from schemas.locations import ManagedLocationRead
from services import ledger
from services.queries import get_item
from services.requests import request_context

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/items", response_model=List[ItemRead])
async def list_items(
    q: Optional[str] = None,
    category: Optional[str] = None,
    include_deleted: bool = False,
    ctx: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    """
    List the organization's items.

    - `q` matches name or SKU (case-insensitive).
    - soft-deleted items are only listed for admins asking for them.
    """
    stmt = select(ItemModel).where(ItemModel.organization_id == ctx.organization_id)
    if not (include_deleted and ctx.is_admin):
        stmt = stmt.where(ItemModel.deleted_at.is_(None))
    if category:
        stmt = stmt.where(ItemModel.category == category.strip())
    if q:
        qq = f"%{q.strip().lower()}%"
        stmt = stmt.where(or_(func.lower(ItemModel.name).like(qq), func.lower(ItemModel.sku).like(qq)))

    res = await db.execute(stmt.order_by(func.lower(ItemModel.name).asc()))
    return [ItemRead(**it.to_schema) for it in res.scalars().all()]


@router.post("/items", response_model=ItemRead, status_code=status.HTTP_201_CREATED)
async def create_item(
    payload: ItemCreate,
    ctx: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    ctx.require_admin("create items")

    model = ItemModel(
        id=uuid.uuid4(),
        organization_id=ctx.organization_id,
        name=payload.name,
        sku=payload.sku,
        category=payload.category,
        created_by=ctx.user_id,
    )
    db.add(model)
    await db.flush()
    # opening stock goes through the ledger like any other change
    ledger.record_initial_stock(db, ctx, model, payload.quantity)
    await db.commit()
    await db.refresh(model)
    logger.info("Item %s created with %s units by %s", model.id, model.quantity, ctx.user_id)
    return ItemRead(**model.to_schema)


@router.get("/items/{item_id}", response_model=ItemRead)
async def read_item(
    item_id: UUID,
    ctx: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    item = await get_item(db, ctx, item_id, include_deleted=ctx.is_admin)
    return ItemRead(**item.to_schema)


@router.patch("/items/{item_id}", response_model=ItemRead)
async def update_item(
    item_id: UUID,
    payload: ItemUpdate,
    ctx: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    ctx.require_admin("edit items")
    model = await get_item(db, ctx, item_id)

    data = payload.model_dump(exclude_unset=True)
    if data.get("name") is not None:
        model.name = data["name"]
    if "sku" in data:
        model.sku = data["sku"]
    if "category" in data:
        model.category = data["category"]

    await db.commit()
    await db.refresh(model)
    return ItemRead(**model.to_schema)


@router.delete("/items/{item_id}", response_model=ItemRead)
async def soft_delete_item(
    item_id: UUID,
    ctx: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    ctx.require_admin("delete items")
    model = await get_item(db, ctx, item_id, include_deleted=True)
    if model.deleted_at is None:
        model.deleted_at = utcnow()
        await db.commit()
        await db.refresh(model)
        logger.info("Item %s soft-deleted by %s", model.id, ctx.user_id)
    return ItemRead(**model.to_schema)


@router.delete("/items/{item_id}/permanent", response_model=dict)
async def hard_delete_item(
    item_id: UUID,
    ctx: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    """Permanently remove an item that never moved stock and was never assigned."""
    ctx.require_admin("delete items")
    model = await get_item(db, ctx, item_id, include_deleted=True)

    entries = await db.execute(
        select(func.count()).select_from(LedgerEntryModel).where(LedgerEntryModel.item_id == model.id)
    )
    assignments = await db.execute(
        select(func.count()).select_from(AssignmentModel).where(AssignmentModel.item_id == model.id)
    )
    n_entries = int(entries.scalar() or 0)
    n_assignments = int(assignments.scalar() or 0)
    if n_entries or n_assignments:
        raise Conflict(
            f"Item has {n_entries} ledger entries and {n_assignments} assignments; "
            "its history must be kept. Use soft delete instead.",
            item_id=model.id,
            ledger_entries=n_entries,
            assignments=n_assignments,
        )

    await db.delete(model)
    await db.commit()
    logger.info("Item %s permanently deleted by %s", item_id, ctx.user_id)
    return {"ok": True}


@router.post("/items/{item_id}/adjustments", response_model=AdjustmentRead, status_code=status.HTTP_201_CREATED)
async def adjust_item(
    item_id: UUID,
    payload: AdjustmentCreate,
    ctx: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    try:
        result = await ledger.apply_adjustment(
            db,
            ctx,
            item_id,
            payload.action,
            payload.quantity,
            direction=payload.direction,
            location_id=payload.location_id,
            location_name=payload.location_name,
            notes=payload.notes,
        )
    except LedgerError:
        raise
    except SQLAlchemyError as e:
        logger.exception("adjust_item failed for item %s", item_id)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Failed to update inventory: {e}")

    return AdjustmentRead(
        item=ItemRead(**result.item.to_schema),
        entry=LedgerEntryRead(**result.entry.to_schema),
        assignment=result.assignment.to_schema if result.assignment else None,
        sync=result.sync.to_schema if result.sync else None,
        warnings=result.warnings,
    )


@router.get("/items/{item_id}/history", response_model=List[LedgerEntryRead])
async def item_history(
    item_id: UUID,
    limit: int = Query(100, ge=1, le=500),
    ctx: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    entries = await ledger.list_item_history(db, ctx, item_id, limit=limit)
    return [LedgerEntryRead(**e.to_schema) for e in entries]


@router.get("/items/{item_id}/request-context", response_model=List[ManagedLocationRead])
async def item_request_context(
    item_id: UUID,
    ctx: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    """Locations the caller manages, with what each has assigned of this item."""
    rows = await request_context(db, ctx, item_id)
    return [
        ManagedLocationRead(
            id=r.location.id,
            name=r.location.name,
            address=r.location.address,
            assigned_quantity=r.assigned_quantity,
        )
        for r in rows
    ]


@router.get("/syncs", response_model=List[AssignmentSyncRead])
async def pending_syncs(
    ctx: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    ctx.require_admin("view pending assignment syncs")
    return [AssignmentSyncRead(**s.to_schema) for s in await ledger.list_pending_syncs(db, ctx)]


@router.post("/syncs/reconcile", response_model=ReconcileResult)
async def reconcile_syncs(
    ctx: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    ctx.require_admin("reconcile assignment syncs")
    counts = await ledger.reconcile_pending_syncs(db, organization_id=ctx.organization_id)
    return ReconcileResult(**counts)

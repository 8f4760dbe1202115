from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.context import ActorContext, get_actor_context
from db.database import get_async_session
from schemas.inventory import AssignmentCreate, AssignmentRead, AssignmentSummaryRead
from services import assignments as tracker

router = APIRouter()


def _summary_out(summary: tracker.AssignmentSummary) -> AssignmentSummaryRead:
    return AssignmentSummaryRead(
        item_id=summary.item.id,
        quantity=int(summary.item.quantity),
        total_assigned=summary.total_assigned,
        available=summary.available,
        over_assigned_by=summary.over_assigned_by,
        warning=summary.warning,
        assignments=[AssignmentRead(**a.to_schema) for a in summary.assignments],
    )


@router.get("/", response_model=List[AssignmentRead])
async def list_assignments(
    item_id: Optional[UUID] = None,
    user_id: Optional[UUID] = None,
    location_id: Optional[UUID] = None,
    include_revoked: bool = False,
    ctx: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    rows = await tracker.list_assignments(
        db,
        ctx,
        item_id=item_id,
        user_id=user_id,
        location_id=location_id,
        include_revoked=include_revoked,
    )
    return [AssignmentRead(**a.to_schema) for a in rows]


@router.get("/items/{item_id}", response_model=AssignmentSummaryRead)
async def item_assignment_summary(
    item_id: UUID,
    ctx: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    """Active assignments of one item with assigned / available totals and any over-assignment warning."""
    return _summary_out(await tracker.assignment_summary(db, ctx, item_id))


@router.post("/items/{item_id}", response_model=AssignmentRead, status_code=status.HTTP_201_CREATED)
async def create_assignment(
    item_id: UUID,
    payload: AssignmentCreate,
    ctx: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    assignment = await tracker.create_assignment(
        db,
        ctx,
        item_id,
        user_id=payload.user_id,
        location_id=payload.location_id,
        quantity=payload.quantity,
        notes=payload.notes,
    )
    return AssignmentRead(**assignment.to_schema)


@router.post("/{assignment_id}/revoke", response_model=AssignmentRead)
async def revoke_assignment(
    assignment_id: UUID,
    ctx: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    assignment = await tracker.revoke_assignment(db, ctx, assignment_id)
    return AssignmentRead(**assignment.to_schema)

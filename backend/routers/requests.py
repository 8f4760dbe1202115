from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.context import ActorContext, get_actor_context
from db.database import get_async_session
from schemas.requests import RequestCreate, RequestRead, RequestResponse
from services import requests as intake

router = APIRouter()


@router.get("/", response_model=List[RequestRead])
async def list_requests(
    status_filter: Optional[str] = Query(None, alias="status", pattern="^(pending|approved|denied)$"),
    location_id: Optional[UUID] = None,
    ctx: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    """Admins see every request of the organization; managers see their own."""
    rows = await intake.list_requests(db, ctx, status=status_filter, location_id=location_id)
    return [RequestRead(**r.to_schema) for r in rows]


@router.post("/", response_model=RequestRead, status_code=status.HTTP_201_CREATED)
async def submit_request(
    payload: RequestCreate,
    ctx: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    req = await intake.submit_request(
        db, ctx, payload.location_id, payload.item_id, payload.quantity, notes=payload.notes
    )
    return RequestRead(**req.to_schema)


@router.post("/{request_id}/approve", response_model=RequestRead)
async def approve_request(
    request_id: UUID,
    payload: Optional[RequestResponse] = None,
    ctx: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    notes = payload.response_notes if payload else None
    return RequestRead(**(await intake.approve_request(db, ctx, request_id, notes)).to_schema)


@router.post("/{request_id}/deny", response_model=RequestRead)
async def deny_request(
    request_id: UUID,
    payload: Optional[RequestResponse] = None,
    ctx: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    notes = payload.response_notes if payload else None
    return RequestRead(**(await intake.deny_request(db, ctx, request_id, notes)).to_schema)

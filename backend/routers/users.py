import logging
import re
import secrets
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi_users import exceptions as fu_exceptions
from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import UserManager, get_user_manager
from core.config import settings
from core.context import ActorContext, get_actor_context
from core.errors import Conflict
from db.database import get_async_session, Organization as OrganizationModel, User
from schemas.users import (
    InviteRequest,
    InviteResponse,
    InviteResult,
    OrganizationRead,
    OrganizationRegister,
    OrganizationRegistered,
    UserCreate,
    UserRead,
    UserRoleUpdate,
)
from services.queries import get_member

logger = logging.getLogger(__name__)

router = APIRouter()


def _slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.strip().lower()).strip("-")
    return slug or "org"


async def _unique_slug(db: AsyncSession, name: str) -> str:
    base = _slugify(name)
    res = await db.execute(select(OrganizationModel.slug).where(OrganizationModel.slug.like(f"{base}%")))
    taken = set(res.scalars().all())
    if base not in taken:
        return base
    n = 2
    while f"{base}-{n}" in taken:
        n += 1
    return f"{base}-{n}"


@router.post("/organizations/register", response_model=OrganizationRegistered, status_code=status.HTTP_201_CREATED)
async def register_organization(
    payload: OrganizationRegister,
    request: Request,
    db: AsyncSession = Depends(get_async_session),
    user_manager: UserManager = Depends(get_user_manager),
):
    """Create an organization together with its first admin account."""
    org = OrganizationModel(name=payload.organization_name, slug=await _unique_slug(db, payload.organization_name))
    db.add(org)
    await db.flush()

    try:
        user = await user_manager.create(
            UserCreate(
                email=payload.email,
                password=payload.password,
                organization_id=org.id,
                role="admin",
                display_name=payload.display_name,
            ),
            safe=False,
            request=request,
        )
    except fu_exceptions.UserAlreadyExists:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="REGISTER_USER_ALREADY_EXISTS")
    except fu_exceptions.InvalidPasswordException as e:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid password: {e.reason}")

    await db.refresh(org)
    return OrganizationRegistered(
        organization=OrganizationRead(**org.to_schema),
        user=UserRead.model_validate(user, from_attributes=True),
    )


@router.get("/organizations/members", response_model=List[UserRead])
async def list_members(
    ctx: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    res = await db.execute(
        select(User).where(User.organization_id == ctx.organization_id).order_by(func.lower(User.email).asc())
    )
    return [UserRead.model_validate(u, from_attributes=True) for u in res.scalars().all()]


@router.patch("/organizations/members/{user_id}/role", response_model=UserRead)
async def change_member_role(
    user_id: UUID,
    payload: UserRoleUpdate,
    ctx: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
):
    ctx.require_admin("change roles")
    member = await get_member(db, ctx, user_id)

    if member.role == "admin" and payload.role != "admin":
        res = await db.execute(
            select(func.count()).select_from(User).where(
                User.organization_id == ctx.organization_id, User.role == "admin"
            )
        )
        if int(res.scalar() or 0) <= 1:
            raise Conflict("Organization needs at least one admin", user_id=member.id)

    member.role = payload.role
    await db.commit()
    await db.refresh(member)
    logger.info("User %s is now %s (changed by %s)", member.id, member.role, ctx.user_id)
    return UserRead.model_validate(member, from_attributes=True)


@router.post("/invites", response_model=InviteResponse)
async def invite_users(
    payload: InviteRequest,
    request: Request,
    ctx: ActorContext = Depends(get_actor_context),
    db: AsyncSession = Depends(get_async_session),
    user_manager: UserManager = Depends(get_user_manager),
):
    """
    Invite people into the caller's organization.

    Each address gets a `user` account with an unusable random password and a
    set-password link (fastapi-users forgot-password token). Results are
    reported per address; one bad address does not stop the others.
    """
    ctx.require_admin("invite users")

    emails = payload.emails or []
    if not emails:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Please provide at least one email")
    if len(emails) > settings.max_invites:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Maximum {settings.max_invites} invites at a time",
        )

    results: List[InviteResult] = []
    for email in emails:
        trimmed = (email or "").strip().lower()
        if not trimmed or "@" not in trimmed:
            results.append(InviteResult(email=trimmed or email, success=False, error="Invalid email"))
            continue

        try:
            user_create = UserCreate(
                email=trimmed,
                password=secrets.token_urlsafe(32),
                organization_id=ctx.organization_id,
                role="user",
            )
        except ValidationError:
            results.append(InviteResult(email=trimmed, success=False, error="Invalid email"))
            continue

        try:
            user = await user_manager.create(user_create, safe=False, request=request)
            await user_manager.forgot_password(user, request)
        except fu_exceptions.UserAlreadyExists:
            results.append(InviteResult(email=trimmed, success=False, error="User already exists"))
            continue
        except (SQLAlchemyError, fu_exceptions.FastAPIUsersException):
            await db.rollback()
            logger.exception("Invite to %s failed", trimmed)
            results.append(InviteResult(email=trimmed, success=False, error="Failed to send invite"))
            continue

        results.append(InviteResult(email=trimmed, success=True))

    successful = sum(1 for r in results if r.success)
    failed = len(results) - successful
    message = f"Sent {successful} invite(s)" + (f", {failed} failed" if failed else "")
    logger.info("Invites from %s: %s", ctx.user_id, message)
    return InviteResponse(message=message, results=results)

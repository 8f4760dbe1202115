# Pydantic schemas for user-related requests/responses
# fastapi-users provides the base read/create/update schemas; these add the organization fields

from typing import List, Literal, Optional
from uuid import UUID

from fastapi_users import schemas
from pydantic import BaseModel, EmailStr, field_validator


UserRole = Literal["admin", "user"]


class UserRead(schemas.BaseUser[UUID]):
    organization_id: Optional[UUID] = None
    role: UserRole = "user"
    display_name: Optional[str] = None


class UserCreate(schemas.BaseUserCreate):
    # set by the server (organization registration / invitations), never by a public form
    organization_id: Optional[UUID] = None
    role: UserRole = "user"
    display_name: Optional[str] = None


class UserUpdate(schemas.BaseUserUpdate):
    display_name: Optional[str] = None


class UserRoleUpdate(BaseModel):
    role: UserRole


class OrganizationRegister(BaseModel):
    organization_name: str
    email: EmailStr
    password: str
    display_name: Optional[str] = None

    @field_validator("organization_name")
    @classmethod
    def _strip_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("field is required")
        return v


class OrganizationRead(BaseModel):
    id: UUID
    name: str
    slug: str


class OrganizationRegistered(BaseModel):
    organization: OrganizationRead
    user: UserRead


class InviteRequest(BaseModel):
    emails: List[str]


class InviteResult(BaseModel):
    email: str
    success: bool
    error: Optional[str] = None


class InviteResponse(BaseModel):
    message: str
    results: List[InviteResult]

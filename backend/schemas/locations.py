from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, field_validator


class LocationCreate(BaseModel):
    name: str
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @field_validator("name")
    @classmethod
    def _strip_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("field is required")
        return v

    @field_validator("address")
    @classmethod
    def _strip_nullable(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class LocationUpdate(BaseModel):
    name: Optional[str] = None
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    @field_validator("name")
    @classmethod
    def _strip_optional(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        if not v:
            raise ValueError("cannot be empty")
        return v


class LocationRead(BaseModel):
    id: UUID
    organization_id: UUID
    name: str
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    created_at: datetime
    updated_at: datetime
    manager_count: Optional[int] = None

    class Config:
        from_attributes = True


class LocationManagerCreate(BaseModel):
    user_id: UUID


class LocationManagerRead(BaseModel):
    id: UUID
    location_id: UUID
    user_id: UUID
    assigned_by: Optional[UUID] = None
    assigned_at: datetime
    revoked_at: Optional[datetime] = None
    email: Optional[str] = None
    display_name: Optional[str] = None

    class Config:
        from_attributes = True


class ManagedLocationRead(BaseModel):
    id: UUID
    name: str
    address: Optional[str] = None
    assigned_quantity: int

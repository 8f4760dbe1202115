from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, field_validator


RequestStatus = Literal["pending", "approved", "denied"]


class RequestCreate(BaseModel):
    location_id: UUID
    item_id: UUID
    quantity: int
    notes: Optional[str] = None

    @field_validator("notes")
    @classmethod
    def _strip_nullable(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None


class RequestResponse(BaseModel):
    response_notes: Optional[str] = None


class RequestRead(BaseModel):
    id: UUID
    organization_id: UUID
    location_id: UUID
    item_id: UUID
    quantity_requested: int
    status: RequestStatus
    notes: Optional[str] = None
    requested_by: Optional[UUID] = None
    requested_at: datetime
    responded_by: Optional[UUID] = None
    responded_at: Optional[datetime] = None
    response_notes: Optional[str] = None

    class Config:
        from_attributes = True

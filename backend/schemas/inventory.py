from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


LedgerAction = Literal["sale", "giveaway", "transfer", "restock", "adjustment"]
AdjustmentDirection = Literal["increase", "decrease"]


def _strip_or_none(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip()
    return v or None


class ItemCreate(BaseModel):
    name: str
    sku: Optional[str] = None
    category: Optional[str] = None
    quantity: int = Field(default=0, ge=0)

    @field_validator("name")
    @classmethod
    def _strip_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("field is required")
        return v

    @field_validator("sku", "category")
    @classmethod
    def _strip_nullable(cls, v: Optional[str]) -> Optional[str]:
        return _strip_or_none(v)


class ItemUpdate(BaseModel):
    name: Optional[str] = None
    sku: Optional[str] = None
    category: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _strip_optional(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = (v or "").strip()
        if not v:
            raise ValueError("cannot be empty")
        return v

    @field_validator("sku", "category")
    @classmethod
    def _strip_nullable(cls, v: Optional[str]) -> Optional[str]:
        return _strip_or_none(v)


class ItemRead(BaseModel):
    id: UUID
    organization_id: UUID
    name: str
    sku: Optional[str] = None
    category: Optional[str] = None
    quantity: int
    created_by: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AdjustmentCreate(BaseModel):
    action: LedgerAction
    quantity: int
    # required for 'adjustment'; must agree with the action otherwise
    direction: Optional[AdjustmentDirection] = None
    location_id: Optional[UUID] = None
    location_name: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("location_name", "notes")
    @classmethod
    def _strip_nullable(cls, v: Optional[str]) -> Optional[str]:
        return _strip_or_none(v)


class LedgerEntryRead(BaseModel):
    id: UUID
    item_id: UUID
    user_id: Optional[UUID] = None
    action: LedgerAction
    quantity_change: int
    quantity_after: int
    location_id: Optional[UUID] = None
    location_name: Optional[str] = None
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    assignment_id: Optional[UUID] = None
    notes: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AssignmentCreate(BaseModel):
    user_id: Optional[UUID] = None
    location_id: Optional[UUID] = None
    # omitted = unbounded / informational
    quantity: Optional[int] = None
    notes: Optional[str] = None

    @field_validator("notes")
    @classmethod
    def _strip_nullable(cls, v: Optional[str]) -> Optional[str]:
        return _strip_or_none(v)


class AssignmentRead(BaseModel):
    id: UUID
    item_id: UUID
    user_id: Optional[UUID] = None
    location_id: Optional[UUID] = None
    quantity_assigned: Optional[int] = None
    notes: Optional[str] = None
    assigned_by: Optional[UUID] = None
    assigned_at: datetime
    revoked_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AssignmentSummaryRead(BaseModel):
    item_id: UUID
    quantity: int
    total_assigned: int
    available: int
    over_assigned_by: int
    warning: Optional[str] = None
    assignments: List[AssignmentRead]


class AssignmentSyncRead(BaseModel):
    id: UUID
    ledger_entry_id: UUID
    assignment_id: UUID
    delta: int
    status: Literal["pending", "applied"]
    attempts: int
    last_error: Optional[str] = None
    created_at: datetime
    applied_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AdjustmentRead(BaseModel):
    item: ItemRead
    entry: LedgerEntryRead
    assignment: Optional[AssignmentRead] = None
    sync: Optional[AssignmentSyncRead] = None
    warnings: List[str] = []


class ReconcileResult(BaseModel):
    applied: int
    pending: int

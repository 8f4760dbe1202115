import uuid

from fastapi_users_db_sqlalchemy.generics import GUID
from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, Text

from ..database import Base, utcnow


class Assignment(Base):
    __tablename__ = "item_assignments"
    __table_args__ = (
        # exactly one target: a user or a location
        CheckConstraint(
            "(user_id IS NULL) <> (location_id IS NULL)",
            name="ck_item_assignments_single_target",
        ),
        CheckConstraint(
            "quantity_assigned IS NULL OR quantity_assigned >= 0",
            name="ck_item_assignments_quantity_non_negative",
        ),
    )

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    item_id = Column(GUID, ForeignKey("inventory_items.id", ondelete="CASCADE"), nullable=False, index=True)

    user_id = Column(GUID, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)
    location_id = Column(GUID, ForeignKey("locations.id", ondelete="RESTRICT"), nullable=True, index=True)

    # NULL = unbounded / informational allocation
    quantity_assigned = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)

    assigned_by = Column(GUID, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assigned_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    revoked_at = Column(DateTime(timezone=True), nullable=True, index=True)

    @property
    def is_active(self) -> bool:
        return self.revoked_at is None

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "item_id": self.item_id,
            "user_id": self.user_id,
            "location_id": self.location_id,
            "quantity_assigned": self.quantity_assigned,
            "notes": self.notes,
            "assigned_by": self.assigned_by,
            "assigned_at": self.assigned_at,
            "revoked_at": self.revoked_at,
        }

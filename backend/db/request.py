import uuid
from fastapi_users_db_sqlalchemy.generics import GUID
from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, Text
from .database import Base, utcnow


REQUEST_STATUSES = ("pending", "approved", "denied")


class InventoryRequest(Base):
    __tablename__ = "inventory_requests"
    __table_args__ = (
        CheckConstraint("quantity_requested > 0", name="ck_inventory_requests_quantity_positive"),
        CheckConstraint(
            "status IN (" + ", ".join(f"'{s}'" for s in REQUEST_STATUSES) + ")",
            name="ck_inventory_requests_status",
        ),
    )

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    organization_id = Column(GUID, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    location_id = Column(GUID, ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False, index=True)
    item_id = Column(GUID, ForeignKey("inventory_items.id", ondelete="CASCADE"), nullable=False, index=True)

    quantity_requested = Column(Integer, nullable=False)
    status = Column(Text, nullable=False, default="pending", index=True)
    notes = Column(Text, nullable=True)

    requested_by = Column(GUID, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    requested_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    responded_by = Column(GUID, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    responded_at = Column(DateTime(timezone=True), nullable=True)
    response_notes = Column(Text, nullable=True)

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "location_id": self.location_id,
            "item_id": self.item_id,
            "quantity_requested": int(self.quantity_requested),
            "status": self.status,
            "notes": self.notes,
            "requested_by": self.requested_by,
            "requested_at": self.requested_at,
            "responded_by": self.responded_by,
            "responded_at": self.responded_at,
            "response_notes": self.response_notes,
        }

import uuid

from fastapi_users_db_sqlalchemy.generics import GUID
from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String

from ..database import Base, utcnow


class Item(Base):
    __tablename__ = "inventory_items"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_inventory_items_quantity_non_negative"),
    )

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    organization_id = Column(GUID, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)

    name = Column(String, nullable=False)
    sku = Column(String, nullable=True, index=True)
    category = Column(String, nullable=True, index=True)
    quantity = Column(Integer, nullable=False, default=0)

    created_by = Column(GUID, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "sku": self.sku,
            "category": self.category,
            "quantity": int(self.quantity or 0),
            "created_by": self.created_by,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "deleted_at": self.deleted_at,
        }

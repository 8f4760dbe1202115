import uuid
from fastapi_users_db_sqlalchemy.generics import GUID
from sqlalchemy import Column, DateTime, Float, ForeignKey, String
from .database import Base, utcnow


class Location(Base):
    __tablename__ = "locations"

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    organization_id = Column(GUID, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    address = Column(String, nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "address": self.address,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class LocationManager(Base):
    """Grant of management rights over a location; revoked softly via `revoked_at`."""

    __tablename__ = "location_managers"

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    location_id = Column(GUID, ForeignKey("locations.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(GUID, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    assigned_by = Column(GUID, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assigned_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    revoked_at = Column(DateTime(timezone=True), nullable=True, index=True)

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "location_id": self.location_id,
            "user_id": self.user_id,
            "assigned_by": self.assigned_by,
            "assigned_at": self.assigned_at,
            "revoked_at": self.revoked_at,
        }

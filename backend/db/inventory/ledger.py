import uuid

from fastapi_users_db_sqlalchemy.generics import GUID
from sqlalchemy import CheckConstraint, Column, DateTime, Float, ForeignKey, Integer, String, Text, event

from core.errors import LedgerEntryImmutable
from ..database import Base, utcnow


LEDGER_ACTIONS = ("sale", "giveaway", "transfer", "restock", "adjustment")


class LedgerEntry(Base):
    """One quantity change of one item. Rows are written once and never touched again."""

    __tablename__ = "location_history"
    __table_args__ = (
        CheckConstraint(
            "action IN (" + ", ".join(f"'{a}'" for a in LEDGER_ACTIONS) + ")",
            name="ck_location_history_action",
        ),
    )

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    item_id = Column(GUID, ForeignKey("inventory_items.id", ondelete="RESTRICT"), nullable=False, index=True)
    user_id = Column(GUID, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    action = Column(Text, nullable=False)
    quantity_change = Column(Integer, nullable=False)
    quantity_after = Column(Integer, nullable=False)

    location_id = Column(GUID, ForeignKey("locations.id", ondelete="SET NULL"), nullable=True, index=True)
    location_name = Column(String, nullable=True)
    address = Column(String, nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    assignment_id = Column(GUID, ForeignKey("item_assignments.id", ondelete="SET NULL"), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    @property
    def quantity_before(self) -> int:
        return int(self.quantity_after) - int(self.quantity_change)

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "item_id": self.item_id,
            "user_id": self.user_id,
            "action": self.action,
            "quantity_change": int(self.quantity_change),
            "quantity_after": int(self.quantity_after),
            "location_id": self.location_id,
            "location_name": self.location_name,
            "address": self.address,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "assignment_id": self.assignment_id,
            "notes": self.notes,
            "created_at": self.created_at,
        }


class AssignmentSync(Base):
    """
    Assignment quantity change owed by a committed ledger entry.

    Inserted in the same transaction as the entry; applied right after commit
    and, when that fails, by `reconcile_pending_syncs`.
    """

    __tablename__ = "assignment_syncs"

    id = Column(GUID, primary_key=True, default=uuid.uuid4)
    ledger_entry_id = Column(GUID, ForeignKey("location_history.id", ondelete="CASCADE"), nullable=False, unique=True)
    assignment_id = Column(GUID, ForeignKey("item_assignments.id", ondelete="CASCADE"), nullable=False, index=True)
    delta = Column(Integer, nullable=False)

    # 'pending' | 'applied'
    status = Column(Text, nullable=False, default="pending", index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    applied_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def to_schema(self):
        return {
            "id": self.id,
            "ledger_entry_id": self.ledger_entry_id,
            "assignment_id": self.assignment_id,
            "delta": int(self.delta),
            "status": self.status,
            "attempts": int(self.attempts or 0),
            "last_error": self.last_error,
            "created_at": self.created_at,
            "applied_at": self.applied_at,
        }


@event.listens_for(LedgerEntry, "before_update")
def _refuse_ledger_update(mapper, connection, target):
    raise LedgerEntryImmutable("Ledger entries cannot be modified", entry_id=target.id)


@event.listens_for(LedgerEntry, "before_delete")
def _refuse_ledger_delete(mapper, connection, target):
    raise LedgerEntryImmutable("Ledger entries cannot be deleted", entry_id=target.id)

"""
Stock ledger: the only writer of `inventory_items.quantity`.

`apply_adjustment` runs read -> validate -> write, where the write is one
transaction:

1. insert the ledger entry
2. compare-and-set the item quantity against the value read in this attempt
3. queue an AssignmentSync when a bounded location assignment is involved

A compare-and-set that matches no row means another writer moved the
quantity first. The transaction is rolled back and the cycle repeats on
fresh state, at most `settings.ledger_max_attempts` times.

The assignment quantity update happens after commit. When it fails the sync
stays pending for `reconcile_pending_syncs`; the committed entry stands.
Location stock checks count pending syncs as already applied, so a failed
or not-yet-run sync never lets a location give out more than it holds.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import case, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from core.config import settings
from core.context import ActorContext
from core.errors import Conflict, InsufficientLocationStock, InvalidQuantity, NotAuthorized
from db.database import Assignment, AssignmentSync, Item, LedgerEntry, utcnow
from services.queries import (
    active_location_assignment,
    effective_quantity,
    get_item,
    get_location,
    is_active_manager,
    pending_sync_deltas,
)

logger = logging.getLogger(__name__)

DECREASE_ACTIONS = {"sale", "giveaway", "transfer"}
INCREASE_ACTIONS = {"restock"}
# sign must come from the caller
SIGNED_ACTIONS = {"adjustment"}
DIRECTIONS = {"increase", "decrease"}


@dataclass
class AdjustmentResult:
    item: Item
    entry: LedgerEntry
    assignment: Optional[Assignment] = None
    sync: Optional[AssignmentSync] = None
    warnings: List[str] = field(default_factory=list)


def resolve_delta(action: str, magnitude: int, direction: Optional[str] = None) -> int:
    """Signed quantity change for `magnitude` units of `action`."""
    if isinstance(magnitude, bool) or not isinstance(magnitude, int) or magnitude <= 0:
        raise InvalidQuantity("Quantity must be a positive whole number", requested=magnitude)
    if direction is not None and direction not in DIRECTIONS:
        raise InvalidQuantity(f"Unknown direction '{direction}'", direction=direction)

    if action in SIGNED_ACTIONS:
        if direction is None:
            raise InvalidQuantity(
                "An adjustment needs an explicit direction (increase or decrease)", action=action
            )
        is_decrease = direction == "decrease"
    elif action in DECREASE_ACTIONS or action in INCREASE_ACTIONS:
        is_decrease = action in DECREASE_ACTIONS
        if direction is not None and (direction == "decrease") != is_decrease:
            kind = "a decrease" if is_decrease else "an increase"
            raise InvalidQuantity(f"A {action} is always {kind}", action=action, direction=direction)
    else:
        raise InvalidQuantity(f"Unknown action '{action}'", action=action)

    return -magnitude if is_decrease else magnitude


async def _compare_and_set_quantity(db: AsyncSession, item_id: UUID, expected: int, new_quantity: int) -> bool:
    res = await db.execute(
        update(Item)
        .where(Item.id == item_id, Item.quantity == expected, Item.deleted_at.is_(None))
        .values(quantity=new_quantity, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


async def apply_adjustment(
    db: AsyncSession,
    ctx: ActorContext,
    item_id: UUID,
    action: str,
    magnitude: int,
    *,
    direction: Optional[str] = None,
    location_id: Optional[UUID] = None,
    location_name: Optional[str] = None,
    notes: Optional[str] = None,
    max_attempts: Optional[int] = None,
) -> AdjustmentResult:
    delta = resolve_delta(action, magnitude, direction)
    attempts = max_attempts or settings.ledger_max_attempts

    for attempt in range(1, attempts + 1):
        item = await get_item(db, ctx, item_id, fresh=True)
        location = None
        assignment = None
        if location_id is not None:
            location = await get_location(db, ctx, location_id)
            assignment = await active_location_assignment(db, item.id, location.id, fresh=True)

        if not ctx.is_admin and (location is None or not await is_active_manager(db, ctx.user_id, location.id)):
            raise NotAuthorized(
                "Only admins or managers of the chosen location can change stock",
                user_id=ctx.user_id,
                location_id=location_id,
            )

        new_quantity = int(item.quantity) + delta
        if new_quantity < 0:
            raise InvalidQuantity(
                f"Cannot reduce {item.name} below 0: requested {magnitude}, {item.quantity} in stock",
                item_id=item.id,
                requested=magnitude,
                available=int(item.quantity),
            )

        bounded = assignment is not None and assignment.quantity_assigned is not None
        if delta < 0 and bounded:
            # syncs of earlier writers may not have reached quantity_assigned yet
            assigned = effective_quantity(assignment, await pending_sync_deltas(db, [assignment.id]))
            if magnitude > assigned:
                raise InsufficientLocationStock(
                    f"Cannot remove {magnitude} units from {location.name}. "
                    f"Only {assigned} units are assigned to this location.",
                    item_id=item.id,
                    location_id=location.id,
                    requested=magnitude,
                    available=assigned,
                )

        expected = int(item.quantity)
        entry = LedgerEntry(
            id=uuid.uuid4(),
            item_id=item.id,
            user_id=ctx.user_id,
            action=action,
            quantity_change=delta,
            quantity_after=new_quantity,
            location_id=location.id if location else None,
            location_name=(location_name or (location.name if location else None)),
            address=location.address if location else None,
            latitude=location.latitude if location else None,
            longitude=location.longitude if location else None,
            assignment_id=assignment.id if assignment else None,
            notes=notes,
        )
        sync = None
        if bounded:
            sync = AssignmentSync(
                id=uuid.uuid4(),
                ledger_entry_id=entry.id,
                assignment_id=assignment.id,
                delta=delta,
                status="pending",
                attempts=0,
            )

        try:
            db.add(entry)
            await db.flush()
            if sync is not None:
                db.add(sync)
                await db.flush()

            if not await _compare_and_set_quantity(db, item.id, expected, new_quantity):
                await db.rollback()
                logger.warning(
                    "Quantity of item %s changed during %s (attempt %s/%s); retrying",
                    item_id, action, attempt, attempts,
                )
                continue

            await db.commit()
        except SQLAlchemyError:
            await db.rollback()
            logger.exception("Adjustment of item %s failed", item_id)
            raise

        set_committed_value(item, "quantity", new_quantity)
        logger.info(
            "Ledger: item %s %s %+d -> %s by %s%s",
            item.id, action, delta, new_quantity, ctx.user_id,
            f" at location {location.id}" if location else "",
        )
        break
    else:
        raise Conflict(
            f"Stock for this item kept changing; gave up after {attempts} attempts. Reload and try again.",
            item_id=item_id,
            attempts=attempts,
        )

    result = AdjustmentResult(item=item, entry=entry, assignment=assignment, sync=sync)
    if sync is not None:
        assignment_id, sync_id = assignment.id, sync.id
        warning = await _apply_sync(db, sync_id)
        if warning:
            result.warnings.append(warning)
        # a sync that was not applied rolled the session back; reload what we hand back
        await db.refresh(item)
        await db.refresh(entry)
        result.assignment = await db.get(Assignment, assignment_id, populate_existing=True)
        result.sync = await db.get(AssignmentSync, sync_id, populate_existing=True)
    return result


async def _sync_assignment_quantity(db: AsyncSession, assignment_id: UUID, delta: int) -> None:
    new_value = Assignment.quantity_assigned + delta
    await db.execute(
        update(Assignment)
        .where(Assignment.id == assignment_id, Assignment.quantity_assigned.is_not(None))
        .values(quantity_assigned=case((new_value < 0, 0), else_=new_value))
        .execution_options(synchronize_session=False)
    )


async def _apply_sync(db: AsyncSession, sync_id: UUID) -> Optional[str]:
    """Apply one pending sync. Returns a warning message when it stays pending."""
    try:
        sync = await db.get(AssignmentSync, sync_id, populate_existing=True)
        if sync is None or sync.status != "pending":
            return None
        assignment_id, delta = sync.assignment_id, int(sync.delta)

        # claim it first so the inline sync and the reconcile job never both apply it
        claimed = await db.execute(
            update(AssignmentSync)
            .where(AssignmentSync.id == sync_id, AssignmentSync.status == "pending")
            .values(
                status="applied",
                applied_at=utcnow(),
                attempts=AssignmentSync.attempts + 1,
                last_error=None,
            )
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            await db.rollback()
            return None

        await _sync_assignment_quantity(db, assignment_id, delta)
        await db.commit()
        logger.info("Assignment %s quantity synced by %+d", assignment_id, delta)
        return None
    except SQLAlchemyError as e:
        await db.rollback()
        logger.warning("Assignment sync %s failed: %s", sync_id, e)
        await _record_sync_failure(db, sync_id, e)
        return (
            "Stock was updated, but the location's assigned quantity could not be updated yet. "
            "It will be retried."
        )


async def _record_sync_failure(db: AsyncSession, sync_id: UUID, error: Exception) -> None:
    try:
        await db.execute(
            update(AssignmentSync)
            .where(AssignmentSync.id == sync_id, AssignmentSync.status == "pending")
            .values(attempts=AssignmentSync.attempts + 1, last_error=str(error)[:500])
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Could not record failure of assignment sync %s", sync_id)


async def reconcile_pending_syncs(
    db: AsyncSession,
    *,
    organization_id: Optional[UUID] = None,
    limit: int = 100,
) -> Dict[str, int]:
    """Retry pending assignment syncs, oldest first."""
    stmt = select(AssignmentSync.id).where(AssignmentSync.status == "pending")
    if organization_id is not None:
        stmt = (
            stmt.join(Assignment, Assignment.id == AssignmentSync.assignment_id)
            .join(Item, Item.id == Assignment.item_id)
            .where(Item.organization_id == organization_id)
        )
    res = await db.execute(stmt.order_by(AssignmentSync.created_at.asc()).limit(limit))
    sync_ids = list(res.scalars().all())

    applied = 0
    failed = 0
    for sync_id in sync_ids:
        warning = await _apply_sync(db, sync_id)
        if warning:
            failed += 1
        else:
            applied += 1

    if sync_ids:
        logger.info("Reconciled assignment syncs: %s applied, %s still pending", applied, failed)
    return {"applied": applied, "pending": failed}


async def list_pending_syncs(db: AsyncSession, ctx: ActorContext, limit: int = 100) -> List[AssignmentSync]:
    res = await db.execute(
        select(AssignmentSync)
        .join(Assignment, Assignment.id == AssignmentSync.assignment_id)
        .join(Item, Item.id == Assignment.item_id)
        .where(AssignmentSync.status == "pending", Item.organization_id == ctx.organization_id)
        .order_by(AssignmentSync.created_at.asc())
        .limit(limit)
    )
    return list(res.scalars().all())


def record_initial_stock(db: AsyncSession, ctx: ActorContext, item: Item, quantity: int) -> Optional[LedgerEntry]:
    """
    Give a freshly added (not yet committed) item its opening quantity as a restock entry.
    The caller commits.
    """
    if not quantity:
        item.quantity = 0
        return None
    if quantity < 0:
        raise InvalidQuantity("Initial quantity cannot be negative", requested=quantity)

    item.quantity = int(quantity)
    entry = LedgerEntry(
        id=uuid.uuid4(),
        item_id=item.id,
        user_id=ctx.user_id,
        action="restock",
        quantity_change=int(quantity),
        quantity_after=int(quantity),
        notes="Initial stock",
    )
    db.add(entry)
    return entry


async def list_item_history(db: AsyncSession, ctx: ActorContext, item_id: UUID, limit: int = 100) -> List[LedgerEntry]:
    await get_item(db, ctx, item_id, include_deleted=True)
    res = await db.execute(
        select(LedgerEntry)
        .where(LedgerEntry.item_id == item_id)
        .order_by(LedgerEntry.created_at.desc())
        .limit(limit)
    )
    return list(res.scalars().all())


async def list_location_history(
    db: AsyncSession, ctx: ActorContext, location_id: UUID, limit: int = 100
) -> List[LedgerEntry]:
    await get_location(db, ctx, location_id)
    res = await db.execute(
        select(LedgerEntry)
        .where(LedgerEntry.location_id == location_id)
        .order_by(LedgerEntry.created_at.desc())
        .limit(limit)
    )
    return list(res.scalars().all())

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError

from core.errors import (
    Conflict,
    InsufficientLocationStock,
    InvalidQuantity,
    LedgerEntryImmutable,
    NotAuthorized,
    NotFound,
)
from db.database import Assignment, AssignmentSync, Item, LedgerEntry
from services import assignments as tracker
from services import ledger

from conftest import add_item


async def entries_for(db, item_id):
    res = await db.execute(
        select(LedgerEntry).where(LedgerEntry.item_id == item_id).order_by(LedgerEntry.created_at.asc())
    )
    return list(res.scalars().all())


async def stored_quantity(session_maker, item_id):
    async with session_maker() as s:
        return (await s.execute(select(Item.quantity).where(Item.id == item_id))).scalar_one()


def test_resolve_delta_signs():
    assert ledger.resolve_delta("sale", 3) == -3
    assert ledger.resolve_delta("giveaway", 1) == -1
    assert ledger.resolve_delta("transfer", 2) == -2
    assert ledger.resolve_delta("restock", 5) == 5
    assert ledger.resolve_delta("adjustment", 4, "increase") == 4
    assert ledger.resolve_delta("adjustment", 4, "decrease") == -4


@pytest.mark.parametrize(
    "action,magnitude,direction",
    [
        ("sale", 0, None),
        ("sale", -2, None),
        ("restock", True, None),
        ("adjustment", 3, None),
        ("sale", 1, "increase"),
        ("restock", 1, "decrease"),
        ("borrow", 1, None),
    ],
)
def test_resolve_delta_rejects(action, magnitude, direction):
    with pytest.raises(InvalidQuantity):
        ledger.resolve_delta(action, magnitude, direction)


async def test_initial_stock_is_a_ledger_entry(db, world):
    entries = await entries_for(db, world.shirt_id)
    assert len(entries) == 1
    assert entries[0].action == "restock"
    assert entries[0].quantity_change == 10
    assert entries[0].quantity_after == 10
    assert entries[0].notes == "Initial stock"


async def test_sale_updates_quantity_and_writes_entry(db, world, session_maker):
    result = await ledger.apply_adjustment(db, world.admin_ctx, world.shirt_id, "sale", 3, notes="walk-in")

    assert result.item.quantity == 7
    assert result.entry.quantity_change == -3
    assert result.entry.quantity_after == 7
    assert result.entry.quantity_before == 10
    assert result.entry.user_id == world.admin_id
    assert result.warnings == []
    assert await stored_quantity(session_maker, world.shirt_id) == 7


async def test_cannot_go_below_zero(db, world, session_maker):
    with pytest.raises(InvalidQuantity) as exc:
        await ledger.apply_adjustment(db, world.admin_ctx, world.shirt_id, "giveaway", 11)

    assert "below 0" in exc.value.message
    assert exc.value.context["available"] == 10
    assert await stored_quantity(session_maker, world.shirt_id) == 10
    assert len(await entries_for(db, world.shirt_id)) == 1


async def test_adjustment_needs_direction(db, world):
    with pytest.raises(InvalidQuantity):
        await ledger.apply_adjustment(db, world.admin_ctx, world.shirt_id, "adjustment", 2)

    result = await ledger.apply_adjustment(
        db, world.admin_ctx, world.shirt_id, "adjustment", 2, direction="decrease", notes="recount"
    )
    assert result.item.quantity == 8


async def test_entries_chain_to_current_quantity(db, world):
    for action, n, direction in [
        ("sale", 2, None),
        ("restock", 5, None),
        ("adjustment", 1, "decrease"),
        ("transfer", 4, None),
    ]:
        await ledger.apply_adjustment(db, world.admin_ctx, world.shirt_id, action, n, direction=direction)

    entries = await entries_for(db, world.shirt_id)
    running = 0
    for entry in entries:
        assert entry.quantity_after == running + entry.quantity_change
        assert entry.quantity_after >= 0
        running = entry.quantity_after

    item = await db.get(Item, world.shirt_id, populate_existing=True)
    assert running == item.quantity == 8


async def test_member_without_location_cannot_adjust(db, world):
    with pytest.raises(NotAuthorized):
        await ledger.apply_adjustment(db, world.member_ctx, world.shirt_id, "sale", 1)


async def test_manager_only_through_own_location(db, world):
    with pytest.raises(NotAuthorized):
        await ledger.apply_adjustment(
            db, world.manager_ctx, world.shirt_id, "sale", 1, location_id=world.warehouse_id
        )

    result = await ledger.apply_adjustment(
        db, world.manager_ctx, world.shirt_id, "sale", 1, location_id=world.front_desk_id
    )
    assert result.entry.location_id == world.front_desk_id
    assert result.entry.location_name == "Front Desk"
    assert result.entry.address == "1 Main St"


async def test_other_organization_sees_nothing(db, world):
    with pytest.raises(NotFound):
        await ledger.apply_adjustment(db, world.outsider_ctx, world.shirt_id, "restock", 1)


async def test_location_stock_limits_decrease(db, world, session_maker):
    await tracker.create_assignment(db, world.admin_ctx, world.shirt_id, location_id=world.front_desk_id, quantity=5)

    with pytest.raises(InsufficientLocationStock) as exc:
        await ledger.apply_adjustment(
            db, world.manager_ctx, world.shirt_id, "sale", 6, location_id=world.front_desk_id
        )
    assert "Only 5 units are assigned to this location" in exc.value.message
    assert exc.value.context["available"] == 5
    assert await stored_quantity(session_maker, world.shirt_id) == 10


async def test_location_sale_draws_down_assignment(db, world):
    assignment_id = (
        await tracker.create_assignment(db, world.admin_ctx, world.shirt_id, location_id=world.front_desk_id, quantity=5)
    ).id

    result = await ledger.apply_adjustment(
        db, world.manager_ctx, world.shirt_id, "sale", 2, location_id=world.front_desk_id
    )

    assert result.item.quantity == 8
    assert result.entry.assignment_id == assignment_id
    assert result.assignment.quantity_assigned == 3
    assert result.sync.status == "applied"
    assert result.warnings == []


async def test_restock_at_location_grows_assignment(db, world):
    await tracker.create_assignment(db, world.admin_ctx, world.shirt_id, location_id=world.front_desk_id, quantity=4)

    result = await ledger.apply_adjustment(
        db, world.admin_ctx, world.shirt_id, "restock", 6, location_id=world.front_desk_id
    )
    assert result.item.quantity == 16
    assert result.assignment.quantity_assigned == 10


async def test_unbounded_assignment_is_not_synced(db, world):
    await tracker.create_assignment(db, world.admin_ctx, world.shirt_id, location_id=world.front_desk_id)

    result = await ledger.apply_adjustment(
        db, world.manager_ctx, world.shirt_id, "sale", 7, location_id=world.front_desk_id
    )
    assert result.item.quantity == 3
    assert result.sync is None
    assert result.assignment.quantity_assigned is None


async def test_pending_sync_counts_against_location_stock(db, world, monkeypatch):
    assignment_id = (
        await tracker.create_assignment(db, world.admin_ctx, world.shirt_id, location_id=world.front_desk_id, quantity=5)
    ).id
    real_sync = ledger._sync_assignment_quantity

    async def broken_sync(session, assignment_id, delta):
        raise OperationalError("UPDATE item_assignments", {}, Exception("database is locked"))

    monkeypatch.setattr(ledger, "_sync_assignment_quantity", broken_sync)
    first = await ledger.apply_adjustment(
        db, world.manager_ctx, world.shirt_id, "sale", 4, location_id=world.front_desk_id
    )
    assert first.sync.status == "pending"
    assert first.assignment.quantity_assigned == 5

    with pytest.raises(InsufficientLocationStock) as exc:
        await ledger.apply_adjustment(
            db, world.manager_ctx, world.shirt_id, "sale", 4, location_id=world.front_desk_id
        )
    assert exc.value.context["available"] == 1

    last = await ledger.apply_adjustment(
        db, world.manager_ctx, world.shirt_id, "sale", 1, location_id=world.front_desk_id
    )
    assert last.item.quantity == 5

    summary = await tracker.assignment_summary(db, world.admin_ctx, world.shirt_id)
    assert summary.total_assigned == 0
    assert summary.available == 5

    monkeypatch.setattr(ledger, "_sync_assignment_quantity", real_sync)
    assert await ledger.reconcile_pending_syncs(db) == {"applied": 2, "pending": 0}
    refreshed = await db.get(Assignment, assignment_id, populate_existing=True)
    assert refreshed.quantity_assigned == 0
    assert (await tracker.assignment_summary(db, world.admin_ctx, world.shirt_id)).total_assigned == 0


async def test_unknown_action_is_refused_by_the_database(db, world):
    db.add(LedgerEntry(item_id=world.shirt_id, action="theft", quantity_change=-1, quantity_after=9))
    with pytest.raises(IntegrityError):
        await db.flush()
    await db.rollback()


async def test_failed_assignment_sync_keeps_entry_and_reconciles(db, world, monkeypatch):
    assignment_id = (
        await tracker.create_assignment(db, world.admin_ctx, world.shirt_id, location_id=world.front_desk_id, quantity=5)
    ).id
    real_sync = ledger._sync_assignment_quantity

    async def broken_sync(session, assignment_id, delta):
        raise OperationalError("UPDATE item_assignments", {}, Exception("database is locked"))

    monkeypatch.setattr(ledger, "_sync_assignment_quantity", broken_sync)
    result = await ledger.apply_adjustment(
        db, world.manager_ctx, world.shirt_id, "sale", 2, location_id=world.front_desk_id
    )

    assert result.item.quantity == 8
    assert len(result.warnings) == 1
    assert "will be retried" in result.warnings[0]
    assert result.sync.status == "pending"
    assert result.sync.attempts == 1
    assert "database is locked" in result.sync.last_error
    assert result.assignment.quantity_assigned == 5
    assert len(await entries_for(db, world.shirt_id)) == 2
    sync_id = result.sync.id

    pending = await ledger.list_pending_syncs(db, world.admin_ctx)
    assert [s.id for s in pending] == [sync_id]

    monkeypatch.setattr(ledger, "_sync_assignment_quantity", real_sync)
    counts = await ledger.reconcile_pending_syncs(db, organization_id=world.org_id)
    assert counts == {"applied": 1, "pending": 0}

    refreshed = await db.get(Assignment, assignment_id, populate_existing=True)
    sync = await db.get(AssignmentSync, sync_id, populate_existing=True)
    assert refreshed.quantity_assigned == 3
    assert sync.status == "applied"

    # applying twice is a no-op
    assert await ledger.reconcile_pending_syncs(db) == {"applied": 0, "pending": 0}
    refreshed = await db.get(Assignment, assignment_id, populate_existing=True)
    assert refreshed.quantity_assigned == 3


async def test_concurrent_writer_forces_recheck(db, world, session_maker, monkeypatch):
    item_id = await add_item(db, world.admin_ctx, "Mug", 5)
    real_get_item = ledger.get_item
    state = {"interleaved": False}

    async def get_item_then_interleave(session, ctx, item_id, **kwargs):
        found = await real_get_item(session, ctx, item_id, **kwargs)
        if not state["interleaved"]:
            state["interleaved"] = True
            # another writer commits between our read and our write
            async with session_maker() as other:
                await ledger.apply_adjustment(other, world.admin_ctx, item_id, "sale", 4)
        return found

    monkeypatch.setattr(ledger, "get_item", get_item_then_interleave)

    with pytest.raises(InvalidQuantity):
        await ledger.apply_adjustment(db, world.admin_ctx, item_id, "sale", 3)

    assert await stored_quantity(session_maker, item_id) == 1
    sales = [e for e in await entries_for(db, item_id) if e.action == "sale"]
    assert [(e.quantity_change, e.quantity_after) for e in sales] == [(-4, 1)]


async def test_retry_succeeds_on_fresh_quantity(db, world, session_maker, monkeypatch):
    item_id = await add_item(db, world.admin_ctx, "Pen", 5)
    real_get_item = ledger.get_item
    state = {"interleaved": False}

    async def get_item_then_interleave(session, ctx, item_id, **kwargs):
        found = await real_get_item(session, ctx, item_id, **kwargs)
        if not state["interleaved"]:
            state["interleaved"] = True
            async with session_maker() as other:
                await ledger.apply_adjustment(other, world.admin_ctx, item_id, "sale", 4)
        return found

    monkeypatch.setattr(ledger, "get_item", get_item_then_interleave)
    result = await ledger.apply_adjustment(db, world.admin_ctx, item_id, "sale", 1)

    assert result.item.quantity == 0
    assert result.entry.quantity_after == 0
    sales = [e for e in await entries_for(db, item_id) if e.action == "sale"]
    assert sorted(e.quantity_after for e in sales) == [0, 1]


async def test_gives_up_after_bounded_attempts(db, world, session_maker, monkeypatch):
    calls = []

    async def always_stale(session, item_id, expected, new_quantity):
        calls.append(expected)
        return False

    monkeypatch.setattr(ledger, "_compare_and_set_quantity", always_stale)

    with pytest.raises(Conflict) as exc:
        await ledger.apply_adjustment(db, world.admin_ctx, world.shirt_id, "sale", 1, max_attempts=3)

    assert len(calls) == 3
    assert exc.value.context["attempts"] == 3
    assert await stored_quantity(session_maker, world.shirt_id) == 10
    async with session_maker() as s:
        n = (await s.execute(
            select(func.count()).select_from(LedgerEntry).where(LedgerEntry.item_id == world.shirt_id)
        )).scalar_one()
    assert n == 1


async def test_soft_deleted_item_cannot_move(db, world):
    item = await db.get(Item, world.shirt_id)
    item.deleted_at = ledger.utcnow()
    await db.commit()

    with pytest.raises(NotFound):
        await ledger.apply_adjustment(db, world.admin_ctx, world.shirt_id, "restock", 1)


async def test_ledger_entries_are_immutable(db, world):
    entry = (await entries_for(db, world.shirt_id))[0]

    entry.notes = "rewritten"
    with pytest.raises(LedgerEntryImmutable):
        await db.flush()
    await db.rollback()

    entry = (await entries_for(db, world.shirt_id))[0]
    await db.delete(entry)
    with pytest.raises(LedgerEntryImmutable):
        await db.flush()
    await db.rollback()


async def test_histories(db, world):
    await ledger.apply_adjustment(db, world.manager_ctx, world.shirt_id, "sale", 1, location_id=world.front_desk_id)
    await ledger.apply_adjustment(db, world.admin_ctx, world.shirt_id, "restock", 2)

    item_history = await ledger.list_item_history(db, world.admin_ctx, world.shirt_id)
    assert len(item_history) == 3
    assert item_history[0].created_at >= item_history[-1].created_at

    desk_history = await ledger.list_location_history(db, world.admin_ctx, world.front_desk_id)
    assert [e.action for e in desk_history] == ["sale"]

import pytest
from sqlalchemy import func, select

from core.errors import InvalidQuantity, InvalidTransition, NotAuthorized, NotFound
from db.database import Item, LedgerEntry
from services import assignments as tracker
from services import requests as intake


async def submit(db, world, quantity=3, notes=None):
    return await intake.submit_request(
        db, world.manager_ctx, world.front_desk_id, world.shirt_id, quantity, notes=notes
    )


async def test_manager_submits_pending_request(db, world):
    req = await submit(db, world, notes="  weekend rush ")

    assert req.status == "pending"
    assert req.quantity_requested == 3
    assert req.requested_by == world.manager_id
    assert req.organization_id == world.org_id
    assert req.notes == "weekend rush"


async def test_only_managers_of_the_location_submit(db, world):
    with pytest.raises(NotAuthorized):
        await intake.submit_request(db, world.member_ctx, world.front_desk_id, world.shirt_id, 1)
    with pytest.raises(NotAuthorized):
        await intake.submit_request(db, world.manager_ctx, world.warehouse_id, world.shirt_id, 1)


@pytest.mark.parametrize("quantity", [0, -1, None])
async def test_quantity_checked_first(db, world, quantity):
    # quantity is rejected before anything is looked up
    with pytest.raises(InvalidQuantity):
        await intake.submit_request(db, world.member_ctx, world.warehouse_id, world.shirt_id, quantity)


async def test_approve_once(db, world):
    request_id = (await submit(db, world)).id

    approved = await intake.approve_request(db, world.admin_ctx, request_id, " ship friday ")
    assert approved.status == "approved"
    assert approved.responded_by == world.admin_id
    assert approved.responded_at is not None
    assert approved.response_notes == "ship friday"

    with pytest.raises(InvalidTransition) as exc:
        await intake.approve_request(db, world.admin_ctx, request_id)
    assert exc.value.context["status"] == "approved"

    with pytest.raises(InvalidTransition):
        await intake.deny_request(db, world.admin_ctx, request_id)


async def test_deny(db, world):
    request_id = (await submit(db, world)).id
    denied = await intake.deny_request(db, world.admin_ctx, request_id)
    assert denied.status == "denied"
    assert denied.response_notes is None


async def test_only_admins_respond(db, world):
    request_id = (await submit(db, world)).id
    with pytest.raises(NotAuthorized):
        await intake.approve_request(db, world.manager_ctx, request_id)
    with pytest.raises(NotFound):
        await intake.approve_request(db, world.outsider_ctx, request_id)


async def test_approval_does_not_move_stock(db, world, session_maker):
    request_id = (await submit(db, world, quantity=4)).id
    await intake.approve_request(db, world.admin_ctx, request_id)

    async with session_maker() as s:
        quantity = (await s.execute(select(Item.quantity).where(Item.id == world.shirt_id))).scalar_one()
        entries = (await s.execute(
            select(func.count()).select_from(LedgerEntry).where(LedgerEntry.item_id == world.shirt_id)
        )).scalar_one()
    assert quantity == 10
    assert entries == 1


async def test_request_context_shows_assigned_quantity(db, world):
    await tracker.create_assignment(db, world.admin_ctx, world.shirt_id, location_id=world.front_desk_id, quantity=3)

    rows = await intake.request_context(db, world.manager_ctx, world.shirt_id)

    assert [(r.location.name, r.assigned_quantity) for r in rows] == [("Front Desk", 3)]
    assert await intake.request_context(db, world.member_ctx, world.shirt_id) == []


async def test_listing_is_scoped(db, world):
    first_id = (await submit(db, world)).id
    second_id = (await submit(db, world, quantity=1)).id
    await intake.deny_request(db, world.admin_ctx, second_id)

    assert {r.id for r in await intake.list_requests(db, world.admin_ctx)} == {first_id, second_id}
    assert [r.id for r in await intake.list_requests(db, world.admin_ctx, status="pending")] == [first_id]
    assert len(await intake.list_requests(db, world.manager_ctx)) == 2
    assert await intake.list_requests(db, world.member_ctx) == []
    assert await intake.list_requests(db, world.outsider_ctx) == []

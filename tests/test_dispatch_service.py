"""
Tests for the delivery run (load) state machine.
"""

import uuid
from datetime import date

import pytest
import pytest_asyncio
from sqlalchemy import select, func

from app.core.exceptions import DispatchGuardError, ValidationFailed
from app.models import DeliveryRun, DeliveryItem, Order, PickList
from app.services.audit_service import AuditService
from app.services.dispatch_service import DispatchService
from app.services.order_service import OrderService
from tests.conftest import create_order


RUN_DATE = date(2024, 5, 20)


async def _order(session, order_id) -> Order:
    return (await session.execute(select(Order).where(Order.id == order_id))).scalar_one()


async def _items(session, order_id):
    result = await session.execute(
        select(DeliveryItem).where(DeliveryItem.order_id == order_id).order_by(DeliveryItem.created_at)
    )
    return list(result.scalars().all())


@pytest_asyncio.fixture
async def order_id(confirmed_order):
    return confirmed_order["order_id"]


@pytest_asyncio.fixture
async def load(session, actor, order_id):
    """Planned load carrying the confirmed order."""
    return await DispatchService(session).create_delivery_run(
        actor, RUN_DATE, load_name="Dublin North", order_ids=[order_id]
    )


@pytest_asyncio.fixture
async def dispatched_load(session, actor, load):
    await DispatchService(session).dispatch_load(actor, load.id)
    return load


class TestLoadCreation:

    async def test_run_numbers_per_date(self, session, actor, org):
        service = DispatchService(session)
        first = await service.create_delivery_run(actor, RUN_DATE)
        second = await service.create_delivery_run(actor, RUN_DATE)

        assert first.run_number == "DR-20240520-001"
        assert second.run_number == "DR-20240520-002"
        assert first.status == "planned"

    async def test_run_number_after_deleted_load(self, session, actor, org):
        service = DispatchService(session)
        first = await service.create_delivery_run(actor, RUN_DATE)
        second = await service.create_delivery_run(actor, RUN_DATE)
        await service.delete_load(actor, first.id)

        third = await service.create_delivery_run(actor, RUN_DATE)

        assert second.run_number == "DR-20240520-002"
        assert third.run_number == "DR-20240520-003"

    async def test_load_with_orders(self, session, actor, load, order_id):
        items = await _items(session, order_id)

        assert [(i.delivery_run_id, i.status, i.sequence_number) for i in items] == [(load.id, "pending", 1)]

    async def test_reassign_moves_active_item(self, session, actor, load, order_id):
        service = DispatchService(session)
        other = await service.create_delivery_run(actor, RUN_DATE, load_name="Wicklow")

        await service.assign_order_to_run(actor, order_id, other.id)

        items = await _items(session, order_id)
        assert len(items) == 1
        assert items[0].delivery_run_id == other.id

    async def test_in_transit_load_accepts_no_orders(self, session, actor, customer, product, price_list, dispatched_load):
        second = await create_order(session, actor, customer, [{"product_id": str(product.id), "quantity": 1}])

        with pytest.raises(DispatchGuardError):
            await DispatchService(session).assign_order_to_run(actor, second["order_id"], dispatched_load.id)

    async def test_add_order_twice_rejected(self, session, actor, load, order_id):
        with pytest.raises(DispatchGuardError):
            await DispatchService(session).add_order_to_delivery_run(actor, load.id, order_id)

    async def test_create_load_with_orders(self, session, actor, order_id):
        load = await DispatchService(session).create_load_with_orders(
            actor, RUN_DATE, [order_id], load_name="Kildare"
        )

        assert load.load_name == "Kildare"
        assert (await _items(session, order_id))[0].delivery_run_id == load.id

    async def test_create_run_and_assign(self, session, actor, order_id):
        haulier_id = uuid.uuid4()

        load = await DispatchService(session).create_run_and_assign(actor, order_id, haulier_id, RUN_DATE)

        assert load.haulier_id == haulier_id
        assert [i.delivery_run_id for i in await _items(session, order_id)] == [load.id]

    async def test_reorder_loads(self, session, actor, org):
        service = DispatchService(session)
        a = await service.create_delivery_run(actor, RUN_DATE)
        b = await service.create_delivery_run(actor, RUN_DATE)

        await service.reorder_loads(actor, [b.id, a.id])

        assert (b.display_order, a.display_order) == (0, 1)


class TestDispatchAndRecall:

    async def test_dispatch_moves_items_and_orders(self, session, actor, dispatched_load, order_id):
        assert dispatched_load.status == "in_transit"
        assert dispatched_load.actual_departure_time is not None
        assert (await _items(session, order_id))[0].status == "in_transit"
        order = await _order(session, order_id)
        assert order.status == "dispatched"
        assert order.dispatched_at is not None

    async def test_empty_load_cannot_dispatch(self, session, actor, org):
        service = DispatchService(session)
        empty = await service.create_delivery_run(actor, RUN_DATE)

        with pytest.raises(DispatchGuardError) as exc:
            await service.dispatch_load(actor, empty.id)
        assert exc.value.message == "Cannot dispatch an empty load"

    async def test_recall_returns_to_planned(self, session, actor, dispatched_load, order_id):
        result = await DispatchService(session).recall_load(actor, dispatched_load.id)

        assert result["orders_recalled"] == 1
        assert dispatched_load.status == "planned"
        assert dispatched_load.actual_departure_time is None
        assert (await _items(session, order_id))[0].status == "pending"
        assert (await _order(session, order_id)).status == "ready_for_dispatch"

    async def test_recall_completed_load(self, session, actor, dispatched_load):
        service = DispatchService(session)
        await service.complete_load(actor, dispatched_load.id)

        with pytest.raises(DispatchGuardError) as exc:
            await service.recall_load(actor, dispatched_load.id)
        assert exc.value.message == "Cannot recall a completed load. Use reschedule instead."

    async def test_recall_cancelled_load(self, session, actor, load):
        service = DispatchService(session)
        await service.cancel_load(actor, load.id)

        with pytest.raises(DispatchGuardError) as exc:
            await service.recall_load(actor, load.id)
        assert exc.value.message == "Cannot recall a cancelled load."

    async def test_recall_planned_load(self, session, actor, load):
        with pytest.raises(DispatchGuardError) as exc:
            await DispatchService(session).recall_load(actor, load.id)
        assert exc.value.message == "Only in-transit loads can be recalled"

    async def test_complete_delivers_orders(self, session, actor, dispatched_load, order_id):
        await DispatchService(session).complete_load(actor, dispatched_load.id)

        assert dispatched_load.status == "completed"
        assert dispatched_load.actual_return_time is not None
        assert (await _items(session, order_id))[0].status == "delivered"
        assert (await _order(session, order_id)).status == "delivered"

    async def test_status_routing(self, session, actor, load, order_id):
        service = DispatchService(session)

        await service.update_load_status(actor, load.id, "loading")
        assert load.status == "loading"
        assert (await _items(session, order_id))[0].status == "loading"

        await service.update_load_status(actor, load.id, "planned")
        assert load.status == "planned"
        assert (await _items(session, order_id))[0].status == "pending"

        with pytest.raises(ValidationFailed):
            await service.update_load_status(actor, load.id, "parked")


class TestOutcomesAndReschedule:

    async def test_failed_drop_rescheduled_onto_new_load(self, session, actor, dispatched_load, order_id):
        service = DispatchService(session)
        item = (await _items(session, order_id))[0]

        await service.record_delivery_outcome(actor, item.id, "failed", failure_reason="Site closed")
        assert (await _order(session, order_id)).status == "failed"

        retry = await service.create_delivery_run(actor, RUN_DATE, load_name="Retry")
        new_item = await service.reschedule_order(actor, order_id, retry.id)

        items = await _items(session, order_id)
        assert [i.status for i in items] == ["rescheduled", "pending"]
        assert new_item.delivery_run_id == retry.id
        assert (await _order(session, order_id)).status == "ready_for_dispatch"

        events = await AuditService(session).get_order_events(order_id)
        rescheduled = [e for e in events if e.event_type == "rescheduled"]
        assert [e.description for e in rescheduled] == ["Rescheduled from failed onto load DR-20240520-002"]

    async def test_outcome_needs_in_transit_item(self, session, actor, load, order_id):
        item = (await _items(session, order_id))[0]

        with pytest.raises(DispatchGuardError):
            await DispatchService(session).record_delivery_outcome(actor, item.id, "delivered")

    async def test_cancel_load_releases_orders(self, session, actor, dispatched_load, order_id):
        await DispatchService(session).cancel_load(actor, dispatched_load.id)

        assert dispatched_load.status == "cancelled"
        assert (await _items(session, order_id))[0].status == "rescheduled"
        assert (await _order(session, order_id)).status == "ready_for_dispatch"


class TestRemoval:

    async def test_delete_load_with_orders_fails(self, session, actor, load):
        with pytest.raises(DispatchGuardError) as exc:
            await DispatchService(session).delete_load(actor, load.id)

        assert exc.value.message == "Cannot delete load with assigned orders. Remove all orders first."
        assert (await session.execute(
            select(func.count(DeliveryRun.id)).where(DeliveryRun.id == load.id)
        )).scalar() == 1

    async def test_delete_empty_load(self, session, actor, org):
        service = DispatchService(session)
        empty = await service.create_delivery_run(actor, RUN_DATE)
        load_id = empty.id

        await service.delete_load(actor, load_id)

        assert (await session.execute(
            select(func.count(DeliveryRun.id)).where(DeliveryRun.id == load_id)
        )).scalar() == 0

    async def test_remove_order_resets_ready_order(self, session, actor, load, order_id):
        order = await _order(session, order_id)
        order.status = "ready_for_dispatch"
        await session.commit()

        removed = await DispatchService(session).remove_order_from_load(actor, order_id)

        assert removed == 1
        assert await _items(session, order_id) == []
        await session.refresh(order)
        assert order.status == "confirmed"

    async def test_remove_leaves_other_statuses(self, session, actor, load, order_id):
        order = await _order(session, order_id)
        order.status = "picking"
        await session.commit()

        await DispatchService(session).remove_order_from_load(actor, order_id)

        await session.refresh(order)
        assert order.status == "picking"

    async def test_remove_dispatched_order_keeps_status(self, session, actor, dispatched_load, order_id):
        removed = await DispatchService(session).remove_order_from_load(actor, order_id)

        assert removed == 1
        assert await _items(session, order_id) == []
        order = await _order(session, order_id)
        await session.refresh(order)
        assert order.status == "dispatched"

    async def test_update_order_date(self, session, actor, order_id):
        order = await DispatchService(session).update_order_date(actor, order_id, date(2024, 6, 1))

        assert order.requested_delivery_date == date(2024, 6, 1)
        events = await AuditService(session).get_order_events(order_id)
        assert "delivery_date_changed" in [e.event_type for e in events]


class TestBulkDispatch:

    async def test_partial_failure_reported(self, session, actor, customer, product, price_list, order_id):
        cancelled = await create_order(session, actor, customer, [{"product_id": str(product.id), "quantity": 1}])
        await OrderService(session).cancel_order(actor, cancelled["order_id"])

        result = await DispatchService(session).dispatch_orders(
            actor, [order_id, cancelled["order_id"]], run_date=RUN_DATE
        )

        assert result["assigned_order_ids"] == [order_id]
        assert result["failed_order_ids"] == [cancelled["order_id"]]
        assert result["warning"] == "1 of 2 orders failed to dispatch"
        assert (await _order(session, order_id)).status == "ready_for_dispatch"

    async def test_no_orders(self, session, actor):
        with pytest.raises(ValidationFailed) as exc:
            await DispatchService(session).dispatch_orders(actor, [])
        assert exc.value.message == "No orders provided"


class TestPickingAssignment:

    async def test_team_assignment_creates_pick_list(self, session, actor, order_id):
        await session.execute(PickList.__table__.delete().where(PickList.order_id == order_id))
        await session.commit()
        team_id = uuid.uuid4()

        pick_list = await DispatchService(session).assign_order_to_team(actor, order_id, team_id)

        assert pick_list.order_id == order_id
        assert pick_list.assigned_team_id == team_id

    async def test_picker_assignment(self, session, actor, order_id):
        user_id = uuid.uuid4()

        pick_list = await DispatchService(session).assign_order_to_picker(actor, order_id, user_id)

        assert pick_list.assigned_user_id == user_id

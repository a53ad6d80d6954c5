"""
Tests for the two-tier allocation ledger.
"""

from datetime import date

import pytest
import pytest_asyncio
from sqlalchemy import select, update

from app.core.exceptions import AllocationError, ConcurrencyConflict, ValidationFailed
from app.models import Allocation, AllocationStatus, AllocationTier, Batch, OrderItem, Product
from app.services.allocation_service import AllocationService
from tests.conftest import create_order


async def _tier1(session, order_id) -> Allocation:
    result = await session.execute(
        select(Allocation).where(
            Allocation.order_id == order_id,
            Allocation.tier == AllocationTier.PRODUCT.value,
        )
    )
    return result.scalar_one()


@pytest_asyncio.fixture
async def tier1(session, confirmed_order):
    return await _tier1(session, confirmed_order["order_id"])


@pytest_asyncio.fixture
async def small_batch(session, org):
    batch = Batch(
        org_id=org.id, batch_number="B-2024-002", variety="lavender hidcote ", size="2l",
        location_name="Tunnel 4", quantity=5, reserved_quantity=0, planted_at=date(2024, 4, 1),
    )
    session.add(batch)
    await session.commit()
    return batch


class TestTier1:

    async def test_rerun_updates_existing_reservation(self, session, actor, confirmed_order, tier1):
        result = await AllocationService(session).allocate_order(actor, confirmed_order["order_id"])

        assert [a.id for a in result.allocations] == [tier1.id]
        rows = (await session.execute(
            select(Allocation).where(Allocation.order_id == confirmed_order["order_id"])
        )).scalars().all()
        assert len(rows) == 1

    async def test_ats_counts_other_orders(self, session, actor, customer, product, price_list, batch, confirmed_order):
        second = await create_order(session, actor, customer, [{"product_id": str(product.id), "quantity": 95}])

        assert second["has_oversell_warning"] is True
        assert second["oversell_items"][0]["available"] == 90

    async def test_stock_status(self, session, actor, product, confirmed_order):
        status = await AllocationService(session).get_product_stock_status(actor, product.id)

        assert status["total_quantity"] == 100
        assert status["tier1_reserved"] == 10
        assert status["calculated_ats"] == 90
        assert status["stock_status"] == "in_stock"


class TestTier2:

    async def test_select_batch_converts_reservation(self, session, actor, tier1, batch):
        allocation = await AllocationService(session).select_batch_for_allocation(
            actor, tier1.id, batch.id, quantity=4
        )

        assert allocation.tier == AllocationTier.BATCH.value
        assert allocation.parent_allocation_id == tier1.id
        assert allocation.quantity == 4
        assert batch.reserved_quantity == 4
        assert tier1.quantity == 6
        assert tier1.status == AllocationStatus.RESERVED.value

    async def test_full_conversion_marks_parent_allocated(self, session, actor, tier1, batch):
        await AllocationService(session).select_batch_for_allocation(actor, tier1.id, batch.id)

        assert tier1.quantity == 0
        assert tier1.status == AllocationStatus.ALLOCATED.value

    async def test_cannot_exceed_reservation(self, session, actor, tier1, batch):
        with pytest.raises(AllocationError):
            await AllocationService(session).select_batch_for_allocation(actor, tier1.id, batch.id, quantity=11)

    async def test_cannot_exceed_line_quantity(self, session, actor, confirmed_order, batch):
        item = (await session.execute(
            select(OrderItem).where(OrderItem.order_id == confirmed_order["order_id"])
        )).scalar_one()
        service = AllocationService(session)
        await service.allocate_batch_to_line(actor, item.id, batch.id, 10)

        with pytest.raises(AllocationError) as exc:
            await service.allocate_batch_to_line(actor, item.id, batch.id, 1)
        assert "exceed line quantity" in exc.value.message

    async def test_cannot_exceed_batch_availability(self, session, actor, tier1, small_batch):
        with pytest.raises(AllocationError) as exc:
            await AllocationService(session).select_batch_for_allocation(actor, tier1.id, small_batch.id, quantity=6)
        assert exc.value.message == "Batch B-2024-002 has only 5 available"

    async def test_idempotency_key_does_not_double_allocate(self, session, actor, tier1, batch):
        service = AllocationService(session)
        first = await service.select_batch_for_allocation(actor, tier1.id, batch.id, quantity=3, idempotency_key="pick-1")
        second = await service.select_batch_for_allocation(actor, tier1.id, batch.id, quantity=3, idempotency_key="pick-1")

        assert first.id == second.id
        assert batch.reserved_quantity == 3
        assert tier1.quantity == 7

    async def test_same_key_in_another_org_allocates_separately(
        self, session, actor, other_actor, other_org, foreign_customer, tier1, batch
    ):
        plant = Product(org_id=other_org.id, name="Lavender Munstead 1L", variety="Lavender Munstead", size="1L")
        their_batch = Batch(
            org_id=other_org.id, batch_number="H-2024-001", variety="Lavender Munstead", size="1L",
            location_name="Field 2", quantity=50, reserved_quantity=0, planted_at=date(2024, 3, 1),
        )
        session.add_all([plant, their_batch])
        await session.commit()
        their_order = await create_order(
            session, other_actor, foreign_customer, [{"product_id": str(plant.id), "quantity": 5}]
        )
        their_tier1 = await _tier1(session, their_order["order_id"])
        service = AllocationService(session)

        ours = await service.select_batch_for_allocation(actor, tier1.id, batch.id, quantity=3, idempotency_key="scan-1")
        theirs = await service.select_batch_for_allocation(
            other_actor, their_tier1.id, their_batch.id, quantity=2, idempotency_key="scan-1"
        )

        assert theirs.id != ours.id
        assert theirs.org_id == other_org.id
        assert theirs.batch_id == their_batch.id
        assert their_batch.reserved_quantity == 2
        assert batch.reserved_quantity == 3

    async def test_stale_batch_raises_conflict(self, session, actor, tier1, batch):
        batch_id = batch.id
        await session.get(Batch, batch_id)
        await session.execute(
            update(Batch)
            .where(Batch.id == batch_id)
            .values(version_id=Batch.version_id + 1)
            .execution_options(synchronize_session=False)
        )

        with pytest.raises(ConcurrencyConflict):
            await AllocationService(session).select_batch_for_allocation(actor, tier1.id, batch_id, quantity=2)

        await session.rollback()
        fresh = (await session.execute(select(Batch).where(Batch.id == batch_id))).scalar_one()
        assert fresh.reserved_quantity == 0

    async def test_available_batches_match_label(self, session, actor, product, batch, small_batch):
        batches = await AllocationService(session).get_available_batches(actor, product.id)

        assert [b["batch_number"] for b in batches] == ["B-2024-001", "B-2024-002"]

        filtered = await AllocationService(session).get_available_batches(actor, product.id, location_filter="tunnel 4")
        assert [b["batch_number"] for b in filtered] == ["B-2024-002"]


class TestPickAndCancel:

    async def test_short_pick_releases_shortage(self, session, actor, tier1, batch):
        service = AllocationService(session)
        allocation = await service.select_batch_for_allocation(actor, tier1.id, batch.id, quantity=10)

        result = await service.mark_allocation_picked(actor, allocation.id, 8)

        assert result["shortage"] == 2
        assert allocation.status == AllocationStatus.PICKED.value
        assert batch.reserved_quantity == 8

    async def test_cancel_batch_allocation_restores_parent(self, session, actor, tier1, batch):
        service = AllocationService(session)
        allocation = await service.select_batch_for_allocation(actor, tier1.id, batch.id)

        result = await service.cancel_allocation(actor, allocation.id, "wrong batch")

        assert result["quantity_released"] == 10
        assert batch.reserved_quantity == 0
        assert tier1.quantity == 10
        assert tier1.status == AllocationStatus.RESERVED.value

    async def test_picked_allocation_cannot_be_cancelled(self, session, actor, tier1, batch):
        service = AllocationService(session)
        allocation = await service.select_batch_for_allocation(actor, tier1.id, batch.id, quantity=5)
        await service.mark_allocation_picked(actor, allocation.id, 5)

        with pytest.raises(AllocationError) as exc:
            await service.cancel_allocation(actor, allocation.id)
        assert exc.value.message == "Cannot cancel a picked allocation"

    async def test_replacement_batch_covers_short_pick(self, session, actor, confirmed_order, tier1, batch, small_batch):
        service = AllocationService(session)
        allocation = await service.select_batch_for_allocation(actor, tier1.id, batch.id, quantity=10)
        await service.mark_allocation_picked(actor, allocation.id, 8)

        replacement = await service.allocate_batch_to_line(actor, tier1.order_item_id, small_batch.id, 2)

        assert replacement.quantity == 2
        assert small_batch.reserved_quantity == 2
        with pytest.raises(AllocationError) as exc:
            await service.allocate_batch_to_line(actor, tier1.order_item_id, small_batch.id, 1)
        assert "exceed line quantity" in exc.value.message


class TestAllocationEvents:

    async def test_allocate_and_short_pick_recorded(self, session, actor, tier1, batch):
        service = AllocationService(session)
        allocation = await service.select_batch_for_allocation(actor, tier1.id, batch.id, quantity=4)
        await service.mark_allocation_picked(actor, allocation.id, 3)

        events = await service.get_allocation_events(actor, allocation_id=allocation.id)

        assert {(e.event_type, e.quantity_change) for e in events} == {
            ("batch_allocated", 4),
            ("allocation_picked", -1),
        }
        assert all(e.actor_id == actor.user_id for e in events)
        assert all(e.batch_id == batch.id for e in events)

    async def test_cancel_recorded_as_release(self, session, actor, confirmed_order, tier1, batch):
        service = AllocationService(session)
        allocation = await service.select_batch_for_allocation(actor, tier1.id, batch.id, quantity=4)
        await service.cancel_allocation(actor, allocation.id, "wrong batch")

        events = await service.get_allocation_events(actor, order_id=confirmed_order["order_id"])

        released = [e for e in events if e.event_type == "allocation_released"]
        assert [(e.allocation_id, e.quantity_change) for e in released] == [(allocation.id, -4)]
        assert released[0].event_metadata["reason"] == "wrong batch"

    async def test_other_org_sees_no_events(self, session, actor, other_actor, tier1, batch):
        service = AllocationService(session)
        allocation = await service.select_batch_for_allocation(actor, tier1.id, batch.id, quantity=4)

        assert await service.get_allocation_events(other_actor, allocation_id=allocation.id) == []

    async def test_filter_required(self, session, actor):
        with pytest.raises(ValidationFailed):
            await AllocationService(session).get_allocation_events(actor)

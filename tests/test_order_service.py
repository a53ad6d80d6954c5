"""
Tests for order creation, commit and status changes.
"""

import uuid
from decimal import Decimal

import pytest
from sqlalchemy import select, func

from app.core.exceptions import (
    ValidationFailed, NotFoundError, CommitError, InvalidTransition, CrossTenantError,
)
from app.models import (
    Order, OrderItem, OrderEvent, Allocation, AllocationStatus, AllocationTier,
    PickList, PickListStatus, PostCommitEvent, PostCommitEventStatus, ProductGroup,
)
from app.services.order_service import OrderService
from app.services.picklist_service import PickListService
from app.services.post_commit_service import PostCommitService
from app.services.reference_resolver import ReferenceResolver
from tests.conftest import create_order


async def _order(session, order_id) -> Order:
    return (await session.execute(select(Order).where(Order.id == order_id))).scalar_one()


async def _items(session, order_id):
    result = await session.execute(
        select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.line_number)
    )
    return list(result.scalars().all())


class TestCreateOrder:

    async def test_priced_line_and_recent_orders(self, session, actor, customer, product, price_list, batch):
        """5.00 x 10 at 13.5% VAT, then visible in recent orders with one line."""
        result = await create_order(session, actor, customer, [{"product_id": str(product.id), "quantity": 10}])

        order = await _order(session, result["order_id"])
        assert order.status == "confirmed"
        assert order.subtotal_ex_vat == Decimal("50.00")
        assert order.vat_amount == Decimal("6.75")
        assert order.total_inc_vat == Decimal("56.75")
        assert result["order_number"].startswith("ORD-")
        assert result["has_oversell_warning"] is False

        items = await _items(session, result["order_id"])
        assert items[0].unit_price_ex_vat == Decimal("5.00")
        assert items[0].line_total_ex_vat == Decimal("50.00")
        assert items[0].description == "Lavender Hidcote 2L"

        recent = await OrderService(session).get_customer_recent_orders(actor, customer.id)
        assert [r["order_number"] for r in recent] == [result["order_number"]]
        assert recent[0]["line_count"] == 1

    async def test_post_commit_steps_run(self, session, actor, confirmed_order):
        order_id = confirmed_order["order_id"]

        events = (await session.execute(
            select(PostCommitEvent).where(PostCommitEvent.order_id == order_id).order_by(PostCommitEvent.sequence)
        )).scalars().all()
        assert [e.event_type for e in events] == [
            "backfill_group_ids", "allocate_tier1", "create_pick_list", "order_created_audit",
        ]
        assert all(e.status == PostCommitEventStatus.DONE.value for e in events)

        tier1 = (await session.execute(
            select(Allocation).where(Allocation.order_id == order_id)
        )).scalars().all()
        assert [(a.tier, a.status, a.quantity) for a in tier1] == [
            (AllocationTier.PRODUCT.value, AllocationStatus.RESERVED.value, 10)
        ]

        pick_list = (await session.execute(select(PickList).where(PickList.order_id == order_id))).scalar_one()
        assert pick_list.status == PickListStatus.PENDING.value

        audit = (await session.execute(
            select(OrderEvent).where(OrderEvent.order_id == order_id)
        )).scalars().all()
        assert [e.event_type for e in audit] == ["order_created"]

    async def test_mix_line_backfills_group(self, session, actor, customer, product, mix_group, price_list):
        result = await create_order(
            session, actor, customer, [{"product_group_id": str(mix_group.id), "quantity": 24}]
        )

        item = (await _items(session, result["order_id"]))[0]
        assert item.product_id == product.id
        assert item.product_group_id == mix_group.id
        assert item.description == "[MIX] Herb Mix 2L"

    async def test_oversell_still_creates_order(self, session, actor, customer, product, price_list, batch):
        result = await create_order(session, actor, customer, [{"product_id": str(product.id), "quantity": 150}])

        assert result["has_oversell_warning"] is True
        oversell = result["oversell_items"][0]
        assert oversell["quantity"] == 150
        assert oversell["available"] == 100
        assert (await _order(session, result["order_id"])).status == "confirmed"

    async def test_missing_price_creates_zero_line_with_warning(self, session, actor, customer, second_product):
        result = await create_order(session, actor, customer, [{"product_id": str(second_product.id), "quantity": 2}])

        items = await _items(session, result["order_id"])
        assert items[0].unit_price_ex_vat == Decimal("0")
        assert any("no price found" in w for w in result["warnings"])

    async def test_sku_vat_rate_used(self, session, actor, customer, second_product):
        result = await create_order(
            session, actor, customer,
            [{"product_id": str(second_product.id), "quantity": 1, "unit_price": "10.00"}],
        )

        item = (await _items(session, result["order_id"]))[0]
        assert item.vat_rate == Decimal("23")
        assert item.line_vat_amount == Decimal("2.30")

    async def test_order_numbers_are_sequential(self, session, actor, customer, product, price_list):
        first = await create_order(session, actor, customer, [{"product_id": str(product.id), "quantity": 1}])
        second = await create_order(session, actor, customer, [{"product_id": str(product.id), "quantity": 1}])

        assert first["order_number"].endswith("-0001")
        assert second["order_number"].endswith("-0002")

    async def test_draft_order(self, session, actor, customer, product, price_list):
        result = await create_order(
            session, actor, customer, [{"product_id": str(product.id), "quantity": 1}], status="draft"
        )

        order = await _order(session, result["order_id"])
        assert order.status == "draft"
        assert order.confirmed_at is None


class TestCreateOrderFailures:

    async def test_malformed_customer_id_rejected_before_lookup(self, session, actor, monkeypatch):
        calls = []

        async def spy(self, actor, customer_id):
            calls.append(customer_id)

        monkeypatch.setattr(ReferenceResolver, "resolve_customer", spy)

        with pytest.raises(ValidationFailed) as exc:
            await OrderService(session).create_order(
                actor, {"customer_id": "not-a-uuid", "lines": [{"variety": "x", "size": "y", "quantity": 1}]}
            )

        assert exc.value.message == "Invalid form data"
        assert calls == []

    async def test_line_without_reference_rejected(self, session, actor, customer):
        with pytest.raises(ValidationFailed):
            await create_order(session, actor, customer, [{"quantity": 1}])

    async def test_empty_group_creates_nothing(self, session, actor, org, customer, product, price_list):
        group = ProductGroup(org_id=org.id, name="Empty Mix")
        session.add(group)
        await session.commit()

        with pytest.raises(NotFoundError) as exc:
            await create_order(session, actor, customer, [
                {"product_id": str(product.id), "quantity": 1},
                {"product_group_id": str(group.id), "quantity": 1},
            ])

        assert "has no members" in exc.value.message
        assert (await session.execute(select(func.count(Order.id)))).scalar() == 0

    async def test_foreign_customer(self, session, actor, foreign_customer, product):
        with pytest.raises(CrossTenantError):
            await create_order(session, actor, foreign_customer, [{"product_id": str(product.id), "quantity": 1}])

    async def test_commit_is_all_or_nothing(self, session, org, customer, product):
        """A line that violates NOT NULL rolls back the order header too."""
        line = {
            "line_key": "a", "line_number": 1, "product_id": product.id, "quantity": None,
            "unit_price": Decimal("1.00"), "vat_rate": Decimal("13.5"),
            "line_total_ex_vat": Decimal("1.00"), "line_vat_amount": Decimal("0.14"),
        }
        with pytest.raises(CommitError) as exc:
            await OrderService(session).commit_order(
                org_id=org.id, customer_id=customer.id, order_number="ORD-TEST-0001", lines=[line],
            )

        assert exc.value.message.startswith("Failed to create order:")
        count = (await session.execute(
            select(func.count(Order.id)).where(Order.order_number == "ORD-TEST-0001")
        )).scalar()
        assert count == 0

    async def test_failing_post_commit_step_keeps_order(self, session, actor, customer, product, price_list, monkeypatch):
        async def boom(self, org_id, order_id):
            raise RuntimeError("pick list service unavailable")

        monkeypatch.setattr(PickListService, "create_pick_list_from_order", boom)

        result = await create_order(session, actor, customer, [{"product_id": str(product.id), "quantity": 1}])

        assert (await _order(session, result["order_id"])).status == "confirmed"
        assert any("create_pick_list" in w for w in result["warnings"])

        event = (await session.execute(
            select(PostCommitEvent).where(
                PostCommitEvent.order_id == result["order_id"],
                PostCommitEvent.event_type == "create_pick_list",
            )
        )).scalar_one()
        assert event.status == PostCommitEventStatus.FAILED.value
        assert event.attempts == 1
        assert "unavailable" in event.last_error

        monkeypatch.undo()
        summary = await PostCommitService(session).retry_pending()

        assert summary["succeeded"] == 1
        await session.refresh(event)
        assert event.status == PostCommitEventStatus.DONE.value


class TestOrderStatus:

    async def test_ready_requires_completed_pick_list(self, session, actor, org, confirmed_order):
        order_id = confirmed_order["order_id"]
        service = OrderService(session)

        with pytest.raises(InvalidTransition) as exc:
            await service.update_order_status(actor, order_id, "ready_for_dispatch")
        assert exc.value.message == (
            "Cannot mark as ready - picking has not been completed. Complete the pick list first."
        )

        pick_lists = PickListService(session)
        await pick_lists.complete_pick_list(await pick_lists.get_pick_list_for_order(org.id, order_id))
        await session.commit()

        order = await service.update_order_status(actor, order_id, "ready_for_dispatch")
        assert order.status == "ready_for_dispatch"

    async def test_dispatch_statuses_not_manual(self, session, actor, confirmed_order):
        with pytest.raises(InvalidTransition):
            await OrderService(session).update_order_status(actor, confirmed_order["order_id"], "dispatched")

    async def test_unknown_status(self, session, actor, confirmed_order):
        with pytest.raises(ValidationFailed):
            await OrderService(session).update_order_status(actor, confirmed_order["order_id"], "shipped")

    async def test_cancel_releases_allocations(self, session, actor, confirmed_order):
        order_id = confirmed_order["order_id"]

        order = await OrderService(session).cancel_order(actor, order_id, "Customer changed mind")

        assert order.status == "cancelled"
        statuses = (await session.execute(
            select(Allocation.status).where(Allocation.order_id == order_id)
        )).scalars().all()
        assert statuses == [AllocationStatus.CANCELLED.value]
        pick_list = (await session.execute(select(PickList).where(PickList.order_id == order_id))).scalar_one()
        assert pick_list.status == PickListStatus.CANCELLED.value

    async def test_order_of_other_org_not_found(self, session, other_actor, confirmed_order):
        with pytest.raises(NotFoundError):
            await OrderService(session).get_order_details(other_actor, confirmed_order["order_id"])

    async def test_order_details(self, session, actor, confirmed_order):
        details = await OrderService(session).get_order_details(actor, confirmed_order["order_id"])

        assert details["reserved_quantity"] == 10
        assert details["allocated_quantity"] == 0
        assert len(details["order"].items) == 1
        assert details["active_delivery_run_id"] is None


class TestStartPicking:

    async def test_lists_lines_needing_a_batch(self, session, actor, confirmed_order):
        order_id = confirmed_order["order_id"]

        result = await OrderService(session).start_picking_order(actor, order_id)

        assert result["status"] == "picking"
        assert [(p["product_name"], p["quantity"]) for p in result["pending_batch_selections"]] == [
            ("Lavender Hidcote 2L", 10)
        ]
        events = (await session.execute(
            select(OrderEvent.event_type).where(OrderEvent.order_id == order_id)
        )).scalars().all()
        assert "picking_started" in events

    async def test_only_confirmed_orders(self, session, actor, confirmed_order):
        service = OrderService(session)
        await service.start_picking_order(actor, confirmed_order["order_id"])

        with pytest.raises(InvalidTransition) as exc:
            await service.start_picking_order(actor, confirmed_order["order_id"])
        assert exc.value.message == "Cannot start picking an order in picking status"

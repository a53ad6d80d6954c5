"""
Dispatch Service: delivery runs ("loads") and their state machine.

Load states:
    planned -> loading -> in_transit -> completed
    in_transit -> planned                (recall)
    any non-completed state -> cancelled

Delivery item and order statuses change together with the load, in the
same transaction. An order has at most one active delivery item
(pending, loading, in_transit); delivered, failed and rescheduled items are
kept as history.
"""
from typing import List, Optional, Dict, Any, Sequence
from datetime import date, datetime, timezone
import logging
import uuid

from sqlalchemy import select, func, and_, update, delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.enum_utils import status_in, to_enum
from app.core.exceptions import NurseryError, NotFoundError, DispatchGuardError, ValidationFailed
from app.core.tenant_context import ActorContext, require_actor
from app.models.dispatch import (
    DeliveryRun, DeliveryItem, LoadStatus, DeliveryItemStatus, ACTIVE_ITEM_STATUSES,
)
from app.models.order import Order, OrderStatus
from app.models.picklist import PickList
from app.services.audit_service import AuditService
from app.services.picklist_service import PickListService

logger = logging.getLogger(__name__)


ASSIGNABLE_LOAD_STATUSES = (LoadStatus.PLANNED, LoadStatus.LOADING)
ASSIGNABLE_ORDER_STATUSES = (
    OrderStatus.CONFIRMED,
    OrderStatus.PICKING,
    OrderStatus.READY_FOR_DISPATCH,
)
EDITABLE_LOAD_FIELDS = ("load_name", "haulier_id", "vehicle_id", "run_date", "driver_name", "notes")


class DispatchService:
    """Service for delivery runs, delivery items and picking assignment."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== LOOKUPS ====================

    async def _get_load(self, org_id: uuid.UUID, load_id: uuid.UUID) -> DeliveryRun:
        load = await self.db.get(DeliveryRun, load_id)
        if load is None or load.org_id != org_id:
            raise NotFoundError("Load not found")
        return load

    async def _get_order(self, org_id: uuid.UUID, order_id: uuid.UUID) -> Order:
        order = await self.db.get(Order, order_id)
        if order is None or order.org_id != org_id:
            raise NotFoundError("Order not found")
        return order

    async def _active_item_for_order(self, order_id: uuid.UUID) -> Optional[DeliveryItem]:
        result = await self.db.execute(
            select(DeliveryItem).where(
                and_(
                    DeliveryItem.order_id == order_id,
                    DeliveryItem.status.in_(ACTIVE_ITEM_STATUSES),
                )
            ).order_by(DeliveryItem.created_at.desc())
        )
        return result.scalars().first()

    async def _items_for_load(
        self,
        load_id: uuid.UUID,
        statuses: Optional[Sequence[str]] = None,
    ) -> List[DeliveryItem]:
        stmt = select(DeliveryItem).where(DeliveryItem.delivery_run_id == load_id)
        if statuses is not None:
            stmt = stmt.where(DeliveryItem.status.in_(list(statuses)))
        result = await self.db.execute(stmt.order_by(DeliveryItem.sequence_number))
        return list(result.scalars().all())

    async def _orders_for_items(self, items: Sequence[DeliveryItem]) -> Dict[uuid.UUID, Order]:
        order_ids = list({item.order_id for item in items})
        if not order_ids:
            return {}
        result = await self.db.execute(select(Order).where(Order.id.in_(order_ids)))
        return {order.id: order for order in result.scalars().all()}

    async def _next_sequence(self, load_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.coalesce(func.max(DeliveryItem.sequence_number), 0))
            .where(DeliveryItem.delivery_run_id == load_id)
        )
        return int(result.scalar() or 0) + 1

    async def get_load_with_items(self, actor: Optional[ActorContext], load_id: uuid.UUID) -> Dict[str, Any]:
        actor = require_actor(actor)
        load = await self._get_load(actor.org_id, load_id)
        return {"load": load, "items": await self._items_for_load(load_id)}

    # ==================== RUN NUMBER GENERATION ====================

    async def generate_run_number(self, org_id: uuid.UUID, run_date: date) -> str:
        """Generate run number unique per organization and date: DR-YYYYMMDD-NNN"""
        prefix = f"DR-{run_date.strftime('%Y%m%d')}-"

        # Deleted loads leave gaps, so continue after the highest live number
        stmt = select(func.max(DeliveryRun.run_number)).where(
            and_(
                DeliveryRun.org_id == org_id,
                DeliveryRun.run_number.like(f"{prefix}%"),
            )
        )
        last = (await self.db.execute(stmt)).scalar()
        last_seq = int(last[len(prefix):]) if last else 0

        return f"{prefix}{(last_seq + 1):03d}"

    # ==================== GUARDS ====================

    def _ensure_assignable_load(self, load: DeliveryRun) -> None:
        if not status_in(load.status, *ASSIGNABLE_LOAD_STATUSES):
            raise DispatchGuardError(f"Cannot assign orders to a load in {load.status} status")

    def _ensure_assignable_order(self, order: Order) -> None:
        if not status_in(order.status, *ASSIGNABLE_ORDER_STATUSES):
            raise DispatchGuardError(
                f"Order {order.order_number} cannot be assigned to a load in {order.status} status"
            )

    # ==================== LOAD CREATION & ASSIGNMENT ====================

    async def _create_run(
        self,
        actor: ActorContext,
        run_date: date,
        haulier_id: Optional[uuid.UUID] = None,
        vehicle_id: Optional[uuid.UUID] = None,
        load_name: Optional[str] = None,
        driver_name: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> DeliveryRun:
        last_position = (await self.db.execute(
            select(func.max(DeliveryRun.display_order)).where(
                and_(DeliveryRun.org_id == actor.org_id, DeliveryRun.run_date == run_date)
            )
        )).scalar()

        load = DeliveryRun(
            org_id=actor.org_id,
            run_number=await self.generate_run_number(actor.org_id, run_date),
            run_date=run_date,
            load_name=load_name,
            haulier_id=haulier_id,
            vehicle_id=vehicle_id,
            driver_name=driver_name,
            notes=notes,
            status=LoadStatus.PLANNED.value,
            display_order=0 if last_position is None else last_position + 1,
            created_by=actor.user_id,
        )
        self.db.add(load)
        await self.db.flush()
        logger.info(f"Load {load.run_number} created for {run_date}")
        return load

    async def _add_item(self, org_id: uuid.UUID, load: DeliveryRun, order: Order, trolleys: int = 0) -> DeliveryItem:
        item = DeliveryItem(
            org_id=org_id,
            delivery_run_id=load.id,
            order_id=order.id,
            sequence_number=await self._next_sequence(load.id),
            status=DeliveryItemStatus.PENDING.value,
            trolleys_delivered=trolleys,
        )
        self.db.add(item)
        await self.db.flush()
        return item

    async def _assign(self, org_id: uuid.UUID, load: DeliveryRun, order: Order) -> DeliveryItem:
        """
        Point the order's active item at ``load`` or create one.

        All checks run before any write.
        """
        self._ensure_assignable_load(load)
        self._ensure_assignable_order(order)

        existing = await self._active_item_for_order(order.id)
        if existing is not None:
            if existing.delivery_run_id == load.id:
                return existing
            if existing.status == DeliveryItemStatus.IN_TRANSIT.value:
                raise DispatchGuardError(
                    f"Order {order.order_number} is in transit. Recall its load first."
                )
            existing.delivery_run_id = load.id
            existing.sequence_number = await self._next_sequence(load.id)
            existing.status = DeliveryItemStatus.PENDING.value
            await self.db.flush()
            return existing

        return await self._add_item(org_id, load, order)

    async def create_delivery_run(
        self,
        actor: Optional[ActorContext],
        run_date: date,
        haulier_id: Optional[uuid.UUID] = None,
        vehicle_id: Optional[uuid.UUID] = None,
        load_name: Optional[str] = None,
        driver_name: Optional[str] = None,
        notes: Optional[str] = None,
        order_ids: Optional[Sequence[uuid.UUID]] = None,
    ) -> DeliveryRun:
        """Create a planned load, optionally with orders, in one transaction."""
        actor = require_actor(actor)
        load = await self._create_run(
            actor, run_date, haulier_id, vehicle_id, load_name, driver_name, notes
        )
        for order_id in order_ids or []:
            order = await self._get_order(actor.org_id, order_id)
            await self._assign(actor.org_id, load, order)

        await self.db.commit()
        return load

    async def create_load_with_orders(
        self,
        actor: Optional[ActorContext],
        run_date: date,
        order_ids: Sequence[uuid.UUID],
        haulier_id: Optional[uuid.UUID] = None,
        vehicle_id: Optional[uuid.UUID] = None,
        load_name: Optional[str] = None,
    ) -> DeliveryRun:
        return await self.create_delivery_run(
            actor, run_date, haulier_id=haulier_id, vehicle_id=vehicle_id,
            load_name=load_name, order_ids=order_ids,
        )

    async def add_order_to_delivery_run(
        self,
        actor: Optional[ActorContext],
        load_id: uuid.UUID,
        order_id: uuid.UUID,
        trolleys_delivered: int = 0,
    ) -> DeliveryItem:
        """Add a new pending item at the end of the load."""
        actor = require_actor(actor)
        load = await self._get_load(actor.org_id, load_id)
        order = await self._get_order(actor.org_id, order_id)
        self._ensure_assignable_load(load)
        self._ensure_assignable_order(order)

        if await self._active_item_for_order(order_id) is not None:
            raise DispatchGuardError(f"Order {order.order_number} is already assigned to a load")

        item = await self._add_item(actor.org_id, load, order, trolleys_delivered)
        await self.db.commit()
        return item

    async def assign_order_to_run(
        self,
        actor: Optional[ActorContext],
        order_id: uuid.UUID,
        load_id: uuid.UUID,
    ) -> DeliveryItem:
        """Move the order's active item to the load, or create one."""
        actor = require_actor(actor)
        load = await self._get_load(actor.org_id, load_id)
        order = await self._get_order(actor.org_id, order_id)

        item = await self._assign(actor.org_id, load, order)
        await self.db.commit()
        logger.info(f"Order {order.order_number} assigned to load {load.run_number}")
        return item

    async def create_run_and_assign(
        self,
        actor: Optional[ActorContext],
        order_id: Optional[uuid.UUID],
        haulier_id: Optional[uuid.UUID],
        run_date: date,
    ) -> DeliveryRun:
        return await self.create_delivery_run(
            actor, run_date, haulier_id=haulier_id,
            order_ids=[order_id] if order_id else None,
        )

    async def dispatch_orders(
        self,
        actor: Optional[ActorContext],
        order_ids: Sequence[uuid.UUID],
        load_id: Optional[uuid.UUID] = None,
        haulier_id: Optional[uuid.UUID] = None,
        run_date: Optional[date] = None,
        load_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Bulk-assign orders to a load (a new one for today unless given) and
        mark them ready for dispatch. Orders that cannot be assigned are
        skipped and reported in a warning.
        """
        actor = require_actor(actor)
        if not order_ids:
            raise ValidationFailed("No orders provided")

        if load_id:
            load = await self._get_load(actor.org_id, load_id)
            self._ensure_assignable_load(load)
        else:
            load = await self._create_run(
                actor,
                run_date or datetime.now(timezone.utc).date(),
                haulier_id=haulier_id,
                load_name=load_name,
            )

        assigned: List[uuid.UUID] = []
        failed: List[uuid.UUID] = []
        for order_id in order_ids:
            try:
                order = await self._get_order(actor.org_id, order_id)
                await self._assign(actor.org_id, load, order)
                order.status = OrderStatus.READY_FOR_DISPATCH.value
                assigned.append(order_id)
            except NurseryError as e:
                logger.warning(f"Could not dispatch order {order_id}: {e.message}")
                failed.append(order_id)

        await self.db.commit()

        warning = None
        if failed:
            warning = f"{len(failed)} of {len(order_ids)} orders failed to dispatch"
        return {
            "load_id": load.id,
            "assigned_order_ids": assigned,
            "failed_order_ids": failed,
            "warning": warning,
        }

    # ==================== LOAD EDITING ====================

    async def update_load(
        self,
        actor: Optional[ActorContext],
        load_id: uuid.UUID,
        updates: Dict[str, Any],
    ) -> DeliveryRun:
        actor = require_actor(actor)
        load = await self._get_load(actor.org_id, load_id)
        if status_in(load.status, LoadStatus.COMPLETED, LoadStatus.CANCELLED):
            raise DispatchGuardError(f"Cannot edit a {load.status} load")

        for field_name, value in updates.items():
            if field_name in EDITABLE_LOAD_FIELDS:
                setattr(load, field_name, value)

        await self.db.commit()
        return load

    async def reorder_loads(self, actor: Optional[ActorContext], load_ids: Sequence[uuid.UUID]) -> List[DeliveryRun]:
        """Set display_order from the position in ``load_ids``."""
        actor = require_actor(actor)
        loads = []
        for index, load_id in enumerate(load_ids):
            load = await self._get_load(actor.org_id, load_id)
            load.display_order = index
            loads.append(load)
        await self.db.commit()
        return loads

    # ==================== STATE MACHINE ====================

    async def start_loading(self, actor: Optional[ActorContext], load_id: uuid.UUID) -> DeliveryRun:
        """planned -> loading; pending items start loading."""
        actor = require_actor(actor)
        load = await self._get_load(actor.org_id, load_id)
        if load.status != LoadStatus.PLANNED.value:
            raise DispatchGuardError(f"Cannot start loading a load in {load.status} status")

        for item in await self._items_for_load(load_id, [DeliveryItemStatus.PENDING.value]):
            item.status = DeliveryItemStatus.LOADING.value
        load.status = LoadStatus.LOADING.value

        await self.db.commit()
        logger.info(f"Load {load.run_number} loading")
        return load

    async def dispatch_load(self, actor: Optional[ActorContext], load_id: uuid.UUID) -> Dict[str, Any]:
        """
        planned/loading -> in_transit.

        Needs at least one active item. Items go in_transit and their orders
        go dispatched together.
        """
        actor = require_actor(actor)
        load = await self._get_load(actor.org_id, load_id)
        if not status_in(load.status, LoadStatus.PLANNED, LoadStatus.LOADING):
            raise DispatchGuardError(f"Cannot dispatch a load in {load.status} status")

        items = await self._items_for_load(
            load_id, [DeliveryItemStatus.PENDING.value, DeliveryItemStatus.LOADING.value]
        )
        if not items:
            raise DispatchGuardError("Cannot dispatch an empty load")

        now = datetime.now(timezone.utc)
        orders = await self._orders_for_items(items)
        audit = AuditService(self.db)
        for item in items:
            item.status = DeliveryItemStatus.IN_TRANSIT.value
            order = orders[item.order_id]
            old_status = order.status
            order.status = OrderStatus.DISPATCHED.value
            order.dispatched_at = now
            await audit.log_status_change(actor.org_id, order.id, old_status, order.status, actor.user_id)

        load.status = LoadStatus.IN_TRANSIT.value
        load.actual_departure_time = now

        await self.db.commit()
        logger.info(f"Load {load.run_number} dispatched with {len(items)} order(s)")
        return {"load": load, "orders_dispatched": len(items)}

    async def recall_load(self, actor: Optional[ActorContext], load_id: uuid.UUID) -> Dict[str, Any]:
        """
        in_transit -> planned. Clears the departure time; items go back to
        pending and their orders back to ready_for_dispatch.
        """
        actor = require_actor(actor)
        load = await self._get_load(actor.org_id, load_id)
        if load.status == LoadStatus.COMPLETED.value:
            raise DispatchGuardError("Cannot recall a completed load. Use reschedule instead.")
        if load.status == LoadStatus.CANCELLED.value:
            raise DispatchGuardError("Cannot recall a cancelled load.")
        if load.status != LoadStatus.IN_TRANSIT.value:
            raise DispatchGuardError("Only in-transit loads can be recalled")

        items = await self._items_for_load(load_id, [DeliveryItemStatus.IN_TRANSIT.value])
        orders = await self._orders_for_items(items)
        audit = AuditService(self.db)
        for item in items:
            item.status = DeliveryItemStatus.PENDING.value
            order = orders[item.order_id]
            old_status = order.status
            order.status = OrderStatus.READY_FOR_DISPATCH.value
            order.dispatched_at = None
            await audit.log_status_change(actor.org_id, order.id, old_status, order.status, actor.user_id)

        load.status = LoadStatus.PLANNED.value
        load.actual_departure_time = None

        await self.db.commit()
        logger.info(f"Load {load.run_number} recalled; {len(items)} order(s) back to ready_for_dispatch")
        return {"load": load, "orders_recalled": len(items)}

    async def complete_load(self, actor: Optional[ActorContext], load_id: uuid.UUID) -> DeliveryRun:
        """in_transit -> completed; deliveries still in transit count as delivered."""
        actor = require_actor(actor)
        load = await self._get_load(actor.org_id, load_id)
        if load.status != LoadStatus.IN_TRANSIT.value:
            raise DispatchGuardError(f"Cannot complete a load in {load.status} status")

        now = datetime.now(timezone.utc)
        items = await self._items_for_load(load_id, [DeliveryItemStatus.IN_TRANSIT.value])
        orders = await self._orders_for_items(items)
        for item in items:
            item.status = DeliveryItemStatus.DELIVERED.value
            item.delivered_at = now
            order = orders[item.order_id]
            order.status = OrderStatus.DELIVERED.value
            order.delivered_at = now

        load.status = LoadStatus.COMPLETED.value
        load.actual_return_time = now

        await self.db.commit()
        logger.info(f"Load {load.run_number} completed")
        return load

    async def record_delivery_outcome(
        self,
        actor: Optional[ActorContext],
        item_id: uuid.UUID,
        outcome: str,
        failure_reason: Optional[str] = None,
        trolleys_delivered: Optional[int] = None,
    ) -> DeliveryItem:
        """Mark one in-transit drop delivered or failed, with its order."""
        actor = require_actor(actor)
        item = await self.db.get(DeliveryItem, item_id)
        if item is None or item.org_id != actor.org_id:
            raise NotFoundError("Delivery item not found")

        target = to_enum(outcome, DeliveryItemStatus)
        if target not in (DeliveryItemStatus.DELIVERED, DeliveryItemStatus.FAILED):
            raise ValidationFailed(f"Invalid delivery outcome '{outcome}'")
        if item.status != DeliveryItemStatus.IN_TRANSIT.value:
            raise DispatchGuardError("Only in-transit deliveries can be marked delivered or failed")

        order = await self._get_order(actor.org_id, item.order_id)
        old_status = order.status
        now = datetime.now(timezone.utc)

        item.status = target.value
        if target == DeliveryItemStatus.DELIVERED:
            item.delivered_at = now
            if trolleys_delivered is not None:
                item.trolleys_delivered = trolleys_delivered
            order.status = OrderStatus.DELIVERED.value
            order.delivered_at = now
        else:
            item.failure_reason = failure_reason
            order.status = OrderStatus.FAILED.value

        await AuditService(self.db).log_status_change(
            actor.org_id, order.id, old_status, order.status, actor.user_id
        )
        await self.db.commit()
        return item

    async def reschedule_order(
        self,
        actor: Optional[ActorContext],
        order_id: uuid.UUID,
        load_id: uuid.UUID,
    ) -> DeliveryItem:
        """
        Move a failed or in-transit delivery onto another load. The old item
        is kept as ``rescheduled``; a new pending item joins the target load.
        """
        actor = require_actor(actor)
        order = await self._get_order(actor.org_id, order_id)
        load = await self._get_load(actor.org_id, load_id)
        self._ensure_assignable_load(load)

        result = await self.db.execute(
            select(DeliveryItem).where(
                and_(
                    DeliveryItem.order_id == order_id,
                    DeliveryItem.status.in_([
                        DeliveryItemStatus.FAILED.value,
                        DeliveryItemStatus.IN_TRANSIT.value,
                    ]),
                )
            ).order_by(DeliveryItem.created_at.desc())
        )
        previous = result.scalars().first()
        if previous is None:
            raise DispatchGuardError("Order has no failed or in-transit delivery to reschedule")

        active = await self._active_item_for_order(order_id)
        if active is not None and active.id != previous.id:
            raise DispatchGuardError(f"Order {order.order_number} is already assigned to a load")

        previous.status = DeliveryItemStatus.RESCHEDULED.value
        await self.db.flush()
        item = await self._add_item(actor.org_id, load, order)

        old_status = order.status
        order.status = OrderStatus.READY_FOR_DISPATCH.value
        order.dispatched_at = None
        await AuditService(self.db).record_order_event(
            actor.org_id, order_id, "rescheduled",
            f"Rescheduled from {old_status} onto load {load.run_number}", actor.user_id,
        )

        await self.db.commit()
        return item

    async def cancel_load(self, actor: Optional[ActorContext], load_id: uuid.UUID) -> DeliveryRun:
        """
        Cancel a non-completed load. Active items become rescheduled; their
        dispatched orders go back to ready_for_dispatch.
        """
        actor = require_actor(actor)
        load = await self._get_load(actor.org_id, load_id)
        if load.status == LoadStatus.COMPLETED.value:
            raise DispatchGuardError("Cannot cancel a completed load")
        if load.status == LoadStatus.CANCELLED.value:
            raise DispatchGuardError("Load is already cancelled")

        items = await self._items_for_load(load_id, ACTIVE_ITEM_STATUSES)
        orders = await self._orders_for_items(items)
        for item in items:
            item.status = DeliveryItemStatus.RESCHEDULED.value
            order = orders[item.order_id]
            if order.status == OrderStatus.DISPATCHED.value:
                order.status = OrderStatus.READY_FOR_DISPATCH.value
                order.dispatched_at = None

        load.status = LoadStatus.CANCELLED.value
        await self.db.commit()
        logger.info(f"Load {load.run_number} cancelled; {len(items)} order(s) released")
        return load

    async def _revert_to_planned(self, actor: ActorContext, load_id: uuid.UUID) -> DeliveryRun:
        load = await self._get_load(actor.org_id, load_id)
        for item in await self._items_for_load(load_id, [DeliveryItemStatus.LOADING.value]):
            item.status = DeliveryItemStatus.PENDING.value
        load.status = LoadStatus.PLANNED.value
        await self.db.commit()
        return load

    async def update_load_status(
        self,
        actor: Optional[ActorContext],
        load_id: uuid.UUID,
        status: str,
    ) -> DeliveryRun:
        """Route a requested status onto the matching transition."""
        actor = require_actor(actor)
        target = to_enum(status, LoadStatus)
        if target is None:
            raise ValidationFailed(f"Invalid load status '{status}'")

        load = await self._get_load(actor.org_id, load_id)
        if load.status == target.value:
            return load

        if target == LoadStatus.PLANNED:
            if load.status == LoadStatus.LOADING.value:
                return await self._revert_to_planned(actor, load_id)
            return (await self.recall_load(actor, load_id))["load"]
        if target == LoadStatus.LOADING:
            return await self.start_loading(actor, load_id)
        if target == LoadStatus.IN_TRANSIT:
            return (await self.dispatch_load(actor, load_id))["load"]
        if target == LoadStatus.COMPLETED:
            return await self.complete_load(actor, load_id)
        return await self.cancel_load(actor, load_id)

    # ==================== REMOVAL ====================

    async def delete_load(self, actor: Optional[ActorContext], load_id: uuid.UUID) -> None:
        """Delete a load that no delivery item references, whatever its status."""
        actor = require_actor(actor)
        load = await self._get_load(actor.org_id, load_id)

        item_count = (await self.db.execute(
            select(func.count(DeliveryItem.id)).where(DeliveryItem.delivery_run_id == load_id)
        )).scalar() or 0
        if item_count > 0:
            raise DispatchGuardError("Cannot delete load with assigned orders. Remove all orders first.")

        run_number = load.run_number
        await self.db.execute(delete(DeliveryRun).where(DeliveryRun.id == load_id))
        await self.db.commit()
        logger.info(f"Load {run_number} deleted")

    async def remove_order_from_load(self, actor: Optional[ActorContext], order_id: uuid.UUID) -> int:
        """
        Delete the order's active delivery item, whatever stage it is at.
        The order goes back to confirmed only if it is still
        ready_for_dispatch; dispatched orders keep their status.

        Returns:
            Number of delivery items removed
        """
        actor = require_actor(actor)
        await self._get_order(actor.org_id, order_id)

        result = await self.db.execute(
            delete(DeliveryItem).where(
                and_(
                    DeliveryItem.order_id == order_id,
                    DeliveryItem.status.in_(ACTIVE_ITEM_STATUSES),
                )
            )
        )
        await self.db.execute(
            update(Order)
            .where(and_(Order.id == order_id, Order.status == OrderStatus.READY_FOR_DISPATCH.value))
            .values(status=OrderStatus.CONFIRMED.value)
        )
        await self.db.commit()
        return result.rowcount or 0

    async def update_order_date(
        self,
        actor: Optional[ActorContext],
        order_id: uuid.UUID,
        requested_delivery_date: Optional[date],
    ) -> Order:
        """Move an order's requested delivery date from the dispatch board."""
        actor = require_actor(actor)
        order = await self._get_order(actor.org_id, order_id)

        old_date = order.requested_delivery_date
        order.requested_delivery_date = requested_delivery_date
        await AuditService(self.db).record_order_event(
            actor.org_id, order_id, "delivery_date_changed",
            f"Requested delivery date changed from {old_date} to {requested_delivery_date}", actor.user_id,
        )
        await self.db.commit()
        logger.info(f"Order {order.order_number} delivery date moved to {requested_delivery_date}")
        return order

    # ==================== PICKING ASSIGNMENT ====================

    async def _pick_list_for(self, actor: ActorContext, order_id: uuid.UUID) -> PickList:
        await self._get_order(actor.org_id, order_id)
        return await PickListService(self.db).create_pick_list_from_order(actor.org_id, order_id)

    async def assign_order_to_team(
        self,
        actor: Optional[ActorContext],
        order_id: uuid.UUID,
        team_id: Optional[uuid.UUID],
    ) -> PickList:
        """Assign the order's pick list to a picking team, creating it if needed."""
        actor = require_actor(actor)
        pick_list = await self._pick_list_for(actor, order_id)
        await PickListService(self.db).assign_pick_list_to_team(pick_list, team_id)
        await self.db.commit()
        return pick_list

    async def assign_order_to_picker(
        self,
        actor: Optional[ActorContext],
        order_id: uuid.UUID,
        user_id: Optional[uuid.UUID],
    ) -> PickList:
        """Assign the order's pick list to an individual picker, creating it if needed."""
        actor = require_actor(actor)
        pick_list = await self._pick_list_for(actor, order_id)
        await PickListService(self.db).assign_pick_list_to_user(pick_list, user_id)
        await self.db.commit()
        return pick_list

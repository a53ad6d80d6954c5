"""
Allocation Service: two-tier stock reservation.

Tier 1 (product level) reserves quantity against a product's aggregate
stock when an order is confirmed. Tier 2 (batch level) converts that
reservation into hard reservations against specific batches when a picker
selects physical stock.

Every reservation is a row in the allocation ledger. Releases are recorded
by status, never by deleting rows. Batch updates are guarded by the batch
version column, so a concurrent change surfaces as ConcurrencyConflict
instead of silently over-reserving.

Flow:
1. allocate_tier1() - after order commit (outbox step)
2. select_batch_for_allocation() - picker chooses a batch
3. mark_allocation_picked() - stock physically picked
4. cancel_allocation() / release_order_allocations() - release

Batch reservations, picks and releases each write an AllocationEvent with
the quantity delta.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

from sqlalchemy import select, func, and_, case
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.config import settings
from app.core.exceptions import NotFoundError, AllocationError, ConcurrencyConflict, ValidationFailed
from app.core.tenant_context import ActorContext, require_actor, require_org
from app.models.allocation import (
    Allocation, AllocationTier, AllocationStatus, AllocationEvent, AllocationEventType,
)
from app.models.order import Order, OrderItem, OrderStatus
from app.models.product import Product, Batch
from app.services.reference_resolver import normalize_label

logger = logging.getLogger(__name__)


# Batch allocations that still count against the line quantity
HELD_BATCH_STATUSES = (AllocationStatus.RESERVED.value, AllocationStatus.PICKED.value)


@dataclass
class Tier1Result:
    """Result of product-level allocation for one order."""
    order_id: uuid.UUID
    has_oversell_warning: bool = False
    oversell_items: List[Dict[str, Any]] = field(default_factory=list)
    allocations: List[Allocation] = field(default_factory=list)


class AllocationService:
    """Allocation ledger operations scoped to one organization per call."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== LOOKUPS ====================

    async def _get_order(self, org_id: uuid.UUID, order_id: uuid.UUID) -> Order:
        order = await self.db.get(Order, order_id)
        if order is None or order.org_id != org_id:
            raise NotFoundError("Order not found")
        return order

    async def _get_order_item(self, org_id: uuid.UUID, order_item_id: uuid.UUID) -> OrderItem:
        item = await self.db.get(OrderItem, order_item_id)
        if item is None or item.org_id != org_id:
            raise NotFoundError("Order item not found")
        return item

    async def _get_allocation(self, org_id: uuid.UUID, allocation_id: uuid.UUID) -> Allocation:
        allocation = await self.db.get(Allocation, allocation_id)
        if allocation is None or allocation.org_id != org_id:
            raise NotFoundError("Allocation not found")
        return allocation

    async def _get_batch(self, org_id: uuid.UUID, batch_id: uuid.UUID) -> Batch:
        batch = await self.db.get(Batch, batch_id)
        if batch is None or batch.org_id != org_id:
            raise NotFoundError("Batch not found")
        return batch

    async def _get_product(self, org_id: uuid.UUID, product_id: uuid.UUID) -> Product:
        product = await self.db.get(Product, product_id)
        if product is None or product.org_id != org_id:
            raise NotFoundError("Product not found")
        return product

    async def _get_by_idempotency_key(self, org_id: uuid.UUID, key: str) -> Optional[Allocation]:
        result = await self.db.execute(
            select(Allocation).where(
                and_(Allocation.org_id == org_id, Allocation.idempotency_key == key)
            )
        )
        return result.scalar_one_or_none()

    async def _live_tier1_for_item(self, order_item_id: uuid.UUID) -> Optional[Allocation]:
        result = await self.db.execute(
            select(Allocation).where(
                and_(
                    Allocation.order_item_id == order_item_id,
                    Allocation.tier == AllocationTier.PRODUCT.value,
                    Allocation.status == AllocationStatus.RESERVED.value,
                )
            ).order_by(Allocation.created_at)
        )
        return result.scalars().first()

    async def _batch_allocated_for_item(self, order_item_id: uuid.UUID) -> int:
        # A short pick handed its shortage back, so picked rows hold what was picked
        held = case(
            (
                Allocation.status == AllocationStatus.PICKED.value,
                func.coalesce(Allocation.picked_quantity, Allocation.quantity),
            ),
            else_=Allocation.quantity,
        )
        result = await self.db.execute(
            select(func.coalesce(func.sum(held), 0)).where(
                and_(
                    Allocation.order_item_id == order_item_id,
                    Allocation.tier == AllocationTier.BATCH.value,
                    Allocation.status.in_(HELD_BATCH_STATUSES),
                )
            )
        )
        return int(result.scalar() or 0)

    async def _tier1_reserved(
        self,
        org_id: uuid.UUID,
        product_id: uuid.UUID,
        exclude_item_id: Optional[uuid.UUID] = None,
    ) -> int:
        conditions = [
            Allocation.org_id == org_id,
            Allocation.product_id == product_id,
            Allocation.tier == AllocationTier.PRODUCT.value,
            Allocation.status == AllocationStatus.RESERVED.value,
        ]
        if exclude_item_id is not None:
            conditions.append(Allocation.order_item_id != exclude_item_id)
        result = await self.db.execute(
            select(func.coalesce(func.sum(Allocation.quantity), 0)).where(and_(*conditions))
        )
        return int(result.scalar() or 0)

    async def _matching_batches(
        self,
        org_id: uuid.UUID,
        product: Product,
        variety_filter: Optional[str] = None,
        location_filter: Optional[str] = None,
    ) -> List[Batch]:
        """Batches of the product's variety and size (case-insensitive, trimmed)."""
        variety, size = normalize_label(product.variety, product.size)
        if not size or not (variety or variety_filter):
            return []

        conditions = [
            Batch.org_id == org_id,
            func.lower(func.trim(Batch.size)) == size,
        ]
        if variety_filter:
            conditions.append(func.lower(Batch.variety).contains(variety_filter.strip().lower()))
        else:
            conditions.append(func.lower(func.trim(Batch.variety)) == variety)
        if location_filter:
            conditions.append(func.lower(Batch.location_name).contains(location_filter.strip().lower()))

        result = await self.db.execute(
            select(Batch).where(and_(*conditions)).order_by(Batch.planted_at, Batch.batch_number)
        )
        return list(result.scalars().all())

    async def calculate_ats(
        self,
        org_id: uuid.UUID,
        product: Product,
        exclude_item_id: Optional[uuid.UUID] = None,
    ) -> int:
        """
        Available-to-sell: unreserved batch stock minus live product-level
        reservations of other lines.
        """
        batches = await self._matching_batches(org_id, product)
        available = sum(batch.available_quantity for batch in batches)
        reserved = await self._tier1_reserved(org_id, product.id, exclude_item_id)
        return available - reserved

    async def _flush_guarded(self) -> None:
        """Flush, turning a stale batch version into ConcurrencyConflict."""
        try:
            await self.db.flush()
        except StaleDataError as e:
            await self.db.rollback()
            logger.warning(f"Batch changed concurrently: {e}")
            raise ConcurrencyConflict(
                "Batch stock changed while allocating. Refresh and try again."
            )

    def _record_event(
        self,
        allocation: Allocation,
        event_type: AllocationEventType,
        quantity_change: int,
        actor_id: Optional[uuid.UUID],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AllocationEvent:
        event = AllocationEvent(
            org_id=allocation.org_id,
            allocation_id=allocation.id,
            order_id=allocation.order_id,
            order_item_id=allocation.order_item_id,
            batch_id=allocation.batch_id,
            event_type=event_type.value,
            quantity_change=quantity_change,
            event_metadata=metadata,
            actor_id=actor_id,
        )
        self.db.add(event)
        return event

    # ==================== TIER 1 ====================

    async def allocate_tier1(
        self,
        actor_id: Optional[uuid.UUID],
        org_id: uuid.UUID,
        order_id: uuid.UUID,
    ) -> Tier1Result:
        """
        Reserve product-level stock for every line of an order.

        Each line reserves its quantity minus what is already held at batch
        level. Re-running updates the line's live reservation instead of
        appending another one. Requests beyond available-to-sell are still
        reserved and reported as oversell items.

        Flushes only; the caller commits.
        """
        order = await self._get_order(org_id, order_id)
        if order.status == OrderStatus.CANCELLED.value:
            raise AllocationError("Cannot allocate stock for a cancelled order")

        result = await self.db.execute(
            select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.line_number)
        )
        items = list(result.scalars().all())

        tier1 = Tier1Result(order_id=order_id)
        for item in items:
            batch_held = await self._batch_allocated_for_item(item.id)
            needed = item.quantity - batch_held
            existing = await self._live_tier1_for_item(item.id)

            if needed <= 0:
                if existing is not None:
                    existing.quantity = 0
                    existing.status = AllocationStatus.ALLOCATED.value
                continue

            product = await self._get_product(org_id, item.product_id)
            ats = await self.calculate_ats(org_id, product, exclude_item_id=item.id)
            if needed > ats:
                available = max(ats, 0)
                tier1.oversell_items.append({
                    "order_item_id": item.id,
                    "product_id": product.id,
                    "quantity": needed,
                    "available": available,
                    "warning": f"Requested {needed} of {product.name} but only {available} available",
                })

            if existing is not None:
                existing.quantity = needed
                allocation = existing
            else:
                allocation = Allocation(
                    org_id=org_id,
                    order_id=order_id,
                    order_item_id=item.id,
                    product_id=item.product_id,
                    tier=AllocationTier.PRODUCT.value,
                    status=AllocationStatus.RESERVED.value,
                    quantity=needed,
                    created_by=actor_id,
                )
                self.db.add(allocation)
            tier1.allocations.append(allocation)

        await self.db.flush()

        tier1.has_oversell_warning = bool(tier1.oversell_items)
        if tier1.has_oversell_warning:
            logger.warning(
                f"Order {order.order_number} oversold on {len(tier1.oversell_items)} line(s)"
            )
        logger.info(f"Tier 1 allocation for order {order.order_number}: {len(tier1.allocations)} line(s) reserved")
        return tier1

    async def allocate_order(self, actor: Optional[ActorContext], order_id: uuid.UUID) -> Tier1Result:
        """Run Tier 1 allocation for an order on request and commit."""
        actor = require_actor(actor)
        result = await self.allocate_tier1(actor.user_id, actor.org_id, order_id)
        await self.db.commit()
        return result

    # ==================== TIER 2 ====================

    async def _reserve_batch(
        self,
        org_id: uuid.UUID,
        item: OrderItem,
        batch: Batch,
        quantity: int,
        idempotency_key: Optional[str],
        actor_id: Optional[uuid.UUID],
        parent: Optional[Allocation] = None,
    ) -> Allocation:
        """Check both quantity constraints, then reserve stock on the batch."""
        already = await self._batch_allocated_for_item(item.id)
        if already + quantity > item.quantity:
            raise AllocationError(
                f"Batch allocations would exceed line quantity ({already} + {quantity} > {item.quantity})",
                details={"order_item_id": str(item.id), "allocated": already, "line_quantity": item.quantity},
            )
        available = batch.available_quantity
        if quantity > available:
            raise AllocationError(
                f"Batch {batch.batch_number} has only {available} available",
                details={"batch_id": str(batch.id), "available": available, "requested": quantity},
            )

        batch.reserved_quantity = batch.reserved_quantity + quantity
        allocation = Allocation(
            id=uuid.uuid4(),
            org_id=org_id,
            order_id=item.order_id,
            order_item_id=item.id,
            product_id=item.product_id,
            batch_id=batch.id,
            parent_allocation_id=parent.id if parent else None,
            tier=AllocationTier.BATCH.value,
            status=AllocationStatus.RESERVED.value,
            quantity=quantity,
            idempotency_key=idempotency_key,
            created_by=actor_id,
        )
        self.db.add(allocation)
        self._record_event(
            allocation, AllocationEventType.BATCH_ALLOCATED, quantity, actor_id,
            {"batch_number": batch.batch_number, "parent_allocation_id": str(parent.id) if parent else None},
        )

        if parent is not None:
            # Converted stock leaves the product-level reservation
            parent.quantity = max(parent.quantity - quantity, 0)
            if parent.quantity == 0:
                parent.status = AllocationStatus.ALLOCATED.value
        return allocation

    async def _commit_tier2(
        self,
        org_id: uuid.UUID,
        allocation: Allocation,
        idempotency_key: Optional[str],
    ) -> Allocation:
        try:
            await self._flush_guarded()
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            if idempotency_key:
                existing = await self._get_by_idempotency_key(org_id, idempotency_key)
                if existing is not None:
                    logger.info(f"Idempotency key {idempotency_key} already used; returning existing allocation")
                    return existing
            logger.error(f"Failed to record batch allocation: {e}")
            raise AllocationError("Failed to record batch allocation")
        logger.info(
            f"Batch allocation {allocation.id}: {allocation.quantity} from batch {allocation.batch_id}"
        )
        return allocation

    async def select_batch_for_allocation(
        self,
        actor: Optional[ActorContext],
        allocation_id: uuid.UUID,
        batch_id: uuid.UUID,
        quantity: Optional[int] = None,
        idempotency_key: Optional[str] = None,
    ) -> Allocation:
        """
        Convert part or all of a product-level reservation into a batch allocation.

        The parent reservation is decremented by the converted quantity and
        becomes ``allocated`` once nothing is left on it. A repeated
        idempotency key returns the allocation it created the first time.

        Raises:
            AllocationError: Line quantity or batch availability would be exceeded
            ConcurrencyConflict: The batch changed since it was read
        """
        actor = require_actor(actor)
        org_id = actor.org_id

        if idempotency_key:
            existing = await self._get_by_idempotency_key(org_id, idempotency_key)
            if existing is not None:
                return existing

        parent = await self._get_allocation(org_id, allocation_id)
        if parent.tier != AllocationTier.PRODUCT.value or parent.status != AllocationStatus.RESERVED.value:
            raise AllocationError("Only reserved product-level allocations can be converted to a batch")

        qty = quantity if quantity is not None else parent.quantity
        if qty <= 0:
            raise AllocationError("Nothing left to allocate on this reservation")
        if qty > parent.quantity:
            raise AllocationError(
                f"Cannot allocate {qty}; only {parent.quantity} reserved on this line"
            )

        item = await self._get_order_item(org_id, parent.order_item_id)
        batch = await self._get_batch(org_id, batch_id)

        allocation = await self._reserve_batch(
            org_id, item, batch, qty, idempotency_key, actor.user_id, parent=parent
        )
        return await self._commit_tier2(org_id, allocation, idempotency_key)

    async def allocate_batch_to_line(
        self,
        actor: Optional[ActorContext],
        order_item_id: uuid.UUID,
        batch_id: uuid.UUID,
        quantity: int,
        idempotency_key: Optional[str] = None,
    ) -> Allocation:
        """
        Allocate a batch straight to an order line.

        A live product-level reservation on the line, if any, is treated as
        the parent and decremented.
        """
        actor = require_actor(actor)
        org_id = actor.org_id

        if idempotency_key:
            existing = await self._get_by_idempotency_key(org_id, idempotency_key)
            if existing is not None:
                return existing

        if quantity <= 0:
            raise AllocationError("Quantity must be positive")

        item = await self._get_order_item(org_id, order_item_id)
        order = await self._get_order(org_id, item.order_id)
        if order.status in (OrderStatus.CANCELLED.value, OrderStatus.DELIVERED.value):
            raise AllocationError(f"Cannot allocate stock for a {order.status} order")

        batch = await self._get_batch(org_id, batch_id)
        parent = await self._live_tier1_for_item(item.id)

        allocation = await self._reserve_batch(
            org_id, item, batch, quantity, idempotency_key, actor.user_id, parent=parent
        )
        return await self._commit_tier2(org_id, allocation, idempotency_key)

    # ==================== PICKING & RELEASE ====================

    async def mark_allocation_picked(
        self,
        actor: Optional[ActorContext],
        allocation_id: uuid.UUID,
        picked_quantity: int,
    ) -> Dict[str, Any]:
        """
        Record what was physically picked for a batch allocation.

        A short pick releases the shortage back to the batch.
        """
        actor = require_actor(actor)
        org_id = actor.org_id
        allocation = await self._get_allocation(org_id, allocation_id)

        if allocation.tier != AllocationTier.BATCH.value:
            raise AllocationError("Only batch allocations can be picked")
        if allocation.status != AllocationStatus.RESERVED.value:
            raise AllocationError(f"Cannot pick an allocation in {allocation.status} status")
        if picked_quantity < 0 or picked_quantity > allocation.quantity:
            raise AllocationError(
                f"Picked quantity must be between 0 and {allocation.quantity}"
            )

        shortage = allocation.quantity - picked_quantity
        if shortage > 0:
            batch = await self._get_batch(org_id, allocation.batch_id)
            batch.reserved_quantity = max(batch.reserved_quantity - shortage, 0)
            logger.info(f"Short pick on allocation {allocation_id}: {shortage} released to batch {batch.batch_number}")

        allocation.picked_quantity = picked_quantity
        allocation.status = AllocationStatus.PICKED.value
        allocation.picked_at = datetime.now(timezone.utc)
        self._record_event(
            allocation, AllocationEventType.ALLOCATION_PICKED, -shortage, actor.user_id,
            {"picked_quantity": picked_quantity, "shortage": shortage},
        )

        await self._flush_guarded()
        await self.db.commit()
        return {"allocation_id": allocation_id, "picked_quantity": picked_quantity, "shortage": shortage}

    async def _release(
        self,
        org_id: uuid.UUID,
        allocation: Allocation,
        reason: Optional[str],
        actor_id: Optional[uuid.UUID] = None,
    ) -> int:
        """Cancel one live allocation; returns the quantity released."""
        released = allocation.quantity
        if allocation.tier == AllocationTier.BATCH.value and allocation.batch_id:
            batch = await self._get_batch(org_id, allocation.batch_id)
            batch.reserved_quantity = max(batch.reserved_quantity - released, 0)

        allocation.status = AllocationStatus.CANCELLED.value
        allocation.cancelled_at = datetime.now(timezone.utc)
        allocation.cancellation_reason = reason
        self._record_event(
            allocation, AllocationEventType.ALLOCATION_RELEASED, -released, actor_id,
            {"tier": allocation.tier, "reason": reason},
        )
        return released

    async def cancel_allocation(
        self,
        actor: Optional[ActorContext],
        allocation_id: uuid.UUID,
        reason: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Cancel a live allocation.

        Cancelling a batch allocation hands its quantity back to the parent
        product-level reservation, so the line stays spoken for.
        """
        actor = require_actor(actor)
        org_id = actor.org_id
        allocation = await self._get_allocation(org_id, allocation_id)

        if allocation.status == AllocationStatus.PICKED.value:
            raise AllocationError("Cannot cancel a picked allocation")
        if allocation.status != AllocationStatus.RESERVED.value:
            raise AllocationError(f"Allocation is already {allocation.status}")

        released = await self._release(org_id, allocation, reason, actor.user_id)

        if allocation.parent_allocation_id:
            parent = await self._get_allocation(org_id, allocation.parent_allocation_id)
            if parent.status in (AllocationStatus.RESERVED.value, AllocationStatus.ALLOCATED.value):
                parent.quantity = parent.quantity + released
                parent.status = AllocationStatus.RESERVED.value

        await self._flush_guarded()
        await self.db.commit()
        logger.info(f"Allocation {allocation_id} cancelled, {released} released")
        return {"allocation_id": allocation_id, "quantity_released": released}

    async def release_order_allocations(
        self,
        org_id: uuid.UUID,
        order_id: uuid.UUID,
        reason: Optional[str] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> int:
        """
        Cancel every live allocation of an order. Flushes only; the caller commits.

        Returns:
            Number of allocations released
        """
        result = await self.db.execute(
            select(Allocation).where(
                and_(
                    Allocation.org_id == org_id,
                    Allocation.order_id == order_id,
                    Allocation.status.in_([
                        AllocationStatus.RESERVED.value,
                        AllocationStatus.ALLOCATED.value,
                    ]),
                )
            )
        )
        allocations = list(result.scalars().all())
        for allocation in allocations:
            await self._release(org_id, allocation, reason, actor_id)
        await self._flush_guarded()
        return len(allocations)

    # ==================== QUERIES ====================

    async def get_order_allocations(self, actor: Optional[ActorContext], order_id: uuid.UUID) -> List[Allocation]:
        org_id = require_org(actor)
        await self._get_order(org_id, order_id)
        result = await self.db.execute(
            select(Allocation)
            .where(and_(Allocation.org_id == org_id, Allocation.order_id == order_id))
            .order_by(Allocation.created_at)
        )
        return list(result.scalars().all())

    async def get_pending_batch_selections(self, org_id: uuid.UUID, order_id: uuid.UUID) -> List[Dict[str, Any]]:
        """Live product-level reservations of an order that still need a batch."""
        result = await self.db.execute(
            select(Allocation, Product.name)
            .join(Product, Product.id == Allocation.product_id)
            .where(
                and_(
                    Allocation.org_id == org_id,
                    Allocation.order_id == order_id,
                    Allocation.tier == AllocationTier.PRODUCT.value,
                    Allocation.status == AllocationStatus.RESERVED.value,
                    Allocation.quantity > 0,
                )
            )
            .order_by(Allocation.created_at)
        )
        return [
            {
                "allocation_id": allocation.id,
                "order_item_id": allocation.order_item_id,
                "product_id": allocation.product_id,
                "product_name": product_name,
                "quantity": allocation.quantity,
            }
            for allocation, product_name in result.all()
        ]

    async def get_allocation_events(
        self,
        actor: Optional[ActorContext],
        allocation_id: Optional[uuid.UUID] = None,
        order_id: Optional[uuid.UUID] = None,
        order_item_id: Optional[uuid.UUID] = None,
    ) -> List[AllocationEvent]:
        """
        Stock movement history for one allocation, order or order line,
        newest first. The first filter given wins.

        Raises:
            ValidationFailed: No filter given
        """
        org_id = require_org(actor)
        if allocation_id is not None:
            condition = AllocationEvent.allocation_id == allocation_id
        elif order_id is not None:
            condition = AllocationEvent.order_id == order_id
        elif order_item_id is not None:
            condition = AllocationEvent.order_item_id == order_item_id
        else:
            raise ValidationFailed("Must provide allocation_id, order_id or order_item_id")

        result = await self.db.execute(
            select(AllocationEvent)
            .where(and_(AllocationEvent.org_id == org_id, condition))
            .order_by(AllocationEvent.occurred_at.desc())
        )
        return list(result.scalars().all())

    async def get_available_batches(
        self,
        actor: Optional[ActorContext],
        product_id: uuid.UUID,
        variety_filter: Optional[str] = None,
        location_filter: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Batches that can supply a product, oldest planting first."""
        org_id = require_org(actor)
        product = await self._get_product(org_id, product_id)

        batches = await self._matching_batches(org_id, product, variety_filter, location_filter)
        return [
            {
                "id": batch.id,
                "batch_number": batch.batch_number,
                "variety": batch.variety,
                "size": batch.size,
                "location_name": batch.location_name,
                "quantity": batch.quantity,
                "reserved_quantity": batch.reserved_quantity,
                "available_quantity": batch.available_quantity,
                "planted_at": batch.planted_at,
            }
            for batch in batches
            if batch.available_quantity > 0
        ]

    async def get_product_stock_status(self, actor: Optional[ActorContext], product_id: uuid.UUID) -> Dict[str, Any]:
        """Available-to-sell breakdown with a manual override applied."""
        org_id = require_org(actor)
        product = await self._get_product(org_id, product_id)

        batches = await self._matching_batches(org_id, product)
        total = sum(batch.quantity for batch in batches)
        batch_reserved = sum(min(batch.reserved_quantity, batch.quantity) for batch in batches)
        tier1_reserved = await self._tier1_reserved(org_id, product.id)

        calculated = total - batch_reserved - tier1_reserved
        effective = product.ats_override if product.ats_override is not None else calculated

        threshold = product.low_stock_threshold
        if threshold is None:
            threshold = settings.LOW_STOCK_THRESHOLD
        if effective <= 0:
            stock_status = "out_of_stock"
        elif effective <= threshold:
            stock_status = "low_stock"
        else:
            stock_status = "in_stock"

        return {
            "product_id": product.id,
            "total_quantity": total,
            "batch_reserved": batch_reserved,
            "tier1_reserved": tier1_reserved,
            "calculated_ats": calculated,
            "override_ats": product.ats_override,
            "effective_ats": effective,
            "stock_status": stock_status,
        }

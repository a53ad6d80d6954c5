from typing import List, Optional, Dict, Any, Union
from datetime import date, datetime, timezone
import uuid
import logging

from pydantic import ValidationError
from sqlalchemy import select, func, and_, delete
from sqlalchemy.orm import selectinload
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.config import settings
from app.core.enum_utils import to_enum, status_in
from app.core.exceptions import (
    ValidationFailed, NotFoundError, CommitError, InvalidTransition,
)
from app.core.tenant_context import ActorContext, require_actor
from app.models.allocation import Allocation, AllocationTier, AllocationStatus
from app.models.dispatch import DeliveryItem, ACTIVE_ITEM_STATUSES
from app.models.order import Order, OrderItem, OrderStatus
from app.models.organization import Organization
from app.models.picklist import PickListStatus
from app.schemas.order import OrderCreate
from app.services.allocation_service import AllocationService
from app.services.audit_service import AuditService
from app.services.order_assembler import assemble_lines, summarize_totals, organization_vat_rate
from app.services.picklist_service import PickListService
from app.services.post_commit_service import PostCommitService
from app.services.pricing_service import PricingService, PriceSource
from app.services.reference_resolver import ReferenceResolver

logger = logging.getLogger(__name__)


# Manual status changes. Dispatch statuses are owned by DispatchService.
ORDER_STATUS_TRANSITIONS: Dict[str, List[str]] = {
    OrderStatus.DRAFT.value: [OrderStatus.CONFIRMED.value, OrderStatus.CANCELLED.value],
    OrderStatus.CONFIRMED.value: [
        OrderStatus.PICKING.value,
        OrderStatus.READY_FOR_DISPATCH.value,
        OrderStatus.CANCELLED.value,
    ],
    OrderStatus.PICKING.value: [OrderStatus.READY_FOR_DISPATCH.value, OrderStatus.CANCELLED.value],
    OrderStatus.READY_FOR_DISPATCH.value: [OrderStatus.CONFIRMED.value, OrderStatus.CANCELLED.value],
}

DISPATCH_OWNED_STATUSES = (OrderStatus.DISPATCHED, OrderStatus.DELIVERED, OrderStatus.FAILED)


def validation_details(error: ValidationError) -> List[Dict[str, Any]]:
    """JSON-safe summary of pydantic errors."""
    return [
        {"loc": [str(part) for part in err["loc"]], "msg": err["msg"], "type": err["type"]}
        for err in error.errors()
    ]


class OrderService:
    """Service for creating and managing sales orders."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== ORDER NUMBER GENERATION ====================

    async def generate_order_number(self, organization: Organization) -> str:
        """Generate order number unique per organization: ORD-YYYYMMDD-XXXX"""
        today = datetime.now(timezone.utc).strftime("%Y%m%d")
        prefix = f"{organization.order_prefix or settings.ORDER_NUMBER_PREFIX}-{today}-"

        # Get count of orders today
        stmt = select(func.count(Order.id)).where(
            and_(
                Order.org_id == organization.id,
                Order.order_number.like(f"{prefix}%"),
            )
        )
        count = (await self.db.execute(stmt)).scalar() or 0

        return f"{prefix}{(count + 1):04d}"

    # ==================== ORDER CREATION ====================

    async def create_order(
        self,
        actor: Optional[ActorContext],
        payload: Union[Dict[str, Any], OrderCreate],
    ) -> Dict[str, Any]:
        """
        Create an order from UI input.

        Flow: auth -> validation -> customer -> lines -> prices -> assembly
        -> atomic commit -> post-commit steps.

        Returns:
            Dict with order_id, order_number, has_oversell_warning,
            oversell_items and warnings
        """
        actor = require_actor(actor)

        if isinstance(payload, OrderCreate):
            data = payload
        else:
            try:
                data = OrderCreate.model_validate(payload)
            except ValidationError as e:
                raise ValidationFailed("Invalid form data", details=validation_details(e))

        resolver = ReferenceResolver(self.db)
        customer, organization = await resolver.resolve_customer(actor, data.customer_id)
        resolved_lines = await resolver.resolve_lines(organization.id, data.lines)

        prices = await PricingService(self.db).resolve_prices(customer, resolved_lines)
        lines = assemble_lines(resolved_lines, prices, organization_vat_rate(organization))

        warnings = [
            f"Line {line.line_number}: no price found for {line.product.name}; priced at 0"
            for line in resolved_lines
            if prices[line.line_key].source == PriceSource.FALLBACK
        ]

        order_number = await self.generate_order_number(organization)
        order_id = await self.commit_order(
            org_id=organization.id,
            customer_id=customer.id,
            order_number=order_number,
            lines=lines,
            delivery_date=data.requested_delivery_date,
            notes=data.notes,
            ship_to_address_id=data.ship_to_address_id or customer.default_ship_address_id,
            status=data.status,
            created_by=actor.user_id,
        )

        results = await PostCommitService(self.db).process_order_events(order_id)

        tier1 = results.get("allocate_tier1")
        oversell_items = tier1.oversell_items if tier1 is not None else []
        for event_type, result in results.items():
            if result is None:
                warnings.append(f"Post-commit step '{event_type}' did not complete; it will be retried")

        logger.info(f"Order {order_number} created with {len(lines)} line(s)")
        return {
            "order_id": order_id,
            "order_number": order_number,
            "has_oversell_warning": bool(oversell_items),
            "oversell_items": oversell_items,
            "warnings": warnings,
        }

    async def commit_order(
        self,
        org_id: uuid.UUID,
        customer_id: uuid.UUID,
        order_number: str,
        lines: List[Dict[str, Any]],
        delivery_date: Optional[date] = None,
        notes: Optional[str] = None,
        ship_to_address_id: Optional[uuid.UUID] = None,
        status: str = OrderStatus.CONFIRMED.value,
        created_by: Optional[uuid.UUID] = None,
    ) -> uuid.UUID:
        """
        Persist the order, all of its lines and its post-commit events in
        one transaction. Either everything is written or nothing is.

        Raises:
            CommitError: Carrying the underlying database message
        """
        totals = summarize_totals(lines)
        now = datetime.now(timezone.utc)

        order = Order(
            org_id=org_id,
            customer_id=customer_id,
            order_number=order_number,
            status=status,
            requested_delivery_date=delivery_date,
            notes=notes,
            ship_to_address_id=ship_to_address_id,
            created_by=created_by,
            confirmed_at=now if status == OrderStatus.CONFIRMED.value else None,
            **totals,
        )

        try:
            self.db.add(order)
            await self.db.flush()
            order_id = order.id

            group_lines = {}
            for line in lines:
                self.db.add(OrderItem(
                    org_id=org_id,
                    order_id=order_id,
                    product_id=line["product_id"],
                    line_key=line["line_key"],
                    line_number=line["line_number"],
                    description=line.get("description"),
                    quantity=line["quantity"],
                    unit_price_ex_vat=line["unit_price"],
                    vat_rate=line["vat_rate"],
                    line_total_ex_vat=line["line_total_ex_vat"],
                    line_vat_amount=line["line_vat_amount"],
                ))
                if line.get("product_group_id"):
                    group_lines[line["line_key"]] = str(line["product_group_id"])

            PostCommitService(self.db).enqueue_order_events(
                org_id,
                order_id,
                {
                    "actor_id": str(created_by) if created_by else None,
                    "order_number": order_number,
                    "group_lines": group_lines,
                },
            )

            await self.db.flush()
            await self.db.commit()
        except (IntegrityError, SQLAlchemyError) as e:
            await self.db.rollback()
            message = str(getattr(e, "orig", None) or e)
            logger.error(f"Failed to commit order {order_number}: {message}")
            raise CommitError(f"Failed to create order: {message}")

        logger.info(f"Committed order {order_number} ({order_id})")
        return order_id

    # ==================== QUERIES ====================

    async def _get_order(self, org_id: uuid.UUID, order_id: uuid.UUID) -> Order:
        order = await self.db.get(Order, order_id)
        if order is None or order.org_id != org_id:
            raise NotFoundError("Order not found")
        return order

    async def get_customer_recent_orders(
        self,
        actor: Optional[ActorContext],
        customer_id: uuid.UUID,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Newest orders of a customer with their line counts."""
        customer, _ = await ReferenceResolver(self.db).resolve_customer(actor, customer_id)

        line_counts = (
            select(OrderItem.order_id, func.count(OrderItem.id).label("line_count"))
            .group_by(OrderItem.order_id)
            .subquery()
        )
        stmt = (
            select(Order, func.coalesce(line_counts.c.line_count, 0))
            .outerjoin(line_counts, line_counts.c.order_id == Order.id)
            .where(and_(Order.org_id == customer.org_id, Order.customer_id == customer.id))
            .order_by(Order.created_at.desc())
            .limit(limit or settings.RECENT_ORDERS_LIMIT)
        )
        result = await self.db.execute(stmt)

        return [
            {
                "id": order.id,
                "order_number": order.order_number,
                "status": order.status,
                "created_at": order.created_at,
                "requested_delivery_date": order.requested_delivery_date,
                "total_inc_vat": order.total_inc_vat,
                "line_count": int(line_count),
            }
            for order, line_count in result.all()
        ]

    async def get_order_details(self, actor: Optional[ActorContext], order_id: uuid.UUID) -> Dict[str, Any]:
        """Order with lines, events, allocation totals and active delivery."""
        actor = require_actor(actor)
        stmt = (
            select(Order)
            .options(selectinload(Order.items), selectinload(Order.events))
            .where(and_(Order.id == order_id, Order.org_id == actor.org_id))
        )
        order = (await self.db.execute(stmt)).scalar_one_or_none()
        if order is None:
            raise NotFoundError("Order not found")

        totals = await self.db.execute(
            select(Allocation.tier, func.coalesce(func.sum(Allocation.quantity), 0))
            .where(
                and_(
                    Allocation.order_id == order_id,
                    Allocation.status.in_([AllocationStatus.RESERVED.value, AllocationStatus.PICKED.value]),
                )
            )
            .group_by(Allocation.tier)
        )
        by_tier = {tier: int(qty) for tier, qty in totals.all()}

        active = (await self.db.execute(
            select(DeliveryItem).where(
                and_(DeliveryItem.order_id == order_id, DeliveryItem.status.in_(ACTIVE_ITEM_STATUSES))
            )
        )).scalars().first()

        return {
            "order": order,
            "allocated_quantity": by_tier.get(AllocationTier.BATCH.value, 0),
            "reserved_quantity": by_tier.get(AllocationTier.PRODUCT.value, 0),
            "active_delivery_run_id": active.delivery_run_id if active else None,
            "active_delivery_status": active.status if active else None,
        }

    # ==================== STATUS CHANGES ====================

    async def update_order_status(
        self,
        actor: Optional[ActorContext],
        order_id: uuid.UUID,
        new_status: str,
    ) -> Order:
        """
        Manual status change following ORDER_STATUS_TRANSITIONS.

        Raises:
            ValidationFailed: Unknown status
            InvalidTransition: Transition not allowed, dispatch-owned status,
                or picking not complete
        """
        actor = require_actor(actor)
        target = to_enum(new_status, OrderStatus)
        if target is None:
            raise ValidationFailed(f"Invalid order status '{new_status}'")
        if target in DISPATCH_OWNED_STATUSES:
            raise InvalidTransition(f"Status '{target.value}' is set by dispatch, not manually")
        if target == OrderStatus.CANCELLED:
            return await self.cancel_order(actor, order_id)

        order = await self._get_order(actor.org_id, order_id)
        old_status = order.status
        if target.value not in ORDER_STATUS_TRANSITIONS.get(old_status, []):
            raise InvalidTransition(f"Cannot transition from {old_status} to {target.value}")

        pick_lists = PickListService(self.db)
        if target == OrderStatus.READY_FOR_DISPATCH:
            pick_list = await pick_lists.get_pick_list_for_order(actor.org_id, order_id)
            if pick_list is not None and pick_list.status != PickListStatus.COMPLETED.value:
                raise InvalidTransition(
                    "Cannot mark as ready - picking has not been completed. Complete the pick list first."
                )

        order.status = target.value
        if target == OrderStatus.CONFIRMED and old_status == OrderStatus.DRAFT.value:
            order.confirmed_at = datetime.now(timezone.utc)
            await pick_lists.create_pick_list_from_order(actor.org_id, order_id)

        await AuditService(self.db).log_status_change(
            actor.org_id, order_id, old_status, target.value, actor.user_id
        )
        await self.db.commit()
        logger.info(f"Order {order.order_number}: {old_status} -> {target.value}")
        return order

    async def cancel_order(
        self,
        actor: Optional[ActorContext],
        order_id: uuid.UUID,
        reason: Optional[str] = None,
    ) -> Order:
        """
        Cancel an order: release allocations, drop its active delivery item
        and cancel its pick list, all in one transaction.
        """
        actor = require_actor(actor)
        order = await self._get_order(actor.org_id, order_id)

        if status_in(order.status, OrderStatus.DISPATCHED, OrderStatus.DELIVERED):
            raise InvalidTransition(f"Cannot cancel an order in {order.status} status")
        if order.status == OrderStatus.CANCELLED.value:
            raise InvalidTransition("Order is already cancelled")

        old_status = order.status
        released = await AllocationService(self.db).release_order_allocations(
            actor.org_id, order_id, reason or "Order cancelled", actor_id=actor.user_id
        )
        await self.db.execute(
            delete(DeliveryItem).where(
                and_(DeliveryItem.order_id == order_id, DeliveryItem.status.in_(ACTIVE_ITEM_STATUSES))
            )
        )
        await PickListService(self.db).cancel_pick_list(actor.org_id, order_id)

        order.status = OrderStatus.CANCELLED.value
        order.cancelled_at = datetime.now(timezone.utc)
        order.cancellation_reason = reason

        await AuditService(self.db).record_order_event(
            actor.org_id,
            order_id,
            "cancelled",
            f"Order cancelled from {old_status}" + (f": {reason}" if reason else ""),
            actor.user_id,
        )
        await self.db.commit()
        logger.info(f"Order {order.order_number} cancelled; {released} allocation(s) released")
        return order

    async def start_picking_order(
        self,
        actor: Optional[ActorContext],
        order_id: uuid.UUID,
    ) -> Dict[str, Any]:
        """
        Move a confirmed order to picking.

        Returns the product-level reservations that still need a batch
        chosen, so the picker knows which lines to scan.

        Raises:
            InvalidTransition: Order is not confirmed
        """
        actor = require_actor(actor)
        order = await self._get_order(actor.org_id, order_id)
        if order.status != OrderStatus.CONFIRMED.value:
            raise InvalidTransition(f"Cannot start picking an order in {order.status} status")

        pending = await AllocationService(self.db).get_pending_batch_selections(actor.org_id, order_id)
        order.status = OrderStatus.PICKING.value
        await AuditService(self.db).record_order_event(
            actor.org_id,
            order_id,
            "picking_started",
            "Picking started - batch selection required",
            actor.user_id,
        )
        await self.db.commit()
        logger.info(f"Order {order.order_number} picking started; {len(pending)} line(s) need a batch")
        return {"order_id": order.id, "status": order.status, "pending_batch_selections": pending}

"""Order entry API endpoints."""
from typing import List, Optional
import uuid

from fastapi import APIRouter, status, Query

from app.api.deps import DB, CurrentActor
from app.schemas.order import (
    OrderCreate,
    OrderCreateResult,
    OrderDetailResponse,
    RecentOrderResponse,
    OrderStatusUpdate,
    OrderCancelRequest,
)
from app.schemas.allocation import StartPickingResponse
from app.services.order_service import OrderService


router = APIRouter()


@router.post(
    "/orders",
    response_model=OrderCreateResult,
    status_code=status.HTTP_201_CREATED,
)
async def create_order(
    data: OrderCreate,
    db: DB,
    actor: CurrentActor,
):
    """
    Create a confirmed (or draft) order from the order form.

    Tier-1 allocation runs right after the commit; an oversell is reported
    in the result, never as an error.
    """
    service = OrderService(db)
    result = await service.create_order(actor, data)
    return OrderCreateResult(**result)


@router.get(
    "/orders/{order_id}",
    response_model=OrderDetailResponse,
)
async def get_order(
    order_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
):
    """Get order details with lines, events and allocation totals."""
    service = OrderService(db)
    return await service.get_order_details(actor, order_id)


@router.post(
    "/orders/{order_id}/status",
    response_model=OrderDetailResponse,
)
async def update_order_status(
    order_id: uuid.UUID,
    data: OrderStatusUpdate,
    db: DB,
    actor: CurrentActor,
):
    """Manual status change; dispatch statuses are owned by the load state machine."""
    service = OrderService(db)
    await service.update_order_status(actor, order_id, data.status)
    return await service.get_order_details(actor, order_id)


@router.post(
    "/orders/{order_id}/cancel",
    response_model=OrderDetailResponse,
)
async def cancel_order(
    order_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
    data: Optional[OrderCancelRequest] = None,
):
    """Cancel an order and release everything held for it."""
    service = OrderService(db)
    await service.cancel_order(actor, order_id, data.reason if data else None)
    return await service.get_order_details(actor, order_id)


@router.post(
    "/orders/{order_id}/start-picking",
    response_model=StartPickingResponse,
)
async def start_picking_order(
    order_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
):
    """Move a confirmed order to picking and list the lines still needing a batch."""
    service = OrderService(db)
    return await service.start_picking_order(actor, order_id)


@router.get(
    "/customers/{customer_id}/recent-orders",
    response_model=List[RecentOrderResponse],
)
async def get_customer_recent_orders(
    customer_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
    limit: Optional[int] = Query(None, ge=1, le=50),
):
    """Newest orders of a customer, for the order form sidebar."""
    service = OrderService(db)
    return await service.get_customer_recent_orders(actor, customer_id, limit=limit)

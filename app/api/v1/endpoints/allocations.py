"""Allocation ledger API endpoints: Tier-1 reservations and Tier-2 batch picks."""
from typing import List, Optional
import uuid

from fastapi import APIRouter, status, Query

from app.api.deps import DB, CurrentActor
from app.schemas.allocation import (
    AllocationResponse,
    Tier1Response,
    BatchSelectRequest,
    BatchAllocateRequest,
    MarkPickedRequest,
    MarkPickedResponse,
    CancelAllocationRequest,
    CancelAllocationResponse,
    AvailableBatchResponse,
    ProductStockStatusResponse,
    AllocationEventResponse,
)
from app.services.allocation_service import AllocationService


router = APIRouter()


# ==================== ORDER ALLOCATIONS ====================

@router.post(
    "/orders/{order_id}/allocations",
    response_model=Tier1Response,
)
async def allocate_order(
    order_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
):
    """Run product-level (Tier 1) allocation for lines not yet reserved."""
    service = AllocationService(db)
    result = await service.allocate_order(actor, order_id)
    return Tier1Response(
        order_id=result.order_id,
        has_oversell_warning=result.has_oversell_warning,
        oversell_items=result.oversell_items,
        allocations=[AllocationResponse.model_validate(a) for a in result.allocations],
    )


@router.get(
    "/orders/{order_id}/allocations",
    response_model=List[AllocationResponse],
)
async def get_order_allocations(
    order_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
):
    """All ledger rows of an order, including cancelled ones."""
    service = AllocationService(db)
    return await service.get_order_allocations(actor, order_id)


@router.post(
    "/allocations",
    response_model=AllocationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def allocate_batch_to_line(
    data: BatchAllocateRequest,
    db: DB,
    actor: CurrentActor,
):
    """Allocate a batch straight to an order line."""
    service = AllocationService(db)
    return await service.allocate_batch_to_line(
        actor, data.order_item_id, data.batch_id, data.quantity, data.idempotency_key
    )


# ==================== ALLOCATION ACTIONS ====================

@router.post(
    "/allocations/{allocation_id}/select-batch",
    response_model=AllocationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def select_batch(
    allocation_id: uuid.UUID,
    data: BatchSelectRequest,
    db: DB,
    actor: CurrentActor,
):
    """Convert a product-level reservation into a batch allocation."""
    service = AllocationService(db)
    return await service.select_batch_for_allocation(
        actor, allocation_id, data.batch_id, data.quantity, data.idempotency_key
    )


@router.post(
    "/allocations/{allocation_id}/picked",
    response_model=MarkPickedResponse,
)
async def mark_picked(
    allocation_id: uuid.UUID,
    data: MarkPickedRequest,
    db: DB,
    actor: CurrentActor,
):
    """Record the quantity physically picked; shortages go back to the batch."""
    service = AllocationService(db)
    return await service.mark_allocation_picked(actor, allocation_id, data.picked_quantity)


@router.post(
    "/allocations/{allocation_id}/cancel",
    response_model=CancelAllocationResponse,
)
async def cancel_allocation(
    allocation_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
    data: Optional[CancelAllocationRequest] = None,
):
    """Cancel a live allocation."""
    service = AllocationService(db)
    return await service.cancel_allocation(actor, allocation_id, data.reason if data else None)


@router.get(
    "/allocation-events",
    response_model=List[AllocationEventResponse],
)
async def get_allocation_events(
    db: DB,
    actor: CurrentActor,
    allocation_id: Optional[uuid.UUID] = Query(None),
    order_id: Optional[uuid.UUID] = Query(None),
    order_item_id: Optional[uuid.UUID] = Query(None),
):
    """Stock movement history for an allocation, order or order line."""
    service = AllocationService(db)
    return await service.get_allocation_events(actor, allocation_id, order_id, order_item_id)


# ==================== STOCK ====================

@router.get(
    "/products/{product_id}/batches",
    response_model=List[AvailableBatchResponse],
)
async def get_available_batches(
    product_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
    variety: Optional[str] = Query(None),
    location: Optional[str] = Query(None),
):
    """Batches with free stock matching the product's variety and size."""
    service = AllocationService(db)
    return await service.get_available_batches(actor, product_id, variety, location)


@router.get(
    "/products/{product_id}/stock-status",
    response_model=ProductStockStatusResponse,
)
async def get_product_stock_status(
    product_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
):
    """Available-to-sell for a product."""
    service = AllocationService(db)
    return await service.get_product_stock_status(actor, product_id)

"""Dispatch API endpoints: loads (delivery runs), drops and picking assignment."""
from typing import List, Optional
import uuid

from fastapi import APIRouter, status

from app.api.deps import DB, CurrentActor
from app.core.tenant_context import ActorContext
from app.schemas.dispatch import (
    DeliveryItemResponse,
    DeliveryOutcomeRequest,
    DeliveryRunCreate,
    DeliveryRunUpdate,
    DeliveryRunResponse,
    LoadWithItemsResponse,
    LoadStatusUpdate,
    AssignOrderRequest,
    ReorderLoadsRequest,
    RescheduleRequest,
    OrderDateUpdate,
    DispatchOrdersRequest,
    DispatchOrdersResponse,
    TeamAssignRequest,
    PickerAssignRequest,
    PickListResponse,
)
from app.schemas.order import OrderDetailResponse
from app.services.dispatch_service import DispatchService
from app.services.order_service import OrderService


router = APIRouter()


async def _load_response(
    service: DispatchService,
    actor: ActorContext,
    load_id: uuid.UUID,
    warnings: Optional[List[str]] = None,
) -> LoadWithItemsResponse:
    data = await service.get_load_with_items(actor, load_id)
    return LoadWithItemsResponse(
        load=DeliveryRunResponse.model_validate(data["load"]),
        items=[DeliveryItemResponse.model_validate(item) for item in data["items"]],
        warnings=warnings or [],
    )


# ==================== LOADS ====================

@router.post(
    "/loads",
    response_model=LoadWithItemsResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_load(
    data: DeliveryRunCreate,
    db: DB,
    actor: CurrentActor,
):
    """Create a planned load, optionally with orders assigned."""
    service = DispatchService(db)
    load = await service.create_delivery_run(
        actor,
        data.run_date,
        haulier_id=data.haulier_id,
        vehicle_id=data.vehicle_id,
        load_name=data.load_name,
        driver_name=data.driver_name,
        notes=data.notes,
        order_ids=data.order_ids,
    )
    return await _load_response(service, actor, load.id)


@router.patch(
    "/loads/{load_id}",
    response_model=DeliveryRunResponse,
)
async def update_load(
    load_id: uuid.UUID,
    data: DeliveryRunUpdate,
    db: DB,
    actor: CurrentActor,
):
    """Edit load name, haulier, vehicle, driver or date."""
    service = DispatchService(db)
    return await service.update_load(actor, load_id, data.model_dump(exclude_unset=True))


@router.delete(
    "/loads/{load_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_load(
    load_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
):
    """Delete an empty load."""
    service = DispatchService(db)
    await service.delete_load(actor, load_id)


@router.post(
    "/loads/reorder",
    response_model=List[DeliveryRunResponse],
)
async def reorder_loads(
    data: ReorderLoadsRequest,
    db: DB,
    actor: CurrentActor,
):
    """Persist the board order of loads."""
    service = DispatchService(db)
    return await service.reorder_loads(actor, data.load_ids)


@router.post(
    "/loads/{load_id}/orders",
    response_model=DeliveryItemResponse,
)
async def assign_order_to_load(
    load_id: uuid.UUID,
    data: AssignOrderRequest,
    db: DB,
    actor: CurrentActor,
):
    """Assign an order to a load, moving it off any other planned load."""
    service = DispatchService(db)
    return await service.assign_order_to_run(actor, data.order_id, load_id)


# ==================== LOAD TRANSITIONS ====================

@router.post("/loads/{load_id}/start-loading", response_model=LoadWithItemsResponse)
async def start_loading(load_id: uuid.UUID, db: DB, actor: CurrentActor):
    service = DispatchService(db)
    await service.start_loading(actor, load_id)
    return await _load_response(service, actor, load_id)


@router.post("/loads/{load_id}/dispatch", response_model=LoadWithItemsResponse)
async def dispatch_load(load_id: uuid.UUID, db: DB, actor: CurrentActor):
    """Send the load out; its orders become dispatched."""
    service = DispatchService(db)
    await service.dispatch_load(actor, load_id)
    return await _load_response(service, actor, load_id)


@router.post("/loads/{load_id}/recall", response_model=LoadWithItemsResponse)
async def recall_load(load_id: uuid.UUID, db: DB, actor: CurrentActor):
    """Bring an in-transit load back to planned."""
    service = DispatchService(db)
    await service.recall_load(actor, load_id)
    return await _load_response(service, actor, load_id)


@router.post("/loads/{load_id}/complete", response_model=LoadWithItemsResponse)
async def complete_load(load_id: uuid.UUID, db: DB, actor: CurrentActor):
    service = DispatchService(db)
    await service.complete_load(actor, load_id)
    return await _load_response(service, actor, load_id)


@router.post("/loads/{load_id}/cancel", response_model=LoadWithItemsResponse)
async def cancel_load(load_id: uuid.UUID, db: DB, actor: CurrentActor):
    service = DispatchService(db)
    await service.cancel_load(actor, load_id)
    return await _load_response(service, actor, load_id)


@router.post("/loads/{load_id}/status", response_model=LoadWithItemsResponse)
async def update_load_status(
    load_id: uuid.UUID,
    data: LoadStatusUpdate,
    db: DB,
    actor: CurrentActor,
):
    """Generic status change routed onto the matching transition."""
    service = DispatchService(db)
    await service.update_load_status(actor, load_id, data.status)
    return await _load_response(service, actor, load_id)


# ==================== ORDERS ON LOADS ====================

@router.post(
    "/dispatch/orders",
    response_model=DispatchOrdersResponse,
)
async def dispatch_orders(
    data: DispatchOrdersRequest,
    db: DB,
    actor: CurrentActor,
):
    """Bulk-assign orders to a load and mark them ready for dispatch."""
    service = DispatchService(db)
    return await service.dispatch_orders(
        actor,
        data.order_ids,
        load_id=data.load_id,
        haulier_id=data.haulier_id,
        run_date=data.run_date,
        load_name=data.load_name,
    )


@router.delete("/orders/{order_id}/load")
async def remove_order_from_load(
    order_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
):
    """Take an order off its load."""
    service = DispatchService(db)
    removed = await service.remove_order_from_load(actor, order_id)
    return {"order_id": order_id, "removed_items": removed}


@router.post(
    "/orders/{order_id}/reschedule",
    response_model=DeliveryItemResponse,
)
async def reschedule_order(
    order_id: uuid.UUID,
    data: RescheduleRequest,
    db: DB,
    actor: CurrentActor,
):
    """Move a failed or in-transit delivery onto another load."""
    service = DispatchService(db)
    return await service.reschedule_order(actor, order_id, data.load_id)


@router.post(
    "/orders/{order_id}/delivery-date",
    response_model=OrderDetailResponse,
)
async def update_order_date(
    order_id: uuid.UUID,
    data: OrderDateUpdate,
    db: DB,
    actor: CurrentActor,
):
    """Move an order's requested delivery date from the dispatch board."""
    service = DispatchService(db)
    await service.update_order_date(actor, order_id, data.requested_delivery_date)
    return await OrderService(db).get_order_details(actor, order_id)


@router.post(
    "/delivery-items/{item_id}/outcome",
    response_model=DeliveryItemResponse,
)
async def record_delivery_outcome(
    item_id: uuid.UUID,
    data: DeliveryOutcomeRequest,
    db: DB,
    actor: CurrentActor,
):
    """Mark one drop delivered or failed."""
    service = DispatchService(db)
    return await service.record_delivery_outcome(
        actor, item_id, data.outcome, data.failure_reason, data.trolleys_delivered
    )


# ==================== PICKING ASSIGNMENT ====================

@router.post(
    "/orders/{order_id}/team",
    response_model=PickListResponse,
)
async def assign_order_to_team(
    order_id: uuid.UUID,
    data: TeamAssignRequest,
    db: DB,
    actor: CurrentActor,
):
    service = DispatchService(db)
    return await service.assign_order_to_team(actor, order_id, data.team_id)


@router.post(
    "/orders/{order_id}/picker",
    response_model=PickListResponse,
)
async def assign_order_to_picker(
    order_id: uuid.UUID,
    data: PickerAssignRequest,
    db: DB,
    actor: CurrentActor,
):
    service = DispatchService(db)
    return await service.assign_order_to_picker(actor, order_id, data.user_id)

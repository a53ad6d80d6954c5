"""Schemas for delivery runs (loads) and delivery items."""
from pydantic import BaseModel, Field
from typing import Optional, List, Literal
from datetime import datetime, date
import uuid

from app.models.dispatch import LoadStatus
from app.schemas.base import BaseResponseSchema, BaseCreateSchema, BaseUpdateSchema


# ==================== DELIVERY ITEM ====================

class DeliveryItemResponse(BaseResponseSchema):
    """Delivery item response schema."""
    id: uuid.UUID
    delivery_run_id: uuid.UUID
    order_id: uuid.UUID
    sequence_number: int
    status: str
    trolleys_delivered: Optional[int] = None
    delivered_at: Optional[datetime] = None
    failure_reason: Optional[str] = None


class DeliveryOutcomeRequest(BaseCreateSchema):
    """Outcome of one drop on a load."""
    outcome: Literal["delivered", "failed"]
    failure_reason: Optional[str] = Field(None, max_length=500)
    trolleys_delivered: Optional[int] = Field(None, ge=0)


# ==================== DELIVERY RUN ====================

class DeliveryRunCreate(BaseCreateSchema):
    """Load creation request."""
    run_date: date
    load_name: Optional[str] = Field(None, max_length=100)
    haulier_id: Optional[uuid.UUID] = None
    vehicle_id: Optional[uuid.UUID] = None
    driver_name: Optional[str] = Field(None, max_length=200)
    notes: Optional[str] = None
    order_ids: List[uuid.UUID] = []


class DeliveryRunUpdate(BaseUpdateSchema):
    """Load update request."""
    run_date: Optional[date] = None
    load_name: Optional[str] = Field(None, max_length=100)
    haulier_id: Optional[uuid.UUID] = None
    vehicle_id: Optional[uuid.UUID] = None
    driver_name: Optional[str] = Field(None, max_length=200)
    notes: Optional[str] = None


class DeliveryRunResponse(BaseResponseSchema):
    """Load response schema."""
    id: uuid.UUID
    run_number: str
    run_date: date
    load_name: Optional[str] = None
    haulier_id: Optional[uuid.UUID] = None
    vehicle_id: Optional[uuid.UUID] = None
    driver_name: Optional[str] = None
    status: str
    display_order: int
    actual_departure_time: Optional[datetime] = None
    actual_return_time: Optional[datetime] = None
    created_at: datetime


class LoadWithItemsResponse(BaseModel):
    load: DeliveryRunResponse
    items: List[DeliveryItemResponse] = []
    warnings: List[str] = []


class LoadStatusUpdate(BaseModel):
    status: LoadStatus


class AssignOrderRequest(BaseCreateSchema):
    order_id: uuid.UUID


class ReorderLoadsRequest(BaseCreateSchema):
    load_ids: List[uuid.UUID] = Field(..., min_length=1)


class RescheduleRequest(BaseCreateSchema):
    load_id: uuid.UUID


class OrderDateUpdate(BaseCreateSchema):
    """New requested delivery date for an order; null clears it."""
    requested_delivery_date: Optional[date] = None


class DispatchOrdersRequest(BaseCreateSchema):
    """Bulk assignment of orders to an existing or new load."""
    order_ids: List[uuid.UUID] = Field(..., min_length=1)
    load_id: Optional[uuid.UUID] = None
    run_date: Optional[date] = None
    load_name: Optional[str] = Field(None, max_length=100)
    haulier_id: Optional[uuid.UUID] = None


class DispatchOrdersResponse(BaseModel):
    load_id: uuid.UUID
    assigned_order_ids: List[uuid.UUID] = []
    failed_order_ids: List[uuid.UUID] = []
    warning: Optional[str] = None


class TeamAssignRequest(BaseCreateSchema):
    team_id: uuid.UUID


class PickerAssignRequest(BaseCreateSchema):
    user_id: uuid.UUID


class PickListResponse(BaseResponseSchema):
    id: uuid.UUID
    order_id: uuid.UUID
    status: str
    assigned_team_id: Optional[uuid.UUID] = None
    assigned_user_id: Optional[uuid.UUID] = None

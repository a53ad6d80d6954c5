"""Schemas for the allocation ledger endpoints."""
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime, date
import uuid

from app.schemas.base import BaseResponseSchema, BaseCreateSchema
from app.schemas.order import OversellItem


class AllocationResponse(BaseResponseSchema):
    """Allocation ledger row."""
    id: uuid.UUID
    order_id: uuid.UUID
    order_item_id: uuid.UUID
    product_id: uuid.UUID
    batch_id: Optional[uuid.UUID] = None
    parent_allocation_id: Optional[uuid.UUID] = None
    tier: str
    status: str
    quantity: int
    picked_quantity: Optional[int] = None
    idempotency_key: Optional[str] = None
    created_at: datetime


class Tier1Response(BaseModel):
    """Result of product-level allocation for an order."""
    order_id: uuid.UUID
    has_oversell_warning: bool
    oversell_items: List[OversellItem] = []
    allocations: List[AllocationResponse] = []


class BatchSelectRequest(BaseCreateSchema):
    """Convert a product-level reservation into a batch allocation."""
    batch_id: uuid.UUID
    quantity: Optional[int] = Field(None, ge=1)
    idempotency_key: Optional[str] = Field(None, max_length=100)


class BatchAllocateRequest(BaseCreateSchema):
    """Allocate a batch to an order line directly."""
    order_item_id: uuid.UUID
    batch_id: uuid.UUID
    quantity: int = Field(..., ge=1)
    idempotency_key: Optional[str] = Field(None, max_length=100)


class MarkPickedRequest(BaseCreateSchema):
    """Record the quantity physically picked."""
    picked_quantity: int = Field(..., ge=0)


class CancelAllocationRequest(BaseCreateSchema):
    reason: Optional[str] = Field(None, max_length=500)


class CancelAllocationResponse(BaseModel):
    allocation_id: uuid.UUID
    quantity_released: int


class MarkPickedResponse(BaseModel):
    allocation_id: uuid.UUID
    picked_quantity: int
    shortage: int


class AvailableBatchResponse(BaseModel):
    """Batch that can satisfy a product's variety and size."""
    id: uuid.UUID
    batch_number: str
    variety: str
    size: str
    location_name: Optional[str] = None
    quantity: int
    reserved_quantity: int
    available_quantity: int
    planted_at: Optional[date] = None


class ProductStockStatusResponse(BaseModel):
    """Available-to-sell breakdown for a product."""
    product_id: uuid.UUID
    total_quantity: int
    batch_reserved: int
    tier1_reserved: int
    calculated_ats: int
    override_ats: Optional[int] = None
    effective_ats: int
    stock_status: str


class PendingBatchSelection(BaseModel):
    """Product-level reservation still waiting for a batch."""
    allocation_id: uuid.UUID
    order_item_id: uuid.UUID
    product_id: uuid.UUID
    product_name: str
    quantity: int


class StartPickingResponse(BaseModel):
    order_id: uuid.UUID
    status: str
    pending_batch_selections: List[PendingBatchSelection] = []


class AllocationEventResponse(BaseResponseSchema):
    """Stock movement recorded against an allocation."""
    id: uuid.UUID
    allocation_id: uuid.UUID
    order_id: uuid.UUID
    order_item_id: uuid.UUID
    batch_id: Optional[uuid.UUID] = None
    event_type: str
    quantity_change: int
    event_metadata: Optional[dict] = None
    actor_id: Optional[uuid.UUID] = None
    occurred_at: datetime

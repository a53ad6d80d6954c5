from pydantic import BaseModel, Field, model_validator
from typing import Optional, List, Literal
from datetime import datetime, date
from decimal import Decimal
import uuid

from app.schemas.base import BaseResponseSchema, BaseCreateSchema


# ==================== ORDER LINE INPUT ====================

class OrderLineInput(BaseCreateSchema):
    """
    One requested order line.

    A line names its product one of three ways: a product group (mix line),
    a product id, or a variety + size label.
    """
    line_key: Optional[str] = Field(None, max_length=64)
    product_id: Optional[uuid.UUID] = None
    product_group_id: Optional[uuid.UUID] = None
    variety: Optional[str] = None
    size: Optional[str] = None
    description: Optional[str] = Field(None, max_length=500)
    quantity: int = Field(..., ge=1)
    unit_price: Optional[Decimal] = Field(None, ge=0)  # Override price if needed
    vat_rate: Optional[Decimal] = Field(None, ge=0, le=100)

    @model_validator(mode="after")
    def check_reference(self):
        has_label = bool((self.variety or "").strip() and (self.size or "").strip())
        if not (self.product_id or self.product_group_id or has_label):
            raise ValueError("Line needs a product, a product group or a variety and size")
        return self


class OrderCreate(BaseCreateSchema):
    """Order creation request."""
    customer_id: uuid.UUID
    lines: List[OrderLineInput] = Field(..., min_length=1)
    requested_delivery_date: Optional[date] = None
    notes: Optional[str] = Field(None, max_length=2000)
    ship_to_address_id: Optional[uuid.UUID] = None
    status: Literal["draft", "confirmed"] = "confirmed"

    @model_validator(mode="after")
    def assign_line_keys(self):
        seen = set()
        for line in self.lines:
            if not line.line_key:
                line.line_key = uuid.uuid4().hex
            if line.line_key in seen:
                raise ValueError(f"Duplicate line_key '{line.line_key}'")
            seen.add(line.line_key)
        return self


# ==================== ORDER CREATE RESULT ====================

class OversellItem(BaseModel):
    """A line reserved beyond current available-to-sell."""
    order_item_id: uuid.UUID
    product_id: uuid.UUID
    quantity: int
    available: int
    warning: str


class OrderCreateResult(BaseModel):
    """Response of order creation."""
    order_id: uuid.UUID
    order_number: str
    has_oversell_warning: bool = False
    oversell_items: List[OversellItem] = []
    warnings: List[str] = []


# ==================== ORDER RESPONSES ====================

class OrderItemResponse(BaseResponseSchema):
    """Order line response schema."""
    id: uuid.UUID
    line_key: str
    line_number: int
    product_id: uuid.UUID
    product_group_id: Optional[uuid.UUID] = None
    description: Optional[str] = None
    quantity: int
    unit_price_ex_vat: Decimal
    vat_rate: Decimal
    line_total_ex_vat: Decimal
    line_vat_amount: Decimal


class OrderEventResponse(BaseResponseSchema):
    """Order audit event."""
    id: uuid.UUID
    event_type: str
    description: Optional[str] = None
    created_by: Optional[uuid.UUID] = None
    created_at: datetime


class OrderResponse(BaseResponseSchema):
    """Order with lines and events."""
    id: uuid.UUID
    order_number: str
    customer_id: uuid.UUID
    status: str  # VARCHAR in DB
    requested_delivery_date: Optional[date] = None
    notes: Optional[str] = None
    ship_to_address_id: Optional[uuid.UUID] = None
    subtotal_ex_vat: Decimal
    vat_amount: Decimal
    total_inc_vat: Decimal
    created_at: datetime
    confirmed_at: Optional[datetime] = None
    dispatched_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    items: List[OrderItemResponse] = []
    events: List[OrderEventResponse] = []


class OrderDetailResponse(BaseModel):
    """Order details with allocation summary and active delivery."""
    order: OrderResponse
    allocated_quantity: int = 0
    reserved_quantity: int = 0
    active_delivery_run_id: Optional[uuid.UUID] = None
    active_delivery_status: Optional[str] = None


class RecentOrderResponse(BaseModel):
    """Row of a customer's recent orders."""
    id: uuid.UUID
    order_number: str
    status: str
    created_at: datetime
    requested_delivery_date: Optional[date] = None
    total_inc_vat: Decimal
    line_count: int


class OrderStatusUpdate(BaseModel):
    """Order status change request."""
    status: str


class OrderCancelRequest(BaseModel):
    """Order cancellation request."""
    reason: Optional[str] = Field(None, max_length=500)

"""Allocation ledger model.

Every reservation of stock is a row here. Tier ``product`` rows are soft,
product-level reservations made at order confirmation; tier ``batch`` rows
are hard reservations against one Batch made when a picker selects stock.
Rows are never deleted: a release is recorded by moving the row to
``cancelled``.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import UUIDType, JSONType


class AllocationTier(str, Enum):
    """Allocation tier."""
    PRODUCT = "product"   # Tier 1
    BATCH = "batch"       # Tier 2


class AllocationStatus(str, Enum):
    """Allocation status enumeration."""
    RESERVED = "reserved"     # Live reservation
    ALLOCATED = "allocated"   # Tier 1 fully converted into batch allocations
    PICKED = "picked"         # Batch stock physically picked
    CANCELLED = "cancelled"   # Released


LIVE_ALLOCATION_STATUSES = (AllocationStatus.RESERVED.value,)


class Allocation(Base):
    """One reservation entry in the allocation ledger."""
    __tablename__ = "allocation_ledger"
    __table_args__ = (
        UniqueConstraint("org_id", "idempotency_key", name="uq_allocation_org_idempotency_key"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    org_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    order_item_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("order_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    product_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)
    batch_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("batches.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
        comment="Null for product-tier rows"
    )
    parent_allocation_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("allocation_ledger.id", ondelete="SET NULL"),
        nullable=True,
        comment="Tier 1 row a batch allocation was converted from"
    )

    tier: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="product, batch"
    )
    status: Mapped[str] = mapped_column(
        String(20),
        default=AllocationStatus.RESERVED.value,
        nullable=False,
        index=True,
        comment="reserved, allocated, picked, cancelled"
    )

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    picked_quantity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    idempotency_key: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        comment="Unique per organization"
    )
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    picked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Allocation(tier='{self.tier}', qty={self.quantity}, status='{self.status}')>"


class AllocationEventType(str, Enum):
    """Allocation event type enumeration."""
    BATCH_ALLOCATED = "batch_allocated"
    ALLOCATION_PICKED = "allocation_picked"
    ALLOCATION_RELEASED = "allocation_released"


class AllocationEvent(Base):
    """
    Audit trail of stock movements on the allocation ledger.

    ``quantity_change`` is the change to the stock held by the allocation:
    positive when batch stock is reserved, negative when it is handed back.
    """
    __tablename__ = "allocation_events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    org_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)
    allocation_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)
    order_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)
    order_item_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)
    batch_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)

    event_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        comment="batch_allocated, allocation_picked, allocation_released"
    )
    quantity_change: Mapped[int] = mapped_column(Integer, nullable=False)
    event_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSONType, nullable=True)
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<AllocationEvent(type='{self.event_type}', change={self.quantity_change})>"

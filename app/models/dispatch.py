"""Delivery run ("load") models for dispatch."""
import uuid
from datetime import datetime, date, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, DateTime, Date, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import UUIDType

if TYPE_CHECKING:
    from app.models.order import Order


class LoadStatus(str, Enum):
    """Delivery run status enumeration."""
    PLANNED = "planned"
    LOADING = "loading"
    IN_TRANSIT = "in_transit"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class DeliveryItemStatus(str, Enum):
    """Delivery item status enumeration."""
    PENDING = "pending"
    LOADING = "loading"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    FAILED = "failed"
    RESCHEDULED = "rescheduled"


ACTIVE_ITEM_STATUSES = (
    DeliveryItemStatus.PENDING.value,
    DeliveryItemStatus.LOADING.value,
    DeliveryItemStatus.IN_TRANSIT.value,
)


class DeliveryRun(Base):
    """One vehicle trip carrying a set of orders."""
    __tablename__ = "delivery_runs"
    __table_args__ = (
        UniqueConstraint("org_id", "run_number", name="uq_delivery_runs_org_number"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    org_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    run_number: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        index=True,
        comment="e.g. DR-20240101-001"
    )
    run_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    load_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    haulier_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    vehicle_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    driver_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        default=LoadStatus.PLANNED.value,
        nullable=False,
        index=True,
        comment="planned, loading, in_transit, completed, cancelled"
    )
    display_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    actual_departure_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    actual_return_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

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

    items: Mapped[List["DeliveryItem"]] = relationship(
        "DeliveryItem",
        back_populates="delivery_run",
        order_by="DeliveryItem.sequence_number"
    )

    def __repr__(self) -> str:
        return f"<DeliveryRun(number='{self.run_number}', status='{self.status}')>"


class DeliveryItem(Base):
    """
    Link between one order and one delivery run.

    An order has at most one active item (pending, loading, in_transit).
    Delivered, failed and rescheduled items are kept as history.
    """
    __tablename__ = "delivery_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    org_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)
    delivery_run_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("delivery_runs.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    sequence_number: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default=DeliveryItemStatus.PENDING.value,
        nullable=False,
        index=True,
        comment="pending, loading, in_transit, delivered, failed, rescheduled"
    )

    trolleys_delivered: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    delivery_run: Mapped["DeliveryRun"] = relationship("DeliveryRun", back_populates="items")
    order: Mapped["Order"] = relationship("Order")

    def __repr__(self) -> str:
        return f"<DeliveryItem(seq={self.sequence_number}, status='{self.status}')>"

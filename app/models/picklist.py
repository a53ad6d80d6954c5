"""Pick list model for nursery order picking."""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import UUIDType


class PickListStatus(str, Enum):
    """Pick list status enumeration."""
    PENDING = "pending"           # Generated, waiting to be picked
    IN_PROGRESS = "in_progress"   # Picking in progress
    COMPLETED = "completed"       # All items picked
    CANCELLED = "cancelled"


class PickList(Base):
    """One pick list per order; assigned to a picking team or a picker."""
    __tablename__ = "pick_lists"

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
        unique=True
    )
    status: Mapped[str] = mapped_column(
        String(20),
        default=PickListStatus.PENDING.value,
        nullable=False,
        comment="pending, in_progress, completed, cancelled"
    )

    assigned_team_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    assigned_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<PickList(order='{self.order_id}', status='{self.status}')>"

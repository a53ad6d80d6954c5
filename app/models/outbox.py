"""Post-commit event outbox."""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import JSONType, UUIDType


class PostCommitEventType(str, Enum):
    """Side effects run after an order commits, in this order."""
    BACKFILL_GROUP_IDS = "backfill_group_ids"
    ALLOCATE_TIER1 = "allocate_tier1"
    CREATE_PICK_LIST = "create_pick_list"
    ORDER_CREATED_AUDIT = "order_created_audit"


POST_COMMIT_SEQUENCE = [
    PostCommitEventType.BACKFILL_GROUP_IDS,
    PostCommitEventType.ALLOCATE_TIER1,
    PostCommitEventType.CREATE_PICK_LIST,
    PostCommitEventType.ORDER_CREATED_AUDIT,
]


class PostCommitEventStatus(str, Enum):
    """Outbox row status."""
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"


class PostCommitEvent(Base):
    """
    Side effect written in the same transaction as its order and processed
    afterwards in its own transaction. Failures are retried by the outbox job.
    """
    __tablename__ = "post_commit_events"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    org_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)
    order_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)

    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    payload: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        default=PostCommitEventStatus.PENDING.value,
        nullable=False,
        index=True,
        comment="pending, done, failed"
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<PostCommitEvent(type='{self.event_type}', status='{self.status}')>"

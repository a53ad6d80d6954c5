from typing import Optional, List
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.order import OrderEvent


class AuditService:
    """
    Order audit trail. Writes are flushed, not committed; the caller owns
    the transaction.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record_order_event(
        self,
        org_id: uuid.UUID,
        order_id: uuid.UUID,
        event_type: str,
        description: Optional[str] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> OrderEvent:
        """
        Create an order event.

        Args:
            org_id: Owning organization
            order_id: Order the event belongs to
            event_type: order_created, status_changed, cancelled, dispatched, ...
            description: Human-readable description
            user_id: Actor, if any

        Returns:
            The created OrderEvent
        """
        event = OrderEvent(
            org_id=org_id,
            order_id=order_id,
            event_type=event_type,
            description=description,
            created_by=user_id,
        )
        self.db.add(event)
        await self.db.flush()
        return event

    async def log_status_change(
        self,
        org_id: uuid.UUID,
        order_id: uuid.UUID,
        old_status: str,
        new_status: str,
        user_id: Optional[uuid.UUID] = None,
    ) -> OrderEvent:
        """Log an order status transition."""
        return await self.record_order_event(
            org_id=org_id,
            order_id=order_id,
            event_type="status_changed",
            description=f"Status changed from {old_status} to {new_status}",
            user_id=user_id,
        )

    async def get_order_events(self, order_id: uuid.UUID) -> List[OrderEvent]:
        result = await self.db.execute(
            select(OrderEvent)
            .where(OrderEvent.order_id == order_id)
            .order_by(OrderEvent.created_at)
        )
        return list(result.scalars().all())

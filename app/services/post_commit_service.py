"""
Post-commit side effects (transactional outbox).

Order commit writes one PostCommitEvent row per side effect in the same
transaction as the order. After the commit each event runs in its own
transaction, in sequence:

1. backfill_group_ids - set product_group_id on mix lines by line_key
2. allocate_tier1 - product-level allocation
3. create_pick_list - pick list for the order
4. order_created_audit - "order_created" order event

A failing step is rolled back and marked failed; it never rolls back the
order and never reaches the caller. The outbox job retries failed and
pending events up to OUTBOX_MAX_ATTEMPTS.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any, Callable, Awaitable

from sqlalchemy import select, update, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.order import OrderItem
from app.models.outbox import (
    PostCommitEvent,
    PostCommitEventStatus,
    PostCommitEventType,
    POST_COMMIT_SEQUENCE,
)
from app.services.allocation_service import AllocationService
from app.services.audit_service import AuditService
from app.services.picklist_service import PickListService

logger = logging.getLogger(__name__)


def _as_uuid(value: Optional[str]) -> Optional[uuid.UUID]:
    return uuid.UUID(value) if value else None


class PostCommitService:
    """Writes and processes outbox events."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.handlers: Dict[str, Callable[[PostCommitEvent], Awaitable[Any]]] = {
            PostCommitEventType.BACKFILL_GROUP_IDS.value: self._backfill_group_ids,
            PostCommitEventType.ALLOCATE_TIER1.value: self._allocate_tier1,
            PostCommitEventType.CREATE_PICK_LIST.value: self._create_pick_list,
            PostCommitEventType.ORDER_CREATED_AUDIT.value: self._order_created_audit,
        }

    def enqueue_order_events(
        self,
        org_id: uuid.UUID,
        order_id: uuid.UUID,
        payload: Dict[str, Any],
    ) -> List[PostCommitEvent]:
        """Add the post-commit events of a new order to the current transaction."""
        events = []
        for sequence, event_type in enumerate(POST_COMMIT_SEQUENCE, start=1):
            event = PostCommitEvent(
                org_id=org_id,
                order_id=order_id,
                event_type=event_type.value,
                sequence=sequence,
                payload=payload,
                status=PostCommitEventStatus.PENDING.value,
                attempts=0,
            )
            self.db.add(event)
            events.append(event)
        return events

    # ==================== PROCESSING ====================

    async def process_event(self, event_id: uuid.UUID) -> Optional[Any]:
        """
        Run one event in its own transaction.

        Returns the handler result, or None if the event failed or was
        already done.
        """
        event = await self.db.get(PostCommitEvent, event_id)
        if event is None or event.status == PostCommitEventStatus.DONE.value:
            return None

        handler = self.handlers.get(event.event_type)
        event_type = event.event_type
        order_id = event.order_id

        try:
            if handler is None:
                raise ValueError(f"No handler for post-commit event '{event_type}'")
            result = await handler(event)
            event.status = PostCommitEventStatus.DONE.value
            event.attempts = event.attempts + 1
            event.last_error = None
            event.processed_at = datetime.now(timezone.utc)
            await self.db.commit()
            return result
        except Exception as e:
            # Best-effort step: record the failure for retry, keep the order
            await self.db.rollback()
            logger.error(f"Post-commit step '{event_type}' failed for order {order_id}: {e}")
            failed = await self.db.get(PostCommitEvent, event_id)
            if failed is not None:
                failed.status = PostCommitEventStatus.FAILED.value
                failed.attempts = failed.attempts + 1
                failed.last_error = str(e)[:2000]
                await self.db.commit()
            return None

    async def _pending_events(self, order_id: Optional[uuid.UUID] = None, limit: Optional[int] = None) -> List[PostCommitEvent]:
        conditions = [
            PostCommitEvent.status.in_([
                PostCommitEventStatus.PENDING.value,
                PostCommitEventStatus.FAILED.value,
            ]),
            PostCommitEvent.attempts < settings.OUTBOX_MAX_ATTEMPTS,
        ]
        if order_id is not None:
            conditions.append(PostCommitEvent.order_id == order_id)

        stmt = (
            select(PostCommitEvent)
            .where(and_(*conditions))
            .order_by(PostCommitEvent.created_at, PostCommitEvent.sequence)
        )
        if limit:
            stmt = stmt.limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def process_order_events(self, order_id: uuid.UUID) -> Dict[str, Any]:
        """
        Process the outstanding events of one order in sequence.

        Returns:
            Dict of event_type -> handler result (None for failed steps)
        """
        events = sorted(await self._pending_events(order_id), key=lambda e: e.sequence)
        pending = [(event.id, event.event_type) for event in events]

        results: Dict[str, Any] = {}
        for event_id, event_type in pending:
            results[event_type] = await self.process_event(event_id)
        return results

    async def retry_pending(self, limit: Optional[int] = None) -> Dict[str, int]:
        """Retry outstanding events across orders (used by the outbox job)."""
        events = await self._pending_events(limit=limit or settings.OUTBOX_BATCH_SIZE)
        pending = [(event.id, event.event_type) for event in events]

        processed = 0
        succeeded = 0
        for event_id, event_type in pending:
            processed += 1
            if await self.process_event(event_id) is not None:
                succeeded += 1
        return {"processed": processed, "succeeded": succeeded, "failed": processed - succeeded}

    # ==================== HANDLERS ====================

    async def _backfill_group_ids(self, event: PostCommitEvent) -> int:
        """Set product_group_id on mix lines, matched by line_key."""
        group_lines: Dict[str, str] = (event.payload or {}).get("group_lines") or {}
        updated = 0
        for line_key, group_id in group_lines.items():
            result = await self.db.execute(
                update(OrderItem)
                .where(and_(OrderItem.order_id == event.order_id, OrderItem.line_key == line_key))
                .values(product_group_id=uuid.UUID(group_id))
            )
            if result.rowcount == 0:
                raise LookupError(f"Order line '{line_key}' not found for group back-fill")
            updated += result.rowcount
        return updated

    async def _allocate_tier1(self, event: PostCommitEvent):
        actor_id = _as_uuid((event.payload or {}).get("actor_id"))
        return await AllocationService(self.db).allocate_tier1(actor_id, event.org_id, event.order_id)

    async def _create_pick_list(self, event: PostCommitEvent):
        return await PickListService(self.db).create_pick_list_from_order(event.org_id, event.order_id)

    async def _order_created_audit(self, event: PostCommitEvent):
        payload = event.payload or {}
        return await AuditService(self.db).record_order_event(
            org_id=event.org_id,
            order_id=event.order_id,
            event_type="order_created",
            description=f"Order {payload.get('order_number')} created",
            user_id=_as_uuid(payload.get("actor_id")),
        )

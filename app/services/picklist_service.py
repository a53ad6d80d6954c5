"""Service for pick lists: the picking side of order fulfillment."""
from typing import Optional
from datetime import datetime, timezone
import logging
import uuid

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError
from app.models.order import Order
from app.models.picklist import PickList, PickListStatus

logger = logging.getLogger(__name__)


class PickListService:
    """One pick list per order. Writes flush only; callers commit."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_pick_list_for_order(self, org_id: uuid.UUID, order_id: uuid.UUID) -> Optional[PickList]:
        result = await self.db.execute(
            select(PickList).where(
                and_(PickList.org_id == org_id, PickList.order_id == order_id)
            )
        )
        return result.scalar_one_or_none()

    async def create_pick_list_from_order(self, org_id: uuid.UUID, order_id: uuid.UUID) -> PickList:
        """Create the order's pick list, or return the existing one."""
        existing = await self.get_pick_list_for_order(org_id, order_id)
        if existing is not None:
            return existing

        order = await self.db.get(Order, order_id)
        if order is None or order.org_id != org_id:
            raise NotFoundError("Order not found")

        pick_list = PickList(
            org_id=org_id,
            order_id=order_id,
            status=PickListStatus.PENDING.value,
        )
        self.db.add(pick_list)
        await self.db.flush()
        logger.info(f"Pick list created for order {order.order_number}")
        return pick_list

    async def assign_pick_list_to_team(self, pick_list: PickList, team_id: uuid.UUID) -> PickList:
        pick_list.assigned_team_id = team_id
        await self.db.flush()
        return pick_list

    async def assign_pick_list_to_user(self, pick_list: PickList, user_id: uuid.UUID) -> PickList:
        pick_list.assigned_user_id = user_id
        await self.db.flush()
        return pick_list

    async def complete_pick_list(self, pick_list: PickList) -> PickList:
        pick_list.status = PickListStatus.COMPLETED.value
        pick_list.completed_at = datetime.now(timezone.utc)
        await self.db.flush()
        return pick_list

    async def cancel_pick_list(self, org_id: uuid.UUID, order_id: uuid.UUID) -> None:
        pick_list = await self.get_pick_list_for_order(org_id, order_id)
        if pick_list is not None and pick_list.status != PickListStatus.COMPLETED.value:
            pick_list.status = PickListStatus.CANCELLED.value
            await self.db.flush()

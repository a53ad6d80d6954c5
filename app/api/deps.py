from typing import Annotated, Optional
import uuid
import logging

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.core.exceptions import NotAuthenticated
from app.core.tenant_context import ActorContext


logger = logging.getLogger(__name__)


def _parse_identity(value: Optional[str], header_name: str) -> Optional[uuid.UUID]:
    if not value:
        return None
    try:
        return uuid.UUID(value)
    except ValueError:
        logger.warning(f"Invalid {header_name} header: {value}")
        raise NotAuthenticated(f"Invalid {header_name} header")


async def get_current_actor(
    x_user_id: Annotated[Optional[str], Header()] = None,
    x_org_id: Annotated[Optional[str], Header()] = None,
) -> ActorContext:
    """
    Dependency building the caller identity from trusted upstream headers.

    Authentication itself happens upstream; a missing header leaves the
    field empty and the service layer rejects the call.
    """
    return ActorContext(
        user_id=_parse_identity(x_user_id, "X-User-Id"),
        org_id=_parse_identity(x_org_id, "X-Org-Id"),
    )


# Type aliases for dependency injection
CurrentActor = Annotated[ActorContext, Depends(get_current_actor)]
DB = Annotated[AsyncSession, Depends(get_db)]

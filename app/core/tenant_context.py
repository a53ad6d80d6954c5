"""
Actor & Tenant Context

Every public operation runs on behalf of an actor (the signed-in user) inside
one organization. The organization is the tenant boundary: services must
never resolve a record whose ``org_id`` differs from the actor's.

Usage Examples:

    # In a service:
    async def dispatch_load(self, actor: Optional[ActorContext], load_id):
        org_id = require_org(actor)
        ...

    # Checking a loaded record:
    ensure_same_org(customer.org_id, org_id, "Customer belongs to a different organization")
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from app.core.exceptions import NotAuthenticated, CrossTenantError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActorContext:
    """Authenticated caller identity."""
    user_id: Optional[uuid.UUID]
    org_id: Optional[uuid.UUID]


def require_actor(actor: Optional[ActorContext]) -> ActorContext:
    """
    Ensure the caller is authenticated and belongs to an organization.

    Raises:
        NotAuthenticated: If there is no user or no organization membership
    """
    if actor is None or actor.user_id is None:
        raise NotAuthenticated()
    if actor.org_id is None:
        logger.warning(f"User {actor.user_id} has no organization membership")
        raise NotAuthenticated("No organization membership found")
    return actor


def require_org(actor: Optional[ActorContext]) -> uuid.UUID:
    """Shortcut returning the actor's organization id."""
    return require_actor(actor).org_id


def ensure_same_org(record_org_id: uuid.UUID, org_id: uuid.UUID, message: str) -> None:
    """
    Guard against cross-tenant access.

    Raises:
        CrossTenantError: If the record belongs to another organization
    """
    if record_org_id != org_id:
        logger.warning(f"Cross-organization access blocked: record org {record_org_id}, caller org {org_id}")
        raise CrossTenantError(message)

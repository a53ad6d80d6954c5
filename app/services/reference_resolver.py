"""
Reference resolution for order entry.

Turns the partial identities a salesperson types (customer id, product id,
variety + size label, product group id) into records of the caller's
organization. The first line that cannot be resolved fails the whole order.
"""
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, List, Dict, Tuple, Sequence

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError
from app.core.tenant_context import ActorContext, require_actor, ensure_same_org
from app.models.customer import Customer
from app.models.organization import Organization
from app.models.product import Product, ProductGroup, ProductGroupMember
from app.schemas.order import OrderLineInput

logger = logging.getLogger(__name__)


LabelKey = Tuple[str, str]


def normalize_label(variety: Optional[str], size: Optional[str]) -> LabelKey:
    """Trimmed, case-folded (variety, size) key."""
    return ((variety or "").strip().lower(), (size or "").strip().lower())


@dataclass
class ResolvedLine:
    """An order line whose product (and group, for mix lines) is known."""
    line_number: int
    line_key: str
    product: Product
    quantity: int
    group: Optional[ProductGroup] = None
    unit_price: Optional[Decimal] = None
    vat_rate: Optional[Decimal] = None
    description: Optional[str] = None

    @property
    def is_mix(self) -> bool:
        return self.group is not None


class ReferenceResolver:
    """Resolves customers, products and product groups within one organization."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self._label_index: Optional[Dict[LabelKey, Product]] = None

    async def resolve_customer(
        self,
        actor: Optional[ActorContext],
        customer_id: uuid.UUID,
    ) -> Tuple[Customer, Organization]:
        """
        Resolve a customer and its owning organization.

        Raises:
            NotAuthenticated: Caller not signed in or without organization
            NotFoundError: Customer does not exist
            CrossTenantError: Customer belongs to another organization
        """
        actor = require_actor(actor)

        customer = await self.db.get(Customer, customer_id)
        if customer is None:
            raise NotFoundError("Customer not found")
        ensure_same_org(customer.org_id, actor.org_id, "Customer belongs to a different organization")

        organization = await self.db.get(Organization, customer.org_id)
        if organization is None:
            raise NotFoundError("Organization not found")
        return customer, organization

    async def resolve_products(self, org_id: uuid.UUID) -> List[Product]:
        """All active products of the organization."""
        result = await self.db.execute(
            select(Product)
            .where(and_(Product.org_id == org_id, Product.is_active == True))  # noqa: E712
            .order_by(Product.created_at)
        )
        return list(result.scalars().all())

    async def build_label_index(self, org_id: uuid.UUID) -> Dict[LabelKey, Product]:
        """
        Map of normalized (variety, size) to product, built once per resolver.

        Products without both a variety and a size are not label-addressable.
        When two products share a label the older one wins.
        """
        if self._label_index is not None:
            return self._label_index

        index: Dict[LabelKey, Product] = {}
        for product in await self.resolve_products(org_id):
            key = normalize_label(product.variety, product.size)
            if not key[0] or not key[1]:
                continue
            if key in index:
                logger.warning(f"Duplicate product label {key} in org {org_id}; keeping {index[key].id}")
                continue
            index[key] = product

        self._label_index = index
        return index

    async def resolve_group_members(self, group_id: uuid.UUID) -> List[ProductGroupMember]:
        """Members of a group in representative order (position, then age)."""
        result = await self.db.execute(
            select(ProductGroupMember)
            .where(ProductGroupMember.group_id == group_id)
            .order_by(ProductGroupMember.position, ProductGroupMember.created_at)
        )
        return list(result.scalars().all())

    async def resolve_group_representative(
        self,
        org_id: uuid.UUID,
        group_id: uuid.UUID,
    ) -> Tuple[ProductGroup, Product]:
        """
        Representative product of a mix group: the first member returned by
        resolve_group_members whose product is active in the organization.
        """
        group = await self.db.get(ProductGroup, group_id)
        if group is None or group.org_id != org_id:
            raise NotFoundError(f"Product group {group_id} not found")

        for member in await self.resolve_group_members(group_id):
            product = await self.db.get(Product, member.product_id)
            if product is not None and product.org_id == org_id and product.is_active:
                return group, product

        raise NotFoundError(
            f"Product group '{group.name}' has no members",
            details={"product_group_id": str(group_id)},
        )

    async def resolve_line(self, org_id: uuid.UUID, line_number: int, line: OrderLineInput) -> ResolvedLine:
        """Resolve one line by group, product id or label, in that order."""
        group = None
        if line.product_group_id:
            try:
                group, product = await self.resolve_group_representative(org_id, line.product_group_id)
            except NotFoundError as e:
                raise NotFoundError(f"Line {line_number}: {e.message}", details=e.details)
        elif line.product_id:
            product = await self.db.get(Product, line.product_id)
            if product is None or product.org_id != org_id or not product.is_active:
                raise NotFoundError(
                    f"Line {line_number}: product {line.product_id} not found",
                    details={"line_number": line_number, "product_id": str(line.product_id)},
                )
        else:
            index = await self.build_label_index(org_id)
            product = index.get(normalize_label(line.variety, line.size))
            if product is None:
                raise NotFoundError(
                    f"Line {line_number}: no product matches variety '{line.variety}' size '{line.size}'",
                    details={"line_number": line_number, "variety": line.variety, "size": line.size},
                )

        return ResolvedLine(
            line_number=line_number,
            line_key=line.line_key,
            product=product,
            quantity=line.quantity,
            group=group,
            unit_price=line.unit_price,
            vat_rate=line.vat_rate,
            description=line.description,
        )

    async def resolve_lines(self, org_id: uuid.UUID, lines: Sequence[OrderLineInput]) -> List[ResolvedLine]:
        """
        Resolve every line; stops at the first failure.

        Raises:
            NotFoundError: Naming the 1-based line number and what was looked up
        """
        resolved = []
        for position, line in enumerate(lines, start=1):
            resolved.append(await self.resolve_line(org_id, position, line))
        logger.debug(f"Resolved {len(resolved)} order lines for org {org_id}")
        return resolved

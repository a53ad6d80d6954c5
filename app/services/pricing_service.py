"""Pricing Service: effective unit price per order line.

Precedence (first hit wins):
1. Explicit per-line override supplied by the caller
2. Customer-specific price list whose window contains the target date
3. The customer's default price list
4. The organization's price list flagged is_default
5. Zero, with a warning (missing price data never blocks a sale)

The target date is the order's creation date, not the delivery date.
A price-list strategy only hits when that list carries a price for the
product; otherwise the chain moves on.
"""
from abc import ABC, abstractmethod
from typing import Optional, List, Dict, Sequence, Tuple
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
import uuid
import logging

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.customer import Customer
from app.models.price_list import PriceList, ProductPrice, PriceListCustomer
from app.services.reference_resolver import ResolvedLine

logger = logging.getLogger(__name__)


def is_within_range(target: date, valid_from: Optional[date], valid_to: Optional[date]) -> bool:
    """Inclusive window check; a missing bound is open on that side."""
    if valid_from is not None and valid_from > target:
        return False
    if valid_to is not None and valid_to < target:
        return False
    return True


class PriceSource:
    OVERRIDE = "override"
    CUSTOMER_OVERRIDE = "customer_override"
    CUSTOMER_DEFAULT = "customer_default"
    ORG_DEFAULT = "org_default"
    FALLBACK = "fallback"


@dataclass
class ResolvedPrice:
    """Unit price (ex VAT) and where it came from."""
    unit_price: Decimal
    source: str
    price_list_id: Optional[uuid.UUID] = None


@dataclass
class PricingContext:
    """Everything a strategy needs to price one product."""
    product_id: uuid.UUID
    target_date: date
    override_price: Optional[Decimal] = None
    customer_override_list_ids: List[uuid.UUID] = field(default_factory=list)
    customer_default_list_id: Optional[uuid.UUID] = None
    org_default_list_id: Optional[uuid.UUID] = None
    # (price_list_id, product_id) -> unit price
    price_table: Dict[Tuple[uuid.UUID, uuid.UUID], Decimal] = field(default_factory=dict)


class PriceStrategy(ABC):
    """One step of the precedence chain."""

    source: str = ""

    @abstractmethod
    def try_resolve(self, context: PricingContext) -> Optional[ResolvedPrice]:
        """Return a price, or None to let the next strategy try."""


class ExplicitOverrideStrategy(PriceStrategy):
    source = PriceSource.OVERRIDE

    def try_resolve(self, context: PricingContext) -> Optional[ResolvedPrice]:
        if context.override_price is None:
            return None
        return ResolvedPrice(unit_price=Decimal(context.override_price), source=self.source)


class PriceListStrategy(PriceStrategy):
    """Hits when one of its candidate lists prices the product."""

    @abstractmethod
    def candidate_list_ids(self, context: PricingContext) -> List[uuid.UUID]:
        """Price lists to look in, in order of preference."""

    def try_resolve(self, context: PricingContext) -> Optional[ResolvedPrice]:
        for price_list_id in self.candidate_list_ids(context):
            price = context.price_table.get((price_list_id, context.product_id))
            if price is not None:
                return ResolvedPrice(unit_price=price, source=self.source, price_list_id=price_list_id)
        return None


class CustomerOverrideStrategy(PriceListStrategy):
    source = PriceSource.CUSTOMER_OVERRIDE

    def candidate_list_ids(self, context: PricingContext) -> List[uuid.UUID]:
        return context.customer_override_list_ids


class CustomerDefaultStrategy(PriceListStrategy):
    source = PriceSource.CUSTOMER_DEFAULT

    def candidate_list_ids(self, context: PricingContext) -> List[uuid.UUID]:
        return [context.customer_default_list_id] if context.customer_default_list_id else []


class OrgDefaultStrategy(PriceListStrategy):
    source = PriceSource.ORG_DEFAULT

    def candidate_list_ids(self, context: PricingContext) -> List[uuid.UUID]:
        return [context.org_default_list_id] if context.org_default_list_id else []


class ZeroPriceFallback(PriceStrategy):
    source = PriceSource.FALLBACK

    def try_resolve(self, context: PricingContext) -> Optional[ResolvedPrice]:
        logger.warning(
            f"No price found for product {context.product_id} on {context.target_date}; using 0"
        )
        return ResolvedPrice(unit_price=Decimal("0"), source=self.source)


DEFAULT_STRATEGIES: List[PriceStrategy] = [
    ExplicitOverrideStrategy(),
    CustomerOverrideStrategy(),
    CustomerDefaultStrategy(),
    OrgDefaultStrategy(),
    ZeroPriceFallback(),
]


def resolve_with_chain(
    context: PricingContext,
    strategies: Sequence[PriceStrategy] = DEFAULT_STRATEGIES,
) -> ResolvedPrice:
    """Run the strategies in order and return the first hit."""
    for strategy in strategies:
        resolved = strategy.try_resolve(context)
        if resolved is not None:
            return resolved
    # Only reachable with a custom chain that has no fallback
    return ResolvedPrice(unit_price=Decimal("0"), source=PriceSource.FALLBACK)


class PricingService:
    """
    Loads the price-list hierarchy for a customer once and prices every
    line of an order through the strategy chain.
    """

    def __init__(self, db: AsyncSession, strategies: Optional[Sequence[PriceStrategy]] = None):
        self.db = db
        self.strategies = list(strategies) if strategies is not None else DEFAULT_STRATEGIES

    async def resolve_price_overrides(self, customer_id: uuid.UUID) -> List[PriceListCustomer]:
        """Customer-specific price list assignments, regardless of window."""
        result = await self.db.execute(
            select(PriceListCustomer).where(PriceListCustomer.customer_id == customer_id)
        )
        return list(result.scalars().all())

    async def _get_list(self, org_id: uuid.UUID, price_list_id: uuid.UUID, target: date) -> Optional[PriceList]:
        price_list = await self.db.get(PriceList, price_list_id)
        if price_list is None or price_list.org_id != org_id:
            return None
        if not is_within_range(target, price_list.valid_from, price_list.valid_to):
            return None
        return price_list

    async def get_org_default_list(self, org_id: uuid.UUID, target: date) -> Optional[PriceList]:
        """The organization's default price list valid on ``target``."""
        result = await self.db.execute(
            select(PriceList)
            .where(and_(PriceList.org_id == org_id, PriceList.is_default == True))  # noqa: E712
            .order_by(PriceList.created_at)
        )
        for price_list in result.scalars().all():
            if is_within_range(target, price_list.valid_from, price_list.valid_to):
                return price_list
        return None

    async def _active_override_list_ids(self, customer: Customer, target: date) -> List[uuid.UUID]:
        overrides = [
            o for o in await self.resolve_price_overrides(customer.id)
            if o.org_id == customer.org_id and is_within_range(target, o.valid_from, o.valid_to)
        ]
        # Most recently started assignment first
        overrides.sort(key=lambda o: o.valid_from or date.min, reverse=True)

        list_ids = []
        for override in overrides:
            if await self._get_list(customer.org_id, override.price_list_id, target) is not None:
                list_ids.append(override.price_list_id)
        return list_ids

    async def _load_price_table(
        self,
        list_ids: Sequence[uuid.UUID],
        product_ids: Sequence[uuid.UUID],
    ) -> Dict[Tuple[uuid.UUID, uuid.UUID], Decimal]:
        if not list_ids or not product_ids:
            return {}
        result = await self.db.execute(
            select(ProductPrice).where(
                and_(
                    ProductPrice.price_list_id.in_(list(list_ids)),
                    ProductPrice.product_id.in_(list(product_ids)),
                )
            )
        )
        return {
            (row.price_list_id, row.product_id): Decimal(row.unit_price)
            for row in result.scalars().all()
        }

    async def resolve_prices(
        self,
        customer: Customer,
        lines: Sequence[ResolvedLine],
        as_of: Optional[date] = None,
    ) -> Dict[str, ResolvedPrice]:
        """
        Price every resolved line.

        Args:
            customer: Ordering customer (its org scopes every list lookup)
            lines: Resolved order lines
            as_of: Target date; defaults to today (UTC), the order creation date

        Returns:
            Dict of line_key -> ResolvedPrice
        """
        target = as_of or datetime.now(timezone.utc).date()
        org_id = customer.org_id

        override_ids = await self._active_override_list_ids(customer, target)

        customer_default_id = None
        if customer.default_price_list_id:
            if await self._get_list(org_id, customer.default_price_list_id, target) is not None:
                customer_default_id = customer.default_price_list_id

        org_default = await self.get_org_default_list(org_id, target)
        org_default_id = org_default.id if org_default else None

        list_ids = list(override_ids)
        for list_id in (customer_default_id, org_default_id):
            if list_id and list_id not in list_ids:
                list_ids.append(list_id)

        product_ids = list({line.product.id for line in lines})
        price_table = await self._load_price_table(list_ids, product_ids)

        prices: Dict[str, ResolvedPrice] = {}
        for line in lines:
            context = PricingContext(
                product_id=line.product.id,
                target_date=target,
                override_price=line.unit_price,
                customer_override_list_ids=override_ids,
                customer_default_list_id=customer_default_id,
                org_default_list_id=org_default_id,
                price_table=price_table,
            )
            resolved = resolve_with_chain(context, self.strategies)
            logger.debug(
                f"Line {line.line_number} product {line.product.id}: "
                f"{resolved.unit_price} from {resolved.source}"
            )
            prices[line.line_key] = resolved
        return prices

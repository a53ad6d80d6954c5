"""Price list models."""
import uuid
from datetime import datetime, date, timezone
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import String, Boolean, DateTime, Date, ForeignKey, Numeric, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.config import settings
from app.database import Base
from app.db_types import UUIDType


class PriceList(Base):
    """
    Named set of unit prices.

    Precedence when pricing an order: customer-specific override (see
    PriceListCustomer), then the customer's default list, then the list
    flagged ``is_default`` for the organization.
    """
    __tablename__ = "price_lists"

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

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default=lambda: settings.DEFAULT_CURRENCY, nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Optional validity window of the list itself
    valid_from: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    valid_to: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    prices: Mapped[List["ProductPrice"]] = relationship(
        "ProductPrice",
        back_populates="price_list",
        cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<PriceList(name='{self.name}', default={self.is_default})>"


class ProductPrice(Base):
    """Unit price (ex VAT) of one product on one price list."""
    __tablename__ = "product_prices"
    __table_args__ = (
        UniqueConstraint("price_list_id", "product_id", name="uq_price_list_product"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    price_list_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("price_lists.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    price_list: Mapped["PriceList"] = relationship("PriceList", back_populates="prices")


class PriceListCustomer(Base):
    """
    Customer-specific price list assignment.

    Active on a date when the date falls inside ``[valid_from, valid_to]``;
    either bound may be null (open-ended).
    """
    __tablename__ = "price_list_customers"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    org_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)
    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("customers.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    price_list_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("price_lists.id", ondelete="CASCADE"),
        nullable=False
    )
    valid_from: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    valid_to: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

"""Product, product group and batch models."""
import uuid
from datetime import datetime, date, timezone
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import String, Boolean, DateTime, Date, ForeignKey, Integer, Numeric, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import UUIDType


class Product(Base):
    """
    Saleable SKU. ``variety`` and ``size`` form the label used to resolve
    order lines typed from a plant label (e.g. "Lavender" / "2L").
    """
    __tablename__ = "products"

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

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sku_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)
    vat_rate: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2),
        nullable=True,
        comment="SKU default VAT rate (percent)"
    )

    # Label lookup
    variety: Mapped[Optional[str]] = mapped_column(String(150), nullable=True)
    size: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    low_stock_threshold: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    ats_override: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="Manual available-to-sell override set by sales"
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    @property
    def label(self) -> str:
        return f"{self.variety or ''} {self.size or ''}".strip() or self.name

    def __repr__(self) -> str:
        return f"<Product(name='{self.name}', sku='{self.sku_code}')>"


class ProductGroup(Base):
    """Set of interchangeable products ordered as a "mix" line."""
    __tablename__ = "product_groups"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    org_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    members: Mapped[List["ProductGroupMember"]] = relationship(
        "ProductGroupMember",
        back_populates="group",
        cascade="all, delete-orphan",
        order_by="ProductGroupMember.position"
    )

    def __repr__(self) -> str:
        return f"<ProductGroup(name='{self.name}')>"


class ProductGroupMember(Base):
    """Membership of a product in a group; ``position`` orders the members."""
    __tablename__ = "product_group_members"
    __table_args__ = (
        UniqueConstraint("group_id", "product_id", name="uq_group_member"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    group_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("product_groups.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    group: Mapped["ProductGroup"] = relationship("ProductGroup", back_populates="members")
    product: Mapped["Product"] = relationship("Product")


class Batch(Base):
    """
    Physical lot of one variety/size at a location.

    Production owns ``quantity``; allocation only moves ``reserved_quantity``.
    ``version_id`` is checked on every UPDATE so two pickers cannot reserve
    the same stock from a stale read.
    """
    __tablename__ = "batches"

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

    batch_number: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    variety: Mapped[str] = mapped_column(String(150), nullable=False)
    size: Mapped[str] = mapped_column(String(50), nullable=False)
    location_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    reserved_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    planted_at: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def available_quantity(self) -> int:
        """Quantity not yet reserved by any allocation."""
        return max(self.quantity - self.reserved_quantity, 0)

    def __repr__(self) -> str:
        return f"<Batch(number='{self.batch_number}', available={self.available_quantity})>"

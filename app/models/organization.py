"""Organization model: the tenant boundary for every other record."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, DateTime, Numeric
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import UUIDType


class Organization(Base):
    """
    A nursery business. Customers, products, price lists, orders,
    batches and delivery runs all carry its id.
    """
    __tablename__ = "organizations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    default_vat_rate: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2),
        nullable=True,
        comment="Falls back to DEFAULT_VAT_RATE when null"
    )
    order_prefix: Mapped[Optional[str]] = mapped_column(
        String(10),
        nullable=True,
        comment="Order number prefix, e.g. ORD"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<Organization(name='{self.name}')>"

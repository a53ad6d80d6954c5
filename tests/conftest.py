"""
Pytest fixtures for the sales fulfillment tests.

Every test gets a fresh in-memory SQLite database built from the ORM
metadata, one AsyncSession, and a small nursery catalogue.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import uuid
from datetime import date
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app import models  # noqa: F401  (registers every table)
from app.core.tenant_context import ActorContext
from app.database import Base, get_db
from app.models import (
    Organization,
    Customer,
    Product,
    ProductGroup,
    ProductGroupMember,
    Batch,
    PriceList,
    ProductPrice,
)
from app.services.order_service import OrderService


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session(engine):
    factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with factory() as session:
        yield session


@pytest_asyncio.fixture
async def org(session):
    """Nursery organization with the Irish reduced VAT rate."""
    org = Organization(name="Greenfields Nursery", default_vat_rate=Decimal("13.5"), order_prefix="ORD")
    session.add(org)
    await session.commit()
    return org


@pytest_asyncio.fixture
async def other_org(session):
    org = Organization(name="Hillside Plants", order_prefix="HIL")
    session.add(org)
    await session.commit()
    return org


@pytest.fixture
def actor(org):
    return ActorContext(user_id=uuid.uuid4(), org_id=org.id)


@pytest.fixture
def other_actor(other_org):
    return ActorContext(user_id=uuid.uuid4(), org_id=other_org.id)


@pytest_asyncio.fixture
async def customer(session, org):
    customer = Customer(org_id=org.id, name="Garden Centre Ltd", email="orders@gardencentre.ie")
    session.add(customer)
    await session.commit()
    return customer


@pytest_asyncio.fixture
async def foreign_customer(session, other_org):
    customer = Customer(org_id=other_org.id, name="Hillside Landscaping")
    session.add(customer)
    await session.commit()
    return customer


@pytest_asyncio.fixture
async def product(session, org):
    """Lavender Hidcote in 2L pots, no SKU VAT rate."""
    product = Product(
        org_id=org.id,
        name="Lavender Hidcote 2L",
        sku_code="LAV-HID-2L",
        variety="Lavender Hidcote",
        size="2L",
    )
    session.add(product)
    await session.commit()
    return product


@pytest_asyncio.fixture
async def second_product(session, org):
    product = Product(
        org_id=org.id,
        name="Rosemary Miss Jessopp 2L",
        sku_code="ROS-MJ-2L",
        variety="Rosemary Miss Jessopp",
        size="2L",
        vat_rate=Decimal("23"),
    )
    session.add(product)
    await session.commit()
    return product


@pytest_asyncio.fixture
async def batch(session, org):
    """100 plants of Lavender Hidcote 2L."""
    batch = Batch(
        org_id=org.id,
        batch_number="B-2024-001",
        variety="Lavender Hidcote",
        size="2L",
        location_name="Tunnel 1",
        quantity=100,
        reserved_quantity=0,
        planted_at=date(2024, 3, 1),
    )
    session.add(batch)
    await session.commit()
    return batch


@pytest_asyncio.fixture
async def price_list(session, org, product):
    """Organization default list pricing the lavender at 5.00."""
    price_list = PriceList(org_id=org.id, name="Trade 2024", currency="EUR", is_default=True)
    session.add(price_list)
    await session.flush()
    session.add(ProductPrice(price_list_id=price_list.id, product_id=product.id, unit_price=Decimal("5.00")))
    await session.commit()
    return price_list


@pytest_asyncio.fixture
async def mix_group(session, org, product, second_product):
    """Herb mix whose representative is the lavender (position 0)."""
    group = ProductGroup(org_id=org.id, name="Herb Mix 2L")
    session.add(group)
    await session.flush()
    session.add_all([
        ProductGroupMember(group_id=group.id, product_id=second_product.id, position=1),
        ProductGroupMember(group_id=group.id, product_id=product.id, position=0),
    ])
    await session.commit()
    return group


async def create_order(session, actor, customer, lines, **extra):
    """Create an order through the service and return its result dict."""
    payload = {"customer_id": str(customer.id), "lines": lines, **extra}
    return await OrderService(session).create_order(actor, payload)


@pytest_asyncio.fixture
async def confirmed_order(session, actor, customer, product, price_list, batch):
    """Confirmed order for 10 lavender, Tier-1 reserved."""
    return await create_order(session, actor, customer, [{"product_id": str(product.id), "quantity": 10}])


@pytest_asyncio.fixture
async def client(session):
    """HTTP client on the app, sharing the test session."""
    from app.main import app

    async def override_get_db():
        yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


def auth_headers(actor: ActorContext) -> dict:
    return {"X-User-Id": str(actor.user_id), "X-Org-Id": str(actor.org_id)}

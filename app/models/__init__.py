"""SQLAlchemy models. Importing this package registers every table on Base.metadata."""
from app.models.organization import Organization
from app.models.customer import Customer, CustomerAddress
from app.models.product import Product, ProductGroup, ProductGroupMember, Batch
from app.models.price_list import PriceList, ProductPrice, PriceListCustomer
from app.models.order import Order, OrderItem, OrderEvent, OrderStatus
from app.models.allocation import (
    Allocation, AllocationTier, AllocationStatus, AllocationEvent, AllocationEventType,
)
from app.models.picklist import PickList, PickListStatus
from app.models.dispatch import DeliveryRun, DeliveryItem, LoadStatus, DeliveryItemStatus
from app.models.outbox import PostCommitEvent, PostCommitEventType, PostCommitEventStatus

__all__ = [
    "Organization",
    "Customer",
    "CustomerAddress",
    "Product",
    "ProductGroup",
    "ProductGroupMember",
    "Batch",
    "PriceList",
    "ProductPrice",
    "PriceListCustomer",
    "Order",
    "OrderItem",
    "OrderEvent",
    "OrderStatus",
    "Allocation",
    "AllocationTier",
    "AllocationStatus",
    "AllocationEvent",
    "AllocationEventType",
    "PickList",
    "PickListStatus",
    "DeliveryRun",
    "DeliveryItem",
    "LoadStatus",
    "DeliveryItemStatus",
    "PostCommitEvent",
    "PostCommitEventType",
    "PostCommitEventStatus",
]

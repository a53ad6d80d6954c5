# Services module
from app.services.reference_resolver import ReferenceResolver
from app.services.pricing_service import PricingService
from app.services.audit_service import AuditService
from app.services.order_service import OrderService
from app.services.post_commit_service import PostCommitService
from app.services.allocation_service import AllocationService

# Fulfillment Services
from app.services.picklist_service import PickListService
from app.services.dispatch_service import DispatchService

__all__ = [
    "ReferenceResolver",
    "PricingService",
    "AuditService",
    "OrderService",
    "PostCommitService",
    "AllocationService",
    # Fulfillment
    "PickListService",
    "DispatchService",
]

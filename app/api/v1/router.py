from fastapi import APIRouter

from app.api.v1.endpoints import (
    # Order entry & status
    orders,
    # Allocation ledger
    allocations,
    # Delivery runs
    dispatch,
)

# Create main API router
api_router = APIRouter(prefix="/api/v1")

# ==================== Orders ====================
api_router.include_router(
    orders.router,
    tags=["Orders"]
)

# ==================== Allocations ====================
api_router.include_router(
    allocations.router,
    tags=["Allocations"]
)

# ==================== Dispatch ====================
api_router.include_router(
    dispatch.router,
    tags=["Dispatch"]
)

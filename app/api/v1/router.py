from fastapi import APIRouter

from app.api.v1.endpoints import (
    # Booking intake
    bookings,
    customers,
    # OGPL: loading, dispatch
    manifests,
    # Receipt at destination
    unloading,
)


api_router = APIRouter(prefix="/api/v1")

# ==================== Bookings ====================
api_router.include_router(
    bookings.router,
    prefix="/bookings",
    tags=["Bookings"]
)

# ==================== Customers ====================
api_router.include_router(
    customers.router,
    prefix="/customers",
    tags=["Customers"]
)

# ==================== Manifests (OGPL) ====================
api_router.include_router(
    manifests.router,
    prefix="/manifests",
    tags=["Manifests"]
)

# ==================== Unloading ====================
api_router.include_router(
    unloading.router,
    prefix="/unloading",
    tags=["Unloading"]
)

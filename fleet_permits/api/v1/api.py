# File: fleet_permits/api/v1/api.py
from fastapi import APIRouter

from fleet_permits.api.v1.endpoints import allocations, maintenance, permits, sync

# Create main API router
api_router = APIRouter()

api_router.include_router(
    permits.router,
    prefix="/permits",
    tags=["permit-entries"]
)

api_router.include_router(
    allocations.router,
    prefix="/permits",
    tags=["permit-allocations"]
)

api_router.include_router(
    maintenance.router,
    prefix="/permits",
    tags=["permit-maintenance"]
)

api_router.include_router(
    sync.router,
    tags=["allocation-sync"]
)

# File: fleet_permits/api/v1/endpoints/sync.py
from fastapi import APIRouter, Depends

from fleet_permits.core.deps import get_current_user, get_sync_service
from fleet_permits.schemas.permit import CurrentUser, EntrySyncRequest, SyncResult
from fleet_permits.services.allocation_sync_service import AllocationSyncService

router = APIRouter()


@router.get("/sync-allocations", response_model=SyncResult)
def sync_allocations(
    service: AllocationSyncService = Depends(get_sync_service),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Bring the allocations view in line with the canonical entries"""
    return service.sync_allocations_to_entries_db()


@router.post("/sync-allocations", response_model=SyncResult)
def ensure_entry_in_allocations(
    sync_data: EntrySyncRequest,
    service: AllocationSyncService = Depends(get_sync_service),
    current_user: CurrentUser = Depends(get_current_user),
):
    return service.ensure_entry_in_allocations(sync_data.entry_id)

# File: fleet_permits/api/v1/endpoints/allocations.py
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, status

from fleet_permits.core.deps import (
    get_active_permit_service,
    get_allocation_service,
    get_current_user,
    get_work_permit_service,
)
from fleet_permits.core.exceptions import PermitError, to_http_exception
from fleet_permits.schemas.permit import (
    AllocationQuantityUpdate,
    AllocationResult,
    AutoAllocationSummary,
    CurrentUser,
    PreAllocation,
    PreAllocationCreate,
    WorkOrderWithAllocations,
)
from fleet_permits.services.active_permit_service import ActivePermitService
from fleet_permits.services.permit_allocation_service import PermitAllocationService
from fleet_permits.services.work_permit_service import WorkPermitService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/allocations", response_model=List[PreAllocation])
def get_active_pre_allocations(
    destination: Optional[str] = None,
    product: Optional[str] = None,
    owner: Optional[str] = None,
    service: ActivePermitService = Depends(get_active_permit_service),
):
    try:
        return service.get_active_pre_allocations(destination=destination, product=product, owner=owner)
    except PermitError as e:
        raise to_http_exception(e)


@router.post("/allocations", response_model=PreAllocation, status_code=status.HTTP_201_CREATED)
def pre_allocate_permit_entry(
    allocation_data: PreAllocationCreate,
    service: PermitAllocationService = Depends(get_allocation_service),
    current_user: CurrentUser = Depends(get_current_user),
):
    logger.info(f"Pre-allocation for truck {allocation_data.truck_number} requested by {current_user.email}")
    try:
        return service.pre_allocate_permit_entry(
            truck_number=allocation_data.truck_number,
            product=allocation_data.product,
            owner=allocation_data.owner,
            permit_entry_id=allocation_data.permit_entry_id,
            permit_number=allocation_data.permit_number,
            destination=allocation_data.destination,
            work_detail_id=allocation_data.work_detail_id,
        )
    except PermitError as e:
        raise to_http_exception(e)


@router.patch("/allocations/{allocation_id}", response_model=PreAllocation)
def update_permit_allocation(
    allocation_id: str,
    update_data: AllocationQuantityUpdate,
    service: PermitAllocationService = Depends(get_allocation_service),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return service.update_permit_allocation(allocation_id, update_data.quantity)
    except PermitError as e:
        raise to_http_exception(e)


@router.post("/allocations/{allocation_id}/use", response_model=PreAllocation)
def mark_permit_as_used(
    allocation_id: str,
    service: PermitAllocationService = Depends(get_allocation_service),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return service.mark_permit_as_used(allocation_id)
    except PermitError as e:
        raise to_http_exception(e)


@router.delete("/allocations/{allocation_id}")
def release_pre_allocation(
    allocation_id: str,
    destination: Optional[str] = None,
    service: PermitAllocationService = Depends(get_allocation_service),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        allocation = service.release_pre_allocation(allocation_id, destination)
    except PermitError as e:
        raise to_http_exception(e)
    logger.info(f"Allocation {allocation_id} released by {current_user.email}")
    return {"message": "Pre-allocation released", "id": allocation.id, "truckNumber": allocation.truck_number}


@router.post("/trucks/{truck_number}/reset")
def reset_truck_allocation(
    truck_number: str,
    destination: Optional[str] = None,
    service: PermitAllocationService = Depends(get_allocation_service),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        released = service.reset_truck_allocation(truck_number, destination)
    except PermitError as e:
        raise to_http_exception(e)
    return {"message": f"Released {released} allocation(s) for truck {truck_number}", "released": released}


@router.post("/work-orders/auto-allocate", response_model=AutoAllocationSummary)
def allocate_pending_work_orders(
    service: WorkPermitService = Depends(get_work_permit_service),
    current_user: CurrentUser = Depends(get_current_user),
):
    logger.info(f"Batch auto-allocation started by {current_user.email}")
    return service.allocate_pending_work_orders()


@router.post("/work-orders/{work_order_id}/allocate", response_model=AllocationResult)
def allocate_permit_for_work_order(
    work_order_id: str,
    service: WorkPermitService = Depends(get_work_permit_service),
    current_user: CurrentUser = Depends(get_current_user),
):
    return service.allocate_permit_for_work_order(work_order_id)


@router.get("/work-orders/{work_order_id}", response_model=WorkOrderWithAllocations)
def get_work_order_with_allocations(
    work_order_id: str,
    service: ActivePermitService = Depends(get_active_permit_service),
):
    try:
        return service.get_work_order_with_allocations(work_order_id)
    except PermitError as e:
        raise to_http_exception(e)

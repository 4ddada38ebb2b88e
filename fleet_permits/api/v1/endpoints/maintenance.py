# File: fleet_permits/api/v1/endpoints/maintenance.py
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from fleet_permits.core.deps import get_allocation_service, get_cleanup_service, get_current_user
from fleet_permits.core.exceptions import PermitError, to_http_exception
from fleet_permits.schemas.permit import (
    CurrentUser,
    MaintenanceResult,
    ResetResult,
    ValidationReport,
    ViolationReport,
)
from fleet_permits.services.permit_allocation_service import PermitAllocationService
from fleet_permits.services.permit_cleanup_service import PermitCleanupService

logger = logging.getLogger(__name__)

router = APIRouter()


def _validation_report(service: PermitCleanupService) -> ValidationReport:
    violations = service.find_violations()
    return ValidationReport(
        valid=not violations,
        errors=[v.message for v in violations],
        violations=[
            ViolationReport(code=v.code, message=v.message, allocation_id=v.allocation_id)
            for v in violations
        ],
    )


@router.post("/cleanup")
def cleanup_duplicate_allocations(
    service: PermitCleanupService = Depends(get_cleanup_service),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Remove duplicate and invalid allocations, then report what is still inconsistent"""
    logger.info(f"Permit cleanup requested by {current_user.email}")
    try:
        cleanup = service.cleanup_duplicate_allocations()
        report = _validation_report(service)
    except PermitError as e:
        raise to_http_exception(e)
    return {
        "success": not cleanup.errors,
        "cleanup": cleanup.model_dump(by_alias=True),
        "validation": report.model_dump(by_alias=True),
    }


@router.post("/cleanup/loaded-trucks", response_model=MaintenanceResult)
def cleanup_loaded_trucks(
    service: PermitCleanupService = Depends(get_cleanup_service),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return service.cleanup_loaded_trucks()
    except PermitError as e:
        raise to_http_exception(e)


@router.post("/cleanup/orphans", response_model=MaintenanceResult)
def cleanup_orphaned_allocations(
    service: PermitCleanupService = Depends(get_cleanup_service),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        return service.cleanup_orphaned_allocations()
    except PermitError as e:
        raise to_http_exception(e)


@router.post("/consolidate")
def consolidate_permit_allocations(
    truck_number: Optional[str] = Query(None, alias="truckNumber"),
    product: Optional[str] = None,
    service: PermitCleanupService = Depends(get_cleanup_service),
    current_user: CurrentUser = Depends(get_current_user),
):
    try:
        consolidated = service.consolidate_permit_allocations(truck_number, product)
    except PermitError as e:
        raise to_http_exception(e)
    return {"consolidated": consolidated}


@router.get("/validate", response_model=ValidationReport)
def validate_allocations(
    service: PermitCleanupService = Depends(get_cleanup_service),
):
    try:
        return _validation_report(service)
    except PermitError as e:
        raise to_http_exception(e)


@router.post("/reset", response_model=ResetResult)
def reset_permit_system(
    confirm: bool = False,
    service: PermitAllocationService = Depends(get_allocation_service),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Drop every pre-allocation. Needs ?confirm=true."""
    if not confirm:
        raise HTTPException(status_code=400, detail="Resetting the permit system requires confirm=true")

    logger.warning(f"Permit system reset requested by {current_user.email}")
    try:
        return service.reset_permit_system()
    except PermitError as e:
        raise to_http_exception(e)

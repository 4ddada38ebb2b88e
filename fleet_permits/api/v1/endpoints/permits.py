# File: fleet_permits/api/v1/endpoints/permits.py
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from fleet_permits.core.deps import get_current_user, get_permit_matcher, get_volume_service
from fleet_permits.core.exceptions import PermitError, to_http_exception
from fleet_permits.schemas.permit import AllocationPlan, CurrentUser, PermitEntry, VolumeCheck, VolumeUpdate
from fleet_permits.services.permit_matcher import PermitMatcher
from fleet_permits.services.volume_service import VolumeService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/entries/match", response_model=PermitEntry)
def match_permit_entry(
    product: str,
    quantity: float = Query(..., gt=0, description="Required volume in liters"),
    destination: Optional[str] = None,
    matcher: PermitMatcher = Depends(get_permit_matcher),
):
    """Oldest permit entry that can cover the whole quantity"""
    try:
        entry = matcher.find_entry(product, destination, quantity)
    except PermitError as e:
        raise to_http_exception(e)
    if not entry:
        raise HTTPException(status_code=404, detail=f"No permit entry with {quantity}L of {product} available")
    return entry


@router.get("/entries/plan", response_model=AllocationPlan)
def plan_permit_entries(
    product: str,
    quantity: float = Query(..., gt=0, description="Required volume in liters"),
    destination: Optional[str] = None,
    matcher: PermitMatcher = Depends(get_permit_matcher),
):
    try:
        return matcher.find_entries(product, quantity, destination)
    except PermitError as e:
        raise to_http_exception(e)


@router.get("/volume/{entry_id}", response_model=VolumeCheck)
def check_entry_volumes(
    entry_id: str,
    volumes: VolumeService = Depends(get_volume_service),
):
    try:
        return volumes.check_entry_volumes(entry_id)
    except PermitError as e:
        raise to_http_exception(e)


@router.put("/volume/{entry_id}", response_model=VolumeCheck)
def update_entry_volume(
    entry_id: str,
    volume_data: VolumeUpdate,
    volumes: VolumeService = Depends(get_volume_service),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Authorized correction of an entry's remaining volume"""
    logger.info(f"Volume correction of entry {entry_id} to {volume_data.new_volume} by {current_user.email}")
    try:
        return volumes.update_entry_volume(entry_id, volume_data.new_volume)
    except PermitError as e:
        raise to_http_exception(e)

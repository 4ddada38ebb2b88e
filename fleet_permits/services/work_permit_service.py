# File: fleet_permits/services/work_permit_service.py
import logging
from typing import Optional

from fleet_permits.core.exceptions import PermitError
from fleet_permits.db.store import EntryStore
from fleet_permits.schemas.permit import AllocationResult, AutoAllocationSummary
from fleet_permits.services.permit_allocation_service import PermitAllocationService
from fleet_permits.services.permit_matcher import PermitMatcher
from fleet_permits.services.volume_service import VolumeService

logger = logging.getLogger(__name__)


class WorkPermitService:
    """Best-effort permit assignment for work orders.

    Order creation calls this as a side step, so permit scarcity is reported
    in the result instead of raised.
    """

    def __init__(self, store: EntryStore, volume_service: Optional[VolumeService] = None):
        self.store = store
        self.volumes = volume_service or VolumeService(store)
        self.matcher = PermitMatcher(store, self.volumes)
        self.allocations = PermitAllocationService(store, self.volumes)
        self.work_orders = self.allocations.work_orders

    def allocate_permit_for_work_order(self, work_order_id: str) -> AllocationResult:
        try:
            work_order = self.work_orders.get(work_order_id)
            if not work_order:
                return AllocationResult(success=False, error=f"Work order {work_order_id} not found")
            if work_order.permit_allocated:
                return AllocationResult(success=False, error="Work order already has a permit allocated")
            if work_order.loaded:
                return AllocationResult(success=False, error="Truck is already loaded")

            required = work_order.required_liters
            entry = self.matcher.find_entry(work_order.product, work_order.destination, required)
            if not entry:
                return AllocationResult(
                    success=False,
                    error=f"No permit entry with {required}L of {work_order.product} available for {work_order.destination}",
                )

            allocation = self.allocations.pre_allocate_permit_entry(
                truck_number=work_order.truck_number,
                product=work_order.product,
                owner=work_order.owner,
                permit_entry_id=entry.id,
                permit_number=entry.number,
                destination=work_order.destination,
                work_detail_id=work_order.id,
            )
            return AllocationResult(success=True, allocation=allocation)

        except PermitError as e:
            logger.error(f"Permit allocation failed for work order {work_order_id}: {e.message}")
            return AllocationResult(success=False, error=e.message)

    def allocate_pending_work_orders(self) -> AutoAllocationSummary:
        """Auto-allocate every unloaded work order without a permit, oldest first"""
        summary = AutoAllocationSummary()
        try:
            orders = [o for o in self.work_orders.get_all() if not o.loaded]
        except PermitError as e:
            logger.error(f"Could not load work orders for auto-allocation: {e.message}")
            summary.errors.append(e.message)
            return summary

        orders.sort(key=lambda o: (o.created_at or "", o.id))
        for order in orders:
            if order.permit_allocated:
                summary.skipped += 1
                continue

            result = self.allocate_permit_for_work_order(order.id)
            if result.success:
                summary.allocated += 1
            else:
                summary.failed += 1
                summary.errors.append(f"{order.id} ({order.truck_number}): {result.error}")

        logger.info(
            f"Auto-allocation finished: {summary.allocated} allocated, {summary.failed} failed, {summary.skipped} skipped"
        )
        return summary

# File: fleet_permits/services/permit_allocation_service.py
import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional

from fleet_permits.core.exceptions import (
    DuplicateAllocationError,
    EntryMismatchError,
    InsufficientVolumeError,
    InvalidVolumeError,
    NotFoundError,
)
from fleet_permits.core.locks import KeyedLock
from fleet_permits.core.timeutils import now_ms, utc_now_iso
from fleet_permits.crud import CRUDWorkOrder
from fleet_permits.db.store import PRE_ALLOCATIONS_PATH, EntryStore
from fleet_permits.schemas.permit import PreAllocation, ResetResult, WorkOrder, normalize_destination
from fleet_permits.services.volume_service import VolumeService

logger = logging.getLogger(__name__)

# Shared by every service instance in the process: one critical section per
# (truck, destination) for the check-then-write of pre-allocation.
_slot_locks = KeyedLock()


class PermitAllocationService:
    """Lifecycle of one truck/destination reservation against a permit entry.

    Unallocated -> Pending (pre-allocated) -> Used, with Pending -> Released
    going back to Unallocated. Each transition is a single atomic multi-path
    update so the allocation record and the work order never disagree.
    """

    def __init__(self, store: EntryStore, volume_service: Optional[VolumeService] = None):
        self.store = store
        self.volumes = volume_service or VolumeService(store)
        self.entries = self.volumes.entries
        self.pre_allocations = self.volumes.pre_allocations
        self.work_orders = CRUDWorkOrder(store)

    def check_existing_allocation(self, truck_number: str, destination: str) -> Optional[PreAllocation]:
        existing = self.pre_allocations.get_active_for_truck(truck_number, destination)
        if len(existing) > 1:
            logger.warning(
                f"Multiple active allocations found for {truck_number}/{destination}. Using first found: {existing[0].id}"
            )
        return existing[0] if existing else None

    def _resolve_work_order(self, truck_number: str, product: str, destination: str,
                            work_detail_id: Optional[str]) -> WorkOrder:
        if work_detail_id:
            work_order = self.work_orders.get(work_detail_id)
            if not work_order or work_order.truck_number != truck_number:
                raise NotFoundError(f"Work order {work_detail_id} for truck {truck_number} not found")
            if work_order.destination != destination or work_order.product.lower() != product.lower():
                raise EntryMismatchError(
                    f"Work order {work_detail_id} is for {work_order.product} to {work_order.destination}, "
                    f"not {product} to {destination}"
                )
            if work_order.loaded:
                raise NotFoundError(f"Work order {work_detail_id} is already loaded")
            return work_order

        work_order = self.work_orders.find_for_allocation(truck_number, destination, product)
        if not work_order:
            raise NotFoundError(f"No open work order for truck {truck_number} with {product} to {destination}")
        return work_order

    def pre_allocate_permit_entry(
        self,
        truck_number: str,
        product: str,
        owner: str,
        permit_entry_id: str,
        permit_number: str,
        destination: Optional[str] = None,
        work_detail_id: Optional[str] = None,
    ) -> PreAllocation:
        """Reserve the truck's load against a permit entry"""
        destination = normalize_destination(destination)

        with _slot_locks.hold((truck_number, destination)):
            existing = self.check_existing_allocation(truck_number, destination)
            if existing:
                raise DuplicateAllocationError(
                    f"Truck {truck_number} already has an active allocation to {destination} "
                    f"(permit {existing.permit_number})"
                )

            entry = self.entries.get(permit_entry_id)
            if not entry:
                raise NotFoundError(f"Permit entry {permit_entry_id} not found")
            if not entry.matches(product, destination):
                raise EntryMismatchError(
                    f"Permit entry {entry.number} is for {entry.product} to {entry.destination}, "
                    f"not {product} to {destination}"
                )
            if permit_number and entry.number and permit_number != entry.number:
                raise EntryMismatchError(f"Permit entry {permit_entry_id} has number {entry.number}, not {permit_number}")

            work_order = self._resolve_work_order(truck_number, product, destination, work_detail_id)

            required = work_order.required_liters
            if required <= 0:
                raise InvalidVolumeError(f"Work order {work_order.id} has no quantity to allocate")

            pre_allocated = self.volumes.pre_allocated_volume(entry.id)
            available = entry.remaining_quantity - pre_allocated
            if available < required:
                raise InsufficientVolumeError(
                    f"Insufficient volume. Available: {available}, Requested: {required}",
                    available=available,
                    requested=required,
                )

            timestamp = now_ms()
            allocation = PreAllocation(
                id=self.pre_allocations.new_id(truck_number, destination, timestamp),
                truck_number=truck_number,
                product=product,
                owner=owner,
                permit_entry_id=entry.id,
                permit_number=entry.number or permit_number,
                destination=destination,
                quantity=required,
                allocated_at=utc_now_iso(),
                used=False,
                work_detail_id=work_order.id,
                timestamp=timestamp,
            )

            updates: Dict[str, Any] = {self.pre_allocations.path(allocation.id): allocation.to_store()}
            updates.update(self.work_orders.permit_field_updates(work_order.id, entry, destination))
            updates.update(self.volumes.cache_updates(entry.id, pre_allocated + required))
            self.store.atomic_update(updates)

        logger.info(
            f"Pre-allocated {required}L of permit {allocation.permit_number} to truck {truck_number} ({destination})"
        )
        return allocation

    def linked_work_orders(self, allocation: PreAllocation) -> List[WorkOrder]:
        """Work orders whose permit fields point at this allocation"""
        if allocation.work_detail_id:
            work_order = self.work_orders.get(allocation.work_detail_id)
            candidates = [work_order] if work_order else []
        else:
            candidates = self.work_orders.get_by_truck(allocation.truck_number)

        return [
            order for order in candidates
            if order.destination == allocation.destination
            and order.permit_allocated
            and order.permit_entry_id in (None, allocation.permit_entry_id)
        ]

    def _release_updates(self, allocations: List[PreAllocation]) -> Dict[str, Any]:
        updates: Dict[str, Any] = {}
        released_by_entry: Dict[str, float] = defaultdict(float)

        for allocation in allocations:
            updates[self.pre_allocations.path(allocation.id)] = None
            for work_order in self.linked_work_orders(allocation):
                updates.update(self.work_orders.clear_permit_field_updates(work_order.id))
            if allocation.is_active:
                released_by_entry[allocation.permit_entry_id] += allocation.quantity

        for entry_id, released in released_by_entry.items():
            if self.entries.get(entry_id) is not None:
                remaining_reserved = self.volumes.pre_allocated_volume(entry_id) - released
                updates.update(self.volumes.cache_updates(entry_id, remaining_reserved))
        return updates

    def release_pre_allocation(self, pre_allocation_id: str, destination: Optional[str] = None) -> PreAllocation:
        """Drop a pending reservation, e.g. truck reassigned or order cancelled"""
        allocation = self.pre_allocations.get(pre_allocation_id)
        if not allocation:
            raise NotFoundError(f"Pre-allocation {pre_allocation_id} not found")
        if destination is not None and normalize_destination(destination) != allocation.destination:
            raise NotFoundError(
                f"Pre-allocation {pre_allocation_id} is for {allocation.destination}, not {normalize_destination(destination)}"
            )

        self.store.atomic_update(self._release_updates([allocation]))
        logger.info(f"Released pre-allocation {pre_allocation_id} of truck {allocation.truck_number} ({allocation.destination})")
        return allocation

    def reset_truck_allocation(self, truck_number: str, destination: Optional[str] = None) -> int:
        """Release every active allocation of a truck, optionally for one destination"""
        allocations = self.pre_allocations.get_active_for_truck(truck_number, destination)
        if not allocations:
            logger.info(f"No active allocations to reset for truck {truck_number}")
            return 0

        self.store.atomic_update(self._release_updates(allocations))
        logger.info(f"Reset {len(allocations)} allocation(s) for truck {truck_number}")
        return len(allocations)

    def mark_permit_as_used(self, pre_allocation_id: str) -> PreAllocation:
        """Truck loaded: the reservation is consumed and leaves the working set.

        No history of used allocations is kept here, the loaded work order
        is the durable record.
        """
        allocation = self.pre_allocations.get(pre_allocation_id)
        if not allocation:
            raise NotFoundError(f"Pre-allocation {pre_allocation_id} not found")

        used = allocation.model_copy(update={"used": True, "used_at": utc_now_iso()})
        updates: Dict[str, Any] = {self.pre_allocations.path(allocation.id): None}
        if allocation.is_active and self.entries.get(allocation.permit_entry_id) is not None:
            remaining_reserved = self.volumes.pre_allocated_volume(allocation.permit_entry_id) - allocation.quantity
            updates.update(self.volumes.cache_updates(allocation.permit_entry_id, remaining_reserved))

        self.store.atomic_update(updates)
        logger.info(f"Permit {allocation.permit_number} used by truck {allocation.truck_number}")
        return used

    def update_permit_allocation(self, pre_allocation_id: str, new_quantity: float) -> PreAllocation:
        """Correct the quantity of a pending allocation without changing its state"""
        if new_quantity <= 0:
            raise InvalidVolumeError(f"Allocation quantity must be positive, got {new_quantity}")

        allocation = self.pre_allocations.get(pre_allocation_id)
        if not allocation:
            raise NotFoundError(f"Pre-allocation {pre_allocation_id} not found")

        with _slot_locks.hold(allocation.slot):
            # Re-read inside the critical section
            allocation = self.pre_allocations.get(pre_allocation_id)
            if not allocation:
                raise NotFoundError(f"Pre-allocation {pre_allocation_id} not found")
            if not allocation.is_active:
                raise InvalidVolumeError(f"Pre-allocation {pre_allocation_id} is already used")

            entry = self.volumes.get_entry(allocation.permit_entry_id)
            pre_allocated = self.volumes.pre_allocated_volume(entry.id)
            delta = new_quantity - allocation.quantity
            available = entry.remaining_quantity - pre_allocated
            if delta > 0 and available < delta:
                raise InsufficientVolumeError(
                    f"Insufficient volume. Available: {available}, Requested increase: {delta}",
                    available=available,
                    requested=delta,
                )

            updates: Dict[str, Any] = {self.pre_allocations.path(allocation.id, "quantity"): new_quantity}
            updates.update(self.volumes.cache_updates(entry.id, pre_allocated + delta))
            self.store.atomic_update(updates)

        logger.info(f"Allocation {pre_allocation_id} quantity changed from {allocation.quantity} to {new_quantity}")
        return allocation.model_copy(update={"quantity": new_quantity})

    def reset_permit_system(self) -> ResetResult:
        """Drop every pre-allocation and clear all permit flags"""
        allocations = self.pre_allocations.get_all()
        if not allocations:
            return ResetResult(success=True, message="No pre-allocations to reset", released=0)

        updates: Dict[str, Any] = {PRE_ALLOCATIONS_PATH: None}
        for entry_id in {a.permit_entry_id for a in allocations}:
            if self.entries.get(entry_id) is not None:
                updates.update(self.volumes.cache_updates(entry_id, 0))
        for allocation in allocations:
            for work_order in self.linked_work_orders(allocation):
                updates.update(self.work_orders.clear_permit_field_updates(work_order.id))

        self.store.atomic_update(updates)
        logger.warning(f"Permit system reset: {len(allocations)} pre-allocations removed")
        return ResetResult(success=True, message="Permit system reset successfully", released=len(allocations))

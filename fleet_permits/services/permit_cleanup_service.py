# File: fleet_permits/services/permit_cleanup_service.py
import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional

from fleet_permits.core.config import settings
from fleet_permits.core.exceptions import PermitError, ValidationError
from fleet_permits.core.timeutils import iso_to_ms
from fleet_permits.db.store import EntryStore
from fleet_permits.schemas.permit import CleanupResult, MaintenanceResult, PreAllocation, WorkOrder
from fleet_permits.services.permit_allocation_service import PermitAllocationService
from fleet_permits.services.volume_service import VolumeService

logger = logging.getLogger(__name__)

# Machine-readable violation codes
UNREADABLE_RECORD = "UNREADABLE_RECORD"
NON_POSITIVE_QUANTITY = "NON_POSITIVE_QUANTITY"
UNKNOWN_PERMIT = "UNKNOWN_PERMIT"
UNKNOWN_ENTRY = "UNKNOWN_ENTRY"
OVER_ALLOCATED = "OVER_ALLOCATED"
CONSERVATION_VIOLATED = "CONSERVATION_VIOLATED"
LOADED_TRUCK = "LOADED_TRUCK"
DUPLICATE_ALLOCATION = "DUPLICATE_ALLOCATION"


def _creation_order(allocation: PreAllocation):
    created = allocation.timestamp or iso_to_ms(allocation.allocated_at)
    # Records with no time at all go last
    return (created is None, created or 0, allocation.id)


class _WorkOrderIndex:
    """Work orders looked up by id and by truck, read once per batch run"""

    def __init__(self, orders: List[WorkOrder]):
        self.by_id = {o.id: o for o in orders}
        self.by_truck: Dict[str, List[WorkOrder]] = defaultdict(list)
        for order in orders:
            self.by_truck[order.truck_number].append(order)

    def has_truck(self, truck_number: str) -> bool:
        return bool(self.by_truck.get(truck_number))

    def is_loaded(self, allocation: PreAllocation) -> bool:
        linked = self.by_id.get(allocation.work_detail_id) if allocation.work_detail_id else None
        if linked:
            return linked.loaded

        orders = [o for o in self.by_truck.get(allocation.truck_number, []) if o.destination == allocation.destination]
        # A truck with another open order to the same destination still needs its permit
        return any(o.loaded for o in orders) and not any(not o.loaded for o in orders)


class PermitCleanupService:
    """Batch audit and repair of the pre-allocation working set.

    Every routine works from a point-in-time read and only deletes records
    already judged invalid, so it can run next to live allocation traffic.
    Failures are collected per batch instead of stopping the run.
    """

    def __init__(self, store: EntryStore, volume_service: Optional[VolumeService] = None):
        self.store = store
        self.volumes = volume_service or VolumeService(store)
        self.allocations = PermitAllocationService(store, self.volumes)
        self.entries = self.volumes.entries
        self.pre_allocations = self.volumes.pre_allocations
        self.work_orders = self.allocations.work_orders

    def _apply_in_batches(self, groups: List[Dict[str, Any]], errors: List[str]) -> int:
        """Write record-level update groups in batches; returns how many groups were applied"""
        applied = 0
        batch_size = max(1, settings.CLEANUP_BATCH_SIZE)
        for start in range(0, len(groups), batch_size):
            batch = groups[start:start + batch_size]
            updates: Dict[str, Any] = {}
            for group in batch:
                updates.update(group)
            try:
                self.store.atomic_update(updates)
                applied += len(batch)
            except PermitError as e:
                message = f"Batch {start // batch_size + 1} failed: {e.message}"
                logger.error(message)
                errors.append(message)
        return applied

    def refresh_cached_volumes(self, errors: Optional[List[str]] = None) -> int:
        """Rewrite drifted preAllocatedQuantity caches from the active allocations"""
        errors = errors if errors is not None else []
        totals = self.volumes.pre_allocated_totals(self.pre_allocations.get_active())
        groups = [
            self.volumes.cache_updates(entry.id, totals.get(entry.id, 0.0))
            for entry in self.entries.get_all()
            if abs(entry.pre_allocated_quantity - totals.get(entry.id, 0.0)) > 1e-9
        ]
        if not groups:
            return 0
        return self._apply_in_batches(groups, errors)

    def cleanup_duplicate_allocations(self) -> CleanupResult:
        """Remove non-positive allocations and extra active allocations per truck and destination.

        Records are taken in creation order (timestamp, else allocatedAt, then
        key), so the oldest reservation of a (truck, destination) slot wins.
        """
        result = CleanupResult()
        allocations = sorted(self.pre_allocations.get_all(result.errors), key=_creation_order)

        survivors: Dict[Any, PreAllocation] = {}
        for allocation in allocations:
            if allocation.is_active and allocation.quantity > 0:
                survivors.setdefault(allocation.slot, allocation)
        live = list(survivors.values())
        live_links = {a.work_detail_id for a in live if a.work_detail_id}
        live_unlinked_slots = {a.slot for a in live if not a.work_detail_id}

        invalid: List[Dict[str, Any]] = []
        duplicates: List[Dict[str, Any]] = []
        seen = set()
        for allocation in allocations:
            path = self.pre_allocations.path(allocation.id)
            if allocation.quantity <= 0:
                group: Dict[str, Any] = {path: None}
                for order in self._orders_for_invalid(allocation, result.errors):
                    # Still held by a live reservation of the same slot
                    if order.id in live_links or allocation.slot in live_unlinked_slots:
                        continue
                    group.update(self.work_orders.clear_permit_field_updates(order.id))
                invalid.append(group)
                logger.warning(f"Removing allocation {allocation.id} with invalid quantity {allocation.quantity}")
            elif not allocation.is_active:
                continue
            elif allocation.slot in seen:
                duplicates.append({path: None})
                logger.warning(
                    f"Removing duplicate allocation {allocation.id} for {allocation.truck_number}/{allocation.destination}"
                )
            else:
                seen.add(allocation.slot)

        result.invalid_removed = self._apply_in_batches(invalid, result.errors)
        result.duplicates_removed = self._apply_in_batches(duplicates, result.errors)
        if result.invalid_removed or result.duplicates_removed:
            self.refresh_cached_volumes(result.errors)

        logger.info(
            f"Duplicate cleanup: {result.duplicates_removed} duplicates, {result.invalid_removed} invalid removed"
        )
        return result

    def _orders_for_invalid(self, allocation: PreAllocation, errors: List[str]) -> List[WorkOrder]:
        try:
            linked = self.allocations.linked_work_orders(allocation)
        except PermitError as e:
            errors.append(e.message)
            return []
        if linked or allocation.work_detail_id:
            return linked
        order = self.work_orders.find_for_allocation(allocation.truck_number, allocation.destination, allocation.product)
        return [order] if order and order.permit_allocated else []

    def _cleanup_where(self, predicate, reason: str) -> MaintenanceResult:
        result = MaintenanceResult()
        allocations = self.pre_allocations.get_all(result.errors)
        index = _WorkOrderIndex(self.work_orders.get_all())

        groups = []
        for allocation in allocations:
            if predicate(allocation, index):
                groups.append({self.pre_allocations.path(allocation.id): None})
                logger.info(f"Removing allocation {allocation.id} of truck {allocation.truck_number}: {reason}")

        result.removed = self._apply_in_batches(groups, result.errors)
        if result.removed:
            self.refresh_cached_volumes(result.errors)
        return result

    def cleanup_loaded_trucks(self) -> MaintenanceResult:
        result = self._cleanup_where(lambda a, index: index.is_loaded(a), "truck loaded")
        logger.info(f"Loaded-truck cleanup removed {result.removed} allocation(s)")
        return result

    def cleanup_orphaned_allocations(self) -> MaintenanceResult:
        result = self._cleanup_where(
            lambda a, index: a.is_active and not index.has_truck(a.truck_number), "no work order for truck"
        )
        logger.info(f"Orphan cleanup removed {result.removed} allocation(s)")
        return result

    def consolidate_permit_allocations(self, truck_number: Optional[str] = None, product: Optional[str] = None) -> int:
        """Merge active allocations split over several records for the same truck, product, destination and entry"""
        allocations = self.pre_allocations.get_active()
        if truck_number:
            allocations = [a for a in allocations if a.truck_number == truck_number]
        if product:
            allocations = [a for a in allocations if a.product.lower() == product.lower()]

        grouped: Dict[tuple, List[PreAllocation]] = defaultdict(list)
        for allocation in allocations:
            key = (allocation.truck_number, allocation.product.lower(), allocation.destination, allocation.permit_entry_id)
            grouped[key].append(allocation)

        groups = []
        merged_away = 0
        for records in grouped.values():
            if len(records) < 2:
                continue
            keeper, extras = records[0], records[1:]
            group: Dict[str, Any] = {
                self.pre_allocations.path(keeper.id, "quantity"): sum(r.quantity for r in records),
            }
            for extra in extras:
                group[self.pre_allocations.path(extra.id)] = None
            groups.append(group)
            merged_away += len(extras)
            logger.info(f"Consolidating {len(records)} allocations of truck {keeper.truck_number} into {keeper.id}")

        if not groups:
            return 0

        errors: List[str] = []
        self._apply_in_batches(groups, errors)
        if errors:
            # Partially applied batches; report only what is gone
            remaining = {a.id for a in self.pre_allocations.get_active()}
            merged_away = sum(1 for records in grouped.values() for r in records[1:] if r.id not in remaining)
        return merged_away

    def find_violations(self) -> List[ValidationError]:
        """Read-only consistency report over active allocations"""
        parse_errors: List[str] = []
        allocations = self.pre_allocations.get_all(parse_errors)
        entries = self.entries.get_all(parse_errors)
        index = _WorkOrderIndex(self.work_orders.get_all())

        violations = [ValidationError(UNREADABLE_RECORD, message) for message in parse_errors]
        entries_by_id = {e.id: e for e in entries}
        known_numbers = {e.number for e in entries if e.number}
        seen = set()

        for allocation in allocations:
            if not allocation.is_active:
                continue
            label = f"Allocation {allocation.id} (truck {allocation.truck_number}, {allocation.destination})"

            if allocation.quantity <= 0:
                violations.append(ValidationError(
                    NON_POSITIVE_QUANTITY, f"{label} has non-positive quantity {allocation.quantity}", allocation.id
                ))

            entry = entries_by_id.get(allocation.permit_entry_id)
            if allocation.permit_number not in known_numbers:
                violations.append(ValidationError(
                    UNKNOWN_PERMIT, f"{label} references nonexistent permit {allocation.permit_number}", allocation.id
                ))
            elif entry is None:
                violations.append(ValidationError(
                    UNKNOWN_ENTRY, f"{label} references missing entry {allocation.permit_entry_id}", allocation.id
                ))

            if entry is not None and allocation.quantity > entry.remaining_quantity:
                violations.append(ValidationError(
                    OVER_ALLOCATED,
                    f"{label} quantity {allocation.quantity} exceeds permit {entry.number} remaining {entry.remaining_quantity}",
                    allocation.id,
                ))

            if index.is_loaded(allocation):
                violations.append(ValidationError(
                    LOADED_TRUCK, f"{label} is still active but the truck is loaded", allocation.id
                ))

            if allocation.slot in seen:
                violations.append(ValidationError(
                    DUPLICATE_ALLOCATION, f"{label} is a second active allocation for the same truck and destination",
                    allocation.id,
                ))
            seen.add(allocation.slot)

        totals = self.volumes.pre_allocated_totals(allocations)
        for entry_id, reserved in totals.items():
            entry = entries_by_id.get(entry_id)
            if entry is not None and reserved > entry.remaining_quantity:
                violations.append(ValidationError(
                    CONSERVATION_VIOLATED,
                    f"Permit {entry.number} ({entry_id}) has {reserved} pre-allocated but only {entry.remaining_quantity} remaining",
                ))

        if violations:
            logger.warning(f"Allocation validation found {len(violations)} issue(s)")
        return violations

    def validate_allocations(self) -> List[str]:
        return [v.message for v in self.find_violations()]

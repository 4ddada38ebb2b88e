# File: fleet_permits/services/volume_service.py
import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, Optional

from fleet_permits.core.exceptions import InvalidVolumeError, NotFoundError
from fleet_permits.core.timeutils import utc_now_iso
from fleet_permits.crud import CRUDPermitEntry, CRUDPreAllocation
from fleet_permits.db.store import EntryStore
from fleet_permits.schemas.permit import PermitEntry, PreAllocation, VolumeCheck

logger = logging.getLogger(__name__)


class VolumeService:
    """Single source of truth for how much of a permit entry is left.

    Available volume is always recomputed from the active pre-allocations;
    the entry's ``preAllocatedQuantity`` field is only a display cache.
    """

    def __init__(self, store: EntryStore):
        self.store = store
        self.entries = CRUDPermitEntry(store)
        self.pre_allocations = CRUDPreAllocation(store)

    def get_entry(self, entry_id: str) -> PermitEntry:
        entry = self.entries.get(entry_id)
        if not entry:
            raise NotFoundError(f"Permit entry {entry_id} not found")
        return entry

    def pre_allocated_volume(self, entry_id: str) -> float:
        return sum(a.quantity for a in self.pre_allocations.get_active_for_entry(entry_id))

    @staticmethod
    def pre_allocated_totals(allocations: Iterable[PreAllocation]) -> Dict[str, float]:
        """Active pre-allocated volume per entry id"""
        totals: Dict[str, float] = defaultdict(float)
        for allocation in allocations:
            if allocation.is_active:
                totals[allocation.permit_entry_id] += allocation.quantity
        return dict(totals)

    def available_volume(self, entry_id: str, entry: Optional[PermitEntry] = None) -> float:
        """Remaining quantity minus active reservations. Negative means over-allocated."""
        entry = entry or self.get_entry(entry_id)
        return entry.remaining_quantity - self.pre_allocated_volume(entry_id)

    def check_entry_volumes(self, entry_id: str) -> VolumeCheck:
        entry = self.get_entry(entry_id)
        pre_allocated = self.pre_allocated_volume(entry_id)
        remaining = entry.remaining_quantity - pre_allocated
        consumed = max(0.0, entry.initial_quantity - entry.remaining_quantity) if entry.initial_quantity else 0.0

        return VolumeCheck(
            entry_id=entry_id,
            available=entry.remaining_quantity,
            allocated=consumed,
            pre_allocated=pre_allocated,
            remaining=remaining,
            is_valid=remaining >= 0,
        )

    def cache_updates(self, entry_id: str, pre_allocated: float) -> Dict[str, Any]:
        """Paths that refresh an entry's advisory pre-allocated cache"""
        return {
            self.entries.path(entry_id, "preAllocatedQuantity"): max(0.0, pre_allocated),
            self.entries.path(entry_id, "lastUpdated"): utc_now_iso(),
        }

    def update_entry_volume(self, entry_id: str, new_volume: float) -> VolumeCheck:
        """Authorized correction of an entry's remaining quantity.

        Never below what is currently pre-allocated against the entry.
        """
        if new_volume < 0:
            raise InvalidVolumeError(f"Volume cannot be negative ({new_volume})")

        self.get_entry(entry_id)
        pre_allocated = self.pre_allocated_volume(entry_id)
        if new_volume < pre_allocated:
            raise InvalidVolumeError(
                f"New volume ({new_volume}) cannot be less than pre-allocated volume ({pre_allocated})"
            )

        now = utc_now_iso()
        updates = {
            self.entries.path(entry_id, "remainingQuantity"): new_volume,
            self.entries.path(entry_id, "preAllocatedQuantity"): pre_allocated,
            self.entries.path(entry_id, "lastUpdated"): now,
        }
        # Keep the canonical record in step, otherwise the next sync reverts the edit
        if self.entries.get_canonical(entry_id) is not None:
            updates[self.entries.canonical_path(entry_id, "remainingQuantity")] = new_volume
            updates[self.entries.canonical_path(entry_id, "lastUpdated")] = now

        self.store.atomic_update(updates)
        logger.info(f"Updated volume of permit entry {entry_id} to {new_volume}")
        return self.check_entry_volumes(entry_id)

# File: fleet_permits/services/permit_matcher.py
import logging
from typing import List, Optional, Tuple

from fleet_permits.core.config import settings
from fleet_permits.db.store import EntryStore
from fleet_permits.schemas.permit import AllocationPlan, AllocationPlanItem, PermitEntry, normalize_destination
from fleet_permits.services.volume_service import VolumeService

logger = logging.getLogger(__name__)


class PermitMatcher:
    """Finds permit entries with room for a load, oldest entry first"""

    def __init__(self, store: EntryStore, volume_service: Optional[VolumeService] = None):
        self.store = store
        self.volumes = volume_service or VolumeService(store)

    def _candidates(self, product: str, destination: Optional[str]) -> List[Tuple[PermitEntry, float]]:
        """(entry, available volume) for every entry of the product and destination, FIFO order"""
        destination = normalize_destination(destination or settings.default_destination)
        totals = self.volumes.pre_allocated_totals(self.volumes.pre_allocations.get_active())

        candidates = [
            (entry, entry.remaining_quantity - totals.get(entry.id, 0.0))
            for entry in self.volumes.entries.get_all()
            if entry.matches(product, destination)
        ]
        # Ties on timestamp fall back to the entry id so the choice is stable
        candidates.sort(key=lambda c: (c[0].timestamp, c[0].id))
        return candidates

    def find_entry(self, product: str, destination: Optional[str], required_quantity: float) -> Optional[PermitEntry]:
        for entry, available in self._candidates(product, destination):
            if available >= required_quantity and available > 0:
                return entry

        logger.info(f"No permit entry of {product} to {destination or settings.default_destination} has {required_quantity} available")
        return None

    def find_entries(self, product: str, required_quantity: float, destination: Optional[str] = None) -> AllocationPlan:
        """Greedy split across entries when no single entry covers the requirement.

        A plan whose total falls short is partial fulfilment, not an error.
        """
        destination = normalize_destination(destination or settings.default_destination)
        outstanding = required_quantity
        items: List[AllocationPlanItem] = []

        for entry, available in self._candidates(product, destination):
            if outstanding <= 0:
                break
            if available <= 0:
                continue
            take = min(available, outstanding)
            items.append(AllocationPlanItem(entry=entry, quantity=take))
            outstanding -= take

        total = sum(item.quantity for item in items)
        return AllocationPlan(
            product=product,
            destination=destination,
            required=required_quantity,
            total=total,
            complete=total >= required_quantity,
            items=items,
        )

# File: fleet_permits/services/allocation_sync_service.py
import logging
from typing import Any, Dict, Optional

from fleet_permits.core.exceptions import PermitError
from fleet_permits.crud import CRUDPermitEntry
from fleet_permits.db.store import EntryStore
from fleet_permits.schemas.permit import SyncResult, normalize_destination

logger = logging.getLogger(__name__)


def _quantity(value: Any) -> Optional[float]:
    if value is None or value == "":
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class AllocationSyncService:
    """One-way sync from the canonical entries (tr800) to the working view (allocations).

    Only writes what differs, so a second run with no canonical change is a no-op.
    """

    def __init__(self, store: EntryStore):
        self.store = store
        self.entries = CRUDPermitEntry(store)

    def _entry_updates(self, entry_id: str, canonical: Dict[str, Any], derived: Optional[Dict[str, Any]]):
        """(updates, added, updated) bringing one derived record in line with its canonical record"""
        if derived is None:
            record = dict(canonical)
            record["destination"] = normalize_destination(canonical.get("destination"))
            return {self.entries.path(entry_id): record}, 1, 0

        updates: Dict[str, Any] = {}
        canonical_remaining = _quantity(canonical.get("remainingQuantity"))
        if canonical_remaining is None:
            logger.warning(f"Canonical entry {entry_id} has unreadable remainingQuantity, skipping")
        elif _quantity(derived.get("remainingQuantity")) != canonical_remaining:
            updates[self.entries.path(entry_id, "remainingQuantity")] = canonical_remaining
        if not derived.get("destination"):
            updates[self.entries.path(entry_id, "destination")] = normalize_destination(canonical.get("destination"))
        return updates, 0, 1 if updates else 0

    def sync_allocations_to_entries_db(self) -> SyncResult:
        try:
            canonical = self.entries.get_raw_canonical()
            view = self.entries.get_raw_view()

            updates: Dict[str, Any] = {}
            added = updated = removed = 0
            for entry_id, record in canonical.items():
                if not isinstance(record, dict):
                    logger.warning(f"Skipping malformed canonical entry {entry_id}")
                    continue
                derived = view.get(entry_id)
                entry_updates, was_added, was_updated = self._entry_updates(
                    entry_id, record, derived if isinstance(derived, dict) else None
                )
                updates.update(entry_updates)
                added += was_added
                updated += was_updated

            for entry_id in view:
                if entry_id not in canonical:
                    updates[self.entries.path(entry_id)] = None
                    removed += 1

            if not updates:
                return SyncResult(success=True, message="Allocations already in sync")

            self.store.atomic_update(updates)
            message = f"Synced allocations: {added} added, {updated} updated, {removed} removed"
            logger.info(message)
            return SyncResult(success=True, message=message, added=added, updated=updated, removed=removed)

        except PermitError as e:
            logger.error(f"Error syncing allocations: {e.message}")
            return SyncResult(success=False, message=f"Sync failed: {e.message}")

    def ensure_entry_in_allocations(self, entry_id: str) -> SyncResult:
        """Bring a single entry into the working view, e.g. right after it is registered"""
        try:
            canonical = self.entries.get_canonical(entry_id)
            if canonical is None:
                return SyncResult(success=False, message=f"Entry {entry_id} not found in canonical entries")

            derived = self.store.get(self.entries.path(entry_id))
            updates, added, updated = self._entry_updates(
                entry_id, canonical, derived if isinstance(derived, dict) else None
            )
            if not updates:
                return SyncResult(success=True, message=f"Entry {entry_id} already in allocations")

            self.store.atomic_update(updates)
            logger.info(f"Entry {entry_id} {'added to' if added else 'updated in'} allocations")
            return SyncResult(
                success=True,
                message=f"Entry {entry_id} {'added to' if added else 'updated in'} allocations",
                added=added,
                updated=updated,
            )

        except PermitError as e:
            logger.error(f"Error ensuring entry {entry_id} in allocations: {e.message}")
            return SyncResult(success=False, message=f"Sync failed: {e.message}")

# File: fleet_permits/crud/pre_allocation.py
import logging
import secrets
from typing import List, Optional

from pydantic import ValidationError as SchemaError

from fleet_permits.core.exceptions import UnreadableRecordError
from fleet_permits.db.store import PRE_ALLOCATIONS_PATH, EntryStore, join_path, safe_key
from fleet_permits.schemas.permit import PreAllocation, normalize_destination

logger = logging.getLogger(__name__)


class CRUDPreAllocation:

    def __init__(self, store: EntryStore):
        self.store = store

    @staticmethod
    def path(allocation_id: str, field: Optional[str] = None) -> str:
        return join_path(PRE_ALLOCATIONS_PATH, allocation_id, field)

    @staticmethod
    def new_id(truck_number: str, destination: str, timestamp_ms: int) -> str:
        """Key built from the truck, destination and time, no central counter.

        Keys of one truck and destination sort in creation order.
        """
        return f"{safe_key(truck_number)}-{safe_key(destination)}-{timestamp_ms:013d}-{secrets.token_hex(3)}"

    def get(self, allocation_id: str) -> Optional[PreAllocation]:
        data = self.store.get(self.path(allocation_id))
        if not isinstance(data, dict):
            return None
        try:
            return PreAllocation.from_store(allocation_id, data)
        except (SchemaError, TypeError) as e:
            raise UnreadableRecordError(f"Pre-allocation {allocation_id} is unreadable: {e}")

    def _parse(self, records, errors: Optional[List[str]] = None) -> List[PreAllocation]:
        allocations = []
        for key, data in records.items():
            try:
                allocations.append(PreAllocation.from_store(key, data))
            except (SchemaError, TypeError) as e:
                message = f"Skipping unreadable pre-allocation {key}: {e}"
                logger.warning(message)
                if errors is not None:
                    errors.append(message)
        return allocations

    def get_all(self, errors: Optional[List[str]] = None) -> List[PreAllocation]:
        return self._parse(self.store.get_children(PRE_ALLOCATIONS_PATH), errors)

    def get_active(self, errors: Optional[List[str]] = None) -> List[PreAllocation]:
        return [a for a in self.get_all(errors) if a.is_active]

    def get_by_truck(self, truck_number: str) -> List[PreAllocation]:
        records = self.store.query_by_field(PRE_ALLOCATIONS_PATH, "truckNumber", truck_number)
        return self._parse(records)

    def get_active_for_truck(self, truck_number: str, destination: Optional[str] = None) -> List[PreAllocation]:
        allocations = [a for a in self.get_by_truck(truck_number) if a.is_active]
        if destination is not None:
            wanted = normalize_destination(destination)
            allocations = [a for a in allocations if a.destination == wanted]
        return allocations

    def get_active_for_entry(self, entry_id: str) -> List[PreAllocation]:
        records = self.store.query_by_field(PRE_ALLOCATIONS_PATH, "permitEntryId", entry_id)
        return [a for a in self._parse(records) if a.is_active]

# File: fleet_permits/crud/work_order.py
import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as SchemaError

from fleet_permits.core.exceptions import UnreadableRecordError
from fleet_permits.db.store import WORK_DETAILS_PATH, EntryStore, join_path
from fleet_permits.schemas.permit import PermitEntry, WorkOrder, normalize_destination

logger = logging.getLogger(__name__)


class CRUDWorkOrder:

    def __init__(self, store: EntryStore):
        self.store = store

    @staticmethod
    def path(work_order_id: str, field: Optional[str] = None) -> str:
        return join_path(WORK_DETAILS_PATH, work_order_id, field)

    def get(self, work_order_id: str) -> Optional[WorkOrder]:
        data = self.store.get(self.path(work_order_id))
        if not isinstance(data, dict):
            return None
        try:
            return WorkOrder.from_store(work_order_id, data)
        except (SchemaError, TypeError) as e:
            raise UnreadableRecordError(f"Work order {work_order_id} is unreadable: {e}")

    def _parse(self, records) -> List[WorkOrder]:
        orders = []
        for key, data in records.items():
            try:
                orders.append(WorkOrder.from_store(key, data))
            except (SchemaError, TypeError) as e:
                logger.warning(f"Skipping unreadable work order {key}: {e}")
        return orders

    def get_all(self) -> List[WorkOrder]:
        return self._parse(self.store.get_children(WORK_DETAILS_PATH))

    def get_by_truck(self, truck_number: str) -> List[WorkOrder]:
        return self._parse(self.store.query_by_field(WORK_DETAILS_PATH, "truck_number", truck_number))

    def find_for_allocation(self, truck_number: str, destination: str, product: Optional[str] = None) -> Optional[WorkOrder]:
        """The truck's unloaded work order for a destination, preferring one without a permit"""
        wanted = normalize_destination(destination)
        candidates = [
            order for order in self.get_by_truck(truck_number)
            if order.destination == wanted
            and not order.loaded
            and (product is None or order.product.lower() == product.lower())
        ]
        if not candidates:
            return None
        candidates.sort(key=lambda o: o.permit_allocated)
        return candidates[0]

    def permit_field_updates(self, work_order_id: str, entry: PermitEntry, destination: str) -> Dict[str, Any]:
        return {
            self.path(work_order_id, "permitAllocated"): True,
            self.path(work_order_id, "permitNumber"): entry.number,
            self.path(work_order_id, "permitEntryId"): entry.id,
            self.path(work_order_id, "permitDestination"): normalize_destination(destination),
        }

    def clear_permit_field_updates(self, work_order_id: str) -> Dict[str, Any]:
        return {
            self.path(work_order_id, "permitAllocated"): False,
            self.path(work_order_id, "permitNumber"): None,
            self.path(work_order_id, "permitEntryId"): None,
            self.path(work_order_id, "permitDestination"): None,
        }

# File: fleet_permits/services/active_permit_service.py
from typing import List, Optional

from fleet_permits.core.exceptions import NotFoundError
from fleet_permits.crud import CRUDPreAllocation, CRUDWorkOrder
from fleet_permits.db.store import EntryStore
from fleet_permits.schemas.permit import PreAllocation, WorkOrderWithAllocations, normalize_destination


class ActivePermitService:
    """Read-side queries for the permit dashboards"""

    def __init__(self, store: EntryStore):
        self.store = store
        self.pre_allocations = CRUDPreAllocation(store)
        self.work_orders = CRUDWorkOrder(store)

    def get_active_pre_allocations(
        self,
        destination: Optional[str] = None,
        product: Optional[str] = None,
        owner: Optional[str] = None,
    ) -> List[PreAllocation]:
        allocations = self.pre_allocations.get_active()
        if destination:
            wanted = normalize_destination(destination)
            allocations = [a for a in allocations if a.destination == wanted]
        if product:
            allocations = [a for a in allocations if a.product.lower() == product.lower()]
        if owner:
            allocations = [a for a in allocations if a.owner.lower() == owner.lower()]

        # Newest first
        allocations.sort(key=lambda a: (a.allocated_at, a.id), reverse=True)
        return allocations

    def get_work_order_with_allocations(self, work_order_id: str) -> WorkOrderWithAllocations:
        work_order = self.work_orders.get(work_order_id)
        if not work_order:
            raise NotFoundError(f"Work order {work_order_id} not found")

        allocations = [
            a for a in self.pre_allocations.get_active_for_truck(work_order.truck_number)
            if a.work_detail_id == work_order.id
            or (a.work_detail_id is None and a.destination == work_order.destination)
        ]
        return WorkOrderWithAllocations(work_order=work_order, pre_allocations=allocations)

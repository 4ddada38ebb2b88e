from .permit_entry import CRUDPermitEntry
from .pre_allocation import CRUDPreAllocation
from .work_order import CRUDWorkOrder

__all__ = ["CRUDPermitEntry", "CRUDPreAllocation", "CRUDWorkOrder"]

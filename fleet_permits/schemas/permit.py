# File: fleet_permits/schemas/permit.py
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

from fleet_permits.core.config import settings


def normalize_destination(value: Any) -> str:
    """Lower-cased destination, legacy records without one belong to the default"""
    if value is None or str(value).strip() == "":
        return settings.default_destination
    return str(value).strip().lower()


def _number(value: Any) -> Any:
    if value is None or (isinstance(value, str) and value.strip() == ""):
        return 0
    return value


Destination = Annotated[str, BeforeValidator(normalize_destination)]
Quantity = Annotated[float, BeforeValidator(_number)]


class LedgerModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_store(self) -> Dict[str, Any]:
        """Record as written to the store: aliased keys, no nulls, no id"""
        return self.model_dump(by_alias=True, exclude_none=True, exclude={"id"})


# ---------------------------
# Stored records
# ---------------------------

class PermitEntry(LedgerModel):
    id: str
    number: str = ""
    product: str = ""
    destination: Destination = Field(default_factory=lambda: settings.default_destination)
    product_destination: Optional[str] = None
    initial_quantity: Quantity = Field(default=0, alias="initialQuantity")
    remaining_quantity: Quantity = Field(default=0, alias="remainingQuantity")
    # Advisory cache, never used for allocation decisions
    pre_allocated_quantity: Quantity = Field(default=0, alias="preAllocatedQuantity")
    timestamp: Quantity = 0
    created_by: Optional[str] = Field(default=None, alias="createdBy")

    @classmethod
    def from_store(cls, key: str, data: Dict[str, Any]) -> "PermitEntry":
        return cls.model_validate({**data, "id": key})

    def matches(self, product: str, destination: str) -> bool:
        return (
            self.product.lower() == product.lower()
            and self.destination == normalize_destination(destination)
        )


class PreAllocation(LedgerModel):
    id: str
    truck_number: str = Field(alias="truckNumber")
    product: str
    destination: Destination
    permit_entry_id: str = Field(alias="permitEntryId")
    permit_number: str = Field(default="", alias="permitNumber")
    owner: str = ""
    quantity: Quantity = 0
    allocated_at: str = Field(default="", alias="allocatedAt")
    used: bool = False
    used_at: Optional[str] = Field(default=None, alias="usedAt")
    work_detail_id: Optional[str] = Field(default=None, alias="workDetailId")
    timestamp: Optional[int] = None

    @classmethod
    def from_store(cls, key: str, data: Dict[str, Any]) -> "PreAllocation":
        return cls.model_validate({**data, "id": key})

    @property
    def is_active(self) -> bool:
        return not self.used

    @property
    def slot(self):
        """Key under which at most one active allocation may exist"""
        return (self.truck_number, self.destination)

    def to_store(self) -> Dict[str, Any]:
        # The id is kept inside the record, the web UI reads it from there
        return self.model_dump(by_alias=True, exclude_none=True)


class WorkOrder(LedgerModel):
    id: str
    truck_number: str = ""
    product: str = ""
    destination: Destination = Field(default_factory=lambda: settings.default_destination)
    # Cubic meters, as captured on the order
    quantity: Quantity = 0
    owner: str = ""
    status: Optional[str] = None
    loaded: bool = False
    permit_allocated: bool = Field(default=False, alias="permitAllocated")
    permit_number: Optional[str] = Field(default=None, alias="permitNumber")
    permit_entry_id: Optional[str] = Field(default=None, alias="permitEntryId")
    permit_destination: Optional[str] = Field(default=None, alias="permitDestination")
    created_at: Optional[str] = Field(default=None, alias="createdAt")

    @classmethod
    def from_store(cls, key: str, data: Dict[str, Any]) -> "WorkOrder":
        return cls.model_validate({**data, "id": key})

    @property
    def required_liters(self) -> float:
        return self.quantity * settings.LITERS_PER_CUBIC_METER


# ---------------------------
# Requests
# ---------------------------

class PreAllocationCreate(LedgerModel):
    truck_number: str = Field(alias="truckNumber")
    product: str
    owner: str
    permit_entry_id: str = Field(alias="permitEntryId")
    permit_number: str = Field(alias="permitNumber")
    destination: Optional[str] = None
    work_detail_id: Optional[str] = Field(default=None, alias="workDetailId")


class AllocationQuantityUpdate(LedgerModel):
    quantity: float


class VolumeUpdate(LedgerModel):
    new_volume: float = Field(alias="newVolume")


class EntrySyncRequest(LedgerModel):
    entry_id: str = Field(alias="entryId")


# ---------------------------
# Results
# ---------------------------

class VolumeCheck(LedgerModel):
    entry_id: str = Field(alias="entryId")
    # Entry's remaining quantity before open reservations
    available: float
    # Already consumed from the entry (initial minus remaining)
    allocated: float
    pre_allocated: float = Field(alias="preAllocated")
    # What new allocations can still take
    remaining: float
    is_valid: bool = Field(alias="isValid")


class AllocationPlanItem(LedgerModel):
    entry: PermitEntry
    quantity: float


class AllocationPlan(LedgerModel):
    product: str
    destination: str
    required: float
    total: float
    complete: bool
    items: List[AllocationPlanItem] = []


class AllocationResult(LedgerModel):
    success: bool
    error: Optional[str] = None
    allocation: Optional[PreAllocation] = None


class AutoAllocationSummary(LedgerModel):
    allocated: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[str] = []


class CleanupResult(LedgerModel):
    duplicates_removed: int = Field(default=0, alias="duplicatesRemoved")
    invalid_removed: int = Field(default=0, alias="invalidRemoved")
    errors: List[str] = []


class MaintenanceResult(LedgerModel):
    removed: int = 0
    errors: List[str] = []


class ViolationReport(LedgerModel):
    code: str
    message: str
    allocation_id: Optional[str] = Field(default=None, alias="allocationId")


class ValidationReport(LedgerModel):
    valid: bool
    errors: List[str] = []
    violations: List[ViolationReport] = []


class SyncResult(LedgerModel):
    success: bool
    message: str
    added: int = 0
    updated: int = 0
    removed: int = 0


class WorkOrderWithAllocations(LedgerModel):
    work_order: Optional[WorkOrder] = Field(default=None, alias="workOrder")
    pre_allocations: List[PreAllocation] = Field(default=[], alias="preAllocations")


class ResetResult(LedgerModel):
    success: bool
    message: str
    released: int = 0


class CurrentUser(LedgerModel):
    email: str

from .permit import (
    # Stored records
    PermitEntry, PreAllocation, WorkOrder,

    # Requests
    PreAllocationCreate, AllocationQuantityUpdate, VolumeUpdate, EntrySyncRequest,

    # Results
    VolumeCheck, AllocationPlan, AllocationPlanItem, AllocationResult,
    AutoAllocationSummary, CleanupResult, MaintenanceResult, ViolationReport,
    ValidationReport, SyncResult, WorkOrderWithAllocations, ResetResult,

    CurrentUser, normalize_destination,
)

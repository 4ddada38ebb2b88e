# File: fleet_permits/tasks/permit_maintenance.py
import logging
from typing import Optional

from fleet_permits.core.deps import get_store
from fleet_permits.db.store import EntryStore
from fleet_permits.services.allocation_sync_service import AllocationSyncService
from fleet_permits.services.permit_cleanup_service import PermitCleanupService

logger = logging.getLogger(__name__)


def run_permit_cleanup(store: Optional[EntryStore] = None):
    """Periodic cleanup: duplicates, loaded trucks, then a validation report in the log"""
    try:
        service = PermitCleanupService(store or get_store())

        duplicates = service.cleanup_duplicate_allocations()
        loaded = service.cleanup_loaded_trucks()
        violations = service.validate_allocations()

        logger.info(
            f"🧹 Permit cleanup: {duplicates.duplicates_removed} duplicates, "
            f"{duplicates.invalid_removed} invalid, {loaded.removed} loaded-truck allocations removed"
        )
        for error in duplicates.errors + loaded.errors:
            logger.error(f"Permit cleanup error: {error}")
        for message in violations:
            logger.warning(f"Allocation issue: {message}")

    except Exception as e:
        logger.error(f"Error in permit cleanup job: {e}")


def run_allocation_sync(store: Optional[EntryStore] = None):
    """Periodic sync of the allocations view from the canonical entries"""
    try:
        result = AllocationSyncService(store or get_store()).sync_allocations_to_entries_db()
        if result.success:
            logger.info(f"🔄 {result.message}")
        else:
            logger.error(f"Allocation sync job failed: {result.message}")
    except Exception as e:
        logger.error(f"Error in allocation sync job: {e}")

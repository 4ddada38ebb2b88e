"""
Work-Permit Auto-Allocation Tests

The composite operation never raises: scarcity and bad input come back
as a failed result so order creation is never blocked.
"""

from unittest.mock import patch

import pytest

from conftest import work_order
from fleet_permits.core.exceptions import StoreError, UnreadableRecordError
from fleet_permits.crud import CRUDPermitEntry, CRUDPreAllocation, CRUDWorkOrder


class TestAllocatePermitForWorkOrder:

    def test_allocates_oldest_matching_entry(self, store, work_permit_service):
        result = work_permit_service.allocate_permit_for_work_order("W1")

        assert result.success is True
        assert result.error is None
        assert result.allocation.permit_entry_id == "E1"
        assert result.allocation.quantity == 30000
        assert store.get("work_details/W1/permitAllocated") is True

    def test_unknown_work_order(self, work_permit_service):
        result = work_permit_service.allocate_permit_for_work_order("missing")
        assert result.success is False
        assert "not found" in result.error

    def test_already_allocated(self, work_permit_service):
        work_permit_service.allocate_permit_for_work_order("W1")
        result = work_permit_service.allocate_permit_for_work_order("W1")
        assert result.success is False
        assert "already" in result.error

    def test_loaded_truck(self, store, work_permit_service):
        store.atomic_update({"work_details/W3/loaded": True})
        result = work_permit_service.allocate_permit_for_work_order("W3")
        assert result.success is False

    def test_no_entry_with_room(self, store, work_permit_service):
        store.atomic_update({"work_details/W9": work_order("T9", "ssd", 50)})
        result = work_permit_service.allocate_permit_for_work_order("W9")
        assert result.success is False
        assert "No permit entry" in result.error
        assert store.get("permitPreAllocations") is None

    def test_protocol_error_is_reported(self, store, work_permit_service, allocation_service):
        """
        Given: T1 already holds an ssd allocation made outside this work order
        Then: the duplicate is reported as a failed result, not raised
        """
        store.atomic_update({"work_details/W8": work_order("T1", "ssd", 5)})
        allocation_service.pre_allocate_permit_entry("T1", "AGO", "acme", "E2", "P-002", "ssd", work_detail_id="W1")

        result = work_permit_service.allocate_permit_for_work_order("W8")

        assert result.success is False
        assert "already has an active allocation" in result.error

    def test_store_failure_is_reported(self, work_permit_service):
        with patch.object(work_permit_service.store, "atomic_update", side_effect=StoreError("Firebase down")):
            result = work_permit_service.allocate_permit_for_work_order("W1")
        assert result.success is False
        assert result.error == "Firebase down"

    def test_unreadable_work_order_is_reported(self, store, work_permit_service):
        """
        Given: W9 stored with a quantity the schema cannot read
        Then: a failed result names the record, nothing is raised or written
        """
        store.atomic_update({"work_details/W9": work_order("T1", "ssd", "thirty")})
        before = store.write_count

        result = work_permit_service.allocate_permit_for_work_order("W9")

        assert result.success is False
        assert "W9" in result.error
        assert store.write_count == before


class TestAllocatePendingWorkOrders:

    def test_batch_oldest_first(self, store, work_permit_service):
        summary = work_permit_service.allocate_pending_work_orders()

        assert summary.allocated == 4
        assert summary.failed == 0
        assert summary.skipped == 0
        # W1 (30000) took E1 first, so W3 and W4 (15000 each) go to E2
        assert store.get("work_details/W1/permitEntryId") == "E1"
        assert store.get("work_details/W3/permitEntryId") == "E2"
        assert store.get("work_details/W4/permitEntryId") == "E2"
        assert store.get("work_details/W2/permitEntryId") == "E4"

    def test_skips_allocated_and_ignores_loaded(self, store, work_permit_service):
        store.atomic_update({
            "work_details/W3/permitAllocated": True,
            "work_details/W4/loaded": True,
        })
        summary = work_permit_service.allocate_pending_work_orders()
        assert summary.allocated == 2
        assert summary.skipped == 1

    def test_failures_collected(self, store, work_permit_service):
        store.atomic_update({"work_details/W0": work_order("T7", "ssd", 90, created_at="2025-12-31T00:00:00Z")})
        summary = work_permit_service.allocate_pending_work_orders()
        assert summary.failed == 1
        assert summary.allocated == 4
        assert summary.errors[0].startswith("W0 (T7)")


class TestUnreadableRecords:

    @pytest.mark.parametrize("crud_class, path, record", [
        (CRUDWorkOrder, "work_details/X1", {"truck_number": "T1", "quantity": "thirty"}),
        (CRUDPermitEntry, "allocations/X1", {"number": "P-X", "remainingQuantity": "lots"}),
        (CRUDPreAllocation, "permitPreAllocations/X1", {"quantity": 5}),
    ])
    def test_single_read_raises_ledger_error(self, store, crud_class, path, record):
        store.atomic_update({path: record})
        with pytest.raises(UnreadableRecordError) as exc_info:
            crud_class(store).get("X1")
        assert "X1" in exc_info.value.message
        assert exc_info.value.status_code == 422

"""
Allocation Protocol Tests

Pre-allocate, mark-used, release, update-in-place and resets. Every
transition must leave the allocation record, the work order and the
entry's volume consistent with each other.
"""

import random
import threading

import pytest

from conftest import active_reserved, pre_allocation, seed_pre_allocations, work_order
from fleet_permits.core.exceptions import (
    DuplicateAllocationError,
    EntryMismatchError,
    InsufficientVolumeError,
    InvalidVolumeError,
    NotFoundError,
    PermitError,
)
from fleet_permits.services import permit_allocation_service


def pre_allocate(service, truck="T1", entry_id="E1", number="P-001", destination="ssd", product="AGO"):
    return service.pre_allocate_permit_entry(truck, product, "acme", entry_id, number, destination)


class TestPreAllocate:

    def test_creates_record_and_updates_work_order(self, store, allocation_service):
        allocation = pre_allocate(allocation_service)

        assert allocation.id.startswith("T1-ssd-")
        assert allocation.quantity == 30000
        assert allocation.work_detail_id == "W1"

        record = store.get(f"permitPreAllocations/{allocation.id}")
        assert record["truckNumber"] == "T1"
        assert record["permitEntryId"] == "E1"
        assert record["used"] is False

        order = store.get("work_details/W1")
        assert order["permitAllocated"] is True
        assert order["permitNumber"] == "P-001"
        assert order["permitEntryId"] == "E1"
        assert order["permitDestination"] == "ssd"

        assert store.get("allocations/E1/preAllocatedQuantity") == 30000

    def test_single_atomic_write(self, store, allocation_service):
        before = store.write_count
        pre_allocate(allocation_service)
        assert store.write_count == before + 1

    @pytest.mark.critical
    def test_scenario_duplicate_per_destination(self, allocation_service):
        """
        Given: T1 holds an active allocation to ssd
        Then: a second ssd allocation with another permit fails
        And: an allocation to drc succeeds
        """
        pre_allocate(allocation_service)

        with pytest.raises(DuplicateAllocationError):
            pre_allocate(allocation_service, entry_id="E2", number="P-002")

        drc = pre_allocate(allocation_service, entry_id="E4", number="P-004", destination="drc")
        assert drc.destination == "drc"
        assert drc.quantity == 20000

    def test_destination_normalized(self, allocation_service):
        allocation = pre_allocate(allocation_service, destination="SSD")
        assert allocation.destination == "ssd"
        with pytest.raises(DuplicateAllocationError):
            pre_allocate(allocation_service, entry_id="E2", number="P-002", destination=None)

    def test_missing_entry(self, allocation_service):
        with pytest.raises(NotFoundError):
            pre_allocate(allocation_service, entry_id="missing")

    def test_entry_for_other_product(self, allocation_service):
        with pytest.raises(EntryMismatchError):
            pre_allocate(allocation_service, entry_id="E3", number="P-003", destination="drc")

    def test_entry_for_other_destination(self, allocation_service):
        with pytest.raises(EntryMismatchError):
            pre_allocate(allocation_service, entry_id="E4", number="P-004", destination="ssd")

    def test_permit_number_must_match_entry(self, allocation_service):
        with pytest.raises(EntryMismatchError):
            pre_allocate(allocation_service, number="P-999")

    def test_missing_work_order(self, store, allocation_service):
        with pytest.raises(NotFoundError):
            pre_allocate(allocation_service, truck="T9")
        assert store.get("permitPreAllocations") is None

    @pytest.mark.critical
    def test_insufficient_volume_writes_nothing(self, store, allocation_service):
        store.atomic_update({"allocations/E1/remainingQuantity": 20000})
        before = store.write_count

        with pytest.raises(InsufficientVolumeError) as exc_info:
            pre_allocate(allocation_service)

        assert exc_info.value.available == 20000
        assert exc_info.value.requested == 30000
        assert store.write_count == before
        assert store.get("work_details/W1/permitAllocated") is False

    def test_existing_reservations_reduce_room(self, store, allocation_service):
        seed_pre_allocations(store, {"x": pre_allocation("T9", "E1", "P-001", 15000)})
        with pytest.raises(InsufficientVolumeError):
            pre_allocate(allocation_service)

    def test_explicit_work_order_must_belong_to_truck(self, allocation_service):
        with pytest.raises(NotFoundError):
            allocation_service.pre_allocate_permit_entry(
                "T1", "AGO", "acme", "E1", "P-001", "ssd", work_detail_id="W3"
            )

    @pytest.mark.critical
    def test_explicit_work_order_must_match_destination(self, store, allocation_service):
        """
        Given: T1 has W1 to ssd and W2 to drc
        Then: an ssd reservation cannot be written onto W2, and nothing is stored
        """
        with pytest.raises(EntryMismatchError):
            allocation_service.pre_allocate_permit_entry(
                "T1", "AGO", "acme", "E1", "P-001", "ssd", work_detail_id="W2"
            )

        assert store.get("work_details/W2/permitAllocated") is False
        assert store.get("work_details/W2/permitDestination") is None
        assert store.get("permitPreAllocations") is None

    def test_explicit_work_order_must_match_product(self, store, allocation_service):
        store.atomic_update({"work_details/W7": work_order("T1", "ssd", 5, product="PMS")})
        with pytest.raises(EntryMismatchError):
            allocation_service.pre_allocate_permit_entry(
                "T1", "AGO", "acme", "E1", "P-001", "ssd", work_detail_id="W7"
            )
        assert store.get("work_details/W7/permitAllocated") is False

    @pytest.mark.critical
    def test_loaded_work_order_is_not_reserved(self, store, allocation_service):
        """
        Given: T1's only ssd work order is already loaded
        Then: no volume is reserved against it, found by lookup or named explicitly
        """
        store.atomic_update({"work_details/W1/loaded": True})
        before = store.write_count

        with pytest.raises(NotFoundError):
            pre_allocate(allocation_service)
        with pytest.raises(NotFoundError):
            allocation_service.pre_allocate_permit_entry(
                "T1", "AGO", "acme", "E1", "P-001", "ssd", work_detail_id="W1"
            )

        assert store.write_count == before
        assert store.get("permitPreAllocations") is None

    def test_lookup_prefers_open_work_order_over_loaded_one(self, store, allocation_service):
        store.atomic_update({
            "work_details/W1/loaded": True,
            "work_details/W6": work_order("T1", "ssd", 10),
        })

        allocation = pre_allocate(allocation_service)

        assert allocation.work_detail_id == "W6"
        assert allocation.quantity == 10000
        assert store.get("work_details/W1/permitAllocated") is False

    @pytest.mark.critical
    def test_concurrent_calls_for_same_slot(self, store, allocation_service):
        """
        Given: eight threads pre-allocating T1 to ssd at the same moment
        Then: exactly one succeeds, the rest hit DuplicateAllocationError
        """
        barrier = threading.Barrier(8)
        successes, duplicates, others = [], [], []

        def worker(i):
            entry_id, number = ("E1", "P-001") if i % 2 == 0 else ("E2", "P-002")
            barrier.wait()
            try:
                successes.append(pre_allocate(allocation_service, entry_id=entry_id, number=number))
            except DuplicateAllocationError:
                duplicates.append(i)
            except Exception as e:
                others.append(e)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert others == []
        assert len(successes) == 1
        assert len(duplicates) == 7
        assert len(store.get("permitPreAllocations")) == 1
        assert len(permit_allocation_service._slot_locks) == 0


class TestMarkUsed:

    def test_removes_record_and_returns_used(self, store, allocation_service, volume_service):
        allocation = pre_allocate(allocation_service)

        used = allocation_service.mark_permit_as_used(allocation.id)

        assert used.used is True
        assert used.used_at is not None
        assert store.get(f"permitPreAllocations/{allocation.id}") is None
        assert store.get("allocations/E1/preAllocatedQuantity") == 0
        assert volume_service.available_volume("E1") == 40000

    def test_work_order_keeps_permit(self, store, allocation_service):
        allocation = pre_allocate(allocation_service)
        allocation_service.mark_permit_as_used(allocation.id)
        assert store.get("work_details/W1/permitNumber") == "P-001"

    def test_missing_allocation(self, allocation_service):
        with pytest.raises(NotFoundError):
            allocation_service.mark_permit_as_used("missing")


class TestRelease:

    @pytest.mark.critical
    def test_release_leaves_other_destination_untouched(self, store, allocation_service):
        """
        Given: T1 holds allocations to ssd and drc
        When: the ssd allocation is released
        Then: the drc allocation and W2's permit fields are untouched
        And: only W1's permit fields are cleared
        """
        ssd = pre_allocate(allocation_service)
        drc = pre_allocate(allocation_service, entry_id="E4", number="P-004", destination="drc")
        w2_before = store.get("work_details/W2")

        allocation_service.release_pre_allocation(ssd.id)

        assert store.get(f"permitPreAllocations/{ssd.id}") is None
        assert store.get(f"permitPreAllocations/{drc.id}") is not None
        assert store.get("work_details/W2") == w2_before

        w1 = store.get("work_details/W1")
        assert w1["permitAllocated"] is False
        assert "permitNumber" not in w1
        assert "permitEntryId" not in w1
        assert "permitDestination" not in w1

    def test_release_frees_volume(self, store, allocation_service, volume_service):
        allocation = pre_allocate(allocation_service)
        allocation_service.release_pre_allocation(allocation.id)
        assert volume_service.available_volume("E1") == 40000
        assert store.get("allocations/E1/preAllocatedQuantity") == 0

    def test_release_then_allocate_again(self, allocation_service):
        allocation = pre_allocate(allocation_service)
        allocation_service.release_pre_allocation(allocation.id)
        again = pre_allocate(allocation_service, entry_id="E2", number="P-002")
        assert again.permit_entry_id == "E2"

    def test_destination_filter_mismatch(self, store, allocation_service):
        allocation = pre_allocate(allocation_service)
        with pytest.raises(NotFoundError):
            allocation_service.release_pre_allocation(allocation.id, destination="drc")
        assert store.get(f"permitPreAllocations/{allocation.id}") is not None

    def test_missing_allocation(self, allocation_service):
        with pytest.raises(NotFoundError):
            allocation_service.release_pre_allocation("missing")

    def test_reset_truck(self, store, allocation_service):
        pre_allocate(allocation_service)
        pre_allocate(allocation_service, entry_id="E4", number="P-004", destination="drc")

        assert allocation_service.reset_truck_allocation("T1", destination="drc") == 1
        assert store.get("work_details/W1/permitAllocated") is True

        assert allocation_service.reset_truck_allocation("T1") == 1
        assert store.get("permitPreAllocations") is None
        assert allocation_service.reset_truck_allocation("T1") == 0


class TestUpdateInPlace:

    def test_decrease(self, store, allocation_service, volume_service):
        allocation = pre_allocate(allocation_service)

        updated = allocation_service.update_permit_allocation(allocation.id, 25000)

        assert updated.quantity == 25000
        assert store.get(f"permitPreAllocations/{allocation.id}/quantity") == 25000
        assert store.get("allocations/E1/preAllocatedQuantity") == 25000
        assert volume_service.available_volume("E1") == 15000

    def test_increase_within_available(self, allocation_service, volume_service):
        allocation = pre_allocate(allocation_service)
        allocation_service.update_permit_allocation(allocation.id, 40000)
        assert volume_service.available_volume("E1") == 0

    def test_increase_beyond_available(self, store, allocation_service):
        allocation = pre_allocate(allocation_service)
        with pytest.raises(InsufficientVolumeError):
            allocation_service.update_permit_allocation(allocation.id, 40001)
        assert store.get(f"permitPreAllocations/{allocation.id}/quantity") == 30000

    @pytest.mark.parametrize("quantity", [0, -5])
    def test_non_positive_rejected(self, allocation_service, quantity):
        allocation = pre_allocate(allocation_service)
        with pytest.raises(InvalidVolumeError):
            allocation_service.update_permit_allocation(allocation.id, quantity)

    def test_missing_allocation(self, allocation_service):
        with pytest.raises(NotFoundError):
            allocation_service.update_permit_allocation("missing", 100)


class TestResetPermitSystem:

    def test_clears_everything(self, store, allocation_service):
        pre_allocate(allocation_service)
        pre_allocate(allocation_service, entry_id="E4", number="P-004", destination="drc")

        result = allocation_service.reset_permit_system()

        assert result.success is True
        assert result.released == 2
        assert store.get("permitPreAllocations") is None
        assert store.get("allocations/E1/preAllocatedQuantity") == 0
        assert store.get("allocations/E4/preAllocatedQuantity") == 0
        assert store.get("work_details/W1/permitAllocated") is False
        assert store.get("work_details/W2/permitAllocated") is False

    def test_nothing_to_reset(self, store, allocation_service):
        before = store.write_count
        result = allocation_service.reset_permit_system()
        assert result.released == 0
        assert store.write_count == before


class TestConservationUnderRandomOperations:

    @pytest.mark.critical
    @pytest.mark.parametrize("seed", [1, 7, 42])
    def test_random_sequences_keep_ledger_consistent(self, store, allocation_service, seed):
        """
        Given: a random mix of pre-allocate, release, mark-used and quantity edits
        Then: after every step each entry's remaining volume covers its active
        reservations, each truck holds at most one active ssd allocation, and
        the cached preAllocatedQuantity matches the recomputed value
        """
        store.atomic_update({
            "work_details/W5": work_order("T4", "ssd", 12),
            "work_details/W6": work_order("T5", "ssd", 25),
            "work_details/W7": work_order("T6", "ssd", 8),
        })
        rng = random.Random(seed)
        trucks = ["T1", "T2", "T3", "T4", "T5", "T6"]
        entries = [("E1", "P-001"), ("E2", "P-002")]

        for _ in range(150):
            active = allocation_service.pre_allocations.get_active()
            op = rng.choice(["allocate", "allocate", "release", "use", "update"])
            try:
                if op == "allocate":
                    entry_id, number = rng.choice(entries)
                    pre_allocate(allocation_service, truck=rng.choice(trucks), entry_id=entry_id, number=number)
                elif op == "release" and active:
                    allocation_service.release_pre_allocation(rng.choice(active).id)
                elif op == "use" and active:
                    allocation_service.mark_permit_as_used(rng.choice(active).id)
                elif op == "update" and active:
                    allocation_service.update_permit_allocation(rng.choice(active).id, rng.randint(1, 45000))
            except PermitError:
                pass

            for entry_id, _ in entries:
                reserved = active_reserved(store, entry_id)
                assert store.get(f"allocations/{entry_id}/remainingQuantity") >= reserved
                assert (store.get(f"allocations/{entry_id}/preAllocatedQuantity") or 0) == pytest.approx(reserved)

            slots = [a.truck_number for a in allocation_service.pre_allocations.get_active()]
            assert len(slots) == len(set(slots))

"""
Permit Ledger Test Fixtures

Shared fixtures for the allocation ledger tests. Every test runs against
a fresh in-memory store seeded with a small fleet: two AGO entries to
South Sudan (E1 older than E2), one AGO entry to DRC, one PMS entry to DRC,
and open work orders for trucks T1 (ssd + drc), T2 and T3.
"""

import copy

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from fleet_permits.core.config import settings
from fleet_permits.core.deps import get_store
from fleet_permits.db.memory_store import MemoryStore
from fleet_permits.db.store import PRE_ALLOCATIONS_PATH
from fleet_permits.main import app
from fleet_permits.services.active_permit_service import ActivePermitService
from fleet_permits.services.allocation_sync_service import AllocationSyncService
from fleet_permits.services.permit_allocation_service import PermitAllocationService
from fleet_permits.services.permit_cleanup_service import PermitCleanupService
from fleet_permits.services.permit_matcher import PermitMatcher
from fleet_permits.services.volume_service import VolumeService
from fleet_permits.services.work_permit_service import WorkPermitService


ENTRIES = {
    "E1": {
        "number": "P-001",
        "product": "ago",
        "destination": "ssd",
        "product_destination": "ago-ssd",
        "initialQuantity": 40000,
        "remainingQuantity": 40000,
        "timestamp": 100,
        "createdBy": "entries@example.com",
    },
    "E2": {
        "number": "P-002",
        "product": "ago",
        "destination": "ssd",
        "product_destination": "ago-ssd",
        "initialQuantity": 40000,
        "remainingQuantity": 40000,
        "timestamp": 200,
        "createdBy": "entries@example.com",
    },
    "E3": {
        "number": "P-003",
        "product": "pms",
        "destination": "drc",
        "product_destination": "pms-drc",
        "initialQuantity": 60000,
        "remainingQuantity": 60000,
        "timestamp": 150,
        "createdBy": "entries@example.com",
    },
    "E4": {
        "number": "P-004",
        "product": "ago",
        "destination": "drc",
        "product_destination": "ago-drc",
        "initialQuantity": 50000,
        "remainingQuantity": 50000,
        "timestamp": 300,
        "createdBy": "entries@example.com",
    },
}


def work_order(truck, destination, quantity, product="AGO", loaded=False, created_at="2026-01-01T08:00:00Z", **extra):
    record = {
        "truck_number": truck,
        "product": product,
        "destination": destination,
        "quantity": quantity,
        "owner": "acme",
        "status": "queued",
        "loaded": loaded,
        "permitAllocated": False,
        "createdAt": created_at,
    }
    record.update(extra)
    return record


WORK_ORDERS = {
    "W1": work_order("T1", "ssd", 30, created_at="2026-01-01T08:00:00Z"),
    "W2": work_order("T1", "drc", 20, created_at="2026-01-01T09:00:00Z"),
    "W3": work_order("T2", "ssd", 15, created_at="2026-01-01T10:00:00Z"),
    "W4": work_order("T3", "ssd", 15, created_at="2026-01-01T11:00:00Z"),
}


def pre_allocation(truck, entry_id, permit_number, quantity, destination="ssd", product="AGO", **extra):
    """Raw pre-allocation record as the web UI writes it"""
    record = {
        "truckNumber": truck,
        "product": product,
        "destination": destination,
        "permitEntryId": entry_id,
        "permitNumber": permit_number,
        "owner": "acme",
        "quantity": quantity,
        "allocatedAt": "2026-01-01T12:00:00.000Z",
        "used": False,
    }
    record.update(extra)
    return record


def seed_pre_allocations(store, records):
    """Write raw pre-allocation records keyed by id"""
    store.atomic_update({f"{PRE_ALLOCATIONS_PATH}/{key}": value for key, value in records.items()})


@pytest.fixture
def seed_data():
    return {
        "tr800": copy.deepcopy(ENTRIES),
        "allocations": copy.deepcopy(ENTRIES),
        "work_details": copy.deepcopy(WORK_ORDERS),
    }


@pytest.fixture
def store(seed_data):
    return MemoryStore(seed_data)


@pytest.fixture
def volume_service(store):
    return VolumeService(store)


@pytest.fixture
def matcher(store):
    return PermitMatcher(store)


@pytest.fixture
def allocation_service(store):
    return PermitAllocationService(store)


@pytest.fixture
def work_permit_service(store):
    return WorkPermitService(store)


@pytest.fixture
def cleanup_service(store):
    return PermitCleanupService(store)


@pytest.fixture
def sync_service(store):
    return AllocationSyncService(store)


@pytest.fixture
def active_permit_service(store):
    return ActivePermitService(store)


@pytest.fixture
def client(store):
    """API client wired to the test store"""
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    token = jwt.encode({"sub": "dispatcher@example.com"}, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return {"Authorization": f"Bearer {token}"}


def active_reserved(store, entry_id):
    """Sum of active pre-allocated liters against an entry, read straight from the store"""
    records = store.get(PRE_ALLOCATIONS_PATH) or {}
    return sum(
        float(r.get("quantity", 0))
        for r in records.values()
        if r.get("permitEntryId") == entry_id and not r.get("used")
    )

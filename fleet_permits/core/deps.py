# File: fleet_permits/core/deps.py
import logging
import threading
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from fleet_permits.core.config import settings
from fleet_permits.db.firebase_store import FirebaseStore
from fleet_permits.db.memory_store import MemoryStore
from fleet_permits.db.store import EntryStore
from fleet_permits.schemas.permit import CurrentUser
from fleet_permits.services.active_permit_service import ActivePermitService
from fleet_permits.services.allocation_sync_service import AllocationSyncService
from fleet_permits.services.permit_allocation_service import PermitAllocationService
from fleet_permits.services.permit_cleanup_service import PermitCleanupService
from fleet_permits.services.permit_matcher import PermitMatcher
from fleet_permits.services.volume_service import VolumeService
from fleet_permits.services.work_permit_service import WorkPermitService

logger = logging.getLogger(__name__)

security = HTTPBearer()

_store: Optional[EntryStore] = None
_store_lock = threading.Lock()


def build_store() -> EntryStore:
    backend = settings.STORE_BACKEND.lower()
    if backend == "memory":
        logger.warning("Using in-memory entry store, data is lost on restart")
        return MemoryStore()
    if backend == "firebase":
        return FirebaseStore(
            database_url=settings.FIREBASE_DATABASE_URL,
            service_account_path=settings.FIREBASE_SERVICE_ACCOUNT_PATH,
            timeout=settings.FIREBASE_REQUEST_TIMEOUT,
        )
    raise ValueError(f"Unknown STORE_BACKEND '{settings.STORE_BACKEND}'")


def get_store() -> EntryStore:
    """Process-wide store, created on first use"""
    global _store
    if _store is None:
        with _store_lock:
            if _store is None:
                _store = build_store()
    return _store


def get_volume_service(store: EntryStore = Depends(get_store)) -> VolumeService:
    return VolumeService(store)


def get_permit_matcher(store: EntryStore = Depends(get_store)) -> PermitMatcher:
    return PermitMatcher(store)


def get_allocation_service(store: EntryStore = Depends(get_store)) -> PermitAllocationService:
    return PermitAllocationService(store)


def get_work_permit_service(store: EntryStore = Depends(get_store)) -> WorkPermitService:
    return WorkPermitService(store)


def get_cleanup_service(store: EntryStore = Depends(get_store)) -> PermitCleanupService:
    return PermitCleanupService(store)


def get_sync_service(store: EntryStore = Depends(get_store)) -> AllocationSyncService:
    return AllocationSyncService(store)


def get_active_permit_service(store: EntryStore = Depends(get_store)) -> ActivePermitService:
    return ActivePermitService(store)


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> CurrentUser:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(credentials.credentials, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise credentials_exception

    email: Optional[str] = payload.get("sub")
    if email is None:
        raise credentials_exception

    return CurrentUser(email=email)

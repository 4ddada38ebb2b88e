# File: fleet_permits/core/exceptions.py
from typing import Optional

from fastapi import HTTPException


class PermitError(Exception):
    """Base class for permit ledger failures that callers surface to users"""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(PermitError):
    """Referenced entry, work order or allocation is absent"""

    status_code = 404


class DuplicateAllocationError(PermitError):
    """An active allocation already exists for the truck and destination"""

    status_code = 409


class InsufficientVolumeError(PermitError):
    """Requested quantity exceeds the entry's available volume"""

    status_code = 409

    def __init__(self, message: str, available: float = 0, requested: float = 0):
        super().__init__(message)
        self.available = available
        self.requested = requested


class InvalidVolumeError(PermitError):
    """Edit would break the conservation of permit volume"""

    status_code = 400


class EntryMismatchError(PermitError):
    """Permit entry does not cover the requested product or destination"""

    status_code = 400


class UnreadableRecordError(PermitError):
    """Stored record does not parse into its model"""

    status_code = 422


class ValidationError(PermitError):
    """Inconsistency found by a batch check. Reported, never raised."""

    def __init__(self, code: str, message: str, allocation_id: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.allocation_id = allocation_id


class StoreError(PermitError):
    """The entry store could not be read or written"""

    status_code = 502


def to_http_exception(error: PermitError) -> HTTPException:
    return HTTPException(status_code=error.status_code, detail=error.message)

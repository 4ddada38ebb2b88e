# File: fleet_permits/db/store.py
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional

# Canonical permit entries as registered by the entries desk
CANONICAL_ENTRIES_PATH = "tr800"
# Working view of the entries that allocation reads and writes
ENTRIES_PATH = "allocations"
PRE_ALLOCATIONS_PATH = "permitPreAllocations"
WORK_DETAILS_PATH = "work_details"

# Realtime Database keys may not contain these characters
FORBIDDEN_KEY_CHARS = set(".$#[]/")


def join_path(*parts: str) -> str:
    return "/".join(str(p).strip("/") for p in parts if p is not None and str(p) != "")


def split_path(path: str):
    return [p for p in path.strip("/").split("/") if p]


def safe_key(value: str) -> str:
    """Make a value usable as a single path segment"""
    return "".join("_" if c in FORBIDDEN_KEY_CHARS or c.isspace() else c for c in str(value))


def check_disjoint_paths(paths) -> None:
    """Reject an update where one path is the ancestor of another"""
    normalized = sorted("/".join(split_path(p)) for p in paths)
    for previous, current in zip(normalized, normalized[1:]):
        if current == previous or current.startswith(previous + "/") or previous == "":
            raise ValueError(f"Overlapping paths in a single update: '{previous}' and '{current}'")


class EntryStore(ABC):
    """Path-addressed document store used by the permit ledger.

    Every multi-record mutation goes through ``atomic_update`` so that
    each protocol step is all-or-nothing.
    """

    @abstractmethod
    def get(self, path: str) -> Optional[Any]:
        """Read one path. Collections come back as ``{key: record}`` in key order."""

    @abstractmethod
    def query_by_field(self, path: str, field: str, value: Any) -> Dict[str, Any]:
        """Children of ``path`` whose ``field`` equals ``value``"""

    @abstractmethod
    def atomic_update(self, updates: Mapping[str, Any]) -> None:
        """Apply ``{path: value}`` in one write. ``None`` deletes the path."""

    def get_children(self, path: str) -> Dict[str, Any]:
        value = self.get(path)
        if not isinstance(value, dict):
            return {}
        return value

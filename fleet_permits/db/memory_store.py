# File: fleet_permits/db/memory_store.py
import copy
import logging
import threading
from typing import Any, Dict, Mapping, Optional

from fleet_permits.db.store import EntryStore, check_disjoint_paths, split_path

logger = logging.getLogger(__name__)


def _sorted_tree(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _sorted_tree(value[k]) for k in sorted(value)}
    return copy.deepcopy(value)


class MemoryStore(EntryStore):
    """In-process store with Realtime Database semantics.

    Used by the test suite and for local development without Firebase.
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._lock = threading.RLock()
        self._root: Dict[str, Any] = copy.deepcopy(initial) if initial else {}
        self.write_count = 0

    def _walk(self, path: str) -> Optional[Any]:
        node: Any = self._root
        for part in split_path(path):
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return node

    def get(self, path: str) -> Optional[Any]:
        with self._lock:
            return _sorted_tree(self._walk(path))

    def query_by_field(self, path: str, field: str, value: Any) -> Dict[str, Any]:
        with self._lock:
            node = self._walk(path)
            if not isinstance(node, dict):
                return {}
            return {
                key: _sorted_tree(child)
                for key, child in sorted(node.items())
                if isinstance(child, dict) and child.get(field) == value
            }

    def atomic_update(self, updates: Mapping[str, Any]) -> None:
        if not updates:
            return
        check_disjoint_paths(updates.keys())
        with self._lock:
            staged = copy.deepcopy(self._root)
            for path, value in updates.items():
                parts = split_path(path)
                if not parts:
                    raise ValueError("Cannot update the store root")
                if value is None:
                    self._delete(staged, parts)
                else:
                    self._set(staged, parts, copy.deepcopy(value))
            self._root = staged
            self.write_count += 1
        logger.debug(f"Applied {len(updates)} path updates")

    def _set(self, root: Dict[str, Any], parts, value: Any) -> None:
        node = root
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = value

    def _delete(self, root: Dict[str, Any], parts) -> None:
        trail = []
        node: Any = root
        for part in parts[:-1]:
            if not isinstance(node, dict) or part not in node:
                return
            trail.append((node, part))
            node = node[part]
        if isinstance(node, dict):
            node.pop(parts[-1], None)
        # Empty parents disappear, as they do in the Realtime Database
        for parent, key in reversed(trail):
            if parent[key] == {}:
                del parent[key]
            else:
                break

    def dump(self) -> Dict[str, Any]:
        with self._lock:
            return _sorted_tree(self._root)

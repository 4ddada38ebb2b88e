# File: fleet_permits/crud/permit_entry.py
import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as SchemaError

from fleet_permits.core.exceptions import UnreadableRecordError
from fleet_permits.db.store import CANONICAL_ENTRIES_PATH, ENTRIES_PATH, EntryStore, join_path
from fleet_permits.schemas.permit import PermitEntry

logger = logging.getLogger(__name__)


class CRUDPermitEntry:

    def __init__(self, store: EntryStore):
        self.store = store

    @staticmethod
    def path(entry_id: str, field: Optional[str] = None) -> str:
        return join_path(ENTRIES_PATH, entry_id, field)

    @staticmethod
    def canonical_path(entry_id: str, field: Optional[str] = None) -> str:
        return join_path(CANONICAL_ENTRIES_PATH, entry_id, field)

    def get(self, entry_id: str) -> Optional[PermitEntry]:
        data = self.store.get(self.path(entry_id))
        if not isinstance(data, dict):
            return None
        try:
            return PermitEntry.from_store(entry_id, data)
        except (SchemaError, TypeError) as e:
            raise UnreadableRecordError(f"Permit entry {entry_id} is unreadable: {e}")

    def get_all(self, errors: Optional[List[str]] = None) -> List[PermitEntry]:
        entries = []
        for key, data in self.store.get_children(ENTRIES_PATH).items():
            try:
                entries.append(PermitEntry.from_store(key, data))
            except (SchemaError, TypeError) as e:
                message = f"Skipping unreadable permit entry {key}: {e}"
                logger.warning(message)
                if errors is not None:
                    errors.append(message)
        return entries

    def get_raw_view(self) -> Dict[str, Any]:
        return self.store.get_children(ENTRIES_PATH)

    def get_canonical(self, entry_id: str) -> Optional[Dict[str, Any]]:
        data = self.store.get(self.canonical_path(entry_id))
        return data if isinstance(data, dict) else None

    def get_raw_canonical(self) -> Dict[str, Any]:
        return self.store.get_children(CANONICAL_ENTRIES_PATH)

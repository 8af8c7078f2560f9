# adapters/media_store.py — reference record store for media and related resources

import copy
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Mapping, Optional

from core.scoping import matches_filters


class RecordRepository(ABC):
    """Query and update primitives the scoping layer runs against."""

    id_field: str = "id"

    @abstractmethod
    def query(self, filters: Mapping[str, Any]) -> List[Dict[str, Any]]:
        """All records matching `filters`, as full (unredacted) dicts."""

    @abstractmethod
    def get(self, record_id: Any) -> Optional[Dict[str, Any]]:
        """One record, or None."""

    @abstractmethod
    def update(self, record_id: Any, changes: Mapping[str, Any]) -> Dict[str, Any]:
        """Apply `changes` and return the updated record."""


class InMemoryRecordRepository(RecordRepository):
    """Thread-safe dict-backed repository."""

    def __init__(self, id_field: str = "media_id", records: Optional[Iterable[Mapping[str, Any]]] = None):
        self.id_field = id_field
        self._lock = threading.RLock()
        self._records: Dict[Any, Dict[str, Any]] = {}
        for record in records or []:
            self.add(record)

    def add(self, record: Mapping[str, Any]) -> Dict[str, Any]:
        if self.id_field not in record:
            raise ValueError(f"Record is missing its '{self.id_field}' key")
        stored = dict(record)
        with self._lock:
            self._records[stored[self.id_field]] = stored
        return copy.deepcopy(stored)

    def query(self, filters: Mapping[str, Any]) -> List[Dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(r) for r in self._records.values() if matches_filters(r, filters)]

    def get(self, record_id: Any) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._records.get(record_id)
            return copy.deepcopy(record) if record is not None else None

    def update(self, record_id: Any, changes: Mapping[str, Any]) -> Dict[str, Any]:
        with self._lock:
            record = self._records.get(record_id)
            if record is None:
                raise KeyError(record_id)
            record.update(changes)
            return copy.deepcopy(record)

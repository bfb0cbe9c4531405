from __future__ import annotations

from collections import OrderedDict
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, List, Protocol


class OperationStatusStore(Protocol):
    def record(self, operation_name: str, status: str) -> None: ...

    def snapshot(self) -> List[dict[str, Any]]: ...


class OperationCache:
    """Fixed-capacity map of operation name to last known status.

    Entries are ordered by last update; when full, the least recently updated
    operation is evicted.
    """

    def __init__(self, capacity: int = 100) -> None:
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._entries: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        self._lock = Lock()

    def record(self, operation_name: str, status: str) -> None:
        if not operation_name:
            return
        with self._lock:
            self._entries[operation_name] = {
                "status": status,
                "updated_at": datetime.now(timezone.utc).isoformat(),
            }
            self._entries.move_to_end(operation_name)
            while len(self._entries) > self.capacity:
                self._entries.popitem(last=False)

    def get(self, operation_name: str) -> Dict[str, Any] | None:
        with self._lock:
            entry = self._entries.get(operation_name)
            return dict(entry) if entry else None

    def snapshot(self) -> List[dict[str, Any]]:
        with self._lock:
            return [{"operation_name": name, **state} for name, state in self._entries.items()]

    def __len__(self) -> int:
        return len(self._entries)

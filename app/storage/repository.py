from __future__ import annotations

from datetime import datetime
from threading import Lock
from typing import Dict

from app.models.domain import RenderItem


class RenderItemRepository:
    """In-memory store of per-item operation state and the latest render task."""

    def __init__(self) -> None:
        self._items: Dict[str, RenderItem] = {}
        self._lock = Lock()

    def save(self, item: RenderItem) -> RenderItem:
        stored = item.model_copy(deep=True, update={"updated_at": datetime.utcnow()})
        with self._lock:
            self._items[item.id] = stored
        return stored.model_copy(deep=True)

    def get(self, item_id: str) -> RenderItem | None:
        with self._lock:
            item = self._items.get(item_id)
            return item.model_copy(deep=True) if item else None

    def delete(self, item_id: str) -> bool:
        with self._lock:
            return self._items.pop(item_id, None) is not None

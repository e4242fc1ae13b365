"""
In-memory pending entry store.
"""

import threading
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from engine.interfaces import PendingStore
from engine.models import PendingEntry, as_utc


class InMemoryPendingStore(PendingStore):
    """Process-local PendingStore, safe for concurrent handlers."""

    def __init__(self):
        self._entries: Dict[Tuple[int, str], PendingEntry] = {}
        self._lock = threading.Lock()

    def save(self, entry: PendingEntry) -> None:
        with self._lock:
            self._entries[(entry.user_id, entry.entry_id)] = entry

    def get(self, user_id: int, entry_id: str) -> Optional[PendingEntry]:
        with self._lock:
            return self._entries.get((user_id, entry_id))

    def delete(self, user_id: int, entry_id: str) -> bool:
        with self._lock:
            return self._entries.pop((user_id, entry_id), None) is not None

    def list_for_user(self, user_id: int, page: int = 1, page_size: int = 5) -> List[PendingEntry]:
        with self._lock:
            mine = [e for (uid, _), e in self._entries.items() if uid == user_id]
        mine.sort(key=lambda e: as_utc(e.created_at), reverse=True)
        start = (max(1, page) - 1) * page_size
        return mine[start:start + page_size]

    def count_for_user(self, user_id: int) -> int:
        with self._lock:
            return sum(1 for (uid, _) in self._entries if uid == user_id)

    def clear_for_user(self, user_id: int) -> int:
        with self._lock:
            keys = [key for key in self._entries if key[0] == user_id]
            for key in keys:
                del self._entries[key]
            return len(keys)

    def delete_older_than(self, cutoff: datetime) -> int:
        cutoff = as_utc(cutoff)
        with self._lock:
            keys = [key for key, e in self._entries.items() if as_utc(e.created_at) < cutoff]
            for key in keys:
                del self._entries[key]
            return len(keys)

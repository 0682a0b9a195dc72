"""
Task History - bounded, persisted record of finished tasks

Results are kept oldest-first. Pushing beyond the limit evicts from the
front. The whole list is written to the key-value store after every push
and reloaded at construction.
"""

import logging
import threading
from typing import Any

from companion.exceptions import StorageError
from companion.persistence import KeyValueStore
from companion.state import TaskResult

logger = logging.getLogger(__name__)

HISTORY_KEY = "companion.taskHistory"
DEFAULT_HISTORY_LIMIT = 50


class TaskHistory:
    """Thread-safe FIFO of TaskResults with write-through persistence."""

    def __init__(self, store: KeyValueStore | None = None, limit: int = DEFAULT_HISTORY_LIMIT):
        self.store = store
        self.limit = limit
        self._results: list[TaskResult] = []
        self._lock = threading.RLock()
        self._load()

    def _load(self) -> None:
        if self.store is None:
            return
        raw: list[dict[str, Any]] = self.store.get(HISTORY_KEY, []) or []
        loaded = []
        for entry in raw:
            try:
                loaded.append(TaskResult.from_dict(entry))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Skipping unreadable history entry: {e}")
        with self._lock:
            self._results = loaded[-self.limit :]
        logger.debug(f"Loaded {len(self._results)} history entries")

    def _persist(self) -> None:
        if self.store is None:
            return
        try:
            self.store.set(HISTORY_KEY, [result.to_dict() for result in self._results])
        except StorageError as e:
            # Memory copy stays authoritative for this session
            logger.error(f"Failed to persist task history: {e}")

    def push(self, result: TaskResult) -> None:
        """Append a result, evict the oldest beyond the limit, then persist."""
        with self._lock:
            self._results.append(result)
            while len(self._results) > self.limit:
                evicted = self._results.pop(0)
                logger.debug(f"Evicted {evicted.task_id} from history")
            self._persist()

    def snapshot(self) -> list[TaskResult]:
        with self._lock:
            return list(self._results)

    def find(self, task_id: str) -> TaskResult | None:
        with self._lock:
            for result in reversed(self._results):
                if result.task_id == task_id:
                    return result
        return None

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)

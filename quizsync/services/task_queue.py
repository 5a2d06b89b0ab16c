"""Background work queue that runs jobs for the same key one at a time.

Jobs sharing a key run in submission order on a single worker at a time;
jobs for different keys run concurrently on the thread pool. ``flush()``
blocks until every submitted job has finished, which lets tests (and
shutdown) wait deterministically instead of sleeping.
"""

import logging
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Hashable

logger = logging.getLogger(__name__)

Job = Callable[[], Any]


class KeyedTaskQueue:
    def __init__(self, max_workers: int = 4, *, name: str = "quizsync-sync") -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=name)
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._queues: dict[Hashable, deque[Job]] = {}
        self._pending = 0
        self._closed = False

    @property
    def pending(self) -> int:
        with self._lock:
            return self._pending

    def submit(self, key: Hashable, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        """Queue ``fn(*args, **kwargs)`` behind earlier jobs for *key*."""
        job: Job = (lambda: fn(*args, **kwargs)) if args or kwargs else fn
        with self._lock:
            if self._closed:
                raise RuntimeError("task queue is closed")
            self._pending += 1
            queue = self._queues.get(key)
            if queue is not None:
                # A drainer for this key is already running; it will pick this up.
                queue.append(job)
                return
            self._queues[key] = deque([job])
        self._executor.submit(self._drain, key)

    def _drain(self, key: Hashable) -> None:
        while True:
            with self._lock:
                queue = self._queues[key]
                if not queue:
                    del self._queues[key]
                    return
                job = queue.popleft()
            try:
                job()
            except Exception:
                logger.exception("Background job for %s failed", key)
            finally:
                with self._lock:
                    self._pending -= 1
                    if self._pending == 0:
                        self._idle.notify_all()

    def flush(self, timeout: float | None = None) -> bool:
        """Wait for all queued jobs; False if *timeout* ran out first."""
        with self._idle:
            return self._idle.wait_for(lambda: self._pending == 0, timeout)

    def close(self, *, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
        if wait:
            self.flush()
        self._executor.shutdown(wait=wait)

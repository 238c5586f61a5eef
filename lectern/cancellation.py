"""Cooperative cancellation of in-flight answer streams."""

import threading
from typing import Set


class CancellationRegistry:
    """
    Thread-safe set of request ids whose streams should stop.

    Streams poll ``is_cancelled`` between lines; every terminal outcome
    calls ``clear`` so ids do not accumulate or leak into a reused id.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._cancelled: Set[str] = set()

    def cancel(self, request_id: str) -> None:
        with self._lock:
            self._cancelled.add(request_id)

    def is_cancelled(self, request_id: str) -> bool:
        with self._lock:
            return request_id in self._cancelled

    def clear(self, request_id: str) -> None:
        with self._lock:
            self._cancelled.discard(request_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._cancelled)

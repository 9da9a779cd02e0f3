"""
Bounded, in-memory listen queue shared by the evaluator and the worker.

- Holds at most QUEUE_MAX listens in completion order; a push past that is dropped.
- Entries only leave through clear(), after the server confirmed the batch.
- One condition variable guards the queue and wakes the worker on push.
"""

from __future__ import annotations
import logging
import threading
from typing import Callable, List

log = logging.getLogger("queue")

QUEUE_MAX = 50


class CapacityDropped(Exception): ...


class ListenQueue:
    def __init__(self, maxlen: int = QUEUE_MAX):
        self.maxlen = maxlen
        # re-entrant: the evaluator holds it across its own bookkeeping and push()
        self.lock = threading.Condition(threading.RLock())
        self._q: List = []

    def push(self, item) -> None:
        with self.lock:
            if len(self._q) >= self.maxlen:
                raise CapacityDropped(f"Submission queue is full ({self.maxlen})")
            self._q.append(item)
            self.lock.notify_all()

    def snapshot(self) -> list:
        """Copy of everything queued; nothing is removed."""
        with self.lock:
            return list(self._q)

    def clear(self, count: int | None = None) -> int:
        """
        Remove delivered entries from the front (all of them when count is None).
        Listens pushed after the snapshot was taken stay queued.
        """
        with self.lock:
            n = len(self._q) if count is None else min(count, len(self._q))
            del self._q[:n]
            return n

    def wait_until_non_empty(self, should_stop: Callable[[], bool] = lambda: False) -> bool:
        """Block until something is queued. Returns False if woken to stop instead."""
        with self.lock:
            while not self._q and not should_stop():
                self.lock.wait()
            return bool(self._q) and not should_stop()

    def wake(self) -> None:
        with self.lock:
            self.lock.notify_all()

    def size(self) -> int:
        with self.lock:
            return len(self._q)

# app/checkpoint/locks.py
from __future__ import annotations

import threading
from collections import defaultdict
from contextlib import contextmanager
from typing import Dict, Iterator


class ThreadLocks:
    """
    One mutex per conversation thread id.

    Turns on the same thread run one after another; different threads
    never wait on each other.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._holders: Dict[str, int] = defaultdict(int)

    @contextmanager
    def hold(self, thread_id: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks[thread_id]
            self._holders[thread_id] += 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._holders[thread_id] -= 1
                if self._holders[thread_id] == 0:
                    # Nobody is waiting; forget the lock so the registry stays small
                    del self._holders[thread_id]
                    del self._locks[thread_id]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

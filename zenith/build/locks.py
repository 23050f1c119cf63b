"""Single-flight lock table for the build stage.

Scopes:
  repository  One lock per repository name, created on demand and dropped
              when nobody holds or waits for it. Unrelated repositories
              build concurrently; same-name builds queue.
  global      Every key maps to one lock, so at most one build runs in
              the process at a time.

Waiters are released in whatever order ``threading.Lock`` grants them;
there is no fairness guarantee beyond that.
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator

GLOBAL_KEY = "*"


@dataclass
class _Slot:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class KeyedLock:
    def __init__(self, scope: str = "repository"):
        if scope not in ("repository", "global"):
            raise ValueError(f"unknown lock scope: {scope!r}")
        self.scope = scope
        self._guard = threading.Lock()
        self._slots: dict[str, _Slot] = {}

    def _slot_key(self, key: str) -> str:
        return GLOBAL_KEY if self.scope == "global" else key

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        """Block until the lock for ``key`` is free, hold it for the block."""
        slot_key = self._slot_key(key)
        with self._guard:
            slot = self._slots.setdefault(slot_key, _Slot())
            slot.users += 1

        slot.lock.acquire()
        try:
            yield
        finally:
            slot.lock.release()
            with self._guard:
                slot.users -= 1
                if slot.users == 0:
                    del self._slots[slot_key]

    def is_held(self, key: str) -> bool:
        with self._guard:
            slot = self._slots.get(self._slot_key(key))
            return slot is not None and slot.lock.locked()

    def __len__(self) -> int:
        with self._guard:
            return len(self._slots)

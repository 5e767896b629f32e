"""Per-request mutual exclusion for the approval state machine."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Hashable


class _Entry:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.holders = 0


class RequestLockManager:
    """Hands out one ``threading.Lock`` per request id.

    A lock exists only while some thread holds or waits for it; the last
    thread to leave removes it, so the table stays as small as the set of
    requests currently being worked on.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[Hashable, _Entry] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    @contextmanager
    def hold(self, request_id: Hashable) -> Iterator[None]:
        with self._guard:
            entry = self._entries.get(request_id)
            if entry is None:
                entry = self._entries[request_id] = _Entry()
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._entries[request_id]

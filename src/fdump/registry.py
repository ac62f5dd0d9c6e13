from __future__ import annotations

import threading
from typing import Iterator


class ActiveTransfers:
    """Names of files with a transfer in flight, shared across sessions."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._names: set[str] = set()

    def add(self, name: str) -> bool:
        """Claims `name`; False if it was already claimed."""
        with self._lock:
            if name in self._names:
                return False
            self._names.add(name)
            return True

    def remove(self, name: str) -> None:
        with self._lock:
            self._names.discard(name)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._names

    def __len__(self) -> int:
        with self._lock:
            return len(self._names)

    def __iter__(self) -> Iterator[str]:
        with self._lock:
            return iter(sorted(self._names))

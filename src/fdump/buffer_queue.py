from __future__ import annotations

import logging
import queue
import threading
from pathlib import Path
from typing import BinaryIO, Tuple, Union

from .constants import DEFAULT_CHUNK_SIZE, DEFAULT_RING_SLOTS, MAX_RING_SLOTS, MIN_RING_SLOTS
from .errors import LocalIOFailure

log = logging.getLogger(__name__)

_EOF = object()

ReadyItem = Union[Tuple[int, int], BaseException, object]


class BufferQueue:
    """Reads a file ahead of the consumer into a small ring of reusable buffers.

    Slot indices move between two channels: the free list (producer takes a
    slot to fill) and the ready channel (consumer takes a filled slot). A
    slot only returns to the free list through acknowledge(), so a buffer
    handed out by poll() is never refilled while the consumer still reads it.
    The producer blocks when every slot is filled or borrowed; poll() blocks
    while nothing is ready.
    """

    def __init__(
        self,
        f: BinaryIO,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        slots: int = DEFAULT_RING_SLOTS,
        name: str = "",
    ):
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive: {chunk_size}")
        if not MIN_RING_SLOTS <= slots <= MAX_RING_SLOTS:
            raise ValueError(f"slots must be in {MIN_RING_SLOTS}..{MAX_RING_SLOTS}: {slots}")
        self.f = f
        self.chunk_size = chunk_size
        self.name = name
        self._buffers = [bytearray(chunk_size) for _ in range(slots)]
        self._free: queue.Queue[int | None] = queue.Queue()
        for idx in range(slots):
            self._free.put(idx)
        self._ready: queue.Queue[ReadyItem] = queue.Queue()
        self._thread: threading.Thread | None = None
        self._closed = threading.Event()
        self._borrowed: int | None = None
        self._drained = False

    @classmethod
    def open(cls, path: str | Path, **kwargs) -> "BufferQueue":
        f = open(path, "rb")
        try:
            return cls(f, name=kwargs.pop("name", Path(path).name), **kwargs)
        except BaseException:
            f.close()
            raise

    @property
    def slots(self) -> int:
        return len(self._buffers)

    def start(self) -> None:
        if self._closed.is_set():
            raise RuntimeError("buffer queue is closed")
        if self._thread is not None:
            raise RuntimeError("producer already started")
        self._thread = threading.Thread(target=self._run, name=f"fdump-reader-{self.name}", daemon=True)
        self._thread.start()

    def _fill(self, buf: bytearray) -> int:
        view = memoryview(buf)
        total = 0
        while total < len(buf):
            n = self.f.readinto(view[total:])
            if not n:
                break
            total += n
        return total

    def _run(self) -> None:
        chunks = 0
        try:
            while True:
                idx = self._free.get()
                if idx is None or self._closed.is_set():
                    return
                n = self._fill(self._buffers[idx])
                if n == 0:
                    log.debug("reader %s: end of file after %d chunks", self.name, chunks)
                    self._ready.put(_EOF)
                    return
                chunks += 1
                self._ready.put((idx, n))
        except Exception as e:
            if not self._closed.is_set():
                self._ready.put(e)

    def poll(self) -> memoryview:
        """Blocks for the next chunk; a zero-length view marks the end of the file.

        The returned view is only valid until acknowledge().
        """
        if self._thread is None:
            raise RuntimeError("producer not started")
        if self._closed.is_set():
            raise RuntimeError("buffer queue is closed")
        if self._drained:
            raise RuntimeError("poll() after end of file")
        if self._borrowed is not None:
            raise RuntimeError("previous chunk not acknowledged")

        item = self._ready.get()
        if item is _EOF:
            self._drained = True
            return memoryview(b"")
        if isinstance(item, BaseException):
            self._drained = True
            if isinstance(item, OSError):
                raise LocalIOFailure(f"reading {self.name or 'source file'} failed: {item}") from item
            raise item

        idx, n = item  # type: ignore[misc]
        self._borrowed = idx
        return memoryview(self._buffers[idx])[:n].toreadonly()

    def acknowledge(self) -> None:
        """Hands the chunk returned by the last poll() back for refilling."""
        if self._borrowed is None:
            raise RuntimeError("no chunk to acknowledge")
        idx, self._borrowed = self._borrowed, None
        self._free.put(idx)

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        self._free.put(None)
        if self._thread is not None:
            self._thread.join()
        self.f.close()
        self._buffers = []
        self._borrowed = None

    def __enter__(self) -> "BufferQueue":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

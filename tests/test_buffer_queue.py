from __future__ import annotations

import io
import time

import pytest

from fdump.buffer_queue import BufferQueue
from fdump.errors import LocalIOFailure


class FailingFile(io.RawIOBase):
    """Serves `good` bytes, then fails like a dying disk."""

    def __init__(self, good: bytes):
        self._good = good
        self._pos = 0

    def readable(self):
        return True

    def readinto(self, b):
        if self._pos >= len(self._good):
            raise OSError(5, "Input/output error")
        n = min(len(b), len(self._good) - self._pos)
        b[:n] = self._good[self._pos : self._pos + n]
        self._pos += n
        return n


def drain(q: BufferQueue) -> list[bytes]:
    chunks = []
    while True:
        view = q.poll()
        if len(view) == 0:
            return chunks
        chunks.append(bytes(view))
        q.acknowledge()


def test_delivers_file_in_order(make_file):
    path = make_file(10 * 1000 + 123)
    with BufferQueue.open(path, chunk_size=1000, slots=2) as q:
        q.start()
        chunks = drain(q)
    assert [len(c) for c in chunks] == [1000] * 10 + [123]
    assert b"".join(chunks) == path.read_bytes()


def test_exact_multiple_has_no_empty_data_chunk(make_file):
    path = make_file(4096)
    with BufferQueue.open(path, chunk_size=1024) as q:
        q.start()
        assert [len(c) for c in drain(q)] == [1024] * 4


def test_empty_file_yields_sentinel_first(make_file):
    path = make_file(0)
    with BufferQueue.open(path, chunk_size=1024) as q:
        q.start()
        assert len(q.poll()) == 0


def test_sentinel_only_once(make_file):
    path = make_file(100)
    with BufferQueue.open(path, chunk_size=64) as q:
        q.start()
        drain(q)
        with pytest.raises(RuntimeError):
            q.poll()


def test_borrowed_slot_is_not_refilled(tmp_path):
    path = tmp_path / "pattern.bin"
    path.write_bytes(b"".join(bytes([i]) * 1024 for i in range(8)))
    with BufferQueue.open(path, chunk_size=1024, slots=2) as q:
        q.start()
        for i in range(8):
            view = q.poll()
            assert bytes(view) == bytes([i]) * 1024
            # give the producer time to fill every free slot
            time.sleep(0.02)
            assert bytes(view) == bytes([i]) * 1024
            q.acknowledge()
        assert len(q.poll()) == 0


def test_chunk_view_is_read_only(make_file):
    path = make_file(10)
    with BufferQueue.open(path, chunk_size=16) as q:
        q.start()
        view = q.poll()
        with pytest.raises(TypeError):
            view[0] = 1


def test_acknowledge_without_chunk(make_file):
    with BufferQueue.open(make_file(10), chunk_size=16) as q:
        q.start()
        with pytest.raises(RuntimeError):
            q.acknowledge()


def test_poll_requires_acknowledge(make_file):
    with BufferQueue.open(make_file(100), chunk_size=16) as q:
        q.start()
        q.poll()
        with pytest.raises(RuntimeError):
            q.poll()


def test_poll_before_start(make_file):
    with BufferQueue.open(make_file(10), chunk_size=16) as q:
        with pytest.raises(RuntimeError):
            q.poll()


def test_single_producer(make_file):
    with BufferQueue.open(make_file(10), chunk_size=16) as q:
        q.start()
        with pytest.raises(RuntimeError):
            q.start()


def test_read_error_surfaces_on_poll():
    q = BufferQueue(FailingFile(b"x" * 1024), chunk_size=1024, slots=2, name="bad.plot")
    with q:
        q.start()
        assert len(q.poll()) == 1024
        q.acknowledge()
        with pytest.raises(LocalIOFailure, match="bad.plot"):
            q.poll()


def test_close_unblocks_full_producer(make_file):
    f = open(make_file(64 * 1024), "rb")
    q = BufferQueue(f, chunk_size=1024, slots=2)
    q.start()
    q.poll()
    time.sleep(0.02)
    q.close()
    assert f.closed
    assert not q._thread.is_alive()


def test_close_is_idempotent(make_file):
    q = BufferQueue.open(make_file(10), chunk_size=16)
    q.close()
    q.close()
    assert q.f.closed
    with pytest.raises(RuntimeError):
        q.start()


@pytest.mark.parametrize("slots", [1, 5])
def test_slot_count_bounds(make_file, slots):
    with pytest.raises(ValueError):
        BufferQueue(io.BytesIO(b""), chunk_size=16, slots=slots)

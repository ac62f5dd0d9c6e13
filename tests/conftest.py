"""Shared fixtures: a loopback ingestion server and source files."""

from __future__ import annotations

import os
import socket
import threading
from dataclasses import dataclass, field
from typing import Optional

import pytest

from fdump.constants import EOF_MARKER
from fdump.wire import FRAME_HEADER, Handshake, encode_bool, parse_frame_header, read_handshake


@dataclass
class ReceivedTransfer:
    handshake: Optional[Handshake] = None
    frame_lengths: list = field(default_factory=list)
    data: bytearray = field(default_factory=bytearray)
    eof_count: int = 0
    trailing: bytes = b""
    error: Optional[BaseException] = None
    done: threading.Event = field(default_factory=threading.Event)


class IngestServer:
    """Speaks the server side of the dump protocol on 127.0.0.1, one thread per connection."""

    def __init__(
        self,
        accept: bool = True,
        success: bool = True,
        stall_after_handshake: bool = False,
        stall_before_success: bool = False,
        drop_after_frames: Optional[int] = None,
    ):
        self.accept = accept
        self.success = success
        self.stall_after_handshake = stall_after_handshake
        self.stall_before_success = stall_before_success
        self.drop_after_frames = drop_after_frames
        self.transfers: list[ReceivedTransfer] = []
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._sock.bind(("127.0.0.1", 0))
        self._sock.listen(16)
        self._sock.settimeout(0.1)
        self.addr = self._sock.getsockname()
        self._threads: list[threading.Thread] = []
        self._acceptor = threading.Thread(target=self._serve, daemon=True)

    def start(self) -> "IngestServer":
        self._acceptor.start()
        return self

    def _serve(self) -> None:
        while not self._stop.is_set():
            try:
                conn, _ = self._sock.accept()
            except socket.timeout:
                continue
            except OSError:
                return
            rec = ReceivedTransfer()
            with self._lock:
                self.transfers.append(rec)
            t = threading.Thread(target=self._handle, args=(conn, rec), daemon=True)
            self._threads.append(t)
            t.start()

    def _handle(self, conn: socket.socket, rec: ReceivedTransfer) -> None:
        conn.settimeout(5.0)
        f = conn.makefile("rb")

        def read_exact(n: int) -> bytes:
            data = f.read(n)
            if len(data) < n:
                raise ConnectionError("client closed the connection")
            return data

        try:
            rec.handshake = read_handshake(read_exact)
            if self.stall_after_handshake:
                self._stop.wait()
                return
            conn.sendall(encode_bool(self.accept))
            if self.accept:
                while True:
                    length = parse_frame_header(read_exact(FRAME_HEADER.size))
                    if length == EOF_MARKER:
                        rec.eof_count += 1
                        break
                    rec.frame_lengths.append(length)
                    rec.data += read_exact(length)
                    if self.drop_after_frames is not None and len(rec.frame_lengths) >= self.drop_after_frames:
                        return
                if self.stall_before_success:
                    self._stop.wait()
                    return
                conn.sendall(encode_bool(self.success))
            rec.trailing = f.read()
        except Exception as e:
            rec.error = e
        finally:
            f.close()
            conn.close()
            rec.done.set()

    @property
    def connections(self) -> int:
        with self._lock:
            return len(self.transfers)

    def wait(self, index: int = 0, timeout: float = 5.0) -> ReceivedTransfer:
        rec = self.transfers[index]
        assert rec.done.wait(timeout), "server never finished the transfer"
        return rec

    def close(self) -> None:
        self._stop.set()
        self._sock.close()
        self._acceptor.join(timeout=2.0)
        for t in self._threads:
            t.join(timeout=2.0)


@pytest.fixture
def ingest_server():
    servers = []

    def factory(**kwargs) -> IngestServer:
        server = IngestServer(**kwargs).start()
        servers.append(server)
        return server

    yield factory
    for server in servers:
        server.close()


@pytest.fixture
def make_file(tmp_path):
    def factory(size: int, name: str = "payload.bin"):
        path = tmp_path / name
        path.write_bytes(os.urandom(size))
        return path

    return factory


@pytest.fixture
def unused_port() -> int:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port

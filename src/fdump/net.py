from __future__ import annotations

import logging
import socket
from typing import Tuple

from .constants import DEFAULT_BLOCK_SIZE, DEFAULT_TIMEOUT_MS, DEFAULT_TRAFFIC_CLASS
from .wire import BOOL, decode_bool

log = logging.getLogger(__name__)


class TcpConnection:
    """One client connection: buffered writes with explicit flush, exact reads."""

    def __init__(self, sock: socket.socket, write_buffer: int = DEFAULT_BLOCK_SIZE):
        self.sock = sock
        self._out = sock.makefile("wb", buffering=write_buffer)
        self._in = sock.makefile("rb")

    @classmethod
    def connect(
        cls,
        addr: Tuple[str, int],
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        traffic_class: int = DEFAULT_TRAFFIC_CLASS,
        write_buffer: int = DEFAULT_BLOCK_SIZE,
    ) -> "TcpConnection":
        timeout = timeout_ms / 1000.0 if timeout_ms > 0 else None
        sock = socket.create_connection(addr, timeout=timeout)
        if traffic_class:
            try:
                sock.setsockopt(socket.IPPROTO_IP, socket.IP_TOS, traffic_class)
            except OSError as e:
                # not every address family accepts IP_TOS
                log.debug("could not set traffic class %d: %s", traffic_class, e)
        try:
            return cls(sock, write_buffer=write_buffer)
        except BaseException:
            sock.close()
            raise

    def write(self, data: bytes | memoryview) -> None:
        self._out.write(data)

    def flush(self) -> None:
        self._out.flush()

    def read_exact(self, n: int) -> bytes:
        data = self._in.read(n)
        if data is None or len(data) < n:
            raise ConnectionError(f"connection closed after {0 if data is None else len(data)} of {n} bytes")
        return data

    def read_bool(self) -> bool:
        return decode_bool(self.read_exact(BOOL.size))

    def close(self) -> None:
        # shut down first so closing the writer cannot block on a stalled peer;
        # anything still buffered at this point is discarded
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            log.debug("error shutting down socket: %s", e)
        for f in (self._in, self._out):
            try:
                f.close()
            except OSError as e:
                log.debug("error closing socket stream: %s", e)
        self.sock.close()

    def __enter__(self) -> "TcpConnection":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

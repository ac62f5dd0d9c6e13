from __future__ import annotations

import enum
import logging
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Tuple

from .buffer_queue import BufferQueue
from .errors import LocalIOFailure, ProtocolFailure, TransportFailure
from .net import TcpConnection
from .rate_limit import calc_delay
from .registry import ActiveTransfers
from .settings import Settings
from .wire import FRAME_HEADER, Handshake, eof_marker, frame_header

log = logging.getLogger(__name__)


class SessionState(enum.Enum):
    CREATED = "created"
    HANDSHAKE_SENT = "handshake_sent"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    TRANSFERRING = "transferring"
    EOF_SENT = "eof_sent"
    COMPLETED = "completed"
    FAILED = "failed"


class Outcome(enum.Enum):
    COMPLETED = "completed"
    REJECTED = "rejected"
    IN_FLIGHT = "in_flight"
    TRANSPORT_FAILURE = "transport_failure"
    PROTOCOL_FAILURE = "protocol_failure"
    LOCAL_IO_FAILURE = "local_io_failure"


@dataclass(frozen=True, slots=True)
class SourceFile:
    path: Path
    name: str
    size: int

    @classmethod
    def from_path(cls, path: str | Path) -> "SourceFile":
        p = Path(path)
        return cls(path=p, name=p.name, size=p.stat().st_size)


@dataclass(slots=True)
class TransferResult:
    outcome: Outcome
    name: str
    bytes_sent: int = 0
    frames_sent: int = 0
    start_ts: float = field(default_factory=time.monotonic)
    end_ts: float | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.COMPLETED

    @property
    def duration_s(self) -> float:
        if self.end_ts is None:
            return 0.0
        return max(0.0, self.end_ts - self.start_ts)

    @property
    def throughput_mbps(self) -> float:
        if self.duration_s <= 0:
            return 0.0
        return (self.bytes_sent * 8 / 1_000_000) / self.duration_s

    def as_dict(self) -> dict[str, Any]:
        return {
            "file": self.name,
            "outcome": self.outcome.value,
            "bytes": self.bytes_sent,
            "frames": self.frames_sent,
            "seconds": self.duration_s,
            "mbps": self.throughput_mbps,
            "error": None if self.error is None else str(self.error),
        }


class TransferSession:
    """Pushes one file to the ingestion service over a fresh connection.

    run() never raises for transfer failures; it reports them through the
    returned TransferResult. The file name is held in the registry for the
    whole session and released on every exit path. A retry is a new session
    starting again from byte 0.
    """

    def __init__(
        self,
        source: SourceFile,
        dest: Tuple[str, int],
        registry: ActiveTransfers,
        settings: Settings | None = None,
        transfer_limit: int | None = None,
    ):
        self.source = source
        self.dest = dest
        self.registry = registry
        self.settings = settings or Settings()
        limit = self.settings.transfer_limit if transfer_limit is None else transfer_limit
        self.transfer_limit = limit if limit > 0 else None
        self.state = SessionState.CREATED

    def run(self) -> TransferResult:
        name = self.source.name
        result = TransferResult(Outcome.IN_FLIGHT, name)
        if not self.registry.add(name):
            log.warning("Transfer already in flight for file: %s", name)
            result.end_ts = time.monotonic()
            return result

        try:
            result.outcome = self._transfer(result)
        except ProtocolFailure as e:
            self._failed(result, Outcome.PROTOCOL_FAILURE, e)
            log.error("Error during finalization of file transfer: %s", e)
        except LocalIOFailure as e:
            self._failed(result, Outcome.LOCAL_IO_FAILURE, e)
            log.error("Local I/O error for file %s: %s", name, e)
        except OSError as e:
            error = TransportFailure(f"transfer of {name} to {self.dest[0]}:{self.dest[1]} failed: {e}")
            error.__cause__ = e
            self._failed(result, Outcome.TRANSPORT_FAILURE, error)
            log.warning("Error in transfer of file %s, most likely connection was lost: %s", name, e)
            log.debug("transport failure detail", exc_info=True)
        except BaseException:
            self.state = SessionState.FAILED
            raise
        finally:
            self.registry.remove(name)
            result.end_ts = time.monotonic()
        return result

    def _failed(self, result: TransferResult, outcome: Outcome, error: BaseException) -> None:
        result.outcome = outcome
        result.error = error
        if self.state is not SessionState.COMPLETED:
            self.state = SessionState.FAILED

    def _transfer(self, result: TransferResult) -> Outcome:
        s = self.settings
        name = self.source.name
        with TcpConnection.connect(
            self.dest,
            timeout_ms=s.timeout_ms,
            traffic_class=s.traffic_class,
            write_buffer=s.block_size + FRAME_HEADER.size,
        ) as conn:
            if not self._handshake(conn):
                self.state = SessionState.REJECTED
                log.info(
                    "No space for, file already exists, or all paths in use: %s will retry in: %s seconds",
                    name,
                    s.file_check_interval,
                )
                return Outcome.REJECTED
            self.state = SessionState.ACCEPTED

            with self._open_queue() as chunks:
                chunks.start()
                log.info("Started transfer of file: %s (%d bytes)", name, self.source.size)
                self._stream(conn, chunks, result)
            self._finalize(conn)

        elapsed = max(0.001, time.monotonic() - result.start_ts)
        log.info(
            "Finished transfer for file: %s; throughput=%.2f MiB/s",
            name,
            result.bytes_sent / elapsed / (1024 * 1024),
        )
        if s.delete_after_transfer:
            self._delete_source()
        return Outcome.COMPLETED

    def _handshake(self, conn: TcpConnection) -> bool:
        conn.write(Handshake(self.source.name, self.source.size).to_bytes())
        conn.flush()
        self.state = SessionState.HANDSHAKE_SENT
        return conn.read_bool()

    def _open_queue(self) -> BufferQueue:
        try:
            return BufferQueue.open(
                self.source.path,
                chunk_size=self.settings.chunk_size,
                slots=self.settings.ring_slots,
                name=self.source.name,
            )
        except OSError as e:
            raise LocalIOFailure(f"cannot open {self.source.path}: {e}") from e

    def _stream(self, conn: TcpConnection, chunks: BufferQueue, result: TransferResult) -> None:
        self.state = SessionState.TRANSFERRING
        block = self.settings.block_size
        start = time.monotonic()
        while True:
            chunk = chunks.poll()
            size = len(chunk)
            if size == 0:
                break
            for offset in range(0, size, block):
                frame = chunk[offset : offset + block]
                conn.write(frame_header(len(frame)))
                conn.write(frame)
                conn.flush()
                result.frames_sent += 1
                result.bytes_sent += len(frame)
            chunks.acknowledge()

            delay = calc_delay(start, result.bytes_sent, self.transfer_limit)
            if delay > 0:
                log.debug("throttling %s for %.3fs at %d bytes", self.source.name, delay, result.bytes_sent)
                time.sleep(delay)

        if result.bytes_sent != self.source.size:
            log.warning(
                "File %s changed size during transfer: announced %d, sent %d bytes",
                self.source.name,
                self.source.size,
                result.bytes_sent,
            )

    def _finalize(self, conn: TcpConnection) -> None:
        conn.write(eof_marker())
        conn.flush()
        self.state = SessionState.EOF_SENT
        # waiting for the last reply also avoids a reset on a quick disconnect
        if not conn.read_bool():
            raise ProtocolFailure(f"server responded to end of transfer of {self.source.name} as failed")
        self.state = SessionState.COMPLETED

    def _delete_source(self) -> None:
        try:
            os.remove(self.source.path)
        except OSError as e:
            raise LocalIOFailure(f"cannot delete {self.source.path}: {e}") from e
        log.info("Deleted file: %s", self.source.path)


def send_file(
    path: str | Path,
    dest: Tuple[str, int],
    registry: ActiveTransfers | None = None,
    settings: Settings | None = None,
    transfer_limit: int | None = None,
) -> TransferResult:
    session = TransferSession(
        SourceFile.from_path(path),
        dest,
        registry if registry is not None else ActiveTransfers(),
        settings=settings,
        transfer_limit=transfer_limit,
    )
    return session.run()

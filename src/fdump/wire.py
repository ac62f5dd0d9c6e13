from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Callable

from .constants import (
    BOOL_FORMAT,
    EOF_MARKER,
    FILE_SIZE_FORMAT,
    FRAME_HEADER_FORMAT,
    MAX_NAME_BYTES,
    NAME_LEN_FORMAT,
)

NAME_LEN = struct.Struct(NAME_LEN_FORMAT)
FILE_SIZE = struct.Struct(FILE_SIZE_FORMAT)
FRAME_HEADER = struct.Struct(FRAME_HEADER_FORMAT)
BOOL = struct.Struct(BOOL_FORMAT)

ReadExact = Callable[[int], bytes]


@dataclass(frozen=True, slots=True)
class Handshake:
    """Opening message: file name and size in bytes."""

    name: str
    size: int

    def to_bytes(self) -> bytes:
        encoded = self.name.encode("utf-8")
        if len(encoded) > MAX_NAME_BYTES:
            raise ValueError(f"file name too long: {len(encoded)} bytes")
        if self.size < 0:
            raise ValueError(f"negative file size: {self.size}")
        return NAME_LEN.pack(len(encoded)) + encoded + FILE_SIZE.pack(self.size)

    @staticmethod
    def from_bytes(raw: bytes) -> "Handshake":
        if len(raw) < NAME_LEN.size:
            raise ValueError("handshake too short")
        (name_len,) = NAME_LEN.unpack_from(raw)
        expected = NAME_LEN.size + name_len + FILE_SIZE.size
        if len(raw) != expected:
            raise ValueError(f"handshake length mismatch: expected {expected}, got {len(raw)}")
        name = raw[NAME_LEN.size : NAME_LEN.size + name_len].decode("utf-8")
        (size,) = FILE_SIZE.unpack_from(raw, NAME_LEN.size + name_len)
        return Handshake(name=name, size=size)


def read_handshake(read_exact: ReadExact) -> Handshake:
    head = read_exact(NAME_LEN.size)
    (name_len,) = NAME_LEN.unpack(head)
    return Handshake.from_bytes(head + read_exact(name_len + FILE_SIZE.size))


def frame_header(length: int) -> bytes:
    if length <= 0:
        raise ValueError(f"data frame length must be positive: {length}")
    return FRAME_HEADER.pack(length)


def eof_marker() -> bytes:
    return FRAME_HEADER.pack(EOF_MARKER)


def parse_frame_header(raw: bytes) -> int:
    """Returns the payload length, or EOF_MARKER for the end of the stream."""
    (length,) = FRAME_HEADER.unpack(raw)
    if length <= 0 and length != EOF_MARKER:
        raise ValueError(f"invalid frame length: {length}")
    return length


def encode_bool(value: bool) -> bytes:
    return BOOL.pack(bool(value))


def decode_bool(raw: bytes) -> bool:
    if len(raw) != BOOL.size:
        raise ValueError(f"expected {BOOL.size} byte boolean, got {len(raw)}")
    return raw != b"\x00"

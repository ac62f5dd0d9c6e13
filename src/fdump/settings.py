"""Client settings: defaults, JSON loading and validation."""

from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from .constants import (
    DEFAULT_BLOCK_SIZE,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_FILE_CHECK_INTERVAL,
    DEFAULT_RING_SLOTS,
    DEFAULT_TIMEOUT_MS,
    DEFAULT_TRAFFIC_CLASS,
    MAX_RING_SLOTS,
    MIN_RING_SLOTS,
)


@dataclass(frozen=True, slots=True)
class Settings:
    chunk_size: int = DEFAULT_CHUNK_SIZE
    block_size: int = DEFAULT_BLOCK_SIZE
    ring_slots: int = DEFAULT_RING_SLOTS
    file_check_interval: float = DEFAULT_FILE_CHECK_INTERVAL
    delete_after_transfer: bool = False
    transfer_limit: int = 0  # bytes/s, 0 = unlimited
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    traffic_class: int = DEFAULT_TRAFFIC_CLASS

    def __post_init__(self) -> None:
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive: {self.chunk_size}")
        if self.block_size <= 0:
            raise ValueError(f"block_size must be positive: {self.block_size}")
        if self.block_size > self.chunk_size:
            raise ValueError(f"block_size {self.block_size} exceeds chunk_size {self.chunk_size}")
        if not MIN_RING_SLOTS <= self.ring_slots <= MAX_RING_SLOTS:
            raise ValueError(f"ring_slots must be in {MIN_RING_SLOTS}..{MAX_RING_SLOTS}: {self.ring_slots}")
        if self.file_check_interval < 0:
            raise ValueError(f"file_check_interval must not be negative: {self.file_check_interval}")
        if self.timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be positive: {self.timeout_ms}")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Settings":
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"unknown settings: {', '.join(unknown)}")
        return cls(**data)

    @classmethod
    def load(cls, path: str | Path) -> "Settings":
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{path}: expected a JSON object")
        return cls.from_mapping(data)

    def replace(self, **changes: Any) -> "Settings":
        """Copy with the non-None values of `changes` applied."""
        return dataclasses.replace(self, **{k: v for k, v in changes.items() if v is not None})

from __future__ import annotations

NAME_LEN_FORMAT = "!H"  # unsigned short byte length, then utf-8 name
FILE_SIZE_FORMAT = "!q"
FRAME_HEADER_FORMAT = "!i"
BOOL_FORMAT = "!?"

EOF_MARKER = -1
MAX_NAME_BYTES = 0xFFFF

DEFAULT_CHUNK_SIZE = 1024 * 1024
DEFAULT_BLOCK_SIZE = 64 * 1024
DEFAULT_RING_SLOTS = 3
MIN_RING_SLOTS = 2
MAX_RING_SLOTS = 4

DEFAULT_TIMEOUT_MS = 120_000
DEFAULT_TRAFFIC_CLASS = 24  # IPTOS_LOWDELAY | IPTOS_THROUGHPUT
DEFAULT_FILE_CHECK_INTERVAL = 30

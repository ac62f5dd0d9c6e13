from __future__ import annotations

import time


def calc_delay(start: float, sent: int, limit: int | None, now: float | None = None) -> float:
    """Seconds to pause so that `sent` bytes since `start` stay at or under `limit` bytes/s.

    `start` and `now` are time.monotonic() readings. A missing or non-positive
    limit means unlimited and always yields 0.
    """
    if limit is None or limit <= 0:
        return 0.0
    if now is None:
        now = time.monotonic()
    expected = sent / limit
    elapsed = now - start
    return max(0.0, expected - elapsed)

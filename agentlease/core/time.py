from __future__ import annotations

import time
from datetime import datetime, timezone


def utc_timestamp_iso() -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a Z suffix."""

    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def epoch_millis() -> int:
    return time.time_ns() // 1_000_000


def monotonic_millis() -> int:
    return time.monotonic_ns() // 1_000_000

"""Sortable identifiers for audit records."""

import threading
import time
from collections.abc import Callable
from datetime import datetime
from uuid import uuid4


class SortKeyGenerator:
    """Generates lexicographically increasing audit sort keys.

    Format: ``{epoch_ms:013d}-{sequence:020d}-{uuid4 hex}``. The sequence is
    read from the process-wide monotonic nanosecond clock and forced to
    increase per generator, so keys from independent generators in one
    process still sort in creation order within the same millisecond. The
    random suffix keeps keys from different processes distinct.
    """

    def __init__(self, monotonic: Callable[[], int] = time.monotonic_ns) -> None:
        self._monotonic = monotonic
        self._last = 0
        self._lock = threading.Lock()

    def next_key(self, at: datetime) -> str:
        epoch_ms = int(at.timestamp() * 1000)
        with self._lock:
            sequence = max(self._last + 1, self._monotonic())
            self._last = sequence
        return f"{epoch_ms:013d}-{sequence:020d}-{uuid4().hex}"

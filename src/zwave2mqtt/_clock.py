"""Wall clock port and system adapter.

Provides ClockPort (Protocol) and SystemClock for the epoch-millisecond
timestamps carried in status payloads (``{"value": ..., "time": ...}``).

**Why wall time?** Status messages are retained by the broker and read
by consumers on other hosts, so the timestamp must be an absolute epoch
value rather than a monotonic reading that only makes sense locally.
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class ClockPort(Protocol):
    """Wall clock used to stamp published status payloads.

    The default implementation wraps ``time.time()``.  Tests inject a
    deterministic fake clock for reproducible payloads.
    """

    def now(self) -> float:
        """Return the current time in seconds since the Unix epoch."""
        ...


class SystemClock:
    """Production clock wrapping ``time.time()``.

    Satisfies :class:`ClockPort` via structural subtyping — no
    base-class inheritance required (PEP 544).
    """

    def now(self) -> float:
        """Return seconds since the Unix epoch."""
        return time.time()


def epoch_ms(clock: ClockPort) -> int:
    """Return *clock*'s current time as integer epoch milliseconds."""
    return int(clock.now() * 1000)

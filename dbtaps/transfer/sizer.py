"""
Adaptive Chunk Sizer

Design Decision: Control Law
============================

Each chunk round trip is timed and the next chunk size is derived from the
previous size and that time, pushing the time into a target band:

| Measured time            | Next size            |
|--------------------------|----------------------|
| below the band           | previous * 2         |
| inside the band          | previous             |
| above the band           | previous - 10%       |
| above 3x the band's top  | previous / 3         |

- Doubling converges fast on an idle network
- The 10% step avoids oscillating around the band
- Dividing by 3 recovers quickly from a chunk that was far too heavy
- Never below 1 row; capped by max_size when one is configured

The sizer has no hidden state beyond the size itself, so a transfer resumed
from a saved TransferState keeps tuning from where it stopped.
"""

import time
from typing import Awaitable, Callable, Optional, Tuple, TypeVar

T = TypeVar('T')

DEFAULT_TARGET_LOW = 0.8
DEFAULT_TARGET_HIGH = 1.1
FAR_ABOVE_FACTOR = 3.0


class ChunkSizer:
    """Feedback controller for rows-per-chunk."""

    def __init__(self, target_low: float = DEFAULT_TARGET_LOW,
                 target_high: float = DEFAULT_TARGET_HIGH,
                 max_size: Optional[int] = None):
        if target_low <= 0 or target_high < target_low:
            raise ValueError(f"Invalid target band [{target_low}, {target_high}]")
        if max_size is not None and max_size < 1:
            raise ValueError(f"max_size must be at least 1, got {max_size}")
        self.target_low = target_low
        self.target_high = target_high
        self.max_size = max_size

    def next_size(self, previous_size: int, elapsed: float) -> int:
        """Propose the next chunk size from the last size and its cost."""
        previous_size = max(1, int(previous_size))

        if elapsed < self.target_low:
            new_size = previous_size * 2
        elif elapsed <= self.target_high:
            new_size = previous_size
        elif elapsed > self.target_high * FAR_ABOVE_FACTOR:
            new_size = previous_size // 3
        else:
            new_size = previous_size - max(1, previous_size // 10)

        # The cap only limits growth; it never shrinks a chunk that was fast
        if self.max_size is not None and new_size > previous_size:
            new_size = max(previous_size, min(new_size, self.max_size))
        return max(1, new_size)

    async def measure(self, operation: Callable[[], Awaitable[T]]) -> Tuple[T, float]:
        """Await `operation` and return its result with the elapsed time."""
        started = time.perf_counter()
        result = await operation()
        return result, time.perf_counter() - started

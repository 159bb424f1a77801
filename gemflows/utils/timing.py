# gemflows/utils/timing.py
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional


# ---------------- Monotonic time helpers ----------------

def now_ms() -> int:
    """Monotonic time in milliseconds."""
    return time.monotonic_ns() // 1_000_000


# ---------------- Stopwatch ----------------

@dataclass
class Stopwatch:
    """Simple stopwatch usable as a context manager."""
    start_ms: Optional[int] = None
    stop_ms: Optional[int] = None

    def start(self) -> "Stopwatch":
        self.start_ms = now_ms()
        self.stop_ms = None
        return self

    def stop(self) -> int:
        self.stop_ms = now_ms()
        return self.elapsed_ms()

    def elapsed_ms(self) -> int:
        if self.start_ms is None:
            return 0
        end = self.stop_ms if self.stop_ms is not None else now_ms()
        return max(0, end - self.start_ms)

    def __enter__(self) -> "Stopwatch":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        # freeze the reading whether the block raised or not
        self.stop()
        return None


def format_duration(ms: int) -> str:
    return f"{ms} ms" if ms < 1000 else f"{ms / 1000:.3f} s"

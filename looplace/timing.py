from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Protocol

# Instants are plain float milliseconds on a monotonic timeline.
Instant = float


class Clock(Protocol):
    def now(self) -> Instant:
        raise NotImplementedError


@dataclass(frozen=True)
class MonotonicClock:
    def now(self) -> Instant:
        return time.perf_counter() * 1000.0


@dataclass
class ManualClock:
    """Virtual clock for replay; only moves when told to."""

    current_ms: float = 0.0

    def now(self) -> Instant:
        return self.current_ms

    def advance(self, ms: float) -> Instant:
        if ms < 0:
            raise ValueError(f"cannot move a monotonic clock backwards ({ms} ms)")
        self.current_ms += float(ms)
        return self.current_ms

    def set(self, at_ms: float) -> Instant:
        return self.advance(float(at_ms) - self.current_ms)


def duration_ms(start: Instant, end: Instant) -> float:
    return max(0.0, float(end) - float(start))


def ms_to_minutes(ms: float) -> float:
    return ms / 1000.0 / 60.0

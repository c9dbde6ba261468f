import math
import time


def monotonic_seconds() -> float:
    return time.monotonic()


class VirtualClock:
    """Manually advanced clock; drop-in for time.monotonic in headless runs and tests."""

    def __init__(self, start: float = 0.0):
        self._now = float(start)

    def __call__(self) -> float:
        return self._now

    def advance(self, seconds: float) -> float:
        if seconds < 0:
            raise ValueError("VirtualClock cannot go backwards")
        self._now += seconds
        return self._now


def capped_frame_seconds(previous: float, now: float, max_seconds: float) -> float:
    # a paused or backgrounded driver must not produce one huge step
    return min(max(now - previous, 0.0), max_seconds)


def format_simulated_minutes(minutes: float) -> str:
    minutes = max(0.0, minutes)
    hours = int(math.floor(minutes / 60))
    mins = int(math.floor(minutes % 60))
    return (f"{hours} {'Hour' if hours == 1 else 'Hours'} and "
            f"{mins} {'Minute' if mins == 1 else 'Minutes'}")

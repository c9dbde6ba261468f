"""
Shared simulation clock.

One synchronizer maps wall-clock time to a normalized progress in [0, 1] and
to simulated minutes, so every filter instance driven by it reaches the end of
its completion curve against the same timeline.

States:
    IDLE        no start timestamp yet; the first query starts the clock
    RUNNING     progress = clamp((now - start) / total_wall_seconds, 0, 1)
    RESTARTING  progress pinned at 1.0 until the restart delay has elapsed

Reads (`progress`, `simulated_minutes`) never fire reset hooks. The restart
itself happens in `update()`, which the owner calls once per scheduler tick,
so hooks always run on the driving thread and never in the middle of a frame.
"""
import logging
from enum import Enum
from typing import Callable, Iterable, List, Optional

from .config import SimulationConfig
from .utils_time import monotonic_seconds

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    RESTARTING = "restarting"


class GlobalTimeSynchronizer:
    def __init__(self, total_wall_seconds: float = 180.0, restart_delay_seconds: float = 3.0,
                 auto_loop: bool = True, clock: Optional[Callable[[], float]] = None):
        if total_wall_seconds <= 0:
            raise ValueError("total_wall_seconds must be > 0")
        if restart_delay_seconds < 0:
            raise ValueError("restart_delay_seconds must be >= 0")

        self.total_wall_seconds = float(total_wall_seconds)
        self.restart_delay_seconds = float(restart_delay_seconds)
        self.auto_loop = auto_loop
        self.clock = clock or monotonic_seconds

        self.start_timestamp: Optional[float] = None
        self.max_simulated_target = 0.0
        self.is_restarting = False
        self.cycles = 0
        self._restart_due: Optional[float] = None
        self._hooks: List[Callable[[], None]] = []

    @classmethod
    def from_config(cls, cfg: SimulationConfig, clock=None) -> "GlobalTimeSynchronizer":
        return cls(cfg.total_wall_seconds, cfg.restart_delay_seconds, cfg.auto_loop, clock)

    @property
    def state(self) -> SyncState:
        if self.start_timestamp is None:
            return SyncState.IDLE
        return SyncState.RESTARTING if self.is_restarting else SyncState.RUNNING

    # ---------------------------
    # Configuration / hooks
    # ---------------------------

    def configure(self, pass_counts: Iterable[int], air_exchanges_per_hour: float = 6.0) -> float:
        """maxSimulatedTarget = slowest filter's passes * minutes per pass."""
        minutes_per_pass = 60.0 / air_exchanges_per_hour
        self.max_simulated_target = max((p * minutes_per_pass for p in pass_counts), default=0.0)
        logger.info(f"Simulated target set to {self.max_simulated_target:.1f} min")
        return self.max_simulated_target

    def add_reset_hook(self, hook: Callable[[], None]):
        if hook not in self._hooks:
            self._hooks.append(hook)

    def remove_reset_hook(self, hook: Callable[[], None]):
        if hook in self._hooks:
            self._hooks.remove(hook)

    @property
    def hook_count(self) -> int:
        return len(self._hooks)

    # ---------------------------
    # Clock
    # ---------------------------

    def _started(self) -> float:
        if self.start_timestamp is None:
            self.start_timestamp = self.clock()
            logger.debug("Synchronizer started")
        return self.start_timestamp

    def _raw_progress(self, now: float) -> float:
        p = (now - self._started()) / self.total_wall_seconds
        return min(max(p, 0.0), 1.0)

    def progress(self) -> float:
        if self.is_restarting:
            return 1.0
        p = self._raw_progress(self.clock())
        if p >= 1.0 and self.auto_loop:
            self._begin_restart()
        return p

    def simulated_minutes(self) -> float:
        p = self.progress()
        if self.is_restarting:
            return self.max_simulated_target
        return p * self.max_simulated_target

    def _begin_restart(self):
        self.is_restarting = True
        self._restart_due = self._started() + self.total_wall_seconds + self.restart_delay_seconds
        logger.info(f"Cycle complete, restarting in {self.restart_delay_seconds:.1f}s")

    def update(self) -> SyncState:
        """Drive state transitions; call once per scheduler tick."""
        # a cycle that ends during this update is held at 1.0 for at least one frame
        was_restarting = self.is_restarting
        self.progress()
        if was_restarting and self.clock() >= self._restart_due:
            self.cycles += 1
            self.reset()
        return self.state

    def reset(self):
        """Start a fresh cycle now, cancel any pending restart and run every reset hook once."""
        self.is_restarting = False
        self._restart_due = None
        self.start_timestamp = self.clock()
        for hook in list(self._hooks):
            hook()
        logger.info(f"Synchronizer reset ({len(self._hooks)} hooks)")

    def teardown(self):
        self._hooks.clear()
        self.start_timestamp = None
        self.is_restarting = False
        self._restart_due = None

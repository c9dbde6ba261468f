import itertools
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Tuple

import numpy as np

from .channel import ParallelUpdateChannel
from .config import FilterParams, SimulationConfig, time_to_complete_minutes
from .particles import (BoundaryMode, MotionModel, Particle, StepParameters,
                        fill_room, spawn_inlet)
from .stepping import advance
from .sync import GlobalTimeSynchronizer
from .velocity_field import VelocityField, clamp

logger = logging.getLogger(__name__)


class Scenario(str, Enum):
    SINGLE = "single"  # flow once through the domain, spawn continuously at the inlet
    MULTI = "multi"    # recirculating room, driven by the completion curve


DEFAULT_BOUNDARY = {
    Scenario.SINGLE: BoundaryMode.EXIT,
    Scenario.MULTI: BoundaryMode.WRAP,
}


@dataclass(frozen=True)
class InstanceMetrics:
    filter_key: str
    scenario: Scenario
    simulated_minutes: float
    time_progress: float
    target_efficiency: float
    removal_fraction: float
    initial_pathogens: int
    live_pathogens: int
    captured_pathogens: int
    total_particles: int
    is_complete: bool
    completion_minutes: Optional[float]
    airflow_cfm: float
    synthetic: bool
    fallback: bool


@dataclass(frozen=True)
class RenderFrame:
    filter_key: str
    particles: Tuple[Particle, ...]
    metrics: InstanceMetrics
    bounds: Optional[Tuple[float, float, float, float]]
    filter_zone: Optional[Tuple[float, float]]


class SimulationInstance:
    """
    One filter's particle population and its removal timeline.

    The instance is ticked by its owner; it never reads presentation state.
    With a channel the particle update runs in a worker: the current set stays
    authoritative until the reply arrives, removals and spawns made meanwhile
    are reapplied on top of it, and a reply from before a reset is discarded.
    """

    def __init__(self, filter_key: str, params: FilterParams,
                 synchronizer: GlobalTimeSynchronizer,
                 cfg: Optional[SimulationConfig] = None,
                 scenario=Scenario.MULTI,
                 motion_model=MotionModel.ADVECTIVE,
                 seed: Optional[int] = None,
                 channel: Optional[ParallelUpdateChannel] = None,
                 boundary=None,
                 renderable: bool = True):
        self.filter_key = filter_key
        self.params = params
        self.sync = synchronizer
        self.cfg = cfg or SimulationConfig()
        self.scenario = Scenario(scenario)
        self.renderable = renderable
        self.channel = channel

        boundary = BoundaryMode(boundary) if boundary is not None else DEFAULT_BOUNDARY[self.scenario]
        self.step_params = StepParameters.from_config(params, self.cfg, motion_model, boundary)
        self.time_to_complete_minutes = time_to_complete_minutes(params, self.cfg)

        self.rng = np.random.default_rng(seed)
        self._ids = itertools.count()

        self.field: Optional[VelocityField] = None
        self.particles: Tuple[Particle, ...] = ()
        self.initial_pathogens = 0
        self.is_complete = False
        self.completion_minutes: Optional[float] = None
        self.destroyed = False

        self._populated = False
        self._spawn_accum = 0.0
        self._generation = 0

        # worker bookkeeping
        self._pending_dt = 0.0
        self._flight_generation = 0
        self._removed_in_flight = set()
        self._spawned_in_flight: List[Particle] = []

        if channel is not None:
            channel.set_parameters(self.step_params)
        self.sync.add_reset_hook(self._on_reset)
        logger.debug(f"[{filter_key}] instance created ({self.scenario.value}, "
                     f"{self.time_to_complete_minutes:.0f} min to complete)")

    # ---------------------------
    # Field / lifecycle
    # ---------------------------

    def set_field(self, field: Optional[VelocityField]):
        self.field = field
        if self.channel is not None:
            self.channel.set_field(field)

    def _on_reset(self):
        self.particles = ()
        self.initial_pathogens = 0
        self.is_complete = False
        self.completion_minutes = None
        self._populated = False
        self._spawn_accum = 0.0
        self._pending_dt = 0.0
        self._removed_in_flight.clear()
        self._spawned_in_flight = []
        self._generation += 1
        logger.debug(f"[{self.filter_key}] reset")

    def destroy(self):
        if self.destroyed:
            return
        self.destroyed = True
        self.sync.remove_reset_hook(self._on_reset)
        if self.channel is not None:
            self.channel.close()
        self.particles = ()
        logger.debug(f"[{self.filter_key}] destroyed")

    # ---------------------------
    # Population
    # ---------------------------

    def _populate(self):
        if self.scenario is Scenario.MULTI:
            room = fill_room(next(self._ids), self.field, self.rng, self.cfg)
            # fill_room numbers its particles consecutively from the id given
            self._ids = itertools.count(room[-1].id + 1 if room else 0)
            self._add(room)
            self.initial_pathogens = sum(1 for p in room if p.is_pathogen)
        else:
            self._add(self._spawn(self.cfg.single_initial_count))
        self._populated = True

    def _spawn(self, n: int) -> Tuple[Particle, ...]:
        return tuple(spawn_inlet(next(self._ids), self.field, self.rng,
                                 self.cfg.single_pathogen_fraction, self.cfg)
                     for _ in range(n))

    def _add(self, new: Iterable[Particle]):
        new = tuple(new)
        self.particles = self.particles + new
        if self.channel is not None and self.channel.busy:
            self._spawned_in_flight.extend(new)

    def _drop(self, ids):
        ids = set(ids)
        if not ids:
            return
        self.particles = tuple(p for p in self.particles if p.id not in ids)
        if self.channel is not None and self.channel.busy:
            self._removed_in_flight |= ids
            self._spawned_in_flight = [p for p in self._spawned_in_flight if p.id not in ids]

    # ---------------------------
    # Tick
    # ---------------------------

    def tick(self, dt: float):
        if self.destroyed:
            return
        dt = min(max(dt, 0.0), self.cfg.max_frame_seconds)

        if self.field is not None and not self._populated and not self.is_complete:
            self._populate()

        self._step(dt)

        if self.scenario is Scenario.MULTI:
            self._apply_completion_curve()
        elif self.field is not None:
            self._spawn_continuous(dt)

    def _step(self, dt: float):
        seed = int(self.rng.integers(0, 2 ** 32))
        ch = self.channel
        if ch is None:
            self.particles = advance(self.particles, self.field, self.step_params, dt, seed)
            return

        self._collect()
        self._pending_dt = min(self._pending_dt + dt, self.cfg.max_frame_seconds)
        if ch.busy or self.field is None or self._pending_dt <= 0:
            return

        ch.set_particles(self.particles)
        self._flight_generation = self._generation
        self._removed_in_flight = set()
        self._spawned_in_flight = []
        if ch.request_advance(self._pending_dt, seed):
            self._pending_dt = 0.0
        # in fallback the result is ready immediately
        self._collect()

    def _collect(self):
        snapshot = self.channel.poll()
        if snapshot is None:
            return
        if self._flight_generation != self._generation:
            return
        kept = tuple(p for p in snapshot if p.id not in self._removed_in_flight)
        self.particles = kept + tuple(self._spawned_in_flight)
        self._removed_in_flight = set()
        self._spawned_in_flight = []

    def _spawn_continuous(self, dt: float):
        self._spawn_accum += dt * self.cfg.single_spawn_per_second
        n = int(self._spawn_accum)
        if n:
            self._spawn_accum -= n
            self._add(self._spawn(n))
        excess = len(self.particles) - self.cfg.single_max_particles
        if excess > 0:
            # oldest first: particles are kept in spawn order
            self._drop(p.id for p in self.particles[:excess])

    # ---------------------------
    # Completion curve
    # ---------------------------

    def efficiency_target(self, t: float) -> float:
        """1 - exp(-k t) on t in [0, 1), exactly 1.0 from t = 1."""
        if t >= 1.0:
            return 1.0
        return 1.0 - math.exp(-self.cfg.curve_steepness * max(t, 0.0))

    def time_progress(self) -> float:
        return clamp(self.sync.simulated_minutes() / self.time_to_complete_minutes, 0.0, 1.0)

    def live_pathogens(self) -> List[Particle]:
        return [p for p in self.particles if p.is_live_pathogen]

    def removal_fraction(self) -> float:
        if self.is_complete:
            return 1.0
        if self.initial_pathogens == 0:
            return 0.0
        return (self.initial_pathogens - len(self.live_pathogens())) / self.initial_pathogens

    def _apply_completion_curve(self):
        if self.is_complete:
            return
        t = self.time_progress()
        if t >= 1.0:
            self._drop(p.id for p in self.particles if p.is_pathogen)
            self.is_complete = True
            self.completion_minutes = self.sync.simulated_minutes()
            logger.info(f"[{self.filter_key}] complete at {self.completion_minutes:.1f} simulated min")
            return
        if not self._populated or self.initial_pathogens == 0:
            return

        live = sorted(self.live_pathogens(), key=lambda p: p.id)
        removed = self.initial_pathogens - len(live)
        needed = math.ceil(self.efficiency_target(t) * self.initial_pathogens - 1e-9) - removed
        if needed <= 0 or not live:
            return
        needed = min(needed, len(live))
        stride = max(1, len(live) // needed)
        self._drop(p.id for p in live[::stride][:needed])

    # ---------------------------
    # Read-out
    # ---------------------------

    def metrics(self) -> InstanceMetrics:
        minutes = self.sync.simulated_minutes()
        t = clamp(minutes / self.time_to_complete_minutes, 0.0, 1.0)
        pathogens = [p for p in self.particles if p.is_pathogen]
        captured = sum(1 for p in pathogens if p.captured)
        live = len(pathogens) - captured

        if self.scenario is Scenario.MULTI:
            removal = self.removal_fraction()
        else:
            removal = captured / len(pathogens) if pathogens else 0.0

        cfg = self.cfg
        airflow = cfg.inlet_cfm - self.params.pressure_drop_fraction * (cfg.inlet_cfm - cfg.min_cfm)
        return InstanceMetrics(
            filter_key=self.filter_key,
            scenario=self.scenario,
            simulated_minutes=minutes,
            time_progress=t,
            target_efficiency=self.efficiency_target(t),
            removal_fraction=removal,
            initial_pathogens=self.initial_pathogens,
            live_pathogens=live,
            captured_pathogens=captured,
            total_particles=len(self.particles),
            is_complete=self.is_complete,
            completion_minutes=self.completion_minutes,
            airflow_cfm=airflow,
            synthetic=bool(self.field is not None and self.field.synthetic),
            fallback=bool(self.channel is not None and self.channel.fallback),
        )

    def snapshot(self) -> Tuple[Particle, ...]:
        return self.particles

    def render_frame(self) -> Optional[RenderFrame]:
        if not self.renderable:
            return None
        field = self.field
        zone = self.step_params.zone_for(field) if field is not None else None
        return RenderFrame(
            filter_key=self.filter_key,
            particles=self.particles,
            metrics=self.metrics(),
            bounds=tuple(field.bounds) if field is not None else None,
            filter_zone=(zone.start, zone.end) if zone is not None else None,
        )

import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Tuple

import numpy as np

from .config import FilterParams, SimulationConfig
from .velocity_field import VelocityField, clamp


class Species(str, Enum):
    AIR = "air"
    PATHOGEN = "pathogen"


class MotionModel(str, Enum):
    ADVECTIVE = "advective"    # velocity snaps to the local fluid velocity each step
    LAGRANGIAN = "lagrangian"  # velocity relaxes toward the fluid with a first-order lag


class BoundaryMode(str, Enum):
    """What happens on the along-flow (x) axis at the domain edge."""
    EXIT = "exit"        # destroyed past the outlet
    RESPAWN = "respawn"  # past the outlet -> back to the inlet
    WRAP = "wrap"        # recirculate: outlet feeds the inlet
    REFLECT = "reflect"  # bounce off every wall


# ---------------------------
# Data model
# ---------------------------

@dataclass(frozen=True)
class FilterZone:
    start: float
    end: float

    def __post_init__(self):
        if not self.start < self.end:
            raise ValueError(f"Filter zone must have start < end, got [{self.start}, {self.end}]")

    def contains(self, x: float) -> bool:
        return self.start <= x <= self.end

    @classmethod
    def from_fractions(cls, field: VelocityField, fractions: Tuple[float, float]) -> "FilterZone":
        lo, hi = fractions
        return cls(field.x_min + lo * field.width, field.x_min + hi * field.width)


@dataclass(frozen=True)
class Particle:
    id: int
    species: Species
    x: float
    y: float
    vx: float = 0.0
    vy: float = 0.0
    captured: bool = False
    age: float = 0.0
    inertia: float = 1.0

    @property
    def is_pathogen(self) -> bool:
        return self.species is Species.PATHOGEN

    @property
    def is_live_pathogen(self) -> bool:
        return self.species is Species.PATHOGEN and not self.captured


@dataclass(frozen=True)
class StepParameters:
    pressure_drop_fraction: float
    removal_efficiency_percent: float
    motion_model: MotionModel = MotionModel.ADVECTIVE
    boundary: BoundaryMode = BoundaryMode.EXIT
    filter_zone: Tuple[float, float] = (0.48, 0.52)
    visual_speed_scale: float = 0.1
    turbulence_intensity: float = 0.1
    capture_scale: float = 0.15
    relaxation_base_seconds: float = 0.01
    brownian_air: float = 0.005
    brownian_pathogen: float = 0.01

    @classmethod
    def from_config(cls, params: FilterParams, cfg: SimulationConfig,
                    motion_model: MotionModel = MotionModel.ADVECTIVE,
                    boundary: BoundaryMode = BoundaryMode.EXIT) -> "StepParameters":
        return cls(
            pressure_drop_fraction=params.pressure_drop_fraction,
            removal_efficiency_percent=params.removal_efficiency_percent,
            motion_model=MotionModel(motion_model),
            boundary=BoundaryMode(boundary),
            filter_zone=tuple(cfg.filter_zone),
            visual_speed_scale=cfg.visual_speed_scale,
            turbulence_intensity=cfg.turbulence_intensity,
            capture_scale=cfg.capture_scale,
            relaxation_base_seconds=cfg.relaxation_base_seconds,
            brownian_air=cfg.brownian_air,
            brownian_pathogen=cfg.brownian_pathogen,
        )

    def zone_for(self, field: VelocityField) -> FilterZone:
        return FilterZone.from_fractions(field, self.filter_zone)


# ---------------------------
# Spawning
# ---------------------------

def spawn_inlet(pid: int, field: VelocityField, rng: np.random.Generator,
                pathogen_fraction: float, cfg: SimulationConfig) -> Particle:
    """New particle on the inlet edge at a random cross-stream position."""
    pathogen = rng.random() < pathogen_fraction
    return Particle(
        id=pid,
        species=Species.PATHOGEN if pathogen else Species.AIR,
        x=field.x_min,
        y=field.y_min + rng.random() * field.height,
        inertia=cfg.pathogen_inertia if pathogen else cfg.air_inertia,
    )


def fill_room(first_id: int, field: VelocityField, rng: np.random.Generator,
              cfg: SimulationConfig) -> Tuple[Particle, ...]:
    """Room pre-fill: air then pathogens, uniform over the domain with random headings."""
    out = []
    pid = first_id
    for species, count, inertia in ((Species.AIR, cfg.multi_air_count, cfg.air_inertia),
                                    (Species.PATHOGEN, cfg.multi_pathogen_count, cfg.pathogen_inertia)):
        for _ in range(count):
            ang = rng.random() * 2 * math.pi
            out.append(Particle(
                id=pid,
                species=species,
                x=field.x_min + rng.random() * field.width,
                y=field.y_min + rng.random() * field.height,
                vx=cfg.multi_base_speed * math.cos(ang),
                vy=cfg.multi_base_speed * math.sin(ang),
                inertia=inertia,
            ))
            pid += 1
    return tuple(out)


# ---------------------------
# Motion
# ---------------------------

def _reflect(pos, v, lo, hi):
    if pos < lo:
        pos, v = 2 * lo - pos, -v
    elif pos > hi:
        pos, v = 2 * hi - pos, -v
    # overshoot larger than the domain
    return clamp(pos, lo, hi), v


def move(particle: Particle, field: VelocityField, dt: float,
         params: StepParameters, rng: np.random.Generator) -> Optional[Particle]:
    """
    Advance one particle by dt (explicit Euler). Returns None when the particle
    leaves through the outlet in EXIT mode. Captured particles stay pinned.
    """
    if particle.captured:
        return replace(particle, age=particle.age + dt)

    ux, uy = field.interpolate(particle.x, particle.y)
    ux *= params.visual_speed_scale
    uy *= params.visual_speed_scale

    if params.motion_model is MotionModel.ADVECTIVE:
        jx = (rng.random() - 0.5) * params.turbulence_intensity
        jy = (rng.random() - 0.5) * params.turbulence_intensity
        vx = ux + jx * params.visual_speed_scale
        vy = uy + jy * params.visual_speed_scale
        x = particle.x + vx * dt
        y = particle.y + vy * dt
    else:
        tau = params.relaxation_base_seconds * particle.inertia
        # exact solution of dv/dt = (u - v) / tau over dt
        decay = math.exp(-dt / tau)
        vx = ux + (particle.vx - ux) * decay
        vy = uy + (particle.vy - uy) * decay

        b = params.brownian_pathogen if particle.is_pathogen else params.brownian_air
        bx = (rng.random() - 0.5) * b
        by = (rng.random() - 0.5) * b
        x = particle.x + (vx + bx) * dt
        y = particle.y + (vy + by) * dt

    mode = params.boundary
    if mode is BoundaryMode.REFLECT:
        x, vx = _reflect(x, vx, field.x_min, field.x_max)
        y, vy = _reflect(y, vy, field.y_min, field.y_max)
    else:
        y = clamp(y, field.y_min, field.y_max)
        if mode is BoundaryMode.WRAP:
            if x < field.x_min or x > field.x_max:
                x = field.x_min + (x - field.x_min) % field.width
        elif x > field.x_max:
            if mode is BoundaryMode.EXIT:
                return None
            return replace(particle, x=field.x_min, y=field.y_min + rng.random() * field.height,
                           vx=0.0, vy=0.0, age=0.0)
        elif x < field.x_min:
            x = field.x_min

    return replace(particle, x=x, y=y, vx=vx, vy=vy, age=particle.age + dt)

from typing import Iterable, Optional, Tuple

import numpy as np

from .capture import attempt_capture, pin_to_filter
from .particles import Particle, StepParameters, move
from .velocity_field import VelocityField


def transition(particle: Particle, field: VelocityField, dt: float,
               params: StepParameters, rng: np.random.Generator) -> Optional[Particle]:
    """One particle, one step: motion, boundary handling, then the capture trial."""
    moved = move(particle, field, dt, params, rng)
    if moved is None:
        return None

    zone = params.zone_for(field)
    if attempt_capture(particle, moved, zone, params.removal_efficiency_percent,
                       rng, params.capture_scale):
        return pin_to_filter(moved, zone, rng, y_range=(field.y_min, field.y_max))
    return moved


def advance(particles: Iterable[Particle], field: Optional[VelocityField],
            params: StepParameters, dt: float, seed: int) -> Tuple[Particle, ...]:
    """
    Advance a whole population by dt.

    Pure: the only randomness comes from a generator seeded with `seed`, so the
    in-thread path and the worker path give identical results for the same input.
    With no field yet, particles are returned unchanged.
    """
    particles = tuple(particles)
    if field is None or dt <= 0:
        return particles

    rng = np.random.default_rng(seed)
    out = []
    for p in particles:
        nxt = transition(p, field, dt, params, rng)
        if nxt is not None:
            out.append(nxt)
    return tuple(out)

"""
Filter capture model.

A pathogen is evaluated while it crosses into or sits inside the filter zone.
Each evaluated step is a Bernoulli trial with probability
(removal_efficiency_percent / 100) * capture_scale, so capture is spread over
the particle's residence time in the medium instead of happening on first
contact. Captured particles are pinned inside the zone with zero velocity.
"""
from dataclasses import replace
from typing import Optional, Tuple

import numpy as np

from .particles import FilterZone, Particle, Species
from .velocity_field import clamp

PIN_JITTER = 0.005  # cross-stream scatter of pinned particles


def is_evaluated(previous: Particle, current: Particle, zone: FilterZone) -> bool:
    if current.species is not Species.PATHOGEN or previous.captured or current.captured:
        return False
    crossed = previous.x < zone.start <= current.x
    return crossed or zone.contains(current.x)


def attempt_capture(previous: Particle, current: Particle, zone: FilterZone,
                    removal_efficiency_percent: float, rng: np.random.Generator,
                    capture_scale: float = 0.15) -> bool:
    if not is_evaluated(previous, current, zone):
        return False
    p = clamp(removal_efficiency_percent / 100.0, 0.0, 1.0) * capture_scale
    return bool(rng.random() < p)


def pin_to_filter(particle: Particle, zone: FilterZone, rng: np.random.Generator,
                  y_range: Optional[Tuple[float, float]] = None) -> Particle:
    x = zone.start + (zone.end - zone.start) * rng.random()
    y = particle.y + (rng.random() - 0.5) * PIN_JITTER
    if y_range is not None:
        y = clamp(y, y_range[0], y_range[1])
    return replace(particle, x=x, y=y, vx=0.0, vy=0.0, captured=True)

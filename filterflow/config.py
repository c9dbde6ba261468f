import json
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Tuple


@dataclass(frozen=True)
class FilterParams:
    pressure_drop_fraction: float     # fractional flow reduction across the medium, 0..1
    removal_efficiency_percent: float # single-pass viral removal, 0..100
    pass_count: int                   # room passes needed for full removal

    def __post_init__(self):
        if not 0.0 <= self.pressure_drop_fraction <= 1.0:
            raise ValueError(f"pressure_drop_fraction out of range: {self.pressure_drop_fraction}")
        if not 0.0 <= self.removal_efficiency_percent <= 100.0:
            raise ValueError(f"removal_efficiency_percent out of range: {self.removal_efficiency_percent}")
        if int(self.pass_count) != self.pass_count or self.pass_count < 1:
            raise ValueError(f"pass_count must be an integer >= 1, got {self.pass_count}")


@dataclass
class SimulationConfig:
    # shared clock
    air_exchanges_per_hour: float = 6.0
    total_wall_seconds: float = 180.0   # 3 min of wall time covers the slowest filter
    restart_delay_seconds: float = 3.0
    auto_loop: bool = True

    # completion curve
    curve_steepness: float = 5.0

    # stepping
    max_frame_seconds: float = 0.032    # cap per tick (~30 fps)
    visual_speed_scale: float = 0.1
    turbulence_intensity: float = 0.1

    # capture
    capture_scale: float = 0.15         # per-step probability = efficiency * scale
    filter_zone: Tuple[float, float] = (0.48, 0.52)  # fractions of the along-flow extent

    # lagrangian model
    air_inertia: float = 1.0
    pathogen_inertia: float = 1.8
    relaxation_base_seconds: float = 0.01
    brownian_air: float = 0.005
    brownian_pathogen: float = 0.01

    # populations
    multi_air_count: int = 300
    multi_pathogen_count: int = 100
    multi_base_speed: float = 0.05
    single_initial_count: int = 100
    single_pathogen_fraction: float = 0.2
    single_spawn_per_second: float = 6.0
    single_max_particles: int = 500

    # airflow readout
    inlet_cfm: float = 819.0
    min_cfm: float = 500.0

    def __post_init__(self):
        if self.air_exchanges_per_hour <= 0:
            raise ValueError("air_exchanges_per_hour must be > 0")
        if self.total_wall_seconds <= 0:
            raise ValueError("total_wall_seconds must be > 0")
        if self.restart_delay_seconds < 0:
            raise ValueError("restart_delay_seconds must be >= 0")
        if not 0.0 < self.capture_scale <= 1.0:
            raise ValueError("capture_scale must be in (0, 1]")
        lo, hi = self.filter_zone
        if not 0.0 <= lo < hi <= 1.0:
            raise ValueError(f"filter_zone must satisfy 0 <= start < end <= 1, got {self.filter_zone}")
        if self.air_inertia <= 0 or self.pathogen_inertia <= 0:
            raise ValueError("inertia factors must be > 0")
        if self.max_frame_seconds <= 0:
            raise ValueError("max_frame_seconds must be > 0")


# Pressure drop / viral filtration efficiency per medium, with the number of
# room passes each needs to reach full removal at 6 ACH.
FILTER_CATALOG: Dict[str, FilterParams] = {
    "HEPA":      FilterParams(0.18,   99.9, 3),
    "MERV15":    FilterParams(0.12,   85.0, 8),
    "MERV13":    FilterParams(0.0675, 46.0, 23),
    "MERV10":    FilterParams(0.045,  29.0, 41),
    "ViSTAT-10": FilterParams(0.0488, 85.0, 8),
    "MERV7":     FilterParams(0.012,  19.0, 66),
    "ViSTAT-7":  FilterParams(0.015,  61.0, 15),
}

DEFAULT_PRESSURE_DROP = 0.1


def minutes_per_pass(cfg: SimulationConfig) -> float:
    return 60.0 / cfg.air_exchanges_per_hour


def time_to_complete_minutes(params: FilterParams, cfg: SimulationConfig) -> float:
    return params.pass_count * minutes_per_pass(cfg)


def pressure_drop_for(key: str, catalog: Mapping[str, FilterParams] = FILTER_CATALOG) -> float:
    params = catalog.get(key)
    return params.pressure_drop_fraction if params is not None else DEFAULT_PRESSURE_DROP


def parse_catalog(obj: dict) -> Dict[str, FilterParams]:
    """
    Expects:
    {
      "MERV13": {"pressureDropFraction": 0.0675, "removalEfficiencyPercent": 46, "passCount": 23},
      ...
    }
    """
    out = {}
    for key, entry in obj.items():
        try:
            out[key] = FilterParams(
                pressure_drop_fraction=float(entry["pressureDropFraction"]),
                removal_efficiency_percent=float(entry["removalEfficiencyPercent"]),
                pass_count=int(entry["passCount"]),
            )
        except KeyError as e:
            raise ValueError(f"Catalog entry '{key}' missing field {e}") from None
    return out


def load_catalog(path) -> Dict[str, FilterParams]:
    with Path(path).open("r", encoding="utf-8") as f:
        return parse_catalog(json.load(f))

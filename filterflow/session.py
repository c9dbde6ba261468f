import logging
from concurrent.futures import Future, wait
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np

from .channel import ParallelUpdateChannel
from .config import FILTER_CATALOG, FilterParams, SimulationConfig
from .field_provider import FieldProvider
from .instance import InstanceMetrics, RenderFrame, Scenario, SimulationInstance
from .particles import MotionModel
from .sync import GlobalTimeSynchronizer
from .utils_time import VirtualClock, capped_frame_seconds, monotonic_seconds

logger = logging.getLogger(__name__)


class SimulationSession:
    """
    Owns one synchronizer, one field provider and the instances for the
    currently selected filters, and drives them from a single scheduler tick.
    """

    def __init__(self, provider: Optional[FieldProvider] = None,
                 cfg: Optional[SimulationConfig] = None,
                 catalog: Mapping[str, FilterParams] = FILTER_CATALOG,
                 scenario=Scenario.MULTI,
                 motion_model=MotionModel.ADVECTIVE,
                 use_worker: bool = False,
                 start_method: Optional[str] = None,
                 clock: Optional[Callable[[], float]] = None,
                 seed: Optional[int] = None,
                 renderable: bool = True):
        self.cfg = cfg or SimulationConfig()
        self.catalog = catalog
        self.scenario = Scenario(scenario)
        self.motion_model = MotionModel(motion_model)
        self.use_worker = use_worker
        self.start_method = start_method
        self.renderable = renderable
        self.clock = clock or monotonic_seconds

        self._owns_provider = provider is None
        self.provider = provider or FieldProvider(catalog=catalog)
        self.sync = GlobalTimeSynchronizer.from_config(self.cfg, self.clock)

        self.instances: Dict[str, SimulationInstance] = {}
        self._loads: Dict[str, Future] = {}
        self._seeds = np.random.SeedSequence(seed)
        self._last_tick: Optional[float] = None
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # ---------------------------
    # Selection
    # ---------------------------

    def select(self, filter_keys: Iterable[str]) -> List[str]:
        """Make `filter_keys` the active set, then restart the shared clock."""
        keys = list(dict.fromkeys(filter_keys))
        unknown = [k for k in keys if k not in self.catalog]
        if unknown:
            raise ValueError(f"Unknown filter(s): {', '.join(unknown)}")

        removed = [k for k in self.instances if k not in keys]
        added = [k for k in keys if k not in self.instances]
        for key in removed:
            self.instances.pop(key).destroy()
            self._loads.pop(key, None)
        for key in added:
            self.instances[key] = self._create(key)
            self._loads[key] = self.provider.load(key)

        self.sync.configure((self.catalog[k].pass_count for k in keys),
                            self.cfg.air_exchanges_per_hour)
        self.sync.reset()
        self._last_tick = None
        logger.info(f"Active filters: {keys} (+{len(added)} / -{len(removed)})")
        return keys

    def _create(self, key: str) -> SimulationInstance:
        channel = None
        if self.use_worker:
            channel = ParallelUpdateChannel(self.start_method)
            channel.start()
        seed = int(self._seeds.spawn(1)[0].generate_state(1)[0])
        return SimulationInstance(key, self.catalog[key], self.sync, self.cfg,
                                  scenario=self.scenario, motion_model=self.motion_model,
                                  seed=seed, channel=channel, renderable=self.renderable)

    # ---------------------------
    # Fields
    # ---------------------------

    def _attach_fields(self):
        for key, fut in list(self._loads.items()):
            if not fut.done():
                continue
            del self._loads[key]
            inst = self.instances.get(key)
            if inst is not None:
                inst.set_field(fut.result())

    def wait_for_fields(self, timeout: Optional[float] = None) -> bool:
        """Block until every pending field load has finished. Returns False on timeout."""
        _, not_done = wait(list(self._loads.values()), timeout=timeout)
        self._attach_fields()
        return not not_done

    # ---------------------------
    # Tick
    # ---------------------------

    def tick(self, now: Optional[float] = None) -> float:
        """One scheduler frame. Returns the (capped) dt used."""
        if self.closed:
            return 0.0
        now = self.clock() if now is None else now
        if self._last_tick is None:
            dt = 0.0
        else:
            dt = capped_frame_seconds(self._last_tick, now, self.cfg.max_frame_seconds)
        self._last_tick = now

        self.sync.update()
        self._attach_fields()
        for inst in list(self.instances.values()):
            inst.tick(dt)
        return dt

    def all_complete(self) -> bool:
        return bool(self.instances) and all(i.is_complete for i in self.instances.values())

    def metrics(self) -> Dict[str, InstanceMetrics]:
        return {k: inst.metrics() for k, inst in self.instances.items()}

    def frames(self) -> List[RenderFrame]:
        out = []
        for inst in self.instances.values():
            frame = inst.render_frame()
            if frame is not None:
                out.append(frame)
        return out

    def close(self):
        if self.closed:
            return
        self.closed = True
        for inst in self.instances.values():
            inst.destroy()
        self.instances.clear()
        self._loads.clear()
        self.sync.teardown()
        if self._owns_provider:
            self.provider.close()
        logger.info("Session closed")


def run_comparison(filter_keys: Sequence[str], cfg: Optional[SimulationConfig] = None,
                   frame_seconds: float = 1.0 / 30, checkpoints: Sequence[float] = (0.25, 0.5, 0.75, 1.0),
                   provider: Optional[FieldProvider] = None, seed: Optional[int] = None,
                   motion_model=MotionModel.ADVECTIVE, use_worker: bool = False) -> dict:
    """
    Run one full multi-pass cycle for `filter_keys` on a virtual clock.

    Returns, per filter, the removal fraction sampled when the shared progress
    first reaches each checkpoint, and the simulated minute it completed at.
    """
    cfg = replace(cfg or SimulationConfig(), auto_loop=False)
    clock = VirtualClock()
    marks = sorted(checkpoints)
    results = {}

    with SimulationSession(provider, cfg, scenario=Scenario.MULTI, motion_model=motion_model,
                           use_worker=use_worker, clock=clock, seed=seed,
                           renderable=False) as session:
        session.select(filter_keys)
        session.wait_for_fields()
        for key, inst in session.instances.items():
            results[key] = {
                "passCount": inst.params.pass_count,
                "timeToCompleteMinutes": inst.time_to_complete_minutes,
                "completionMinutes": None,
                "checkpoints": [],
            }

        limit = cfg.total_wall_seconds + 2 * frame_seconds
        session.tick(clock())
        while True:
            progress = session.sync.progress()
            while marks and progress >= marks[0]:
                mark = marks.pop(0)
                for key, m in session.metrics().items():
                    results[key]["checkpoints"].append({
                        "progress": mark,
                        "simulatedMinutes": m.simulated_minutes,
                        "removalFraction": m.removal_fraction,
                        "targetEfficiency": m.target_efficiency,
                    })
            if (session.all_complete() and not marks) or clock() > limit:
                break
            clock.advance(frame_seconds)
            session.tick(clock())

        for key, inst in session.instances.items():
            results[key]["completionMinutes"] = inst.completion_minutes

    logger.info(f"Comparison finished after {clock():.1f}s virtual time")
    return results

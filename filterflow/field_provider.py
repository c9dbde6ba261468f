import gzip
import json
import logging
import threading
import zlib
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Dict, Mapping, Optional

import numpy as np
import requests

from .config import FILTER_CATALOG, FilterParams, pressure_drop_for
from .velocity_field import VelocityField

logger = logging.getLogger(__name__)

SYNTHETIC_BOUNDS = (0.0, 1.0, 0.0, 0.5)
SYNTHETIC_FILTER_POSITION = 0.5   # normalized x where the pressure drop applies
CROSSFLOW_AMPLITUDE = 0.1


def synthetic_field(key: str, pressure_drop_fraction: Optional[float] = None,
                    grid_width: int = 200, grid_height: int = 100,
                    bounds=SYNTHETIC_BOUNDS,
                    catalog: Mapping[str, FilterParams] = FILTER_CATALOG) -> VelocityField:
    """
    Deterministic stand-in field for a filter:
      - parabolic-like cross-stream profile, vx ~ sin(pi * y_norm)
      - vx reduced by the pressure drop downstream of the midpoint
      - small sinusoidal cross-flow
    """
    if pressure_drop_fraction is None:
        pressure_drop_fraction = pressure_drop_for(key, catalog)

    x = np.linspace(0.0, 1.0, grid_width)
    y = np.linspace(0.0, 1.0, grid_height)
    xn, yn = np.meshgrid(x, y)  # (grid_height, grid_width)

    wall = np.sin(np.pi * yn)
    reduction = np.where(xn > SYNTHETIC_FILTER_POSITION, 1.0 - pressure_drop_fraction, 1.0)

    samples = np.empty((grid_height, grid_width, 2))
    samples[..., 0] = wall * reduction
    samples[..., 1] = CROSSFLOW_AMPLITUDE * np.sin(2 * np.pi * xn) * wall
    return VelocityField(grid_width, grid_height, tuple(bounds), samples, synthetic=True)


def read_field(path) -> VelocityField:
    path = Path(path)
    if path.suffix == ".gz":
        with gzip.open(path, "rt", encoding="utf-8") as f:
            obj = json.load(f)
    else:
        with path.open("r", encoding="utf-8") as f:
            obj = json.load(f)
    return VelocityField.from_payload(obj)


def write_field(field: VelocityField, path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = field.to_payload()
    if path.suffix == ".gz":
        with gzip.open(path, "wt", encoding="utf-8") as f:
            json.dump(payload, f)
    else:
        with path.open("w", encoding="utf-8") as f:
            json.dump(payload, f)
    return path


class FieldProvider:
    """
    Loads one VelocityField per filter key.

    Source, in order of preference:
      base_url  -> GET {base_url}/{key}/velocity.json
      data_dir  -> {data_dir}/{key}/velocity.json(.gz)
      neither   -> synthetic field

    Any fetch or parse failure degrades to the synthetic field (synthetic=True).
    Results are cached for the lifetime of the provider; concurrent loads of
    the same key share one Future.
    """

    def __init__(self, base_url: Optional[str] = None, data_dir: Optional[str] = None,
                 catalog: Mapping[str, FilterParams] = FILTER_CATALOG,
                 session: Optional[requests.Session] = None,
                 timeout: float = 15.0, max_workers: int = 4):
        self.base_url = base_url.rstrip("/") if base_url else None
        self.data_dir = Path(data_dir) if data_dir else None
        self.catalog = catalog
        self.timeout = timeout
        self._session = session or requests.Session()
        self._executor = ThreadPoolExecutor(max_workers=max_workers,
                                            thread_name_prefix="field-loader")
        self._lock = threading.Lock()
        self._cache: Dict[str, VelocityField] = {}
        self._pending: Dict[str, Future] = {}

    def load(self, key: str) -> Future:
        with self._lock:
            if key in self._cache:
                done = Future()
                done.set_result(self._cache[key])
                return done
            if key in self._pending:
                return self._pending[key]

            fut = self._executor.submit(self._fetch, key)
            self._pending[key] = fut

        fut.add_done_callback(lambda f, k=key: self._store(k, f))
        return fut

    def get(self, key: str, timeout: Optional[float] = None) -> VelocityField:
        return self.load(key).result(timeout=timeout)

    def cached(self, key: str) -> Optional[VelocityField]:
        with self._lock:
            return self._cache.get(key)

    def close(self):
        self._executor.shutdown(wait=True)
        self._session.close()

    def _store(self, key: str, fut: Future):
        with self._lock:
            self._pending.pop(key, None)
            if not fut.cancelled() and fut.exception() is None:
                self._cache[key] = fut.result()

    def _fetch(self, key: str) -> VelocityField:
        if self.base_url is None and self.data_dir is None:
            logger.info(f"No field source configured, generating synthetic field for {key}")
            return synthetic_field(key, catalog=self.catalog)

        try:
            if self.base_url is not None:
                field = self._fetch_remote(key)
            else:
                field = self._fetch_local(key)
            logger.info(f"Loaded velocity field for {key}: "
                        f"{field.grid_width}x{field.grid_height}, bounds={field.bounds}")
            return field
        except (requests.RequestException, ValueError, OSError, EOFError, zlib.error) as e:
            logger.warning(f"Failed to load velocity field for {key}, using synthetic data: {e}")
            return synthetic_field(key, catalog=self.catalog)

    def _fetch_remote(self, key: str) -> VelocityField:
        url = f"{self.base_url}/{key}/velocity.json"
        logger.debug(f"Fetching {url}")
        resp = self._session.get(url, timeout=self.timeout)
        resp.raise_for_status()
        return VelocityField.from_payload(resp.json())

    def _fetch_local(self, key: str) -> VelocityField:
        folder = self.data_dir / key
        for name in ("velocity.json", "velocity.json.gz"):
            path = folder / name
            if path.exists():
                return read_field(path)
        raise FileNotFoundError(f"No velocity field file in {folder}")

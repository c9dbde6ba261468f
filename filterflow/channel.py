"""
Offloads the per-frame particle update to a worker process.

Only messages cross the boundary, as (kind, payload) tuples over a Pipe:

    setField       VelocityField
    setParameters  StepParameters
    setParticles   tuple of Particle
    advance        {"dt": float, "seed": int}
      -> particlesAdvanced  {"snapshot": tuple of Particle}
      -> error              {"message": str}
    close

At most one advance is in flight. If the worker cannot be started or fails at
any point the channel switches to fallback and computes the same `advance`
in the calling thread from its mirror of the last state sent.
"""
import logging
import multiprocessing as mp
from typing import Optional, Tuple

from .particles import Particle, StepParameters
from .stepping import advance
from .velocity_field import VelocityField

logger = logging.getLogger(__name__)


def _serve(conn):
    field = None
    params = None
    particles = ()
    while True:
        try:
            kind, payload = conn.recv()
        except EOFError:
            break
        if kind == "close":
            break
        try:
            if kind == "setField":
                field = payload
            elif kind == "setParameters":
                params = payload
            elif kind == "setParticles":
                particles = tuple(payload)
            elif kind == "advance":
                particles = advance(particles, field, params, payload["dt"], payload["seed"])
                conn.send(("particlesAdvanced", {"snapshot": particles}))
            else:
                conn.send(("error", {"message": f"Unknown message type: {kind}"}))
        except Exception as e:
            # reported to the owner, which falls back to in-thread stepping
            conn.send(("error", {"message": repr(e)}))
    conn.close()


class ParallelUpdateChannel:
    def __init__(self, start_method: Optional[str] = None):
        self._ctx = mp.get_context(start_method)
        self._conn = None
        self._process = None
        self._closed = False
        self.fallback = False

        # mirror of what the worker holds, for the fallback path
        self._field: Optional[VelocityField] = None
        self._params: Optional[StepParameters] = None
        self._particles: Tuple[Particle, ...] = ()

        self._in_flight = False
        self._request: Optional[Tuple[float, int]] = None
        self._ready: Optional[Tuple[Particle, ...]] = None

    @property
    def busy(self) -> bool:
        return self._in_flight

    @property
    def active(self) -> bool:
        return self._conn is not None and not self.fallback

    def start(self) -> bool:
        if self._closed:
            raise RuntimeError("Channel already closed")
        try:
            parent, child = self._ctx.Pipe()
            proc = self._ctx.Process(target=_serve, args=(child,), daemon=True,
                                     name="particle-worker")
            proc.start()
            child.close()
        except (OSError, ValueError, RuntimeError) as e:
            self._fail(f"could not start worker: {e}")
            return False
        self._conn, self._process = parent, proc
        logger.info(f"Particle worker started (pid {proc.pid})")
        return True

    # ---------------------------
    # State messages
    # ---------------------------

    def set_field(self, field: Optional[VelocityField]):
        self._field = field
        self._send(("setField", field))

    def set_parameters(self, params: StepParameters):
        self._params = params
        self._send(("setParameters", params))

    def set_particles(self, particles):
        self._particles = tuple(particles)
        self._send(("setParticles", self._particles))

    # ---------------------------
    # Advance / replies
    # ---------------------------

    def request_advance(self, dt: float, seed: int) -> bool:
        """Queue one update. Returns False while the previous one is still in flight."""
        if self._closed or self._in_flight:
            return False
        self._in_flight = True
        self._request = (dt, seed)
        if self.active:
            self._send(("advance", {"dt": dt, "seed": seed}))
        if not self.active:
            self._compute_locally()
        return True

    def poll(self, timeout: float = 0.0) -> Optional[Tuple[Particle, ...]]:
        """Return the advanced snapshot if it has arrived, else None."""
        if not self._in_flight:
            return None
        if self._ready is None and self.active:
            self._receive(timeout)
        if self._ready is None:
            return None

        snapshot, self._ready = self._ready, None
        self._in_flight = False
        self._request = None
        self._particles = snapshot
        return snapshot

    def _receive(self, timeout: float):
        try:
            if not self._conn.poll(timeout):
                if not self._process.is_alive():
                    self._fail(f"worker exited with code {self._process.exitcode}")
                    self._compute_locally()
                return
            kind, payload = self._conn.recv()
        except (EOFError, OSError) as e:
            self._fail(f"channel error: {e!r}")
            self._compute_locally()
            return

        if kind == "particlesAdvanced":
            self._ready = tuple(payload["snapshot"])
        else:
            self._fail(f"worker reported {kind}: {payload.get('message')}")
            self._compute_locally()

    def _compute_locally(self):
        dt, seed = self._request
        self._ready = advance(self._particles, self._field, self._params, dt, seed)

    def _send(self, msg):
        if not self.active:
            return
        try:
            self._conn.send(msg)
        except (OSError, ValueError) as e:
            self._fail(f"send failed: {e!r}")

    def _fail(self, reason: str):
        if not self.fallback:
            logger.warning(f"Particle worker unavailable, stepping in-thread: {reason}")
        self.fallback = True
        self._shutdown()

    # ---------------------------
    # Teardown
    # ---------------------------

    def _shutdown(self):
        conn, proc = self._conn, self._process
        self._conn = self._process = None
        if conn is not None:
            try:
                conn.send(("close", None))
            except (OSError, ValueError):
                pass
            conn.close()
        if proc is not None:
            proc.join(timeout=1.0)
            if proc.is_alive():
                proc.terminate()
                proc.join(timeout=1.0)

    def close(self):
        if self._closed:
            return
        self._closed = True
        self._in_flight = False
        self._ready = None
        self._shutdown()
        logger.debug("Particle channel closed")

import math
from dataclasses import dataclass
from typing import Tuple

import numpy as np


class FieldValidationError(ValueError):
    """Field violates a grid/bounds invariant and cannot be used."""


class PayloadError(ValueError):
    """Field payload is missing keys or has the wrong structure."""


# ---------------------------
# Helpers
# ---------------------------

def clamp(x, a, b):
    return a if x < a else b if x > b else x


def _is_missing(v) -> bool:
    return v is None or (hasattr(v, "__len__") and len(v) == 0)


def _snap(idx: float) -> float:
    # near-integer indices land exactly on the node
    r = round(idx)
    return float(r) if abs(idx - r) < 1e-9 else idx


# ---------------------------
# Data model
# ---------------------------

@dataclass(frozen=True, eq=False)
class VelocityField:
    """
    Regular grid of (vx, vy) samples over bounds (x_min, x_max, y_min, y_max).

    samples[j, i] is the node at normalized position (i/(grid_width-1), j/(grid_height-1)).
    """
    grid_width: int
    grid_height: int
    bounds: Tuple[float, float, float, float]
    samples: np.ndarray  # (grid_height, grid_width, 2) float64, read-only
    synthetic: bool = False

    def __post_init__(self):
        if int(self.grid_width) < 2 or int(self.grid_height) < 2:
            raise FieldValidationError(
                f"Grid must be at least 2x2, got {self.grid_width}x{self.grid_height}")
        if len(self.bounds) != 4:
            raise FieldValidationError(f"Bounds need 4 values, got {len(self.bounds)}")

        bounds = tuple(float(b) for b in self.bounds)
        if not all(math.isfinite(b) for b in bounds):
            raise FieldValidationError(f"Non-finite bounds: {bounds}")
        x_min, x_max, y_min, y_max = bounds
        if not (x_min < x_max and y_min < y_max):
            raise FieldValidationError(f"Bounds must be increasing, got {bounds}")

        samples = np.array(self.samples, dtype=np.float64)
        expected = (int(self.grid_height), int(self.grid_width), 2)
        if samples.shape != expected:
            raise FieldValidationError(f"Samples shape {samples.shape}, expected {expected}")
        if not np.all(np.isfinite(samples)):
            raise FieldValidationError("Samples contain NaN or inf")
        samples.setflags(write=False)

        object.__setattr__(self, "grid_width", int(self.grid_width))
        object.__setattr__(self, "grid_height", int(self.grid_height))
        object.__setattr__(self, "bounds", bounds)
        object.__setattr__(self, "samples", samples)

    @property
    def x_min(self) -> float:
        return self.bounds[0]

    @property
    def x_max(self) -> float:
        return self.bounds[1]

    @property
    def y_min(self) -> float:
        return self.bounds[2]

    @property
    def y_max(self) -> float:
        return self.bounds[3]

    @property
    def width(self) -> float:
        return self.x_max - self.x_min

    @property
    def height(self) -> float:
        return self.y_max - self.y_min

    def contains(self, x: float, y: float) -> bool:
        return self.x_min <= x <= self.x_max and self.y_min <= y <= self.y_max

    def clamp(self, x: float, y: float) -> Tuple[float, float]:
        return clamp(x, self.x_min, self.x_max), clamp(y, self.y_min, self.y_max)

    def interpolate(self, x: float, y: float) -> Tuple[float, float]:
        """Bilinear (vx, vy) at (x, y); queries outside bounds (or NaN) saturate at the edge."""
        xn = clamp((x - self.x_min) / self.width, 0.0, 1.0)
        yn = clamp((y - self.y_min) / self.height, 0.0, 1.0)
        # NaN queries saturate at the lower edge
        if xn != xn:
            xn = 0.0
        if yn != yn:
            yn = 0.0

        i = _snap(xn * (self.grid_width - 1))
        j = _snap(yn * (self.grid_height - 1))

        i0 = int(math.floor(i))
        j0 = int(math.floor(j))
        i1 = min(i0 + 1, self.grid_width - 1)
        j1 = min(j0 + 1, self.grid_height - 1)

        fx = i - i0
        fy = j - j0

        s = self.samples
        w00 = (1 - fx) * (1 - fy)
        w10 = fx * (1 - fy)
        w01 = (1 - fx) * fy
        w11 = fx * fy

        vx = s[j0, i0, 0] * w00 + s[j0, i1, 0] * w10 + s[j1, i0, 0] * w01 + s[j1, i1, 0] * w11
        vy = s[j0, i0, 1] * w00 + s[j0, i1, 1] * w10 + s[j1, i0, 1] * w01 + s[j1, i1, 1] * w11
        return float(vx), float(vy)

    # ---------------------------
    # Wire format
    # ---------------------------

    @classmethod
    def from_payload(cls, obj: dict, synthetic: bool = False) -> "VelocityField":
        """
        Expects the field data contract:
        {
          "gridWidth": 200, "gridHeight": 100,
          "bounds": [xMin, xMax, yMin, yMax],
          "samples": [[[vx, vy], ... gridWidth ...], ... gridHeight rows ...]
        }
        Older exports used nx / ny / field for the same keys.
        """
        if not isinstance(obj, dict):
            raise PayloadError(f"Field payload must be an object, got {type(obj).__name__}")

        width = obj.get("gridWidth", obj.get("nx"))
        height = obj.get("gridHeight", obj.get("ny"))
        bounds = obj.get("bounds")
        samples = obj.get("samples", obj.get("field"))

        missing = [name for name, v in (("gridWidth", width), ("gridHeight", height),
                                        ("bounds", bounds), ("samples", samples)) if _is_missing(v)]
        if missing:
            raise PayloadError(f"Field payload missing {', '.join(missing)}")

        try:
            width = int(width)
            height = int(height)
            bounds = tuple(float(b) for b in bounds)
            arr = np.asarray(samples, dtype=np.float64)
        except (TypeError, ValueError, OverflowError) as e:
            raise PayloadError(f"Field payload has malformed values: {e}") from None

        return cls(width, height, bounds, arr, synthetic=bool(obj.get("synthetic", synthetic)))

    def to_payload(self) -> dict:
        return {
            "gridWidth": self.grid_width,
            "gridHeight": self.grid_height,
            "bounds": list(self.bounds),
            "samples": self.samples.tolist(),
            "synthetic": self.synthetic,
        }


def trace_streamline(field: VelocityField, x0: float, y0: float,
                     step: float = 0.002, max_steps: int = 2000) -> np.ndarray:
    """
    Follow the interpolated field from (x0, y0) with fixed-length steps.
    Stops when the line leaves the bounds or the local speed vanishes.
    Returns an (n, 2) array of points, starting point included.
    """
    if step <= 0:
        raise ValueError("step must be > 0")

    x, y = field.clamp(x0, y0)
    pts = [(x, y)]
    for _ in range(max_steps):
        vx, vy = field.interpolate(x, y)
        speed = math.hypot(vx, vy)
        if speed < 1e-12:
            break
        x += vx / speed * step
        y += vy / speed * step
        if not field.contains(x, y):
            break
        pts.append((x, y))
    return np.array(pts, dtype=float)

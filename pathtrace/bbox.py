"""Axis-aligned bounding boxes and the slab ray test."""

from __future__ import annotations

from typing import Any, NamedTuple, Union

import numpy as np

from pathtrace.ray import Ray


class BoxHit(NamedTuple):
    """Outcome of a ray/box test: whether it hit and the slab interval found."""

    hit: bool
    tnear: float
    tfar: float


class BBox:
    """An axis-aligned bounding box given by its lower and upper corners."""

    __slots__ = ("lo", "hi")

    def __init__(self, lo: Any, hi: Any) -> None:
        self.lo = np.asarray(lo, dtype=np.float64).reshape(3).copy()
        self.hi = np.asarray(hi, dtype=np.float64).reshape(3).copy()

    @classmethod
    def from_point(cls, point: Any) -> "BBox":
        """A degenerate box holding a single point."""
        return cls(point, point)

    @classmethod
    def from_min_max(cls, lo: Any, hi: Any) -> "BBox":
        """A box with the given corners."""
        return cls(lo, hi)

    @property
    def extent(self) -> np.ndarray:
        return self.hi - self.lo

    def expand_to_include(self, other: Union["BBox", Any]) -> None:
        """Grow the box in place to cover a point or another box."""
        if isinstance(other, BBox):
            self.lo = np.minimum(self.lo, other.lo)
            self.hi = np.maximum(self.hi, other.hi)
        else:
            point = np.asarray(other, dtype=np.float64).reshape(3)
            self.lo = np.minimum(self.lo, point)
            self.hi = np.maximum(self.hi, point)

    def max_dimension(self) -> int:
        """Index of the axis chosen for splitting.

        Axis 2 wins whenever it is longer than axis 1, regardless of axis 0.
        """
        extent = self.extent
        result = 0
        if extent[1] > extent[0]:
            result = 1
        if extent[2] > extent[1]:
            result = 2
        return result

    def surface_area(self) -> float:
        ex, ey, ez = self.extent
        return float(2.0 * (ex * ez + ex * ey + ey * ez))

    def intersect(self, ray: Ray) -> BoxHit:
        """Slab test against ``ray``; NaN slabs are treated as unbounded."""
        with np.errstate(invalid="ignore", over="ignore"):
            l1 = (self.lo - ray.o) * ray.inv_d
            l2 = (self.hi - ray.o) * ray.inv_d
        nan1 = np.isnan(l1)
        nan2 = np.isnan(l2)
        upper = np.maximum(np.where(nan1, np.inf, l1), np.where(nan2, np.inf, l2))
        lower = np.minimum(np.where(nan1, -np.inf, l1), np.where(nan2, -np.inf, l2))
        tfar = float(upper.min())
        tnear = float(lower.max())
        return BoxHit(tfar >= 0.0 and tfar >= tnear, tnear, tfar)

    def __repr__(self) -> str:
        return f"BBox(lo={self.lo.tolist()}, hi={self.hi.tolist()})"
"""Rays and intersection records used by the bounding-volume hierarchy."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np


def _as_vector(values: Any) -> np.ndarray:
    vector = np.asarray(values, dtype=np.float64).reshape(-1)
    if vector.shape != (3,):
        raise ValueError(f"expected a 3-component vector, got shape {vector.shape}")
    return vector


def _normalized(vector: np.ndarray) -> np.ndarray:
    """Return ``vector`` scaled to unit length; a zero vector is returned unchanged."""
    with np.errstate(invalid="ignore", over="ignore"):
        norm = float(np.sqrt(np.dot(vector, vector)))
        if norm > 0.0:
            return vector / norm
    return vector.copy()


class Ray:
    """A ray with a unit direction and a normalised per-component inverse direction.

    A zero direction component gives an infinite inverse that normalisation turns
    into NaN; the box test treats such an axis as unbounded.
    """

    __slots__ = ("o", "d", "inv_d")

    def __init__(self, origin: Any, direction: Any) -> None:
        self.o = _as_vector(origin).copy()
        raw = _as_vector(direction)
        self.d = _normalized(raw)
        with np.errstate(divide="ignore", invalid="ignore"):
            inverse = np.ones(3) / raw
        self.inv_d = _normalized(inverse)

    def transform(self, matrix: Any) -> "Ray":
        """Return the ray mapped through a 4x4 homogeneous matrix."""
        mat = np.asarray(matrix, dtype=np.float64)
        if mat.shape != (4, 4):
            raise ValueError(f"expected a 4x4 matrix, got shape {mat.shape}")
        origin = mat @ np.append(self.o, 1.0)
        direction = mat @ np.append(self.d, 0.0)
        return Ray(origin[:3], direction[:3])

    def __repr__(self) -> str:
        return f"Ray(o={self.o.tolist()}, d={self.d.tolist()})"


@dataclass
class IntersectionInfo:
    """The result of a ray hitting an object."""

    t: float = float("inf")
    object: Any = None
    hit: np.ndarray = field(default_factory=lambda: np.zeros(3))
    data: Any = None
"""Scene objects and a bounding-volume hierarchy for ray/object queries."""

from __future__ import annotations

import abc
import logging
import time
from dataclasses import dataclass
from typing import Any, Iterable

import numpy as np

from pathtrace.bbox import BBox
from pathtrace.ray import IntersectionInfo, Ray

logger = logging.getLogger(__name__)

_NO_HIT_T = 999999999.0
_ROOT_MIN_T = -9999999.0


class SceneObject(abc.ABC):
    """Anything a ray can hit: it reports hits, normals, bounds and a centroid."""

    def __init__(self) -> None:
        identity = np.eye(4)
        self.transform = identity.copy()
        self.inverse_transform = identity.copy()
        self.normal_transform = identity.copy()
        self.inverse_normal_transform = identity.copy()

    @abc.abstractmethod
    def get_intersection(self, ray: Ray) -> IntersectionInfo | None:
        """Return the hit of ``ray`` with this object, or None on a miss."""

    @abc.abstractmethod
    def get_normal(self, info: IntersectionInfo) -> np.ndarray:
        """Return the surface normal at the hit described by ``info``."""

    @abc.abstractmethod
    def get_bbox(self) -> BBox:
        """Return a box bounding this object."""

    @abc.abstractmethod
    def get_centroid(self) -> np.ndarray:
        """Return the point used to sort this object when building a hierarchy."""

    def set_transform(self, transform: Any) -> None:
        """Set the object's 4x4 affine transform and the matrices derived from it."""
        mat = np.asarray(transform, dtype=np.float64)
        if mat.shape != (4, 4):
            raise ValueError(f"expected a 4x4 matrix, got shape {mat.shape}")
        linear = mat[:3, :3]
        self.transform = mat.copy()
        self.inverse_transform = np.linalg.inv(mat)
        self.normal_transform = np.eye(4)
        self.normal_transform[:3, :3] = linear
        self.inverse_normal_transform = np.eye(4)
        self.inverse_normal_transform[:3, :3] = np.linalg.inv(linear).T


class Stopwatch:
    """Measures elapsed wall-clock seconds since creation or the last reset."""

    def __init__(self) -> None:
        self._start = 0.0
        self.reset()

    def reset(self) -> None:
        self._start = time.time()

    def read(self) -> float:
        return time.time() - self._start


@dataclass
class _FlatNode:
    bbox: BBox
    start: int
    n_prims: int
    right_offset: int  # 0 marks a leaf; otherwise distance to the right child

    @property
    def is_leaf(self) -> bool:
        return self.right_offset == 0


class BVH:
    """A flattened bounding-volume hierarchy over a list of scene objects."""

    def __init__(self, objects: Iterable[SceneObject], leaf_size: int = 4) -> None:
        self._prims: list[SceneObject] = list(objects)
        if not self._prims:
            raise ValueError("a BVH needs at least one object")
        if leaf_size < 1:
            raise ValueError("leaf_size must be at least 1")
        self.leaf_size = leaf_size
        self.node_count = 0
        self.leaf_count = 0
        stopwatch = Stopwatch()
        self._nodes = self._build()
        logger.info(
            "Built BVH (%d nodes, with %d leafs) in %d ms",
            self.node_count,
            self.leaf_count,
            int(1000 * stopwatch.read()),
        )

    @property
    def objects(self) -> list[SceneObject]:
        """The objects in the order the hierarchy arranged them."""
        return list(self._prims)

    def _build(self) -> list[_FlatNode]:
        prims = self._prims
        nodes: list[_FlatNode] = []
        # Entries: (start, end, parent index or None, is right child)
        stack: list[tuple[int, int, int | None, bool]] = [(0, len(prims), None, False)]

        while stack:
            start, end, parent, is_right = stack.pop()
            n_prims = end - start

            first = prims[start].get_bbox()
            bounds = BBox(first.lo, first.hi)
            centroids = BBox.from_point(prims[start].get_centroid())
            for obj in prims[start + 1:end]:
                bounds.expand_to_include(obj.get_bbox())
                centroids.expand_to_include(obj.get_centroid())

            leaf = n_prims <= self.leaf_size
            index = len(nodes)
            nodes.append(_FlatNode(bounds, start, n_prims, 0 if leaf else -1))
            self.node_count += 1
            if leaf:
                self.leaf_count += 1

            if parent is not None and is_right:
                nodes[parent].right_offset = index - parent

            if leaf:
                continue

            split_dim = centroids.max_dimension()
            split_coord = 0.5 * (centroids.lo[split_dim] + centroids.hi[split_dim])

            mid = start
            for i in range(start, end):
                if prims[i].get_centroid()[split_dim] < split_coord:
                    prims[i], prims[mid] = prims[mid], prims[i]
                    mid += 1

            if mid in (start, end):
                mid = start + (end - start) // 2

            stack.append((mid, end, index, True))
            stack.append((start, mid, index, False))

        return nodes

    def get_intersection(self, ray: Ray, occlusion: bool = False) -> IntersectionInfo | None:
        """Return the nearest hit of ``ray``, or None if nothing is hit.

        With ``occlusion`` set, the first hit found is returned as soon as it is
        found, without searching for the closest one.
        """
        nodes = self._nodes
        best_t = _NO_HIT_T
        best: IntersectionInfo | None = None
        todo: list[tuple[int, float]] = [(0, _ROOT_MIN_T)]

        while todo:
            ni, near = todo.pop()
            node = nodes[ni]
            if near > best_t:
                continue

            if node.is_leaf:
                for obj in self._prims[node.start:node.start + node.n_prims]:
                    current = obj.get_intersection(ray)
                    if current is None:
                        continue
                    if current.object is None:
                        current.object = obj
                    if occlusion:
                        return current
                    if current.t < best_t:
                        best_t = current.t
                        best = current
                continue

            left = ni + 1
            right = ni + node.right_offset
            hit_left = nodes[left].bbox.intersect(ray)
            hit_right = nodes[right].bbox.intersect(ray)

            if hit_left.hit and hit_right.hit:
                closer, closer_near = left, hit_left.tnear
                other, other_near = right, hit_right.tnear
                if hit_right.tnear < hit_left.tnear:
                    closer, closer_near, other, other_near = other, other_near, closer, closer_near
                todo.append((other, other_near))
                todo.append((closer, closer_near))
            elif hit_left.hit:
                todo.append((left, hit_left.tnear))
            elif hit_right.hit:
                todo.append((right, hit_right.tnear))

        if best is not None:
            best.hit = ray.o + ray.d * best.t
        return best
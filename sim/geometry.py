"""Planar geometry helpers shared by the track generator and the agents.

:class:`Vector2` is an immutable point/vector type; every arithmetic helper
returns a new instance. Segments are plain ``(start, end)`` tuples.

Two intersection predicates live here:

``segments_intersect``
    Strict test used to validate generated tracks. Endpoints (and anything
    within 1% of them along either segment) do not count, so neighbouring
    wall pieces that share a vertex are never reported.
``get_intersection``
    Inclusive ray test used for sensing, collisions and checkpoints. Returns
    the hit point and its offset along the first segment.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

PARALLEL_EPSILON = 1e-10
ENDPOINT_MARGIN = 0.01


@dataclass(frozen=True)
class Vector2:
    x: float
    y: float

    @staticmethod
    def from_angle(angle: float, length: float = 1.0) -> "Vector2":
        return Vector2(math.cos(angle) * length, math.sin(angle) * length)

    def add(self, other: "Vector2") -> "Vector2":
        return Vector2(self.x + other.x, self.y + other.y)

    def sub(self, other: "Vector2") -> "Vector2":
        return Vector2(self.x - other.x, self.y - other.y)

    def scale(self, factor: float) -> "Vector2":
        return Vector2(self.x * factor, self.y * factor)

    def dot(self, other: "Vector2") -> float:
        return self.x * other.x + self.y * other.y

    def mag(self) -> float:
        return math.hypot(self.x, self.y)

    def normalized(self) -> "Vector2":
        m = self.mag()
        if m == 0:
            return Vector2(0.0, 0.0)
        return Vector2(self.x / m, self.y / m)

    def limit(self, max_length: float) -> "Vector2":
        if self.mag() > max_length:
            return self.normalized().scale(max_length)
        return self

    def dist(self, other: "Vector2") -> float:
        return math.hypot(self.x - other.x, self.y - other.y)

    def heading(self) -> float:
        return math.atan2(self.y, self.x)

    def midpoint(self, other: "Vector2") -> "Vector2":
        return Vector2((self.x + other.x) / 2, (self.y + other.y) / 2)


Segment = Tuple[Vector2, Vector2]


@dataclass(frozen=True)
class Intersection:
    point: Vector2
    offset: float


def segments_intersect(p1: Vector2, p2: Vector2, p3: Vector2, p4: Vector2) -> bool:
    """Return ``True`` when segment ``p1-p2`` properly crosses ``p3-p4``.

    Solves the 2x2 system for the parameters ``t`` (along the first segment)
    and ``u`` (along the second). Near-parallel segments are treated as
    non-intersecting, and both parameters must fall strictly inside
    ``(0.01, 0.99)``.
    """

    d1x = p2.x - p1.x
    d1y = p2.y - p1.y
    d2x = p4.x - p3.x
    d2y = p4.y - p3.y

    cross = d1x * d2y - d1y * d2x
    if abs(cross) < PARALLEL_EPSILON:
        return False

    dx = p3.x - p1.x
    dy = p3.y - p1.y
    t = (dx * d2y - dy * d2x) / cross
    u = (dx * d1y - dy * d1x) / cross

    low = ENDPOINT_MARGIN
    high = 1.0 - ENDPOINT_MARGIN
    return low < t < high and low < u < high


def segments_to_array(segments: Sequence[Segment]) -> np.ndarray:
    """Pack segments into an ``(n, 4)`` array of ``x1, y1, x2, y2`` rows."""

    return np.array(
        [[a.x, a.y, b.x, b.y] for a, b in segments],
        dtype=float,
    ).reshape(-1, 4)


def intersection_matrix(first: np.ndarray, second: np.ndarray) -> np.ndarray:
    """Vectorised :func:`segments_intersect` over every pair of rows.

    Returns an ``(len(first), len(second))`` boolean matrix whose entry
    ``[i, j]`` equals ``segments_intersect`` applied to ``first[i]`` and
    ``second[j]``.
    """

    p1x = first[:, 0][:, None]
    p1y = first[:, 1][:, None]
    d1x = (first[:, 2] - first[:, 0])[:, None]
    d1y = (first[:, 3] - first[:, 1])[:, None]
    p3x = second[:, 0][None, :]
    p3y = second[:, 1][None, :]
    d2x = (second[:, 2] - second[:, 0])[None, :]
    d2y = (second[:, 3] - second[:, 1])[None, :]

    cross = d1x * d2y - d1y * d2x
    usable = np.abs(cross) >= PARALLEL_EPSILON
    safe_cross = np.where(usable, cross, 1.0)

    dx = p3x - p1x
    dy = p3y - p1y
    t = (dx * d2y - dy * d2x) / safe_cross
    u = (dx * d1y - dy * d1x) / safe_cross

    low = ENDPOINT_MARGIN
    high = 1.0 - ENDPOINT_MARGIN
    return usable & (t > low) & (t < high) & (u > low) & (u < high)


def get_intersection(a: Vector2, b: Vector2, c: Vector2, d: Vector2) -> Optional[Intersection]:
    """Intersect segment ``a-b`` with ``c-d``, endpoints included."""

    t_top = (d.x - c.x) * (a.y - c.y) - (d.y - c.y) * (a.x - c.x)
    u_top = (c.y - a.y) * (a.x - b.x) - (c.x - a.x) * (a.y - b.y)
    bottom = (d.y - c.y) * (b.x - a.x) - (d.x - c.x) * (b.y - a.y)

    if bottom == 0:
        return None

    t = t_top / bottom
    u = u_top / bottom
    if 0 <= t <= 1 and 0 <= u <= 1:
        point = Vector2(a.x + t * (b.x - a.x), a.y + t * (b.y - a.y))
        return Intersection(point=point, offset=t)
    return None


def cast_ray(origin: Vector2, end: Vector2, segments: np.ndarray) -> Optional[float]:
    """Smallest offset along ``origin-end`` at which any segment is hit.

    ``segments`` is an ``(n, 4)`` array as built by :func:`segments_to_array`.
    Uses the same inclusive test as :func:`get_intersection`; returns ``None``
    when nothing is hit.
    """

    if segments.size == 0:
        return None
    cx = segments[:, 0]
    cy = segments[:, 1]
    dx = segments[:, 2] - cx
    dy = segments[:, 3] - cy
    rx = end.x - origin.x
    ry = end.y - origin.y

    bottom = dy * rx - dx * ry
    usable = bottom != 0
    safe_bottom = np.where(usable, bottom, 1.0)
    t = (dx * (origin.y - cy) - dy * (origin.x - cx)) / safe_bottom
    u = ((cy - origin.y) * -rx - (cx - origin.x) * -ry) / safe_bottom

    hits = usable & (t >= 0) & (t <= 1) & (u >= 0) & (u <= 1)
    if not np.any(hits):
        return None
    return float(np.min(t[hits]))

"""Procedural racetrack generation.

A track is a closed, constant-width raceway. :class:`TrackGenerator` places
control points around the canvas centre, threads a closed Catmull-Rom spline
through them, and offsets the sampled centre line along its normals to build
the inner and outer walls. One checkpoint gate joins each inner/outer vertex
pair; gate 0 doubles as the start/finish line.

Generated tracks are validated against self-intersection. Rejected candidates
are retried with a perturbed seed, and a conservative fallback layout is used
when every attempt fails, so generation always produces a usable track.

Each result is an immutable :class:`Track` snapshot. Regenerating (random or
edited) swaps in a new snapshot instead of mutating the old one, so a
simulation tick holding a reference keeps seeing consistent geometry.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, replace
from functools import cached_property
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .geometry import Segment, Vector2, intersection_matrix, segments_to_array


@dataclass(frozen=True)
class TrackParameters:
    """Tunable generation parameters.

    Attributes:
        track_width: Distance between the inner and outer wall.
        num_control_points: Number of spline anchors placed around the centre.
        segments_per_curve: Centre-line samples per control-point interval.
        radius_variance: Spread of anchor radii; 0 is near-circular.
        corner_tightness: Probability scale and magnitude bound of the
            angular jitter applied to anchors.
    """

    track_width: float = 120.0
    num_control_points: int = 14
    segments_per_curve: int = 15
    radius_variance: float = 0.35
    corner_tightness: float = 0.20


@dataclass(frozen=True)
class Track:
    control_points: Tuple[Vector2, ...]
    center_line: Tuple[Vector2, ...]
    inner_walls: Tuple[Segment, ...]
    outer_walls: Tuple[Segment, ...]
    walls: Tuple[Segment, ...]
    checkpoints: Tuple[Segment, ...]
    start_point: Vector2
    start_angle: float
    params: TrackParameters
    seed: int
    width: float
    height: float

    @cached_property
    def wall_array(self) -> np.ndarray:
        """Walls packed for vectorised ray casts."""
        return segments_to_array(self.walls)


def generate_control_points(
    params: TrackParameters,
    width: float,
    height: float,
    rng: random.Random,
) -> List[Vector2]:
    cx = width / 2
    cy = height / 2
    n = params.num_control_points
    base_radius = min(width, height) * 0.35
    min_radius = base_radius * max(0.1, 1 - params.radius_variance)
    max_radius = base_radius * (1 + params.radius_variance * 0.5)

    points: List[Vector2] = []
    for i in range(n):
        base_angle = (i / n) * math.pi * 2
        angle_offset = 0.0
        if rng.random() > 1 - params.corner_tightness * 1.5:
            direction = 1 if rng.random() > 0.5 else -1
            angle_offset = direction * rng.random() * params.corner_tightness * (math.pi * 2 / n)
        angle = base_angle + angle_offset
        radius = min_radius + rng.random() * (max_radius - min_radius)
        points.append(Vector2(cx + radius * math.cos(angle), cy + radius * math.sin(angle)))
    return points


def catmull_rom_loop(points: Sequence[Vector2], segments_per_curve: int) -> List[Vector2]:
    """Sample a closed Catmull-Rom spline through ``points``."""

    n = len(points)
    result: List[Vector2] = []
    for i in range(n):
        p0 = points[(i - 1) % n]
        p1 = points[i]
        p2 = points[(i + 1) % n]
        p3 = points[(i + 2) % n]
        for step in range(segments_per_curve):
            s = step / segments_per_curve
            s2 = s * s
            s3 = s2 * s
            x = 0.5 * (
                (-p0.x + 3 * p1.x - 3 * p2.x + p3.x) * s3
                + (2 * p0.x - 5 * p1.x + 4 * p2.x - p3.x) * s2
                + (-p0.x + p2.x) * s
                + 2 * p1.x
            )
            y = 0.5 * (
                (-p0.y + 3 * p1.y - 3 * p2.y + p3.y) * s3
                + (2 * p0.y - 5 * p1.y + 4 * p2.y - p3.y) * s2
                + (-p0.y + p2.y) * s
                + 2 * p1.y
            )
            result.append(Vector2(x, y))
    return result


def _normal_at(prev: Vector2, current: Vector2, following: Vector2) -> Vector2:
    tangent_in = current.sub(prev).normalized()
    tangent_out = following.sub(current).normalized()
    tangent = tangent_in.add(tangent_out).normalized()
    return Vector2(-tangent.y, tangent.x)


def center_line_normals(center_line: Sequence[Vector2]) -> List[Vector2]:
    """Unit normals for each sample with a consistent orientation."""

    n = len(center_line)
    normals: List[Vector2] = []
    previous: Optional[Vector2] = None
    for i in range(n):
        normal = _normal_at(center_line[(i - 1) % n], center_line[i], center_line[(i + 1) % n])
        if previous is not None and normal.dot(previous) < 0:
            normal = normal.scale(-1)
        normals.append(normal)
        previous = normal

    # Seam between the last and first sample.
    if n > 1 and normals[0].dot(normals[-1]) < 0:
        normals[0] = normals[0].scale(-1)
    return normals


def _closed_polyline(points: Sequence[Vector2]) -> Tuple[Segment, ...]:
    n = len(points)
    return tuple((points[i], points[(i + 1) % n]) for i in range(n))


def build_track(
    control_points: Sequence[Vector2],
    params: TrackParameters,
    seed: int,
    width: float,
    height: float,
) -> Track:
    """Derive centre line, walls, checkpoints and start pose from anchors."""

    center_line = catmull_rom_loop(control_points, params.segments_per_curve)
    normals = center_line_normals(center_line)
    half_width = params.track_width / 2

    inner_points = [c.sub(nrm.scale(half_width)) for c, nrm in zip(center_line, normals)]
    outer_points = [c.add(nrm.scale(half_width)) for c, nrm in zip(center_line, normals)]
    inner_walls = _closed_polyline(inner_points)
    outer_walls = _closed_polyline(outer_points)
    checkpoints = tuple(zip(inner_points, outer_points))

    inner, outer = checkpoints[0]
    start_point = inner.midpoint(outer)
    start_angle = math.atan2(-(outer.x - inner.x), outer.y - inner.y)

    return Track(
        control_points=tuple(control_points),
        center_line=tuple(center_line),
        inner_walls=inner_walls,
        outer_walls=outer_walls,
        walls=inner_walls + outer_walls,
        checkpoints=checkpoints,
        start_point=start_point,
        start_angle=start_angle,
        params=params,
        seed=seed,
        width=width,
        height=height,
    )


def non_adjacent_mask(n: int) -> np.ndarray:
    """Pairs of closed-polyline segment indices that share no endpoint."""

    idx = np.arange(n)
    diff = np.abs(idx[:, None] - idx[None, :])
    return (diff > 1) & (diff < n - 1)


def _crosses(first: np.ndarray, second: np.ndarray, mask: np.ndarray) -> bool:
    return bool(np.any(intersection_matrix(first, second) & mask))


def has_self_intersection(track: Track) -> bool:
    center = segments_to_array(_closed_polyline(track.center_line))
    return _crosses(center, center, non_adjacent_mask(len(center)))


def has_wall_intersection(track: Track) -> bool:
    inner = segments_to_array(track.inner_walls)
    outer = segments_to_array(track.outer_walls)
    mask = non_adjacent_mask(len(inner))
    return _crosses(inner, outer, mask) or _crosses(inner, inner, mask) or _crosses(outer, outer, mask)


def is_valid_track(track: Track) -> bool:
    return not has_self_intersection(track) and not has_wall_intersection(track)


class TrackGenerator:
    """Owns the current :class:`Track` and the editor's working anchors.

    Args:
        width: Canvas width used to place the track.
        height: Canvas height used to place the track.
        seed: Seed of the initial track.
        params: Generation parameters; defaults to :class:`TrackParameters`.
        rng: Source of fresh seeds for :meth:`randomize`.
    """

    FIXED_SIZE = 1200.0
    MAX_ATTEMPTS = 250
    SEED_STEP = 1000
    FALLBACK_SEED = 42

    def __init__(
        self,
        width: float = FIXED_SIZE,
        height: float = FIXED_SIZE,
        seed: int = 0,
        params: TrackParameters | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.width = float(width)
        self.height = float(height)
        self.params = params or TrackParameters()
        self.rng = rng or random.Random()
        self.control_points: List[Vector2] = []
        self._last_valid_control_points: List[Vector2] = []
        self.track: Track
        self.generate(self.width, self.height, seed)

    @property
    def seed(self) -> int:
        return self.track.seed

    def _fallback_params(self) -> TrackParameters:
        return replace(self.params, radius_variance=0.05, corner_tightness=0.05, num_control_points=10)

    def generate(self, width: float | None = None, height: float | None = None, seed: int = 0) -> Track:
        """Build a valid track for ``seed`` and make it current."""

        width = self.width if width is None else float(width)
        height = self.height if height is None else float(height)
        self.width = width
        self.height = height

        candidate: Track | None = None
        for attempt in range(self.MAX_ATTEMPTS):
            attempt_seed = seed + attempt * self.SEED_STEP
            points = generate_control_points(self.params, width, height, random.Random(attempt_seed))
            track = build_track(points, self.params, attempt_seed, width, height)
            if is_valid_track(track):
                candidate = track
                break

        if candidate is None:
            fallback = self._fallback_params()
            points = generate_control_points(fallback, width, height, random.Random(self.FALLBACK_SEED))
            candidate = build_track(points, fallback, seed, width, height)

        self._accept(candidate)
        return candidate

    def randomize(self) -> int:
        """Generate a track from a freshly drawn seed and return that seed."""

        new_seed = self.rng.randint(1, 1_000_000)
        self.generate(self.width, self.height, new_seed)
        return new_seed

    def set_params(self, **changes: float) -> Track:
        """Replace generation parameters and regenerate with the current seed."""

        self.params = replace(self.params, **changes)
        return self.generate(self.width, self.height, self.track.seed)

    def regenerate_from_working_control_points(self) -> bool:
        """Rebuild the track from the (possibly edited) working anchors.

        Returns ``True`` when the edited layout is valid and now current. On an
        invalid layout the working anchors are rolled back to the last valid
        set, the track is rebuilt from those, and ``False`` is returned.
        """

        if len(self.control_points) < 3:
            self.control_points = list(self._last_valid_control_points)
            return False

        params = self.track.params
        candidate = build_track(self.control_points, params, self.track.seed, self.width, self.height)
        if is_valid_track(candidate):
            self._accept(candidate)
            return True

        self.control_points = list(self._last_valid_control_points)
        self.track = build_track(self.control_points, params, self.track.seed, self.width, self.height)
        return False

    def move_control_point(self, index: int, point: Vector2) -> bool:
        self.control_points[index] = point
        return self.regenerate_from_working_control_points()

    def _accept(self, track: Track) -> None:
        self.track = track
        self.control_points = list(track.control_points)
        self._last_valid_control_points = list(track.control_points)

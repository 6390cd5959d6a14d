import random

import pytest

import sim.track as track_module
from sim.geometry import Vector2, segments_intersect
from sim.track import TrackGenerator, TrackParameters


def _assert_closed(walls):
    for i, (_, end) in enumerate(walls):
        assert end == walls[(i + 1) % len(walls)][0]


def _non_adjacent_pairs(n):
    for i in range(n):
        for j in range(n):
            if 1 < abs(i - j) < n - 1:
                yield i, j


def test_same_seed_gives_identical_geometry():
    first = TrackGenerator(seed=7).track
    second = TrackGenerator(seed=7).track
    assert first.control_points == second.control_points
    assert first.center_line == second.center_line
    assert first.inner_walls == second.inner_walls
    assert first.outer_walls == second.outer_walls
    assert first.checkpoints == second.checkpoints


def test_layout_shape():
    params = TrackParameters()
    track = TrackGenerator(seed=1).track
    samples = params.num_control_points * params.segments_per_curve
    assert len(track.control_points) == params.num_control_points
    assert len(track.center_line) == samples
    assert len(track.inner_walls) == samples
    assert len(track.outer_walls) == samples
    assert len(track.checkpoints) == samples
    assert track.walls == track.inner_walls + track.outer_walls
    _assert_closed(track.inner_walls)
    _assert_closed(track.outer_walls)


def test_checkpoints_join_matching_wall_vertices():
    track = TrackGenerator(seed=2).track
    for i, (inner, outer) in enumerate(track.checkpoints):
        assert inner == track.inner_walls[i][0]
        assert outer == track.outer_walls[i][0]
        assert inner.dist(outer) == pytest.approx(track.params.track_width)
        mid = inner.midpoint(outer)
        assert mid.x == pytest.approx(track.center_line[i].x)
        assert mid.y == pytest.approx(track.center_line[i].y)


def test_start_pose_sits_on_first_checkpoint():
    track = TrackGenerator(seed=4).track
    inner, outer = track.checkpoints[0]
    assert track.start_point == inner.midpoint(outer)
    # Heading is perpendicular to the start gate.
    gate = outer.sub(inner)
    heading = Vector2.from_angle(track.start_angle)
    assert heading.dot(gate) == pytest.approx(0.0, abs=1e-9)


@pytest.mark.parametrize("seed", [0, 11])
def test_generated_walls_do_not_cross(seed):
    track = TrackGenerator(seed=seed).track
    inner = track.inner_walls
    outer = track.outer_walls
    for i, j in _non_adjacent_pairs(len(inner)):
        assert not segments_intersect(*inner[i], *outer[j])
        assert not segments_intersect(*inner[i], *inner[j])
        assert not segments_intersect(*outer[i], *outer[j])


def test_retry_seed_is_recorded(monkeypatch):
    calls = []
    real = track_module.is_valid_track

    def reject_first(track):
        calls.append(track.seed)
        return len(calls) > 1 and real(track)

    monkeypatch.setattr(track_module, "is_valid_track", reject_first)
    generator = TrackGenerator(seed=5)
    assert calls[0] == 5
    assert generator.seed == 5 + TrackGenerator.SEED_STEP * (len(calls) - 1)


def test_fallback_when_every_attempt_fails(monkeypatch):
    monkeypatch.setattr(track_module, "is_valid_track", lambda track: False)
    monkeypatch.setattr(TrackGenerator, "MAX_ATTEMPTS", 3)
    generator = TrackGenerator(seed=99)
    track = generator.track
    assert len(track.control_points) == 10
    assert track.params.radius_variance == 0.05
    assert track.params.corner_tightness == 0.05
    assert track.seed == 99
    assert generator.params == TrackParameters()


def test_randomize_draws_seed_from_rng():
    generator = TrackGenerator(seed=0, rng=random.Random(10))
    new_seed = generator.randomize()
    expected = random.Random(10).randint(1, 1_000_000)
    assert new_seed == expected
    assert (generator.seed - new_seed) % TrackGenerator.SEED_STEP == 0


def test_set_params_regenerates_with_current_seed():
    generator = TrackGenerator(seed=3)
    track = generator.set_params(track_width=90.0)
    assert track.params.track_width == 90.0
    inner, outer = track.checkpoints[0]
    assert inner.dist(outer) == pytest.approx(90.0)


def test_small_edit_is_accepted():
    generator = TrackGenerator(seed=6)
    moved = generator.control_points[0].add(Vector2(3.0, 3.0))
    assert generator.move_control_point(0, moved)
    assert generator.track.control_points[0] == moved


def test_invalid_edit_rolls_back():
    generator = TrackGenerator(seed=6)
    before = generator.track
    points = generator.control_points
    # Swapping opposite anchors turns the loop into a figure eight.
    points[0], points[7] = points[7], points[0]
    assert not generator.regenerate_from_working_control_points()
    assert generator.control_points == list(before.control_points)
    assert generator.track.center_line == before.center_line
    assert generator.track.walls == before.walls


def test_too_few_anchors_is_rejected():
    generator = TrackGenerator(seed=6)
    before = generator.track
    generator.control_points = generator.control_points[:2]
    assert not generator.regenerate_from_working_control_points()
    assert generator.track is before
    assert generator.control_points == list(before.control_points)

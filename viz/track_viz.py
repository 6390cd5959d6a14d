"""Plot a generated racetrack, optionally with a brain's test drive."""

from __future__ import annotations

import argparse
import math
from pathlib import Path
from typing import List, Sequence

import matplotlib.pyplot as plt
from matplotlib import patches

from sim.agent import Agent
from sim.geometry import Segment, Vector2
from sim.network import FeedForwardNetwork
from sim.storage import load_brain_file
from sim.track import Track, TrackGenerator, TrackParameters


def _plot_segments(ax: plt.Axes, segments: Sequence[Segment], **kwargs) -> None:
    xs: List[float] = []
    ys: List[float] = []
    for start, end in segments:
        xs.extend([start.x, end.x, math.nan])
        ys.extend([start.y, end.y, math.nan])
    ax.plot(xs, ys, **kwargs)


def drive(track: Track, network: FeedForwardNetwork, max_ticks: int) -> List[Vector2]:
    """Roll out a single agent and return its path."""

    agent = Agent(track.start_point, track.start_angle, network)
    path = [agent.position]
    for _ in range(max_ticks):
        agent.update(track)
        if agent.is_dead:
            break
        path.append(agent.position)
    return path


def _plot_track(track: Track, show_checkpoints: bool, path: Sequence[Vector2] | None = None) -> None:
    fig, ax = plt.subplots(figsize=(8, 8))
    ax.set_facecolor("#0a0c10")
    ax.set_aspect("equal", adjustable="box")
    ax.set_xlim(0, track.width)
    ax.set_ylim(track.height, 0)

    if show_checkpoints:
        _plot_segments(ax, track.checkpoints, color="#3a86ff", linewidth=0.5, alpha=0.35)
    _plot_segments(ax, track.outer_walls, color="white", linewidth=2)
    _plot_segments(ax, track.inner_walls, color="white", linewidth=2)
    _plot_segments(ax, track.checkpoints[:1], color="#2dc653", linewidth=2, alpha=0.8)

    for index, point in enumerate(track.control_points):
        ax.add_patch(patches.Circle((point.x, point.y), 10, facecolor="white", edgecolor="black"))
        ax.text(point.x, point.y, str(index), ha="center", va="center", fontsize=7)

    heading = Vector2.from_angle(track.start_angle, 40)
    ax.arrow(
        track.start_point.x,
        track.start_point.y,
        heading.x,
        heading.y,
        color="#ffd166",
        width=4,
        length_includes_head=True,
    )

    if path:
        ax.plot([p.x for p in path], [p.y for p in path], color="#ff7f51", linewidth=1.5)

    ax.set_title(f"Track seed {track.seed}", color="black")
    fig.tight_layout()


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--seed", type=int, default=0, help="track seed")
    parser.add_argument("--track-width", type=float, default=120.0, help="distance between the walls")
    parser.add_argument("--control-points", type=int, default=14, help="number of spline anchors")
    parser.add_argument("--radius-variance", type=float, default=0.35, help="spread of anchor radii")
    parser.add_argument("--corner-tightness", type=float, default=0.20, help="angular jitter of anchors")
    parser.add_argument("--checkpoints", action="store_true", help="draw every checkpoint gate")
    parser.add_argument("--brain", type=Path, default=None, help="brain document to test drive on the track")
    parser.add_argument("--ticks", type=int, default=2000, help="maximum ticks for the test drive")
    parser.add_argument("--save", type=Path, default=None, help="Optional output image path")
    args = parser.parse_args()

    params = TrackParameters(
        track_width=args.track_width,
        num_control_points=args.control_points,
        radius_variance=args.radius_variance,
        corner_tightness=args.corner_tightness,
    )
    track = TrackGenerator(seed=args.seed, params=params).track

    path = None
    if args.brain:
        try:
            document = load_brain_file(args.brain)
        except (OSError, ValueError) as exc:
            raise SystemExit(str(exc)) from exc
        network = FeedForwardNetwork()
        network.from_json(document.network)
        path = drive(track, network, args.ticks)

    _plot_track(track, args.checkpoints, path)

    if args.save:
        plt.savefig(args.save, dpi=200)
    else:
        plt.show()


if __name__ == "__main__":
    main()

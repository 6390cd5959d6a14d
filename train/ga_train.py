"""Headless genetic-algorithm training harness for the racetrack simulator.

The trainer fast-forwards simulation ticks without rendering, optionally
re-randomizes the track every few generations, logs per-generation metrics to
CSV and JSON, and exports the champion brain plus a session document when the
run ends. The durable best-network snapshot lives in a JSON file so a later
run resumes from it.
"""

from __future__ import annotations

import argparse
import json
import os
import random
from dataclasses import asdict
from pathlib import Path
from typing import Callable, Optional

from sim.population import EvolutionConfig, GenerationStats, PopulationController
from sim.storage import (
    JsonFileStore,
    brain_document,
    import_brain,
    load_session,
    read_json,
    session_document,
    write_json,
)
from sim.track import TrackGenerator, TrackParameters

CSV_FIELDS = ("generation", "best", "mean", "survivors", "diversity", "ticks", "checkpoints")


class MetricsLogger:
    def __init__(self, csv_path: Path, json_path: Path) -> None:
        self.csv_path = csv_path
        self.json_path = json_path

        os.makedirs(self.csv_path.parent, exist_ok=True)
        with open(self.csv_path, "w", encoding="utf-8") as csv_file:
            csv_file.write(",".join(CSV_FIELDS) + "\n")

        os.makedirs(self.json_path.parent, exist_ok=True)
        with open(self.json_path, "w", encoding="utf-8") as json_file:
            json.dump([], json_file)

    def record(self, stats: GenerationStats, track_seed: int) -> None:
        entry = {
            "generation": stats.generation,
            "best": stats.best_fitness,
            "mean": stats.mean_fitness,
            "survivors": stats.survivors,
            "diversity": stats.diversity,
            "ticks": stats.ticks,
            "checkpoints": stats.checkpoints,
        }

        with open(self.csv_path, "a", encoding="utf-8") as csv_file:
            csv_file.write(",".join(str(entry[name]) for name in CSV_FIELDS) + "\n")

        with open(self.json_path, "r+", encoding="utf-8") as json_file:
            data = json.load(json_file)
            data.append({**entry, "track_seed": track_seed})
            json_file.seek(0)
            json.dump(data, json_file, indent=2)
            json_file.truncate()


def run_training(
    controller: PopulationController,
    generator: TrackGenerator,
    generations: int,
    randomize_interval: int = 0,
    max_ticks: Optional[int] = None,
    on_generation: Optional[Callable[[GenerationStats, int], None]] = None,
) -> int:
    """Tick until ``generations`` transitions happened; return ticks run.

    ``randomize_interval > 0`` swaps in a freshly randomized track whenever
    the new generation number is a multiple of it. ``max_ticks`` bounds the
    run regardless of progress.
    """

    completed = 0
    ticks = 0
    while completed < generations:
        if max_ticks is not None and ticks >= max_ticks:
            break
        advanced = controller.update(generator.track)
        ticks += 1
        if not advanced:
            continue

        completed += 1
        stats = controller.last_stats
        if on_generation is not None and stats is not None:
            on_generation(stats, generator.seed)
        if randomize_interval > 0 and controller.generation % randomize_interval == 0:
            generator.randomize()
    return ticks


def _parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--output", type=Path, default=Path("data/ga_runs/latest"), help="output directory for logs and artifacts")
    parser.add_argument("--generations", type=int, default=30, help="number of generations to run")
    parser.add_argument("--population", type=int, default=50, help="agents per generation")
    parser.add_argument("--seed", type=int, default=None, help="random seed for the genetic algorithm")
    parser.add_argument("--track-seed", type=int, default=0, help="seed of the initial track")
    parser.add_argument("--mutation-rate", type=float, default=0.1, help="per-parameter mutation probability")
    parser.add_argument("--elite-count", type=int, default=1, help="agents carried over unchanged")
    parser.add_argument("--tournament-size", type=int, default=3, help="candidates per tournament")
    parser.add_argument("--max-lifespan", type=int, default=2000, help="tick limit per generation")
    parser.add_argument(
        "--randomize-interval",
        type=int,
        default=0,
        help="regenerate a random track every N generations (0 disables)",
    )
    parser.add_argument("--track-width", type=float, default=120.0, help="distance between the walls")
    parser.add_argument("--control-points", type=int, default=14, help="number of spline anchors")
    parser.add_argument("--segments-per-curve", type=int, default=15, help="centre-line samples per anchor interval")
    parser.add_argument("--radius-variance", type=float, default=0.35, help="spread of anchor radii")
    parser.add_argument("--corner-tightness", type=float, default=0.20, help="angular jitter of anchors")
    parser.add_argument(
        "--store",
        type=Path,
        default=None,
        help="snapshot store file (defaults to <output>/snapshot.json)",
    )
    parser.add_argument("--fresh", action="store_true", help="ignore and clear any stored snapshot")
    parser.add_argument("--import-brain", type=Path, default=None, help="brain document to seed agent 0 with")
    parser.add_argument("--load-session", type=Path, default=None, help="session document to resume from")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> None:
    args = _parse_args(argv)
    if args.generations < 1:
        raise SystemExit("--generations must be at least 1")
    if args.population < 2:
        raise SystemExit("--population must be at least 2")

    rng = random.Random(args.seed)
    params = TrackParameters(
        track_width=args.track_width,
        num_control_points=args.control_points,
        segments_per_curve=args.segments_per_curve,
        radius_variance=args.radius_variance,
        corner_tightness=args.corner_tightness,
    )
    generator = TrackGenerator(seed=args.track_seed, params=params, rng=rng)

    args.output.mkdir(parents=True, exist_ok=True)
    store = JsonFileStore(args.store or args.output / "snapshot.json")
    config = EvolutionConfig(
        mutation_rate=args.mutation_rate,
        elite_count=args.elite_count,
        tournament_size=args.tournament_size,
        max_lifespan=args.max_lifespan,
    )
    track = generator.track
    controller = PopulationController(args.population, track.start_point, track.start_angle, config=config, store=store, rng=rng)
    if args.fresh:
        controller.restart(track, clear=True)

    try:
        if args.import_brain:
            document = import_brain(controller, read_json(args.import_brain))
            print(f"Imported brain (gen {document.generation or '?'}, fit {int(document.fitness or 0)})")
        if args.load_session:
            load_session(controller, generator, read_json(args.load_session))
            print(f"Loaded session (gen {controller.generation}, track seed {generator.seed})")
    except (OSError, ValueError) as exc:
        raise SystemExit(str(exc)) from exc

    metrics_logger = MetricsLogger(args.output / "fitness_log.csv", args.output / "fitness_log.json")

    def report(stats: GenerationStats, track_seed: int) -> None:
        metrics_logger.record(stats, track_seed)
        print(
            f"Gen {stats.generation}: best={stats.best_fitness:.1f} mean={stats.mean_fitness:.1f} "
            f"alive={stats.survivors} diversity={stats.diversity:.2f} ticks={stats.ticks}"
        )

    run_training(controller, generator, args.generations, args.randomize_interval, on_generation=report)

    brain_path = args.output / "champion_brain.json"
    write_json(brain_path, brain_document(controller))
    session_path = args.output / "session.json"
    write_json(session_path, session_document(controller, generator))
    summary_path = args.output / "history.json"
    write_json(summary_path, {"history": [asdict(stats) for stats in controller.history]})

    print(f"Saved champion brain to {brain_path}")
    print(f"Saved session to {session_path}")


if __name__ == "__main__":
    main()

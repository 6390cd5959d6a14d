"""Networked racing agent: sensing, physics, collisions and fitness."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .geometry import Vector2, cast_ray, get_intersection
from .network import Network
from .track import Track


@dataclass(frozen=True)
class AgentConfig:
    """Physical and scoring constants shared by every agent.

    Attributes:
        max_speed: Velocity magnitude cap per tick.
        max_force: Forward force at full throttle.
        radius: Body radius; a sensor reading below it is a crash.
        sensor_angles: Ray offsets from the heading, left to right.
        sensor_length: Sensing range; also the input normalisation scale.
        steer_gain: Heading change per tick at full steering.
        damping: Multiplicative velocity friction applied every tick.
        initial_life: Ticks an agent survives without reaching a checkpoint.
        life_bonus: Extra ticks granted per checkpoint.
        max_life: Upper bound on remaining life.
        initial_speed: Speed along the start heading at spawn.
        checkpoint_score: Fitness per checkpoint crossed.
        speed_score: Scale of the checkpoints-per-tick bonus.
    """

    max_speed: float = 5.0
    max_force: float = 0.2
    radius: float = 8.0
    sensor_angles: Tuple[float, ...] = (-math.pi / 2, -math.pi / 4, 0.0, math.pi / 4, math.pi / 2)
    sensor_length: float = 100.0
    steer_gain: float = 0.1
    damping: float = 0.95
    initial_life: int = 500
    life_bonus: int = 500
    max_life: int = 1000
    initial_speed: float = 0.1
    checkpoint_score: float = 1000.0
    speed_score: float = 10000.0


@dataclass(frozen=True)
class SensorReading:
    distance: float
    hit: Optional[Vector2] = None


def compute_fitness(checkpoint_count: int, frame_age: int, config: AgentConfig | None = None) -> float:
    """Checkpoint progress plus a bonus for reaching checkpoints quickly.

    Nothing is earned before the first checkpoint, so idling, spinning or
    driving backwards scores zero.
    """

    config = config or AgentConfig()
    speed_bonus = 0.0
    if checkpoint_count > 0 and frame_age > 0:
        speed_bonus = (checkpoint_count / frame_age) * config.speed_score
    return checkpoint_count * config.checkpoint_score + speed_bonus


class Agent:
    def __init__(
        self,
        position: Vector2,
        heading: float,
        network: Network,
        config: AgentConfig | None = None,
    ) -> None:
        self.config = config or AgentConfig()
        self.position = position
        self.heading = heading
        self.velocity = Vector2.from_angle(heading, self.config.initial_speed)
        self.acceleration = Vector2(0.0, 0.0)
        self.network = network

        self.sensors: Tuple[SensorReading, ...] = tuple(
            SensorReading(self.config.sensor_length) for _ in self.config.sensor_angles
        )
        self.last_inputs: List[float] = [1.0] * len(self.config.sensor_angles)
        self.last_outputs: List[float] = [0.0, 0.0]

        self.fitness = 0.0
        self.life = self.config.initial_life
        self.checkpoint_count = 0
        self.frame_age = 0
        self.distance_traveled = 0.0
        self.is_dead = False

    def update(self, track: Track) -> None:
        """Advance one tick against ``track``."""

        if self.is_dead:
            return

        self.sense(track)
        if self.collides(track):
            self.is_dead = True
            return

        cfg = self.config
        inputs = [reading.distance / cfg.sensor_length for reading in self.sensors]
        outputs = self.network.run(inputs)
        self.last_inputs = inputs
        self.last_outputs = list(outputs)

        throttle = outputs[0]
        steering = outputs[1] * 2 - 1
        self.heading += steering * cfg.steer_gain
        self.acceleration = self.acceleration.add(Vector2.from_angle(self.heading, throttle * cfg.max_force))

        self.velocity = self.velocity.add(self.acceleration).limit(cfg.max_speed).scale(cfg.damping)
        previous = self.position
        self.position = self.position.add(self.velocity)
        self.acceleration = Vector2(0.0, 0.0)

        self.life -= 1
        if self.life <= 0:
            self.is_dead = True
            return

        self._check_checkpoint(track, previous)
        self.frame_age += 1
        self.distance_traveled += self.velocity.mag()
        self.fitness = compute_fitness(self.checkpoint_count, self.frame_age, cfg)

    def sense(self, track: Track) -> Tuple[SensorReading, ...]:
        cfg = self.config
        readings: List[SensorReading] = []
        for offset in cfg.sensor_angles:
            ray = Vector2.from_angle(self.heading + offset, cfg.sensor_length)
            offset_hit = cast_ray(self.position, self.position.add(ray), track.wall_array)
            if offset_hit is None:
                readings.append(SensorReading(distance=cfg.sensor_length))
                continue
            readings.append(
                SensorReading(distance=offset_hit * cfg.sensor_length, hit=self.position.add(ray.scale(offset_hit)))
            )
        self.sensors = tuple(readings)
        return self.sensors

    def collides(self, track: Track) -> bool:
        """Whether the next move crosses a wall or the body touches one."""

        next_position = self.position.add(self.velocity)
        if cast_ray(self.position, next_position, track.wall_array) is not None:
            return True
        return any(reading.distance < self.config.radius for reading in self.sensors)

    def _check_checkpoint(self, track: Track, previous: Vector2) -> None:
        if not track.checkpoints:
            return
        start, end = track.checkpoints[self.checkpoint_count % len(track.checkpoints)]
        if get_intersection(previous, self.position, start, end) is not None:
            self.checkpoint_count += 1
            self.life = min(self.life + self.config.life_bonus, self.config.max_life)

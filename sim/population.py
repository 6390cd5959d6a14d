"""Population controller: generation lifecycle and genetic reproduction.

Each call to :meth:`PopulationController.update` is one simulation tick. The
controller updates every agent against the current track, tracks whether the
generation is still making progress, and when a termination trigger fires it
breeds the next population in the same tick:

1. ``elite_count`` fittest agents are cloned unchanged.
2. Clones of the single best network, mutated at ``diversity_rate``, fill the
   population up to ``diversity_share`` of its size.
3. The rest are tournament-selected parent pairs, blended by crossover and
   mutated at ``mutation_rate``.

The best network of the finished generation and the new generation counter
are written to the snapshot store after every transition.
"""

from __future__ import annotations

import copy
import math
import random
import statistics
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from .agent import Agent, AgentConfig
from .genetics import crossover, mean_pairwise_distance, mutate
from .geometry import Vector2
from .network import FeedForwardNetwork, Network, NetworkState
from .storage import SnapshotStore, clear_snapshot, load_snapshot, save_snapshot
from .track import Track

NetworkFactory = Callable[[random.Random], Network]


def default_network_factory(rng: random.Random) -> Network:
    return FeedForwardNetwork(rng=rng)


@dataclass
class EvolutionConfig:
    """Genetic algorithm settings.

    Attributes:
        mutation_rate: Per-parameter mutation probability for crossover
            children.
        elite_count: Agents carried over unmodified.
        tournament_size: Candidates sampled per parent selection.
        max_lifespan: Hard tick limit of a generation.
        stagnation_window: Ticks without progress that end a generation early.
        diversity_rate: Mutation probability for mutated copies of the best.
        diversity_share: Fraction of the population seeded from the best.
        diversity_sample: Agents sampled when measuring diversity.
    """

    mutation_rate: float = 0.1
    elite_count: int = 1
    tournament_size: int = 3
    max_lifespan: int = 2000
    stagnation_window: int = 500
    diversity_rate: float = 0.2
    diversity_share: float = 0.2
    diversity_sample: int = 10


@dataclass
class GenerationStats:
    generation: int
    survivors: int
    best_fitness: float
    mean_fitness: float
    diversity: float
    ticks: int
    checkpoints: int


class PopulationController:
    def __init__(
        self,
        population_size: int,
        start_point: Vector2,
        start_angle: float,
        config: EvolutionConfig | None = None,
        store: SnapshotStore | None = None,
        rng: random.Random | None = None,
        network_factory: NetworkFactory | None = None,
        agent_config: AgentConfig | None = None,
    ) -> None:
        if population_size < 2:
            raise ValueError(f"population_size must be at least 2, got {population_size}")

        config = config or EvolutionConfig()
        self.population_size = int(population_size)
        self.rng = rng or random.Random()
        self.store = store
        self.network_factory = network_factory or default_network_factory
        self.agent_config = agent_config or AgentConfig()

        self.max_lifespan = int(config.max_lifespan)
        self.stagnation_window = int(config.stagnation_window)
        self.diversity_rate = config.diversity_rate
        self.diversity_share = config.diversity_share
        self.diversity_sample = int(config.diversity_sample)
        self._mutation_rate = 0.0
        self._elite_count = 0
        self._tournament_size = 1
        self.mutation_rate = config.mutation_rate
        self.elite_count = config.elite_count
        self.tournament_size = config.tournament_size

        self.generation = 1
        self.timer = 0
        self.last_stats: Optional[GenerationStats] = None
        self.history: List[GenerationStats] = []
        self.champion_network: Optional[NetworkState] = None
        self.champion_fitness = 0.0
        self._reset_stagnation()

        snapshot = load_snapshot(store) if store is not None else None
        saved_network: Optional[NetworkState] = None
        if snapshot is not None:
            saved_network = snapshot.network
            if snapshot.generation is not None:
                self.generation = snapshot.generation

        self.agents: List[Agent] = self._initial_population(start_point, start_angle, saved_network)

    # -- configuration -------------------------------------------------

    @property
    def mutation_rate(self) -> float:
        return self._mutation_rate

    @mutation_rate.setter
    def mutation_rate(self, value: float) -> None:
        self._mutation_rate = max(0.0, min(1.0, float(value)))

    @property
    def elite_count(self) -> int:
        return self._elite_count

    @elite_count.setter
    def elite_count(self, value: int) -> None:
        # At least one slot must remain for a crossover child.
        self._elite_count = max(0, min(int(value), self.population_size - 2))

    @property
    def tournament_size(self) -> int:
        return self._tournament_size

    @tournament_size.setter
    def tournament_size(self, value: int) -> None:
        self._tournament_size = max(1, min(int(value), self.population_size - 1))

    # -- population construction ---------------------------------------

    def _spawn(self, position: Vector2, angle: float, state: Optional[NetworkState] = None) -> Agent:
        network = self.network_factory(self.rng)
        if state is not None:
            network.from_json(state)
        return Agent(position, angle, network, self.agent_config)

    def _initial_population(
        self,
        position: Vector2,
        angle: float,
        saved_network: Optional[NetworkState],
    ) -> List[Agent]:
        agents: List[Agent] = []
        seeded_share = self.population_size * self.diversity_share
        for i in range(self.population_size):
            state: Optional[NetworkState] = None
            if saved_network is not None and i == 0:
                state = saved_network
            elif saved_network is not None and i < seeded_share:
                state = copy.deepcopy(saved_network)
                mutate(state, self.diversity_rate, self.rng)
            agents.append(self._spawn(position, angle, state))
        return agents

    def _reset_stagnation(self) -> None:
        self.best_fitness_this_gen = 0.0
        self.last_improvement_timer = 0
        self.best_died_at: Optional[int] = None

    # -- tick loop -----------------------------------------------------

    @property
    def alive_count(self) -> int:
        return sum(1 for agent in self.agents if not agent.is_dead)

    def update(self, track: Track) -> bool:
        """Run one tick. Returns ``True`` when a new generation was started."""

        self.timer += 1
        all_dead = True
        for agent in self.agents:
            agent.update(track)
            if not agent.is_dead:
                all_dead = False

        self._track_progress()
        if self._generation_over(all_dead):
            self.next_generation(track)
            return True
        return False

    def _track_progress(self) -> None:
        current_best = max(agent.fitness for agent in self.agents)
        if current_best > self.best_fitness_this_gen:
            self.best_fitness_this_gen = current_best
            self.last_improvement_timer = self.timer

        leader_alive = any(
            not agent.is_dead and agent.fitness >= self.best_fitness_this_gen for agent in self.agents
        )
        if leader_alive:
            self.best_died_at = None
        elif self.best_died_at is None:
            self.best_died_at = self.timer

    def _generation_over(self, all_dead: bool) -> bool:
        window = self.stagnation_window
        if all_dead or self.timer > self.max_lifespan:
            return True
        if self.timer >= self.max_lifespan - window and self.timer - self.last_improvement_timer >= window:
            return True
        return self.best_died_at is not None and self.timer - self.best_died_at >= window

    # -- reproduction --------------------------------------------------

    def select_parent(self) -> Agent:
        """Tournament selection with replacement over the current population."""

        best = self.agents[self.rng.randrange(len(self.agents))]
        for _ in range(self.tournament_size - 1):
            candidate = self.agents[self.rng.randrange(len(self.agents))]
            if candidate.fitness > best.fitness:
                best = candidate
        return best

    def diversity(self) -> float:
        """Mean pairwise parameter distance over a random sample of agents."""

        if len(self.agents) < 2:
            return 0.0
        sample_size = min(self.diversity_sample, len(self.agents))
        samples = [
            self.agents[self.rng.randrange(len(self.agents))].network.to_json() for _ in range(sample_size)
        ]
        return mean_pairwise_distance(samples)

    def best_agent(self) -> Agent:
        best = self.agents[0]
        for agent in self.agents[1:]:
            if agent.fitness > best.fitness:
                best = agent
        return best

    def champion(self) -> Tuple[NetworkState, float]:
        """Network and fitness of the last finished generation's best.

        Right after a transition every agent is fresh with zero fitness, so
        the previous best stands until a current agent beats it.
        """

        best = self.best_agent()
        if self.champion_network is not None and self.champion_fitness >= best.fitness:
            return copy.deepcopy(self.champion_network), self.champion_fitness
        return best.network.to_json(), best.fitness

    def _snapshot_stats(self) -> GenerationStats:
        fitness_values = [agent.fitness for agent in self.agents]
        best = self.best_agent()
        return GenerationStats(
            generation=self.generation,
            survivors=self.alive_count,
            best_fitness=best.fitness,
            mean_fitness=statistics.fmean(fitness_values),
            diversity=self.diversity(),
            ticks=self.timer,
            checkpoints=best.checkpoint_count,
        )

    def next_generation(self, track: Track) -> None:
        stats = self._snapshot_stats()
        self.last_stats = stats
        self.history.append(stats)

        position = track.start_point
        angle = track.start_angle
        ranked = sorted(self.agents, key=lambda agent: agent.fitness, reverse=True)
        best_state = ranked[0].network.to_json()
        self.champion_network = copy.deepcopy(best_state)
        self.champion_fitness = ranked[0].fitness

        new_agents: List[Agent] = []
        for elite in ranked[: self.elite_count]:
            new_agents.append(self._spawn(position, angle, elite.network.to_json()))

        mutated_best_count = math.floor(self.population_size * self.diversity_share)
        while len(new_agents) < mutated_best_count:
            state = copy.deepcopy(best_state)
            mutate(state, self.diversity_rate, self.rng)
            new_agents.append(self._spawn(position, angle, state))

        while len(new_agents) < self.population_size:
            parent1 = self.select_parent()
            parent2 = self.select_parent()
            child = crossover(parent1.network.to_json(), parent2.network.to_json(), self.rng)
            mutate(child, self.mutation_rate, self.rng)
            new_agents.append(self._spawn(position, angle, child))

        self.agents = new_agents
        self.generation += 1
        self.timer = 0
        self._reset_stagnation()

        if self.store is not None:
            save_snapshot(self.store, best_state, self.generation)

    # -- external control ----------------------------------------------

    def seed_network(self, state: NetworkState, generation: Optional[int] = None) -> None:
        """Install ``state`` as agent 0's network and persist it."""

        network = self.network_factory(self.rng)
        network.from_json(state)
        self.agents[0].network = network
        self.champion_network = network.to_json()
        self.champion_fitness = 0.0
        if generation:
            self.generation = int(generation)
        if self.store is not None:
            save_snapshot(self.store, network.to_json(), self.generation)

    def respawn(self, track: Track) -> None:
        """Restart the current generation on ``track`` with the same networks."""

        position = track.start_point
        angle = track.start_angle
        self.agents = [self._spawn(position, angle, agent.network.to_json()) for agent in self.agents]
        self.timer = 0
        self._reset_stagnation()

    def restart(self, track: Track, clear: bool = False) -> None:
        """Start over at generation 1 on ``track``.

        With ``clear`` the durable snapshot and the generation history are
        dropped and the population is fully random; otherwise the persisted
        best network seeds the new population.
        """

        saved_network: Optional[NetworkState] = None
        if clear:
            if self.store is not None:
                clear_snapshot(self.store)
            self.history = []
            self.last_stats = None
            self.champion_network = None
            self.champion_fitness = 0.0
        elif self.store is not None:
            saved_network = load_snapshot(self.store).network

        self.generation = 1
        self.timer = 0
        self._reset_stagnation()
        self.agents = self._initial_population(track.start_point, track.start_angle, saved_network)


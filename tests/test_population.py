import random

import pytest

from sim.genetics import flatten_parameters, network_distance
from sim.network import FeedForwardNetwork
from sim.population import EvolutionConfig, PopulationController
from sim.storage import BEST_NETWORK_KEY, GENERATION_KEY, MemoryStore
from sim.track import TrackGenerator


class ScriptedAgent:
    """Stand-in agent whose fitness and death follow a per-tick script."""

    def __init__(self, script, seed=0):
        self.script = script
        self.tick = 0
        self.fitness = 0.0
        self.is_dead = False
        self.checkpoint_count = 0
        self.network = FeedForwardNetwork(rng=random.Random(seed))

    def update(self, track):
        if self.is_dead:
            return
        self.tick += 1
        self.fitness, self.is_dead = self.script(self.tick)


@pytest.fixture(scope="module")
def track():
    return TrackGenerator(seed=0).track


def _controller(track, size=4, store=None, seed=0, **config):
    return PopulationController(
        size,
        track.start_point,
        track.start_angle,
        config=EvolutionConfig(**config),
        store=store,
        rng=random.Random(seed),
    )


def test_rejects_tiny_population(track):
    with pytest.raises(ValueError):
        _controller(track, size=1)


def test_fresh_population(track):
    controller = _controller(track, size=6)
    assert controller.generation == 1
    assert len(controller.agents) == 6
    assert all(agent.position == track.start_point for agent in controller.agents)
    assert controller.diversity() > 0.0


def test_all_dead_starts_next_generation(track):
    store = MemoryStore()
    controller = _controller(track, store=store)
    for agent in controller.agents:
        agent.life = 1

    assert controller.update(track)
    assert controller.generation == 2
    assert controller.timer == 0
    assert len(controller.agents) == 4
    assert all(not agent.is_dead for agent in controller.agents)
    assert all(agent.position == track.start_point for agent in controller.agents)
    assert controller.last_stats is not None
    assert controller.last_stats.generation == 1
    assert controller.last_stats.survivors == 0
    assert controller.history == [controller.last_stats]
    assert store.get(GENERATION_KEY) == 2
    assert store.get(BEST_NETWORK_KEY)["layers"][0] == {}


def test_elite_is_copied_verbatim(track):
    controller = _controller(track, size=5, elite_count=1)
    for index, agent in enumerate(controller.agents):
        agent.fitness = float(index)
        agent.is_dead = True
    best_state = controller.agents[-1].network.to_json()

    controller.next_generation(track)
    assert controller.agents[0].network.to_json() == best_state


def test_clamping(track):
    controller = _controller(track, size=5)
    controller.tournament_size = 100
    controller.elite_count = 100
    controller.mutation_rate = 3.0
    assert controller.tournament_size == 4
    assert controller.elite_count == 3
    assert controller.mutation_rate == 1.0
    controller.tournament_size = 0
    controller.elite_count = -2
    controller.mutation_rate = -1.0
    assert controller.tournament_size == 1
    assert controller.elite_count == 0
    assert controller.mutation_rate == 0.0


def test_tournament_of_one_is_uniform_pick(track):
    controller = _controller(track, size=6, tournament_size=1)
    controller.rng = random.Random(42)
    reference = random.Random(42)
    for _ in range(20):
        expected = controller.agents[reference.randrange(6)]
        assert controller.select_parent() is expected


def test_tournament_returns_fittest_candidate(track):
    controller = _controller(track, size=6, tournament_size=3)
    for index, agent in enumerate(controller.agents):
        agent.fitness = float((index * 7) % 6)
    controller.rng = random.Random(9)
    reference = random.Random(9)
    for _ in range(20):
        candidates = [controller.agents[reference.randrange(6)] for _ in range(3)]
        assert controller.select_parent().fitness == max(agent.fitness for agent in candidates)


def test_identical_population_has_zero_diversity(track):
    controller = _controller(track, size=5)
    state = controller.agents[0].network.to_json()
    for agent in controller.agents:
        agent.network.from_json(state)
    assert controller.diversity() == 0.0


def test_stored_snapshot_seeds_population(track):
    saved = FeedForwardNetwork(rng=random.Random(77)).to_json()
    store = MemoryStore({BEST_NETWORK_KEY: saved, GENERATION_KEY: 12})
    controller = _controller(track, size=10, store=store)
    assert controller.generation == 12
    assert controller.agents[0].network.to_json() == saved
    assert controller.agents[1].network.to_json() != saved
    assert controller.agents[1].network.to_json()["sizes"] == saved["sizes"]


def test_corrupt_snapshot_is_ignored(track):
    store = MemoryStore({BEST_NETWORK_KEY: "{not json", GENERATION_KEY: "abc"})
    controller = _controller(track, store=store)
    assert controller.generation == 1
    assert len(controller.agents) == 4


def test_leader_death_ends_generation(track):
    controller = _controller(track, size=2, stagnation_window=5, max_lifespan=1000)
    controller.agents = [
        ScriptedAgent(lambda t: (100.0 if t >= 1 else 0.0, t >= 2), seed=1),
        ScriptedAgent(lambda t: (0.0, False), seed=2),
    ]
    results = [controller.update(track) for _ in range(7)]
    assert results == [False] * 6 + [True]
    assert controller.last_stats.ticks == 7
    assert controller.last_stats.best_fitness == 100.0


def test_final_window_without_improvement_ends_generation(track):
    controller = _controller(track, size=2, stagnation_window=5, max_lifespan=10)
    controller.agents = [ScriptedAgent(lambda t: (0.0, False), seed=i) for i in range(2)]
    results = [controller.update(track) for _ in range(5)]
    assert results == [False] * 4 + [True]


def test_lifespan_limit_ends_generation(track):
    controller = _controller(track, size=2, stagnation_window=5, max_lifespan=10)
    controller.agents = [ScriptedAgent(lambda t: (float(t), False), seed=i) for i in range(2)]
    results = [controller.update(track) for _ in range(11)]
    assert results == [False] * 10 + [True]


def test_seed_network_installs_and_persists(track):
    store = MemoryStore()
    controller = _controller(track, store=store)
    state = FeedForwardNetwork(rng=random.Random(8)).to_json()
    controller.seed_network(state, generation=30)
    assert controller.agents[0].network.to_json() == state
    assert controller.generation == 30
    assert store.get(BEST_NETWORK_KEY) == state
    assert store.get(GENERATION_KEY) == 30


def test_restart_with_clear_forgets_everything(track):
    store = MemoryStore()
    controller = _controller(track, store=store)
    for agent in controller.agents:
        agent.life = 1
    controller.update(track)
    assert store.values

    controller.restart(track, clear=True)
    assert controller.generation == 1
    assert controller.history == []
    assert controller.last_stats is None
    assert store.values == {}


def test_restart_keeps_stored_best(track):
    store = MemoryStore()
    controller = _controller(track, store=store)
    for agent in controller.agents:
        agent.life = 1
    controller.update(track)
    best = store.get(BEST_NETWORK_KEY)

    controller.restart(track)
    assert controller.generation == 1
    assert controller.agents[0].network.to_json() == best


def _blend_of_some_pair(child, parents):
    for first in parents:
        for second in parents:
            if all(min(a, b) - 1e-9 <= c <= max(a, b) + 1e-9 for c, a, b in zip(child, first, second)):
                return True
    return False


def test_next_generation_composition(track):
    controller = _controller(track, size=10, elite_count=1, mutation_rate=0.0)
    for index, agent in enumerate(controller.agents):
        agent.fitness = float(index)
    best_state = controller.agents[-1].network.to_json()
    parents = [flatten_parameters(agent.network.to_json()) for agent in controller.agents]

    controller.next_generation(track)
    states = [agent.network.to_json() for agent in controller.agents]
    assert len(states) == 10

    # Elite, then floor(0.2 * 10) - 1 = 1 mutated copy of the best.
    assert states[0] == best_state
    assert states[1] != best_state
    assert states[1]["sizes"] == best_state["sizes"]
    assert network_distance(states[1], best_state) > 0.0

    # Unmutated crossover children stay inside their parents' range.
    for state in states[2:]:
        assert _blend_of_some_pair(flatten_parameters(state), parents)


def test_elites_can_exceed_mutated_share(track):
    controller = _controller(track, size=10, elite_count=3, mutation_rate=0.0)
    for index, agent in enumerate(controller.agents):
        agent.fitness = float(index)
    top_three = [agent.network.to_json() for agent in reversed(controller.agents[-3:])]
    parents = [flatten_parameters(agent.network.to_json()) for agent in controller.agents]

    controller.next_generation(track)
    states = [agent.network.to_json() for agent in controller.agents]
    assert states[:3] == top_three
    for state in states[3:]:
        assert _blend_of_some_pair(flatten_parameters(state), parents)


def test_champion_survives_generation_transition(track):
    store = MemoryStore()
    controller = _controller(track, size=6, store=store, elite_count=0)
    for index, agent in enumerate(controller.agents):
        agent.fitness = float(index) * 100.0
    best_state = controller.agents[-1].network.to_json()

    controller.next_generation(track)
    assert all(agent.fitness == 0.0 for agent in controller.agents)
    assert controller.agents[0].network.to_json() != best_state

    network, fitness = controller.champion()
    assert network == best_state
    assert network == store.get(BEST_NETWORK_KEY)
    assert fitness == 500.0 == controller.last_stats.best_fitness

    # A current agent that outscores the previous best takes over.
    controller.agents[3].fitness = 900.0
    network, fitness = controller.champion()
    assert network == controller.agents[3].network.to_json()
    assert fitness == 900.0

"""Genetic operators over ``NetworkState`` dicts.

The operators only assume an ordered ``layers`` list whose entries may carry a
``weights`` matrix and a ``biases`` vector. Layers without ``weights`` are
placeholders and are skipped, wherever they appear.
"""

from __future__ import annotations

import copy
import math
import random
from itertools import zip_longest
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from .network import NetworkState


def _weighted_layers(state: NetworkState) -> Iterator[Dict[str, Any]]:
    for layer in state["layers"]:
        if layer.get("weights"):
            yield layer


def mutate(state: NetworkState, rate: float, rng: random.Random) -> None:
    """Perturb ``state`` in place.

    Every weight and bias independently receives a uniform ``[-1, 1]`` nudge
    with probability ``rate``.
    """

    for layer in _weighted_layers(state):
        for row in layer["weights"]:
            for k in range(len(row)):
                if rng.random() < rate:
                    row[k] += rng.uniform(-1.0, 1.0)

        biases = layer.get("biases")
        if biases:
            for j in range(len(biases)):
                if rng.random() < rate:
                    biases[j] += rng.uniform(-1.0, 1.0)


def crossover(parent1: NetworkState, parent2: NetworkState, rng: random.Random) -> NetworkState:
    """Blend two parents element by element.

    The child keeps ``parent1``'s structure. Each weight and bias becomes
    ``p1 * b + p2 * (1 - b)`` with a fresh blend factor ``b`` in ``[0, 1)``,
    computed as ``p1 + (p2 - p1) * (1 - b)`` so equal genes stay exact.
    """

    child = copy.deepcopy(parent1)
    for layer, other in zip(_weighted_layers(child), _weighted_layers(parent2)):
        for row, other_row in zip(layer["weights"], other["weights"]):
            for k in range(min(len(row), len(other_row))):
                blend = rng.random()
                row[k] += (other_row[k] - row[k]) * (1 - blend)

        biases = layer.get("biases")
        other_biases = other.get("biases")
        if biases and other_biases:
            for j in range(min(len(biases), len(other_biases))):
                blend = rng.random()
                biases[j] += (other_biases[j] - biases[j]) * (1 - blend)

    return child


def flatten_parameters(state: NetworkState) -> List[float]:
    """Concatenate every weight (row-major) and bias into one vector."""

    values: List[float] = []
    for layer in _weighted_layers(state):
        for row in layer["weights"]:
            values.extend(float(v or 0.0) for v in row)
        values.extend(float(v or 0.0) for v in layer.get("biases") or [])
    return values


def _parameters(layer: Optional[Dict[str, Any]]) -> Tuple[List[List[float]], List[float]]:
    if layer is None:
        return [], []
    return layer["weights"], layer.get("biases") or []


def network_distance(first: NetworkState, second: NetworkState) -> float:
    """Euclidean distance between two networks' parameters.

    Weighted layers are paired in order, placeholders ignored; entries
    missing on one side count as zero.
    """

    sum_squares = 0.0
    layers_a = list(_weighted_layers(first))
    layers_b = list(_weighted_layers(second))
    for layer_a, layer_b in zip_longest(layers_a, layers_b):
        weights_a, biases_a = _parameters(layer_a)
        weights_b, biases_b = _parameters(layer_b)
        for row_a, row_b in zip_longest(weights_a, weights_b, fillvalue=[]):
            for a, b in zip_longest(row_a, row_b, fillvalue=0.0):
                diff = float(a or 0.0) - float(b or 0.0)
                sum_squares += diff * diff
        for a, b in zip_longest(biases_a, biases_b, fillvalue=0.0):
            diff = float(a or 0.0) - float(b or 0.0)
            sum_squares += diff * diff
    return math.sqrt(sum_squares)


def mean_pairwise_distance(states: Sequence[NetworkState]) -> float:
    total = 0.0
    pairs = 0
    for i in range(len(states)):
        for j in range(i + 1, len(states)):
            total += network_distance(states[i], states[j])
            pairs += 1
    return total / pairs if pairs else 0.0

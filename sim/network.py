"""Small feed-forward controller network.

Agents only need the :class:`Network` capability: ``run`` for a forward pass
and ``to_json``/``from_json`` to exchange a ``NetworkState`` with the genetic
operators. A state is a JSON-compatible dict::

    {
        "type": "NeuralNetwork",
        "sizes": [5, 4, 4, 2],
        "layers": [
            {},
            {"weights": [[...], ...], "biases": [...]},
            ...
        ],
        "options": {"activation": "sigmoid"},
    }

Each ``weights`` matrix is ``outputs x inputs``. The leading ``{}`` layer is a
placeholder for the input layer and carries no parameters; consumers must skip
any layer without ``weights``.
"""

from __future__ import annotations

import random
from typing import Any, Dict, List, Protocol, Sequence

import numpy as np

NetworkState = Dict[str, Any]

DEFAULT_INPUTS = 5
DEFAULT_HIDDEN = (4, 4)
DEFAULT_OUTPUTS = 2
INITIAL_WEIGHT_RANGE = 2.0


class Network(Protocol):
    def run(self, inputs: Sequence[float]) -> List[float]: ...

    def to_json(self) -> NetworkState: ...

    def from_json(self, state: NetworkState) -> None: ...


def has_layers(state: object) -> bool:
    return isinstance(state, dict) and isinstance(state.get("layers"), list)


def _sigmoid(values: np.ndarray) -> np.ndarray:
    return 1.0 / (1.0 + np.exp(-values))


class FeedForwardNetwork:
    """Sigmoid multilayer perceptron with numpy parameters.

    Args:
        input_size: Number of sensor inputs.
        hidden_sizes: Width of each hidden layer.
        output_size: Number of outputs.
        rng: When provided, weights and biases are drawn uniformly from
            ``[-2, 2]``; otherwise they start at zero.
    """

    def __init__(
        self,
        input_size: int = DEFAULT_INPUTS,
        hidden_sizes: Sequence[int] = DEFAULT_HIDDEN,
        output_size: int = DEFAULT_OUTPUTS,
        rng: random.Random | None = None,
    ) -> None:
        self.sizes = [int(input_size), *[int(s) for s in hidden_sizes], int(output_size)]
        self.weights: List[np.ndarray] = [
            np.zeros((self.sizes[i + 1], self.sizes[i])) for i in range(len(self.sizes) - 1)
        ]
        self.biases: List[np.ndarray] = [np.zeros(size) for size in self.sizes[1:]]
        if rng is not None:
            self.randomize(rng)

    def randomize(self, rng: random.Random) -> None:
        for matrix in self.weights:
            rows, cols = matrix.shape
            for j in range(rows):
                for k in range(cols):
                    matrix[j, k] = rng.uniform(-INITIAL_WEIGHT_RANGE, INITIAL_WEIGHT_RANGE)
        for vector in self.biases:
            for j in range(vector.shape[0]):
                vector[j] = rng.uniform(-INITIAL_WEIGHT_RANGE, INITIAL_WEIGHT_RANGE)

    def run(self, inputs: Sequence[float]) -> List[float]:
        activations = np.asarray(inputs, dtype=float)
        for matrix, bias in zip(self.weights, self.biases):
            activations = _sigmoid(matrix @ activations + bias)
        return [float(v) for v in activations]

    def to_json(self) -> NetworkState:
        layers: List[Dict[str, Any]] = [{}]
        for matrix, bias in zip(self.weights, self.biases):
            layers.append({"weights": matrix.tolist(), "biases": bias.tolist()})
        return {
            "type": "NeuralNetwork",
            "sizes": list(self.sizes),
            "layers": layers,
            "options": {"activation": "sigmoid"},
        }

    def from_json(self, state: NetworkState) -> None:
        if not has_layers(state):
            raise ValueError("Network state must contain a 'layers' list")

        weights: List[np.ndarray] = []
        biases: List[np.ndarray] = []
        for index, layer in enumerate(state["layers"]):
            if not isinstance(layer, dict):
                raise ValueError(f"Network layer {index} must be an object, got {layer}")
            if not layer.get("weights"):
                continue
            matrix = np.array(layer["weights"], dtype=float)
            if matrix.ndim != 2:
                raise ValueError(f"Network layer {index} weights must be a matrix")
            raw_biases = layer.get("biases")
            bias = np.zeros(matrix.shape[0]) if raw_biases is None else np.array(raw_biases, dtype=float)
            if bias.shape != (matrix.shape[0],):
                raise ValueError(f"Network layer {index} biases must match its output count")
            if weights and matrix.shape[1] != weights[-1].shape[0]:
                raise ValueError(f"Network layer {index} does not connect to the previous layer")
            weights.append(matrix)
            biases.append(bias)

        if not weights:
            raise ValueError("Network state has no weighted layers")

        self.weights = weights
        self.biases = biases
        self.sizes = [weights[0].shape[1], *[matrix.shape[0] for matrix in weights]]

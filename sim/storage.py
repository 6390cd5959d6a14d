"""Durable best-network snapshot and brain/session documents.

The population controller persists two independent values between runs: the
best performer's ``NetworkState`` and the generation counter. They live in a
small key-value store, read once when a controller is built and written once
per generation transition.

Two document formats are exchanged with users:

```
# Brain document (export writes all fields, import needs only "network")
{"generation": 12, "fitness": 5310.4, "network": {"layers": [...]},
 "exportedAt": "2026-01-01T12:00:00+00:00"}

# Session document
{"generation": 12, "trackSeed": 4711, "bestBrainJSON": {"layers": [...]},
 "savedAt": "2026-01-01T12:00:00+00:00"}
```
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional, Protocol

from .network import NetworkState, has_layers

if TYPE_CHECKING:  # pragma: no cover
    from .population import PopulationController
    from .track import TrackGenerator

BEST_NETWORK_KEY = "best_boid_brain"
GENERATION_KEY = "current_generation"


class SnapshotStore(Protocol):
    def get(self, key: str) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self.values: Dict[str, Any] = dict(initial or {})

    def get(self, key: str) -> Any:
        return self.values.get(key)

    def set(self, key: str, value: Any) -> None:
        self.values[key] = value

    def delete(self, key: str) -> None:
        self.values.pop(key, None)


class JsonFileStore:
    """Key-value store backed by a single JSON object on disk.

    A missing, unreadable or malformed file reads as an empty store; the next
    write replaces it.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def _load(self) -> Dict[str, Any]:
        try:
            with open(self.path, "r", encoding="utf-8") as fp:
                payload = json.load(fp)
        except (OSError, ValueError):
            return {}
        return payload if isinstance(payload, dict) else {}

    def _save(self, payload: Dict[str, Any]) -> None:
        write_json(self.path, payload)

    def get(self, key: str) -> Any:
        return self._load().get(key)

    def set(self, key: str, value: Any) -> None:
        payload = self._load()
        payload[key] = value
        self._save(payload)

    def delete(self, key: str) -> None:
        payload = self._load()
        if key in payload:
            del payload[key]
            self._save(payload)


@dataclass
class Snapshot:
    network: Optional[NetworkState]
    generation: Optional[int]


def load_snapshot(store: SnapshotStore) -> Snapshot:
    """Read the persisted state, dropping anything that fails validation."""

    network = store.get(BEST_NETWORK_KEY)
    if isinstance(network, str):
        try:
            network = json.loads(network)
        except ValueError:
            network = None
    if not has_layers(network):
        network = None

    generation: Optional[int]
    try:
        raw_generation = store.get(GENERATION_KEY)
        generation = int(raw_generation) if raw_generation is not None else None
    except (TypeError, ValueError):
        generation = None
    if generation is not None and generation < 1:
        generation = None

    return Snapshot(network=network, generation=generation)


def save_snapshot(store: SnapshotStore, network: NetworkState, generation: int) -> None:
    store.set(BEST_NETWORK_KEY, network)
    store.set(GENERATION_KEY, int(generation))


def clear_snapshot(store: SnapshotStore) -> None:
    store.delete(BEST_NETWORK_KEY)
    store.delete(GENERATION_KEY)


@dataclass
class BrainDocument:
    network: NetworkState
    generation: Optional[int] = None
    fitness: Optional[float] = None


def parse_brain_document(payload: object) -> BrainDocument:
    if not isinstance(payload, dict):
        raise ValueError(f"Invalid brain file: expected an object, got {type(payload).__name__}")
    network = payload.get("network")
    if not has_layers(network):
        raise ValueError("Invalid brain file: missing network.layers")

    generation = payload.get("generation")
    fitness = payload.get("fitness")
    return BrainDocument(
        network=network,
        generation=int(generation) if generation else None,
        fitness=float(fitness) if fitness is not None else None,
    )


def load_brain_file(path: Path) -> BrainDocument:
    return parse_brain_document(read_json(path))


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def brain_document(controller: "PopulationController") -> Dict[str, Any]:
    """Export the champion network."""

    network, fitness = controller.champion()
    return {
        "generation": controller.generation,
        "fitness": fitness,
        "network": network,
        "exportedAt": _timestamp(),
    }


def import_brain(controller: "PopulationController", payload: object) -> BrainDocument:
    """Seed agent 0 with an imported brain and persist it.

    Raises ``ValueError`` for malformed documents before touching any state.
    """

    document = parse_brain_document(payload)
    controller.seed_network(document.network, generation=document.generation)
    return document


def session_document(controller: "PopulationController", generator: "TrackGenerator") -> Dict[str, Any]:
    network, _ = controller.champion()
    return {
        "generation": controller.generation,
        "trackSeed": generator.seed,
        "bestBrainJSON": network,
        "savedAt": _timestamp(),
    }


def load_session(controller: "PopulationController", generator: "TrackGenerator", payload: object) -> None:
    """Restore generation, best brain and track from a session document."""

    if not isinstance(payload, dict):
        raise ValueError(f"Invalid session file: expected an object, got {type(payload).__name__}")

    network = payload.get("bestBrainJSON")
    if network is not None and not has_layers(network):
        raise ValueError("Invalid session file: bestBrainJSON is missing layers")

    generation = payload.get("generation")
    if network is not None:
        controller.seed_network(network, generation=int(generation) if generation else None)
    elif generation:
        controller.generation = int(generation)

    track_seed = payload.get("trackSeed")
    if track_seed:
        generator.generate(seed=int(track_seed))
        controller.respawn(generator.track)


def write_json(path: Path, payload: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as fp:
        json.dump(payload, fp, indent=2)


def read_json(path: Path) -> Any:
    with open(path, "r", encoding="utf-8") as fp:
        return json.load(fp)

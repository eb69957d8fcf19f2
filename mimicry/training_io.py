"""
Generation Snapshots

JSON export/import of a whole population at a generation boundary, so a
run can be inspected or resumed.

File: <directory>/generation_<n>.json
    {generation, bestFitness, averageFitness, worstFitness, timestamp,
     populationSize, aliveAgents, eliteCount, totalSuccessfulJumps,
     networks: [{layers, flattenedWeights, fitness, successfulJumps}]}

Weights are rebuilt with the random-fill rule, so a truncated payload
still loads (with a warning).
"""

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import numpy as np

from .network import FeedForwardNetwork
from .population import Agent, PopulationSnapshot
from .weights import weights_from_payload

logger = logging.getLogger(__name__)

SNAPSHOT_PATTERN = re.compile(r"^generation_(\d+)\.json$")


@dataclass
class SerializedNetwork:
    layers: List[int]
    flattened_weights: List[float]
    fitness: float = 0.0
    successful_jumps: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'layers': list(self.layers),
            'flattenedWeights': list(self.flattened_weights),
            'fitness': self.fitness,
            'successfulJumps': self.successful_jumps,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SerializedNetwork':
        return cls(
            layers=[int(n) for n in data['layers']],
            flattened_weights=[float(w) for w in data.get('flattenedWeights', [])],
            fitness=float(data.get('fitness', 0.0)),
            successful_jumps=int(data.get('successfulJumps', 0)),
        )


@dataclass
class TrainingSnapshot:
    """A population's networks and summary statistics for one generation."""
    generation: int
    best_fitness: float = 0.0
    average_fitness: float = 0.0
    worst_fitness: float = 0.0
    population_size: int = 0
    alive_agents: int = 0
    elite_count: int = 0
    total_successful_jumps: int = 0
    networks: List[SerializedNetwork] = field(default_factory=list)
    timestamp: str = field(default_factory=lambda: datetime.now().strftime("%Y-%m-%d %H:%M:%S"))

    @classmethod
    def capture(cls, population: PopulationSnapshot) -> 'TrainingSnapshot':
        networks = []
        for agent in population.agents:
            weights = agent.weights
            if weights is None:
                continue
            networks.append(SerializedNetwork(
                layers=list(weights.layers),
                flattened_weights=weights.flatten(),
                fitness=float(agent.fitness),
                successful_jumps=int(getattr(agent, 'task_successes', 0)),
            ))

        fitness = np.array([a.fitness for a in population.agents], dtype=np.float64)
        has_agents = fitness.size > 0
        return cls(
            generation=int(population.generation),
            best_fitness=float(fitness.max()) if has_agents else 0.0,
            average_fitness=float(fitness.mean()) if has_agents else 0.0,
            worst_fitness=float(fitness.min()) if has_agents else 0.0,
            population_size=len(population.agents),
            alive_agents=sum(1 for a in population.agents if a.is_alive),
            elite_count=int(population.elite_count),
            total_successful_jumps=sum(n.successful_jumps for n in networks),
            networks=networks,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'generation': self.generation,
            'bestFitness': self.best_fitness,
            'averageFitness': self.average_fitness,
            'worstFitness': self.worst_fitness,
            'timestamp': self.timestamp,
            'populationSize': self.population_size,
            'aliveAgents': self.alive_agents,
            'eliteCount': self.elite_count,
            'totalSuccessfulJumps': self.total_successful_jumps,
            'networks': [n.to_dict() for n in self.networks],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TrainingSnapshot':
        networks = [SerializedNetwork.from_dict(n) for n in data['networks']]
        return cls(
            generation=int(data['generation']),
            best_fitness=float(data.get('bestFitness', 0.0)),
            average_fitness=float(data.get('averageFitness', 0.0)),
            worst_fitness=float(data.get('worstFitness', 0.0)),
            population_size=int(data.get('populationSize', len(networks))),
            alive_agents=int(data.get('aliveAgents', 0)),
            elite_count=int(data.get('eliteCount', 0)),
            total_successful_jumps=int(data.get('totalSuccessfulJumps', 0)),
            networks=networks,
            timestamp=str(data.get('timestamp', '')),
        )


def save_snapshot(snapshot: TrainingSnapshot, directory: Union[str, Path]) -> Path:
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"generation_{snapshot.generation}.json"
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(snapshot.to_dict(), f, indent=2)
    logger.info("Saved generation %d snapshot (%d networks) to %s",
                snapshot.generation, len(snapshot.networks), path)
    return path


def load_snapshot(path: Union[str, Path]) -> Optional[TrainingSnapshot]:
    """Read a snapshot file; malformed files give None with a warning."""
    path = Path(path)
    try:
        with open(path, encoding='utf-8') as f:
            data = json.load(f)
        snapshot = TrainingSnapshot.from_dict(data)
    except (OSError, ValueError, KeyError, TypeError) as e:
        logger.warning("Skipping unreadable snapshot %s: %s", path, e)
        return None

    if not snapshot.networks:
        logger.warning("Snapshot %s contains no networks", path)
        return None
    return snapshot


def restore_population(snapshot: TrainingSnapshot,
                       rng: Optional[np.random.Generator] = None) -> PopulationSnapshot:
    """Rebuild agents from the stored networks, in stored order."""
    rng = rng if rng is not None else np.random.default_rng()
    agents = []
    for i, stored in enumerate(snapshot.networks):
        try:
            weights = weights_from_payload(
                {'layers': stored.layers, 'flattenedWeights': stored.flattened_weights}, rng
            )
        except ValueError as e:
            logger.warning("Skipping network %d of generation %d: %s", i, snapshot.generation, e)
            continue
        agents.append(Agent(
            id=i,
            brain=FeedForwardNetwork(weights.layers, rng=rng, weights=weights),
            fitness=stored.fitness,
            task_successes=stored.successful_jumps,
        ))

    logger.info("Restored %d agents from generation %d", len(agents), snapshot.generation)
    return PopulationSnapshot(
        agents=agents,
        generation=snapshot.generation,
        elite_count=snapshot.elite_count,
    )


def latest_snapshot(directory: Union[str, Path]) -> Optional[Path]:
    """Path of the highest-numbered generation_<n>.json, or None."""
    directory = Path(directory)
    if not directory.is_dir():
        return None

    best = None
    best_generation = -1
    for path in directory.iterdir():
        match = SNAPSHOT_PATTERN.match(path.name)
        if match and int(match.group(1)) > best_generation:
            best_generation = int(match.group(1))
            best = path
    return best

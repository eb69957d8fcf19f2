"""
Population Interfaces

What the imitation engine sees of the evolutionary process: a list of
agents (fitness, weights, alive flag) plus the generation counter, the
elite count and a pause flag. Any object with the same attributes works;
these dataclasses are the concrete versions used by the package and tests.
"""

from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from .network import FeedForwardNetwork
from .weights import NetworkWeights


@dataclass
class Agent:
    """One population member."""
    id: int
    brain: Optional[FeedForwardNetwork] = None
    fitness: float = 0.0
    is_alive: bool = True

    # Task statistics used by validation metrics
    task_successes: int = 0     # e.g. correct jumps this generation
    exploration: float = 0.0    # e.g. unique areas visited

    @property
    def weights(self) -> Optional[NetworkWeights]:
        return self.brain.get_weights() if self.brain is not None else None

    @weights.setter
    def weights(self, value: NetworkWeights):
        if self.brain is None:
            self.brain = FeedForwardNetwork(value.layers, weights=value)
        else:
            self.brain.set_weights(value)


@dataclass
class PopulationSnapshot:
    """State of the population at a generation boundary."""
    agents: List[Agent] = field(default_factory=list)
    generation: int = 1
    elite_count: int = 1
    paused: bool = False

    def __len__(self) -> int:
        return len(self.agents)

    def fitness_values(self) -> np.ndarray:
        return np.array([a.fitness for a in self.agents], dtype=np.float64)

    def best_fitness(self) -> float:
        return float(self.fitness_values().max()) if self.agents else 0.0

    def average_fitness(self) -> float:
        return float(self.fitness_values().mean()) if self.agents else 0.0

    def all_dead(self) -> bool:
        return bool(self.agents) and not any(a.is_alive for a in self.agents)


def create_population(
    size: int,
    layers=FeedForwardNetwork.DEFAULT_LAYERS,
    rng: Optional[np.random.Generator] = None,
    generation: int = 1,
    elite_count: int = 1,
) -> PopulationSnapshot:
    """Fresh population of randomly initialised agents."""
    rng = rng if rng is not None else np.random.default_rng()
    agents = [Agent(id=i, brain=FeedForwardNetwork(layers, rng=rng)) for i in range(size)]
    return PopulationSnapshot(agents=agents, generation=generation, elite_count=elite_count)

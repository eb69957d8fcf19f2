"""
Validation & Rollback

Guards every imitation application with a baseline -> wait -> compare ->
keep-or-rollback cycle.

    Idle --apply--> AwaitingValidation --N generations--> Resolved --> Idle

Improvement score:
    0.6 * (avg_fitness delta / max(baseline avg, 1))
  + 0.3 * (task efficiency delta)
  + 0.1 * (exploration delta / max(baseline exploration, 1))
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Sequence

import numpy as np

from .weights import NetworkWeights

logger = logging.getLogger(__name__)


@dataclass
class ValidationMetrics:
    """Population performance at one point in time."""
    average_fitness: float = 0.0
    best_fitness: float = 0.0
    worst_fitness: float = 0.0
    task_efficiency: float = 0.0   # Task successes (jumps) per agent
    exploration_rate: float = 0.0
    generation: int = 0
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def capture(cls, agents: Sequence[Any], generation: int) -> 'ValidationMetrics':
        if not agents:
            return cls(generation=generation)

        fitness = np.array([a.fitness for a in agents], dtype=np.float64)
        successes = sum(getattr(a, 'task_successes', 0) for a in agents)
        exploration = [getattr(a, 'exploration', 0.0) for a in agents]

        return cls(
            average_fitness=float(fitness.mean()),
            best_fitness=float(fitness.max()),
            worst_fitness=float(fitness.min()),
            task_efficiency=successes / len(agents),
            exploration_rate=float(np.mean(exploration)),
            generation=generation,
        )

    def improvement_score(self, baseline: Optional['ValidationMetrics']) -> float:
        if baseline is None:
            return 0.0

        fitness_delta = (self.average_fitness - baseline.average_fitness) / max(baseline.average_fitness, 1.0)
        task_delta = self.task_efficiency - baseline.task_efficiency
        exploration_delta = (self.exploration_rate - baseline.exploration_rate) / max(baseline.exploration_rate, 1.0)

        return fitness_delta * 0.6 + task_delta * 0.3 + exploration_delta * 0.1


class AgentBackup:
    """Deep copy of one agent's weights taken before blending."""

    def __init__(self, agent: Any):
        self.agent = agent
        self.original_fitness = float(agent.fitness)
        weights: Optional[NetworkWeights] = agent.weights
        self.original_weights = weights.copy() if weights is not None else None

    def restore(self) -> bool:
        if self.original_weights is None or self.agent.weights is None:
            return False
        self.agent.weights = self.original_weights.copy()
        return True


class ValidationState(Enum):
    IDLE = "idle"
    AWAITING = "awaiting_validation"


@dataclass
class ValidationOutcome:
    """Result of resolving a cycle."""
    improvement: float
    successful: bool
    rolled_back: bool
    generation: int
    restored_agents: int = 0
    baseline: Optional[ValidationMetrics] = None
    post: Optional[ValidationMetrics] = None


class ValidationCycle:
    """
    The single in-flight validation cycle.

    Holds the baseline metrics and one backup per target agent until the
    cycle is resolved. Only one cycle may be pending at a time.
    """

    def __init__(self):
        self.state = ValidationState.IDLE
        self.baseline: Optional[ValidationMetrics] = None
        self.backups: List[AgentBackup] = []
        self.start_generation = 0

    @property
    def is_pending(self) -> bool:
        return self.state is ValidationState.AWAITING

    def begin(self, baseline: ValidationMetrics, targets: Sequence[Any], generation: int):
        if self.is_pending:
            raise RuntimeError("A validation cycle is already pending")
        self.baseline = baseline
        self.backups = [AgentBackup(agent) for agent in targets]
        self.start_generation = generation
        self.state = ValidationState.AWAITING
        logger.info("Validation started at generation %d with %d backups", generation, len(self.backups))

    def is_due(self, generation: int, wait_generations: int) -> bool:
        return self.is_pending and generation - self.start_generation >= wait_generations

    def resolve(
        self,
        agents: Sequence[Any],
        generation: int,
        minimum_threshold: float,
        auto_rollback: bool,
    ) -> ValidationOutcome:
        """Compare against the baseline, roll back on failure, return to idle."""
        post = ValidationMetrics.capture(agents, generation)
        improvement = post.improvement_score(self.baseline)
        successful = improvement >= minimum_threshold

        restored = 0
        if successful:
            logger.info("Validation passed: improvement %.3f >= %.3f - changes kept",
                        improvement, minimum_threshold)
        else:
            logger.warning("Validation failed: improvement %.3f < %.3f",
                           improvement, minimum_threshold)
            if auto_rollback:
                restored = sum(1 for backup in self.backups if backup.restore())
                logger.warning("Rolled back %d agents to their original weights", restored)

        outcome = ValidationOutcome(
            improvement=improvement,
            successful=successful,
            rolled_back=not successful and auto_rollback,
            generation=generation,
            restored_agents=restored,
            baseline=self.baseline,
            post=post,
        )
        self.clear()
        return outcome

    def clear(self):
        self.state = ValidationState.IDLE
        self.baseline = None
        self.backups = []
        self.start_generation = 0

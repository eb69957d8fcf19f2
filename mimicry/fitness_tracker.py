"""
Fitness Tracker

Detects when evolution has plateaued from a bounded window of
best-fitness-per-generation values.

Stagnation score (0-1), needs at least 3 samples:
    0.5 * min(generations_without_improvement / 10, 1)
  + 0.3 * (1 - min(variance / mean^2, 0.5))          low variability
  + 0.2 * max(0, (avg_first3 - avg_last3) / avg_first3)  declining trend, >= 5 samples
"""

from collections import deque
from typing import Any, Dict, List

import numpy as np

STAGNATION_WEIGHT = 0.5
VARIABILITY_WEIGHT = 0.3
TREND_WEIGHT = 0.2


class FitnessTracker:
    """Bounded history of best fitness with plateau heuristics."""

    def __init__(self, history_size: int = 10, improvement_epsilon: float = 0.5):
        self.history_size = history_size
        self.improvement_epsilon = improvement_epsilon

        self.recent_fitness_values: deque = deque(maxlen=history_size)
        self.last_best_fitness = 0.0
        self.generations_without_improvement = 0
        self.improvement_rate = 0.0
        self.stagnation_score = 0.0

    def update(self, current_best_fitness: float):
        """Record one generation's best fitness."""
        current_best_fitness = float(current_best_fitness)
        self.recent_fitness_values.append(current_best_fitness)

        if current_best_fitness > self.last_best_fitness + self.improvement_epsilon:
            self.improvement_rate = (
                (current_best_fitness - self.last_best_fitness) / max(self.last_best_fitness, 1.0)
            )
            self.generations_without_improvement = 0
        else:
            self.generations_without_improvement += 1
            self.improvement_rate = 0.0

        self.last_best_fitness = max(self.last_best_fitness, current_best_fitness)
        self.stagnation_score = self._calculate_stagnation_score()

    def _calculate_stagnation_score(self) -> float:
        values = np.array(self.recent_fitness_values, dtype=np.float64)
        if values.size < 3:
            return 0.0

        stagnation = min(self.generations_without_improvement / 10.0, 1.0)

        mean = values.mean()
        variance = values.var()
        mean_sq = mean * mean
        if mean_sq > 0.0:
            ratio = variance / mean_sq
        else:
            ratio = 0.0 if variance == 0.0 else 0.5
        variability = 1.0 - min(ratio, 0.5)

        trend = 0.0
        if values.size >= 5:
            older = values[:3].mean()
            recent = values[-3:].mean()
            trend = max(0.0, (older - recent) / max(older, 1.0))

        score = (stagnation * STAGNATION_WEIGHT
                 + variability * VARIABILITY_WEIGHT
                 + trend * TREND_WEIGHT)
        return float(np.clip(score, 0.0, 1.0))

    def is_stagnating(self, threshold: float = 0.6) -> bool:
        return self.stagnation_score > threshold

    def has_significant_improvement(self, threshold: float = 0.05) -> bool:
        return self.improvement_rate > threshold

    def recent_values(self) -> List[float]:
        return list(self.recent_fitness_values)

    def detect_decline(self, threshold: float = 0.05) -> bool:
        """
        True when the last 3 generations average more than `threshold`
        (fractional) below the oldest generations in the window.
        """
        values = self.recent_values()
        if len(values) < 5:
            return False

        recent_count = min(3, len(values))
        older_count = min(3, len(values) - recent_count)
        if older_count < 2:
            return False

        recent_avg = float(np.mean(values[-recent_count:]))
        older_avg = float(np.mean(values[:older_count]))
        return (older_avg - recent_avg) / max(older_avg, 1.0) > threshold

    def reset(self):
        self.recent_fitness_values.clear()
        self.last_best_fitness = 0.0
        self.generations_without_improvement = 0
        self.improvement_rate = 0.0
        self.stagnation_score = 0.0

    def get_stats(self) -> Dict[str, Any]:
        return {
            'samples': len(self.recent_fitness_values),
            'last_best_fitness': self.last_best_fitness,
            'generations_without_improvement': self.generations_without_improvement,
            'improvement_rate': self.improvement_rate,
            'stagnation_score': self.stagnation_score,
        }

"""
Curriculum Learning

Five behavior-complexity stages gate which demonstration frames may be
learned from at a given evolutionary maturity:

    Basic -> Turning -> Navigation -> Jumping -> Advanced -> (completed)

Progress is strictly forward. A stage advances once the population
percentile fitness reaches its mastery threshold after the minimum number
of generations, or unconditionally at the maximum.
"""

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .demonstrations import DemonstrationFrame, FORWARD, TURN_LEFT, TURN_RIGHT, JUMP

logger = logging.getLogger(__name__)


class BehaviorComplexity(IntEnum):
    """Ordered behavior levels."""
    BASIC = 0        # Forward movement
    TURNING = 1      # Simple turns
    NAVIGATION = 2   # Moving among obstacles
    JUMPING = 3      # Basic jumps
    ADVANCED = 4     # Smart jumps + complex navigation


@dataclass(frozen=True)
class CurriculumStage:
    """One stage. Immutable after construction."""
    complexity: BehaviorComplexity
    stage_name: str
    behavior_weights: Tuple[float, ...] = (1.0, 1.0, 1.0, 1.0)
    quality_threshold: float = 0.5
    min_generations: int = 2
    max_generations: int = 10
    mastery_threshold: float = 100.0

    def behavior_weight(self, action_index: int) -> float:
        if action_index < len(self.behavior_weights):
            return self.behavior_weights[action_index]
        return 1.0


def default_stages() -> List[CurriculumStage]:
    return [
        CurriculumStage(BehaviorComplexity.BASIC, "Basic Movement",
                        (1.0, 0.3, 0.3, 0.1), 0.8, 5, 15, 25.0),
        CurriculumStage(BehaviorComplexity.TURNING, "Turning & Basic Navigation",
                        (0.8, 1.0, 1.0, 0.2), 0.7, 4, 12, 40.0),
        CurriculumStage(BehaviorComplexity.NAVIGATION, "Obstacle Navigation",
                        (0.9, 0.9, 0.9, 0.6), 0.6, 3, 10, 60.0),
        CurriculumStage(BehaviorComplexity.JUMPING, "Basic Jumping",
                        (0.8, 0.7, 0.7, 1.0), 0.9, 4, 8, 80.0),
        CurriculumStage(BehaviorComplexity.ADVANCED, "Advanced Behavior",
                        (1.0, 1.0, 1.0, 1.0), 0.5, 2, 5, 100.0),
    ]


def is_frame_relevant(frame: DemonstrationFrame, stage: CurriculumStage) -> bool:
    """Does the frame show the behavior this stage teaches?"""
    complexity = stage.complexity

    if complexity == BehaviorComplexity.BASIC:
        return frame.action(FORWARD) > 0.3 and frame.action(JUMP) < 0.5
    if complexity == BehaviorComplexity.TURNING:
        return frame.action(TURN_LEFT) > 0.3 or frame.action(TURN_RIGHT) > 0.3
    if complexity == BehaviorComplexity.NAVIGATION:
        return any(v > 0.2 for v in frame.sensor_inputs[:5])
    if complexity == BehaviorComplexity.JUMPING:
        return frame.action(JUMP) > 0.5
    return True


def percentile_fitness(values: Sequence[float], percentile: float) -> float:
    """
    Fitness at `percentile` of the population sorted best first
    (index floor(n * percentile), clamped to the last element).
    """
    if len(values) == 0:
        return 0.0
    ordered = np.sort(np.asarray(values, dtype=np.float64))[::-1]
    index = min(int(np.floor(len(ordered) * percentile)), len(ordered) - 1)
    return float(ordered[max(index, 0)])


class CurriculumManager:
    """Forward-only progression through the stages."""

    def __init__(self, stages: Optional[List[CurriculumStage]] = None):
        self.stages: List[CurriculumStage] = list(stages) if stages else default_stages()
        self.current_stage_index = 0
        self.generations_in_stage = 0
        self.completed = False
        self.advancements = 0

    @property
    def current_stage(self) -> CurriculumStage:
        """Active stage; stays on the last stage once completed."""
        return self.stages[self.current_stage_index]

    def increment_generation(self):
        self.generations_in_stage += 1

    def should_advance(self, percentile_fitness: float) -> bool:
        if self.completed:
            return False

        stage = self.current_stage
        has_min = self.generations_in_stage >= stage.min_generations
        has_mastery = percentile_fitness >= stage.mastery_threshold
        has_max = self.generations_in_stage >= stage.max_generations
        return (has_min and has_mastery) or has_max

    def advance(self) -> bool:
        """
        Move to the next stage. Returns True if a new stage started; past the
        last stage the curriculum is marked completed and later calls do
        nothing.
        """
        if self.completed:
            return False

        self.generations_in_stage = 0
        if self.current_stage_index + 1 >= len(self.stages):
            self.completed = True
            logger.info("Curriculum completed - all stages mastered")
            return False

        previous = self.current_stage
        self.current_stage_index += 1
        self.advancements += 1
        logger.info("Curriculum advanced from '%s' to '%s'",
                    previous.stage_name, self.current_stage.stage_name)
        return True

    def stage_progress(self) -> float:
        if self.completed:
            return 1.0
        return self.generations_in_stage / max(self.current_stage.max_generations, 1)

    def is_frame_relevant(self, frame: DemonstrationFrame,
                          stage: Optional[CurriculumStage] = None) -> bool:
        return is_frame_relevant(frame, stage or self.current_stage)

    def admits(self, frame: DemonstrationFrame, stage: Optional[CurriculumStage] = None) -> bool:
        """Complete admission test: quality floor and relevance."""
        stage = stage or self.current_stage
        return frame.frame_quality >= stage.quality_threshold and is_frame_relevant(frame, stage)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'stage_index': self.current_stage_index,
            'stage_name': "Completed" if self.completed else self.current_stage.stage_name,
            'generations_in_stage': self.generations_in_stage,
            'progress': self.stage_progress(),
            'completed': self.completed,
            'advancements': self.advancements,
        }

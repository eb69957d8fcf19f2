"""
Imitation Learning Engine
=========================

Orchestrates demonstration-driven weight updates for an evolving
population. Called once per generation boundary by the evolutionary loop:

    report = engine.on_generation_boundary(population)

Each tick:
1. Fitness tracking: push the generation's best fitness into the tracker
2. Trigger: cooldown gate -> demo quality gate -> stagnation ->
   fitness decline -> low diversity -> scheduled fallback
3. Learning: curriculum-admitted frames become a LearnedWeightSet
4. Application: convex blend into mid-ranked agents, backups taken
5. Validation: N generations later keep the change or roll it back
6. Curriculum: count the generation, maybe advance the stage

No failure inside a tick escapes into the evolutionary loop; the tick is
skipped and logged instead.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from .config import ImitationConfig
from .curriculum import CurriculumManager, CurriculumStage, percentile_fitness
from .demonstrations import DemonstrationFrame, DemonstrationSession, DemonstrationStore
from .fitness_tracker import FitnessTracker
from .validation import ValidationCycle, ValidationMetrics, ValidationOutcome
from .weights import NetworkWeights

logger = logging.getLogger(__name__)


# =============================================================================
# TRIGGERS
# =============================================================================

class TriggerCause(Enum):
    STAGNATION = "stagnation"
    FITNESS_DECLINE = "fitness_decline"
    LOW_DIVERSITY = "low_diversity"
    SCHEDULED = "scheduled"
    FORCED = "forced"


@dataclass
class TriggerDecision:
    """Whether to apply this generation, and why (or why not)."""
    should_apply: bool
    reason: str
    cause: Optional[TriggerCause] = None


# =============================================================================
# LEARNED WEIGHTS
# =============================================================================

@dataclass
class LearnedWeightSet:
    """
    Weight deltas distilled from demonstrations.

    layers[0] matches the network's output weight layer, layers[1] the one
    before it, and so on (deepest first).
    """
    layers: List[np.ndarray]
    frames_processed: int = 0
    stage_name: str = ""

    @property
    def depth(self) -> int:
        return len(self.layers)

    def normalize(self, total_frames: int, clamp: float = 2.0):
        if total_frames <= 0:
            return
        for buffer in self.layers:
            buffer /= total_frames
            np.clip(buffer, -clamp, clamp, out=buffer)


def _hidden_projection(sensors: np.ndarray, width: int) -> np.ndarray:
    """
    Deterministic estimate of hidden activations from sensors.

    activation[i] = tanh(sum_j sensors[j] * sin(i + j))
    """
    i = np.arange(width)[:, None]
    j = np.arange(sensors.size)[None, :]
    return np.tanh((np.sin(i + j) * sensors[None, :]).sum(axis=1))


def _derived_targets(actions: np.ndarray, width: int) -> np.ndarray:
    """
    Targets for a hidden layer mixed down from the human actions.

    target[k] = tanh(sum_a actions[a] * cos(k + a))
    """
    k = np.arange(width)[:, None]
    a = np.arange(actions.size)[None, :]
    return np.tanh((np.cos(k + a) * actions[None, :]).sum(axis=1))


def _fit(values: Sequence[float], width: int) -> np.ndarray:
    out = np.zeros(width)
    arr = np.asarray(values, dtype=np.float64)[:width]
    out[:arr.size] = arr
    return out


# =============================================================================
# REPORT
# =============================================================================

@dataclass
class GenerationReport:
    """What happened during one generation tick."""
    generation: int
    trigger: Optional[TriggerDecision] = None
    applied: bool = False
    targets: int = 0
    frames_processed: int = 0
    validation: Optional[ValidationOutcome] = None
    curriculum_advanced: bool = False
    skipped_reason: Optional[str] = None
    notes: List[str] = field(default_factory=list)


# =============================================================================
# ENGINE
# =============================================================================

class ImitationLearningEngine:
    """
    Decides when to distil demonstrations, what to learn, who receives it,
    and whether the change survives validation.
    """

    def __init__(
        self,
        store: DemonstrationStore,
        config: Optional[ImitationConfig] = None,
        tracker: Optional[FitnessTracker] = None,
        curriculum: Optional[CurriculumManager] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        self.config = (config or store.config).validate()
        self.store = store
        self.rng = rng if rng is not None else np.random.default_rng(self.config.random_seed)

        self.tracker = tracker or FitnessTracker(
            self.config.fitness_history_size, self.config.improvement_epsilon
        )
        self.curriculum: Optional[CurriculumManager] = None
        if self.config.enable_curriculum:
            self.curriculum = curriculum or CurriculumManager()

        self.validation = ValidationCycle()
        self.imitation_strength = self.config.imitation_strength
        self.learned: Optional[LearnedWeightSet] = None

        # Timing
        self.last_application_generation = 0
        self.last_generation_seen: Optional[int] = None
        self.last_average_fitness = 0.0
        self.has_fitness_history = False
        self.last_trigger_reason = "None"

        # Statistics
        self.stagnation_triggered = 0
        self.urgency_triggered = 0
        self.scheduled_triggered = 0
        self.total_applications = 0
        self.successful_validations = 0
        self.failed_validations = 0
        self.average_improvement = 0.0
        self.last_validation_improvement = 0.0

    # ========== Tick ==========

    def on_generation_boundary(self, population) -> GenerationReport:
        """
        Run one generation's worth of imitation logic.

        Never raises: any failure is logged and the tick reported as skipped.
        """
        report = GenerationReport(generation=0)
        try:
            report.generation = int(getattr(population, 'generation', 0))
            self._tick(population, report)
        except Exception as e:
            logger.exception("Imitation learning tick failed at generation %s", report.generation)
            report.skipped_reason = f"Error: {e}"
            report.applied = False
        return report

    def _tick(self, population, report: GenerationReport):
        agents = list(getattr(population, 'agents', None) or [])
        if not agents:
            report.skipped_reason = "No population"
            return

        if self.last_generation_seen is not None and report.generation <= self.last_generation_seen:
            report.skipped_reason = f"Generation {report.generation} already processed"
            return
        self.last_generation_seen = report.generation

        self._update_fitness_tracking(agents)

        decision = self.evaluate_trigger(population)
        report.trigger = decision
        if decision.should_apply:
            self.apply_imitation_learning(population, report=report)

        if self.validation.is_due(report.generation, self.config.validation_generations):
            report.validation = self._resolve_validation(agents, report.generation)

        if self.curriculum is not None:
            report.curriculum_advanced = self._update_curriculum(agents)

    def _update_fitness_tracking(self, agents: Sequence[Any]):
        fitness = np.array([a.fitness for a in agents], dtype=np.float64)
        self.tracker.update(float(fitness.max()))
        self.last_average_fitness = float(fitness.mean())
        self.has_fitness_history = True
        logger.debug(
            "Fitness tracking - best %.1f, stagnation %.2f, generations without improvement %d",
            fitness.max(), self.tracker.stagnation_score, self.tracker.generations_without_improvement,
        )

    # ========== Trigger ==========

    def evaluate_trigger(self, population) -> TriggerDecision:
        """Walk the decision layers in order; the first to fire wins."""
        agents = list(getattr(population, 'agents', None) or [])
        generation = int(getattr(population, 'generation', 0))

        decision = self._evaluate(agents, generation)
        self.last_trigger_reason = decision.reason

        if decision.cause is TriggerCause.STAGNATION:
            self.stagnation_triggered += 1
        elif decision.cause in (TriggerCause.FITNESS_DECLINE, TriggerCause.LOW_DIVERSITY):
            self.urgency_triggered += 1
        elif decision.cause is TriggerCause.SCHEDULED:
            self.scheduled_triggered += 1

        logger.debug("Trigger evaluation at generation %d: %s", generation, decision.reason)
        return decision

    def _evaluate(self, agents: Sequence[Any], generation: int) -> TriggerDecision:
        cfg = self.config

        if not agents:
            return TriggerDecision(False, "No population")
        if len(self.store) < max(cfg.min_demonstrations_required, 1):
            return TriggerDecision(False, "Not enough demonstrations")

        since_last = generation - self.last_application_generation
        if self.validation.is_pending:
            return TriggerDecision(False, "Cooldown active (validation pending)")
        if since_last < cfg.minimum_cooldown:
            return TriggerDecision(False, f"Cooldown active ({since_last}/{cfg.minimum_cooldown} generations)")

        if cfg.require_demo_superior_quality and not self._demos_good_enough():
            return TriggerDecision(False, "Demonstration quality insufficient")

        if self.tracker.is_stagnating(cfg.stagnation_threshold):
            return TriggerDecision(
                True, f"Stagnation detected (score: {self.tracker.stagnation_score:.2f})",
                TriggerCause.STAGNATION,
            )

        if cfg.apply_on_fitness_decline and self.tracker.detect_decline(cfg.fitness_decline_threshold):
            return TriggerDecision(True, "Fitness decline detected", TriggerCause.FITNESS_DECLINE)

        if cfg.apply_on_low_diversity and self._detect_low_diversity(agents):
            return TriggerDecision(True, "Low population diversity", TriggerCause.LOW_DIVERSITY)

        if since_last >= cfg.maximum_interval:
            return TriggerDecision(
                True, f"Maximum interval reached ({cfg.maximum_interval} generations)",
                TriggerCause.SCHEDULED,
            )

        return TriggerDecision(False, "No trigger conditions met")

    def _demos_good_enough(self) -> bool:
        if not self.has_fitness_history:
            return True

        best = self.store.get_best()
        if best is None:
            return False

        required = self.last_average_fitness * self.config.demo_quality_multiplier
        if best.total_fitness < required:
            logger.debug("Best demonstration fitness %.1f below required %.1f",
                         best.total_fitness, required)
            return False
        return True

    def _detect_low_diversity(self, agents: Sequence[Any]) -> bool:
        if len(agents) < 5:
            return False
        fitness = np.array([a.fitness for a in agents], dtype=np.float64)
        diversity = float(fitness.std()) / max(float(fitness.mean()), 1.0)
        return diversity < self.config.diversity_threshold

    # ========== Learning ==========

    def demonstrations_for_learning(self) -> List[DemonstrationSession]:
        if self.config.use_only_best_demos:
            return self.store.get_top(self.config.max_demos_to_use)
        return self.store.in_insertion_order()[:self.config.max_demos_to_use]

    def _active_stage(self) -> Optional[CurriculumStage]:
        return self.curriculum.current_stage if self.curriculum is not None else None

    def _admits(self, frame: DemonstrationFrame, stage: Optional[CurriculumStage]) -> bool:
        if stage is None:
            return frame.frame_quality >= self.config.min_frame_quality
        return self.curriculum.admits(frame, stage)

    def process_demonstrations(self, template: NetworkWeights,
                               sessions: Optional[Sequence[DemonstrationSession]] = None
                               ) -> Optional[LearnedWeightSet]:
        """
        Distil admitted frames into learned weights shaped like `template`'s
        deepest layers. Returns None when no frame is admitted.
        """
        cfg = self.config
        sessions = self.demonstrations_for_learning() if sessions is None else sessions
        if not sessions:
            return None

        n_layers = cfg.layers_to_modify if cfg.enable_multi_layer else 1
        n_layers = min(n_layers, template.num_layers)
        # Weight layer indices, deepest first
        layer_indices = [template.num_layers - 1 - d for d in range(n_layers)]
        buffers = [np.zeros(template.layer_shape(i)) for i in layer_indices]

        stage = self._active_stage()
        processed = 0
        for session in sessions:
            for frame in session.frames:
                if not self._admits(frame, stage):
                    continue
                self._accumulate(frame, buffers, layer_indices, stage)
                processed += 1

        if processed == 0:
            logger.info("No demonstration frames admitted for stage %s",
                        stage.stage_name if stage else "none")
            return None

        learned = LearnedWeightSet(
            layers=buffers,
            frames_processed=processed,
            stage_name=stage.stage_name if stage else "",
        )
        learned.normalize(processed, cfg.weight_clamp)
        logger.info("Processed %d demonstrations (%d frames) into %d learned layers",
                    len(sessions), processed, learned.depth)
        return learned

    def _accumulate(self, frame: DemonstrationFrame, buffers: List[np.ndarray],
                    layer_indices: List[int], stage: Optional[CurriculumStage]):
        cfg = self.config
        sensors = np.asarray(frame.sensor_inputs, dtype=np.float64)
        actions = np.asarray(frame.human_actions, dtype=np.float64)
        base_rate = cfg.base_learning_rate * frame.frame_quality

        for depth, (buffer, layer_index) in enumerate(zip(buffers, layer_indices)):
            rows, cols = buffer.shape
            rate = base_rate * (cfg.layer_learning_decay ** depth if cfg.enable_multi_layer else 1.0)

            if depth == 0:
                source = _fit(sensors, rows)
                target = _fit(actions, cols)
                if stage is not None:
                    target = target * np.array([stage.behavior_weight(j) for j in range(cols)])
            else:
                # Hidden layers: sensors feed the first weight layer directly
                source = _fit(sensors, rows) if layer_index == 0 else _hidden_projection(sensors, rows)
                target = _derived_targets(actions, cols)

            buffer += rate * np.outer(source, target)

    # ========== Application ==========

    def select_target_agents(self, population) -> List[Any]:
        """
        Mid-ranked agents: elites excluded, then the percentile band of the
        rest, then a random sample of target_npc_count.
        """
        cfg = self.config
        agents = [a for a in getattr(population, 'agents', []) if a.weights is not None]
        if not agents:
            return []

        ranked = sorted(agents, key=lambda a: a.fitness, reverse=True)
        elite = max(int(getattr(population, 'elite_count', 0)), 0)
        remainder = ranked[elite:]
        if not remainder:
            return []

        lo = int(np.floor(len(remainder) * cfg.min_fitness_percentile))
        hi = min(int(np.floor(len(remainder) * cfg.max_fitness_percentile)), len(remainder) - 1)
        band = remainder[lo:hi + 1]
        if not band:
            return []

        count = min(cfg.target_npc_count, len(band))
        picks = self.rng.choice(len(band), size=count, replace=False)
        targets = [band[i] for i in sorted(picks)]
        logger.info("Selected %d target agents from fitness band [%.1f, %.1f]",
                    len(targets), band[-1].fitness, band[0].fitness)
        return targets

    def apply_to_agent(self, agent: Any, learned: LearnedWeightSet,
                       strength: Optional[float] = None) -> bool:
        """
        blended = (1 - strength) * current + strength * learned, on the
        deepest layers only. Strength 0 leaves the weights untouched.
        """
        strength = self.imitation_strength if strength is None else float(strength)
        strength = float(np.clip(strength, 0.0, 1.0))

        weights: Optional[NetworkWeights] = agent.weights
        if weights is None:
            return False
        if strength == 0.0:
            return True

        blended = weights.copy()
        for depth, buffer in enumerate(learned.layers):
            layer = blended.num_layers - 1 - depth
            if layer < 0:
                break
            view = blended.layer_view(layer)
            if view.shape != buffer.shape:
                logger.warning("Learned layer %d shape %s does not match agent layer %s; skipped",
                               depth, buffer.shape, view.shape)
                continue
            if strength == 1.0:
                view[:] = buffer
            else:
                view[:] = (1.0 - strength) * view + strength * buffer

        agent.weights = blended
        return True

    def apply_imitation_learning(self, population, force: bool = False,
                                 report: Optional[GenerationReport] = None) -> bool:
        """Learn, select, back up, blend and open a validation cycle."""
        cfg = self.config
        report = report or GenerationReport(generation=int(getattr(population, 'generation', 0)))
        agents = list(getattr(population, 'agents', None) or [])
        generation = int(getattr(population, 'generation', 0))

        if self.validation.is_pending:
            report.notes.append("Validation pending; application skipped")
            logger.warning("Imitation learning skipped: a validation cycle is still pending")
            return False

        template = next((a.weights for a in agents if a.weights is not None), None)
        if template is None:
            report.notes.append("No agent with weights")
            logger.warning("No agent with a network to learn for")
            return False

        was_paused = getattr(population, 'paused', False)
        population.paused = True
        try:
            learned = self.process_demonstrations(template)
            if learned is None:
                report.notes.append("No usable demonstration frames")
                logger.warning("Failed to process demonstrations into weights")
                return False
            self.learned = learned
            report.frames_processed = learned.frames_processed

            targets = self.select_target_agents(population)
            if not targets:
                report.notes.append("No eligible target agents")
                logger.warning("No suitable target agents for imitation learning")
                return False

            if cfg.enable_validation:
                baseline = ValidationMetrics.capture(agents, generation)
                self.validation.begin(baseline, targets, generation)

            applied = sum(1 for agent in targets if self.apply_to_agent(agent, learned))
        finally:
            population.paused = was_paused

        self.last_application_generation = generation
        self.total_applications += 1
        report.applied = True
        report.targets = applied
        logger.info("Imitation learning applied to %d agents at generation %d (%s). Validation: %s",
                    applied, generation, "forced" if force else self.last_trigger_reason,
                    "active" if cfg.enable_validation else "disabled")
        return True

    # ========== Validation ==========

    def _resolve_validation(self, agents: Sequence[Any], generation: int) -> ValidationOutcome:
        cfg = self.config
        outcome = self.validation.resolve(
            agents, generation, cfg.minimum_improvement_threshold, cfg.auto_rollback_on_failure
        )
        self.last_validation_improvement = outcome.improvement

        if outcome.successful:
            self.successful_validations += 1
            if cfg.auto_adjust_strength and outcome.improvement > cfg.minimum_improvement_threshold * 2:
                self._set_strength(min(self.imitation_strength * cfg.strength_increase_factor, cfg.max_strength))
        else:
            self.failed_validations += 1
            if cfg.auto_adjust_strength:
                self._set_strength(max(self.imitation_strength * cfg.strength_decrease_factor, cfg.min_strength))

        total = self.successful_validations + self.failed_validations
        self.average_improvement += (outcome.improvement - self.average_improvement) / total
        return outcome

    def _set_strength(self, value: float):
        logger.info("Imitation strength adjusted: %.2f -> %.2f", self.imitation_strength, value)
        self.imitation_strength = value

    # ========== Curriculum ==========

    def _update_curriculum(self, agents: Sequence[Any]) -> bool:
        self.curriculum.increment_generation()
        if not self.config.auto_advance_curriculum or self.curriculum.completed:
            return False

        fitness = [a.fitness for a in agents]
        p_fitness = percentile_fitness(fitness, self.config.advancement_fitness_percentile)
        if not self.curriculum.should_advance(p_fitness):
            return False

        logger.info("Curriculum stage '%s' done (population percentile fitness %.1f)",
                    self.curriculum.current_stage.stage_name, p_fitness)
        self.curriculum.advance()
        return True

    # ========== Manual controls ==========

    def force_apply(self, population) -> bool:
        """Apply now, ignoring the trigger layers (not a pending validation)."""
        self.last_trigger_reason = "Forced application"
        return self.apply_imitation_learning(population, force=True)

    def force_validation(self, population) -> Optional[ValidationOutcome]:
        if not self.validation.is_pending:
            logger.warning("No active validation cycle to resolve")
            return None
        return self._resolve_validation(list(population.agents), int(population.generation))

    def force_advance_curriculum(self) -> bool:
        if self.curriculum is None:
            return False
        return self.curriculum.advance()

    def reload_demonstrations(self):
        self.store.load_all()
        self.learned = None

    # ========== Diagnostics ==========

    def get_timing_diagnostics(self) -> str:
        if not self.has_fitness_history:
            return "Timing system not initialised"
        return (
            "ADAPTIVE TIMING DIAGNOSTICS\n"
            f"Stagnation score: {self.tracker.stagnation_score:.2f} "
            f"(threshold: {self.config.stagnation_threshold:.2f})\n"
            f"Generations without improvement: {self.tracker.generations_without_improvement}\n"
            f"Last trigger reason: {self.last_trigger_reason}\n"
            f"Applications - stagnation: {self.stagnation_triggered}, "
            f"urgency: {self.urgency_triggered}, scheduled: {self.scheduled_triggered}"
        )

    def get_stats(self) -> Dict[str, Any]:
        return {
            'total_applications': self.total_applications,
            'imitation_strength': self.imitation_strength,
            'last_trigger_reason': self.last_trigger_reason,
            'stagnation_triggered': self.stagnation_triggered,
            'urgency_triggered': self.urgency_triggered,
            'scheduled_triggered': self.scheduled_triggered,
            'validation_pending': self.validation.is_pending,
            'successful_validations': self.successful_validations,
            'failed_validations': self.failed_validations,
            'average_improvement': self.average_improvement,
            'last_validation_improvement': self.last_validation_improvement,
            'tracker': self.tracker.get_stats(),
            'curriculum': self.curriculum.to_dict() if self.curriculum else None,
            'demonstrations': self.store.get_stats(),
        }

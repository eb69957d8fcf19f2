"""
Unit tests for the imitation learning engine.

Covers trigger layers, the learning rule, blending, target selection,
validation/rollback through the generation tick, and the no-throw boundary.
"""

import logging

import numpy as np
import pytest

from mimicry.config import create_config
from mimicry.curriculum import BehaviorComplexity, CurriculumManager, CurriculumStage
from mimicry.engine import ImitationLearningEngine, LearnedWeightSet, TriggerCause
from mimicry.population import Agent, PopulationSnapshot
from mimicry.weights import NetworkWeights


# Frame used by the make_session fixture
SAMPLE_SENSORS = (0.1, 0.5, 0.2, 0.0, 0.4, 0.0, 0.0, 0.3)
SAMPLE_ACTIONS = (1.0, 0.6, 0.0, 0.0)


@pytest.fixture
def demo_store(store_factory, make_session):
    store = store_factory()
    store.add_session(make_session("expert", 1000.0))
    return store


@pytest.fixture
def engine(demo_store, flat_config):
    return ImitationLearningEngine(demo_store, flat_config)


def snapshot_weights(population):
    return {a.id: a.weights.copy() for a in population.agents}


# =============================================================================
# Trigger layers
# =============================================================================

class TestTrigger:

    def test_no_demonstrations(self, store_factory, flat_config, population):
        engine = ImitationLearningEngine(store_factory(subdir="empty"), flat_config)
        population.generation = 50
        decision = engine.evaluate_trigger(population)
        assert not decision.should_apply
        assert decision.reason == "Not enough demonstrations"

    def test_no_population(self, engine):
        decision = engine.evaluate_trigger(PopulationSnapshot(agents=[], generation=50))
        assert not decision.should_apply
        assert decision.reason == "No population"

    def test_cooldown(self, engine, population):
        population.generation = 2
        decision = engine.evaluate_trigger(population)
        assert not decision.should_apply
        assert decision.reason.startswith("Cooldown active")

    def test_demo_quality_gate(self, engine, population):
        engine.has_fitness_history = True
        engine.last_average_fitness = 1000.0
        population.generation = 50
        decision = engine.evaluate_trigger(population)
        assert not decision.should_apply
        assert decision.reason == "Demonstration quality insufficient"

    def test_stagnation(self, engine, population):
        for _ in range(15):
            engine.tracker.update(10.0)
        population.generation = 10

        decision = engine.evaluate_trigger(population)

        assert decision.should_apply
        assert decision.cause is TriggerCause.STAGNATION
        assert decision.reason == "Stagnation detected (score: 0.80)"
        assert engine.stagnation_triggered == 1
        assert engine.last_trigger_reason == decision.reason

    def test_fitness_decline(self, engine, population):
        for value in (100, 110, 120, 60, 50):
            engine.tracker.update(value)
        assert not engine.tracker.is_stagnating(0.6)
        population.generation = 10

        decision = engine.evaluate_trigger(population)

        assert decision.cause is TriggerCause.FITNESS_DECLINE
        assert engine.urgency_triggered == 1

    def test_low_diversity(self, engine, population):
        for agent in population.agents:
            agent.fitness = 50.0
        population.generation = 5

        decision = engine.evaluate_trigger(population)

        assert decision.cause is TriggerCause.LOW_DIVERSITY
        assert decision.reason == "Low population diversity"

    def test_scheduled_fallback(self, engine, population):
        population.generation = 10
        assert engine.evaluate_trigger(population).reason == "No trigger conditions met"

        population.generation = 25
        decision = engine.evaluate_trigger(population)
        assert decision.cause is TriggerCause.SCHEDULED
        assert engine.scheduled_triggered == 1

    def test_pending_validation_blocks(self, engine, population):
        assert engine.force_apply(population)
        population.generation = 40
        decision = engine.evaluate_trigger(population)
        assert not decision.should_apply
        assert decision.reason == "Cooldown active (validation pending)"


# =============================================================================
# Learning
# =============================================================================

class TestProcessDemonstrations:

    def test_single_layer_rule(self, demo_store):
        config = create_config(enable_curriculum=False, enable_multi_layer=False)
        engine = ImitationLearningEngine(demo_store, config)

        learned = engine.process_demonstrations(NetworkWeights([8, 6, 4]))

        assert learned.depth == 1
        assert learned.frames_processed == 3
        # Three identical frames normalise back to one
        expected = 0.01 * np.outer(SAMPLE_SENSORS[:6], SAMPLE_ACTIONS)
        np.testing.assert_allclose(learned.layers[0], expected)

    def test_multi_layer_rule(self, engine):
        learned = engine.process_demonstrations(NetworkWeights([8, 6, 4]))

        assert learned.depth == 2
        assert learned.layers[1].shape == (8, 6)

        actions = np.array(SAMPLE_ACTIONS)
        k = np.arange(6)[:, None]
        a = np.arange(4)[None, :]
        hidden_targets = np.tanh((np.cos(k + a) * actions[None, :]).sum(axis=1))
        expected = 0.01 * 0.6 * np.outer(SAMPLE_SENSORS, hidden_targets)
        np.testing.assert_allclose(learned.layers[1], expected)

    def test_curriculum_behavior_weights(self, demo_store):
        engine = ImitationLearningEngine(demo_store, create_config(enable_multi_layer=False))

        learned = engine.process_demonstrations(NetworkWeights([8, 6, 4]))

        weighted = np.array(SAMPLE_ACTIONS) * np.array([1.0, 0.3, 0.3, 0.1])
        np.testing.assert_allclose(learned.layers[0], 0.01 * np.outer(SAMPLE_SENSORS[:6], weighted))
        assert learned.stage_name == "Basic Movement"

    def test_curriculum_rejects_irrelevant_frames(self, store_factory, make_session, make_frame):
        store = store_factory()
        jumps = [make_frame(actions=(1.0, 0.0, 0.0, 1.0), timestamp=float(i)) for i in range(3)]
        store.add_session(make_session("jumper", 500.0, frames=jumps))
        engine = ImitationLearningEngine(store, create_config())

        assert engine.process_demonstrations(NetworkWeights([8, 6, 4])) is None

    def test_quality_floor_without_curriculum(self, store_factory, make_session, make_frame, flat_config):
        store = store_factory()
        store.add_session(make_session("sloppy", 500.0, frames=[make_frame(quality=0.4)]))
        engine = ImitationLearningEngine(store, flat_config)

        assert engine.process_demonstrations(NetworkWeights([8, 6, 4])) is None

    def test_clamped(self, store_factory, make_session, make_frame):
        store = store_factory()
        store.add_session(make_session("loud", 500.0, frames=[make_frame(sensors=(5.0,) * 8)]))
        config = create_config(enable_curriculum=False, base_learning_rate=10.0)
        engine = ImitationLearningEngine(store, config)

        learned = engine.process_demonstrations(NetworkWeights([8, 6, 4]))

        assert learned.layers[0].max() == 2.0
        assert np.all(np.abs(learned.layers[1]) <= 2.0)

    def test_session_selection(self, store_factory, make_session):
        store = store_factory()
        for fitness in (10, 30, 20):
            store.add_session(make_session(f"s{fitness}", fitness))

        best = ImitationLearningEngine(store, create_config(max_demos_to_use=2))
        assert [s.total_fitness for s in best.demonstrations_for_learning()] == [30, 20]

        recent = ImitationLearningEngine(store, create_config(max_demos_to_use=2, use_only_best_demos=False))
        assert [s.total_fitness for s in recent.demonstrations_for_learning()] == [10, 30]


# =============================================================================
# Blending and target selection
# =============================================================================

class TestApplication:

    def setup_method(self):
        self.learned = LearnedWeightSet(layers=[np.full((6, 4), 0.5)])

    def test_strength_zero_is_identity(self, engine, population):
        agent = population.agents[3]
        before = agent.weights.copy()
        assert engine.apply_to_agent(agent, self.learned, strength=0.0)
        assert agent.weights.array_equal(before)

    def test_strength_one_copies_learned(self, engine, population):
        agent = population.agents[3]
        before = agent.weights.copy()
        engine.apply_to_agent(agent, self.learned, strength=1.0)
        np.testing.assert_array_equal(agent.weights.layer_view(-1), 0.5)
        np.testing.assert_array_equal(agent.weights.layer_view(0), before.layer_view(0))

    def test_convex_blend(self, engine, population):
        agent = population.agents[3]
        before = agent.weights.copy()
        engine.apply_to_agent(agent, self.learned, strength=0.3)
        np.testing.assert_allclose(agent.weights.layer_view(-1), 0.7 * before.layer_view(-1) + 0.15)

    def test_shape_mismatch_skipped(self, engine, population, caplog):
        agent = population.agents[3]
        before = agent.weights.copy()
        with caplog.at_level(logging.WARNING, logger="mimicry.engine"):
            engine.apply_to_agent(agent, LearnedWeightSet(layers=[np.ones((3, 3))]), strength=1.0)
        assert agent.weights.array_equal(before)
        assert "does not match" in caplog.text

    def test_agent_without_network(self, engine):
        assert not engine.apply_to_agent(Agent(id=99), self.learned)

    def test_target_band_excludes_elites(self, engine, population):
        targets = engine.select_target_agents(population)

        # Remainder after 1 elite: 80..0; band indices 2..7 -> fitness 60..10
        assert len(targets) == 5
        assert len({a.id for a in targets}) == 5
        assert all(10.0 <= a.fitness <= 60.0 for a in targets)

    def test_no_targets_when_band_empty(self, engine):
        lone = PopulationSnapshot(agents=[Agent(id=0, fitness=5.0)], elite_count=1)
        assert engine.select_target_agents(lone) == []

    def test_apply_pauses_population(self, engine, population, monkeypatch):
        seen = []
        original = engine.select_target_agents

        def spy(pop):
            seen.append(pop.paused)
            return original(pop)

        monkeypatch.setattr(engine, "select_target_agents", spy)
        assert engine.apply_imitation_learning(population)
        assert seen == [True]
        assert population.paused is False
        assert engine.total_applications == 1
        assert len(engine.validation.backups) == 5


# =============================================================================
# Validation through the tick
# =============================================================================

class TestValidationFlow:

    def test_failed_validation_rolls_back_exactly(self, engine, population):
        originals = snapshot_weights(population)
        assert engine.force_apply(population)
        targets = [b.agent for b in engine.validation.backups]
        assert any(not a.weights.array_equal(originals[a.id]) for a in targets)

        population.generation = 2
        assert engine.on_generation_boundary(population).validation is None

        population.generation = 3
        report = engine.on_generation_boundary(population)

        assert report.validation is not None
        assert not report.validation.successful
        assert report.validation.rolled_back
        assert all(a.weights.array_equal(originals[a.id]) for a in population.agents)
        assert engine.imitation_strength == pytest.approx(0.24)
        assert engine.failed_validations == 1
        assert not engine.validation.is_pending

    def test_successful_validation_keeps_changes(self, engine, population):
        originals = snapshot_weights(population)
        engine.force_apply(population)
        targets = [b.agent for b in engine.validation.backups]
        blended = {a.id: a.weights.copy() for a in targets}

        for agent in population.agents:
            agent.fitness *= 1.5
        population.generation = 3
        report = engine.on_generation_boundary(population)

        assert report.validation.successful
        assert report.validation.improvement == pytest.approx(0.3)
        assert all(a.weights.array_equal(blended[a.id]) for a in targets)
        assert any(not a.weights.array_equal(originals[a.id]) for a in targets)
        assert engine.imitation_strength == pytest.approx(0.33)
        assert engine.successful_validations == 1
        assert engine.average_improvement == pytest.approx(0.3)

    def test_strength_floor(self, demo_store, population):
        engine = ImitationLearningEngine(
            demo_store, create_config(enable_curriculum=False, imitation_strength=0.11)
        )
        engine.force_apply(population)
        population.generation = 3
        engine.on_generation_boundary(population)
        assert engine.imitation_strength == pytest.approx(0.1)

    def test_force_validation(self, engine, population):
        assert engine.force_validation(population) is None
        engine.force_apply(population)
        outcome = engine.force_validation(population)
        assert outcome is not None
        assert not engine.validation.is_pending

    def test_validation_disabled(self, demo_store, population):
        engine = ImitationLearningEngine(
            demo_store, create_config(enable_curriculum=False, enable_validation=False)
        )
        assert engine.force_apply(population)
        assert not engine.validation.is_pending
        assert engine.force_apply(population)
        assert engine.total_applications == 2


# =============================================================================
# Generation tick
# =============================================================================

class TestGenerationTick:

    def test_tick_applies_on_trigger(self, engine, population):
        for agent in population.agents:
            agent.fitness = 50.0
        population.generation = 5

        report = engine.on_generation_boundary(population)

        assert report.applied
        assert report.trigger.cause is TriggerCause.LOW_DIVERSITY
        assert report.targets == 5
        assert report.frames_processed == 3
        assert engine.validation.is_pending
        assert population.paused is False

    def test_empty_population_is_noop(self, engine):
        report = engine.on_generation_boundary(PopulationSnapshot(agents=[], generation=4))
        assert report.skipped_reason == "No population"
        assert not report.applied

    def test_duplicate_generation_skipped(self, engine, population):
        engine.on_generation_boundary(population)
        report = engine.on_generation_boundary(population)
        assert "already processed" in report.skipped_reason
        assert len(engine.tracker.recent_values()) == 1

    def test_failures_never_escape(self, engine, population, monkeypatch, caplog):
        def boom(pop):
            raise RuntimeError("boom")

        monkeypatch.setattr(engine, "evaluate_trigger", boom)
        with caplog.at_level(logging.ERROR, logger="mimicry.engine"):
            report = engine.on_generation_boundary(population)

        assert report.skipped_reason == "Error: boom"
        assert not report.applied
        assert "tick failed" in caplog.text

    def test_curriculum_advances_on_tick(self, store_factory, population):
        stages = [
            CurriculumStage(BehaviorComplexity.BASIC, "Warmup", min_generations=1, max_generations=1),
            CurriculumStage(BehaviorComplexity.ADVANCED, "Free"),
        ]
        engine = ImitationLearningEngine(
            store_factory(subdir="none"), create_config(), curriculum=CurriculumManager(stages)
        )

        report = engine.on_generation_boundary(population)

        assert report.curriculum_advanced
        assert engine.curriculum.current_stage.stage_name == "Free"

    def test_curriculum_manual_only(self, store_factory, population):
        stages = [CurriculumStage(BehaviorComplexity.BASIC, "Warmup", min_generations=1, max_generations=1),
                  CurriculumStage(BehaviorComplexity.ADVANCED, "Free")]
        engine = ImitationLearningEngine(
            store_factory(subdir="none"), create_config(auto_advance_curriculum=False),
            curriculum=CurriculumManager(stages),
        )

        assert not engine.on_generation_boundary(population).curriculum_advanced
        assert engine.force_advance_curriculum()
        assert engine.curriculum.current_stage.stage_name == "Free"

    def test_force_advance_without_curriculum(self, engine):
        assert engine.curriculum is None
        assert not engine.force_advance_curriculum()


# =============================================================================
# Housekeeping
# =============================================================================

def test_reload_demonstrations(engine, demo_store, make_session):
    from mimicry.demonstrations import DemonstrationStore

    other = DemonstrationStore(demo_store.directory, config=demo_store.config)
    other.add_session(make_session("late", 2000.0))

    engine.reload_demonstrations()

    assert len(engine.store) == 2
    assert engine.store.get_best().session_name == "late"


def test_diagnostics_and_stats(engine, population):
    assert engine.get_timing_diagnostics() == "Timing system not initialised"

    engine.on_generation_boundary(population)

    assert "Stagnation score" in engine.get_timing_diagnostics()
    stats = engine.get_stats()
    assert stats['total_applications'] == 0
    assert stats['validation_pending'] is False
    assert stats['demonstrations']['sessions'] == 1
    assert stats['curriculum'] is None

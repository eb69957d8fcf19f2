"""
Unit tests for validation metrics, backups and the validation cycle.
"""

import numpy as np
import pytest

from mimicry.population import Agent
from mimicry.validation import AgentBackup, ValidationCycle, ValidationMetrics


def test_capture_metrics(population):
    population.agents[0].task_successes = 4
    population.agents[1].task_successes = 6
    population.agents[2].exploration = 5.0

    metrics = ValidationMetrics.capture(population.agents, generation=7)

    assert metrics.average_fitness == pytest.approx(45.0)
    assert metrics.best_fitness == 90.0
    assert metrics.worst_fitness == 0.0
    assert metrics.task_efficiency == pytest.approx(1.0)
    assert metrics.exploration_rate == pytest.approx(0.5)
    assert metrics.generation == 7


def test_capture_empty():
    metrics = ValidationMetrics.capture([], generation=3)
    assert metrics.average_fitness == 0.0
    assert metrics.generation == 3


def test_improvement_score():
    baseline = ValidationMetrics(average_fitness=100.0, task_efficiency=1.0, exploration_rate=2.0)
    post = ValidationMetrics(average_fitness=120.0, task_efficiency=1.5, exploration_rate=3.0)
    # 0.6 * 0.2 + 0.3 * 0.5 + 0.1 * 0.5
    assert post.improvement_score(baseline) == pytest.approx(0.32)
    assert post.improvement_score(None) == 0.0


def test_improvement_score_small_baseline():
    baseline = ValidationMetrics(average_fitness=0.5)
    post = ValidationMetrics(average_fitness=1.5)
    assert post.improvement_score(baseline) == pytest.approx(0.6)


def test_backup_restores_exact_weights(population):
    agent = population.agents[3]
    backup = AgentBackup(agent)
    original = agent.weights.copy()

    agent.weights.data[:] = 0.0
    assert backup.restore()
    assert agent.weights.array_equal(original)


def test_backup_without_network():
    assert not AgentBackup(Agent(id=0)).restore()


class TestValidationCycle:

    def test_single_pending_cycle(self, population):
        cycle = ValidationCycle()
        baseline = ValidationMetrics.capture(population.agents, 1)
        cycle.begin(baseline, population.agents[:2], generation=1)

        assert cycle.is_pending
        assert not cycle.is_due(2, 2)
        assert cycle.is_due(3, 2)
        with pytest.raises(RuntimeError):
            cycle.begin(baseline, population.agents[:2], generation=2)

    def test_failed_cycle_rolls_back(self, population):
        targets = population.agents[2:5]
        originals = [a.weights.copy() for a in targets]
        cycle = ValidationCycle()
        cycle.begin(ValidationMetrics.capture(population.agents, 1), targets, 1)

        for agent in targets:
            agent.weights.data[:] += 1.0

        outcome = cycle.resolve(population.agents, 3, minimum_threshold=0.05, auto_rollback=True)

        assert not outcome.successful
        assert outcome.rolled_back
        assert outcome.restored_agents == 3
        assert all(a.weights.array_equal(o) for a, o in zip(targets, originals))
        assert not cycle.is_pending
        assert cycle.backups == []

    def test_failed_cycle_without_rollback(self, population):
        target = population.agents[4]
        cycle = ValidationCycle()
        cycle.begin(ValidationMetrics.capture(population.agents, 1), [target], 1)
        target.weights.data[:] = 0.25

        outcome = cycle.resolve(population.agents, 3, 0.05, auto_rollback=False)

        assert not outcome.rolled_back
        assert np.all(target.weights.data == 0.25)

    def test_successful_cycle_keeps_changes(self, population):
        target = population.agents[4]
        cycle = ValidationCycle()
        cycle.begin(ValidationMetrics.capture(population.agents, 1), [target], 1)
        target.weights.data[:] = 0.25
        for agent in population.agents:
            agent.fitness *= 2

        outcome = cycle.resolve(population.agents, 3, 0.05, auto_rollback=True)

        assert outcome.successful
        assert outcome.improvement == pytest.approx(0.6)
        assert np.all(target.weights.data == 0.25)
        assert not cycle.is_pending

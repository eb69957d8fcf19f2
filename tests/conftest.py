"""
Pytest configuration and fixtures for the test suite.
"""
import numpy as np
import pytest
from hypothesis import settings, Verbosity

from mimicry.config import create_config
from mimicry.demonstrations import DemonstrationFrame, DemonstrationSession, DemonstrationStore
from mimicry.population import create_population

# Configure Hypothesis for property-based testing
settings.register_profile("default", max_examples=100, verbosity=Verbosity.normal, deadline=None)
settings.register_profile("ci", max_examples=200, verbosity=Verbosity.verbose, deadline=None)
settings.register_profile("dev", max_examples=50, verbosity=Verbosity.normal, deadline=None)
settings.register_profile("debug", max_examples=10, verbosity=Verbosity.verbose, deadline=None)

# Load the default profile
settings.load_profile("default")


# Sensors with an obstacle ahead-left and the matching forward+turn action
SAMPLE_SENSORS = (0.1, 0.5, 0.2, 0.0, 0.4, 0.0, 0.0, 0.3)
SAMPLE_ACTIONS = (1.0, 0.6, 0.0, 0.0)


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def flat_config():
    """Curriculum off so learning is a plain outer-product rule."""
    return create_config(enable_curriculum=False, random_seed=7)


@pytest.fixture
def make_frame():
    def _make(sensors=SAMPLE_SENSORS, actions=SAMPLE_ACTIONS, quality=1.0, timestamp=0.0):
        return DemonstrationFrame.create(sensors, actions, quality, timestamp)
    return _make


@pytest.fixture
def make_session(make_frame):
    def _make(name, fitness, frames=None):
        if frames is None:
            frames = [make_frame(timestamp=float(i)) for i in range(3)]
        return DemonstrationSession(session_name=name, frames=list(frames), total_fitness=float(fitness))
    return _make


@pytest.fixture
def store_factory(tmp_path):
    def _make(config=None, subdir="demos"):
        return DemonstrationStore(tmp_path / subdir, config=config or create_config())
    return _make


@pytest.fixture
def population(rng):
    """Ten agents with fitness 0, 10, ..., 90 at generation 1."""
    pop = create_population(10, rng=rng, generation=1, elite_count=1)
    for agent in pop.agents:
        agent.fitness = agent.id * 10.0
    return pop

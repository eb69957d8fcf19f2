# Mimicry - Imitation Learning for Evolved Populations
#
# Human demonstrations nudge a neuroevolution population out of plateaus.
# Evolution stays in charge; imitation only blends in, and is rolled back
# when it does not help.
#
# MODULES:
# ├── config.py            - ImitationConfig + create_config factory
# ├── weights.py           - Flat weight buffer, payload flatten/rebuild
# ├── network.py           - Feedforward tanh network carried by agents
# ├── population.py        - Agent / PopulationSnapshot interfaces
# ├── demonstrations.py    - Recording, quality scoring, top-K retention
# ├── fitness_tracker.py   - Stagnation score over a fitness window
# ├── curriculum.py        - Five-stage behavior curriculum
# ├── validation.py        - Baseline, backups, keep-or-rollback
# ├── engine.py            - Per-generation orchestration
# ├── training_io.py       - Generation snapshots (JSON)
# └── persistence.py       - Engine checkpoints with dill
#
# PER-GENERATION TICK:
# tracker update -> trigger -> learn + blend -> validate -> curriculum

# =============================================================================
# PRIMARY EXPORTS: Engine
# =============================================================================

from .engine import (
    ImitationLearningEngine,
    LearnedWeightSet,
    TriggerCause,
    TriggerDecision,
    GenerationReport,
)

from .config import (
    ImitationConfig,
    ConfigError,
    create_config,
)

# =============================================================================
# SUPPORTING MODULES
# =============================================================================

# Weights and the agent network
from .weights import (
    NetworkWeights,
    random_weights,
    rebuild_weights,
    weights_from_payload,
)
from .network import FeedForwardNetwork

# Population interfaces
from .population import (
    Agent,
    PopulationSnapshot,
    create_population,
)

# Demonstrations
from .demonstrations import (
    DemonstrationFrame,
    DemonstrationSession,
    DemonstrationStore,
    FrameQualityScorer,
    actions_from_controls,
)

# Stagnation detection
from .fitness_tracker import FitnessTracker

# Curriculum
from .curriculum import (
    BehaviorComplexity,
    CurriculumStage,
    CurriculumManager,
    default_stages,
    percentile_fitness,
)

# Validation
from .validation import (
    ValidationMetrics,
    AgentBackup,
    ValidationCycle,
    ValidationOutcome,
)

# Snapshots and checkpoints
from .training_io import (
    TrainingSnapshot,
    save_snapshot,
    load_snapshot,
    restore_population,
    latest_snapshot,
)
from .persistence import (
    EnginePersistence,
    save_engine,
    load_engine,
)

__version__ = "0.1.0"

# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    # Engine
    'ImitationLearningEngine',
    'LearnedWeightSet',
    'TriggerCause',
    'TriggerDecision',
    'GenerationReport',

    # Configuration
    'ImitationConfig',
    'ConfigError',
    'create_config',

    # Weights
    'NetworkWeights',
    'random_weights',
    'rebuild_weights',
    'weights_from_payload',
    'FeedForwardNetwork',

    # Population
    'Agent',
    'PopulationSnapshot',
    'create_population',

    # Demonstrations
    'DemonstrationFrame',
    'DemonstrationSession',
    'DemonstrationStore',
    'FrameQualityScorer',
    'actions_from_controls',

    # Stagnation
    'FitnessTracker',

    # Curriculum
    'BehaviorComplexity',
    'CurriculumStage',
    'CurriculumManager',
    'default_stages',
    'percentile_fitness',

    # Validation
    'ValidationMetrics',
    'AgentBackup',
    'ValidationCycle',
    'ValidationOutcome',

    # Persistence
    'TrainingSnapshot',
    'save_snapshot',
    'load_snapshot',
    'restore_population',
    'latest_snapshot',
    'EnginePersistence',
    'save_engine',
    'load_engine',
]

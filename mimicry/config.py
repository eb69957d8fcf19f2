"""
Imitation Learning Configuration

Every tunable of the recorder, tracker, curriculum and engine lives in one
flat dataclass passed at construction. Use create_config(**overrides) to
customise individual values.
"""

from dataclasses import dataclass, asdict, fields
from typing import Any, Dict, Optional


class ConfigError(ValueError):
    """Raised when a configuration value is out of range."""


@dataclass
class ImitationConfig:
    """
    Configuration for demonstration capture and imitation learning.
    """
    # ==========================================================================
    # VECTOR WIDTHS
    # ==========================================================================
    sensor_width: int = 8
    action_width: int = 4

    # ==========================================================================
    # DEMONSTRATION RECORDING
    # ==========================================================================
    min_record_quality: float = 0.3  # Frames below this are never recorded
    min_movement_threshold: float = 0.1  # Displacement needed unless jumping
    min_input_change_threshold: float = 0.05  # Sum of |delta| to count as a new frame
    jump_bonus: float = 1.5
    checkpoint_bonus: float = 2.0
    collision_penalty: float = 0.5
    max_demonstrations_to_keep: int = 3  # Top-K sessions kept on disk
    auto_manage_demo_limit: bool = True

    # ==========================================================================
    # ADAPTIVE TIMING
    # ==========================================================================
    fitness_history_size: int = 15
    improvement_epsilon: float = 0.5  # Best fitness must beat last best by this
    stagnation_threshold: float = 0.6
    minimum_cooldown: int = 3  # Generations between applications
    maximum_interval: int = 20  # Forced application after this many generations
    apply_on_fitness_decline: bool = True
    fitness_decline_threshold: float = 0.05  # 5% drop of the recent average
    apply_on_low_diversity: bool = True
    diversity_threshold: float = 0.15  # Coefficient of variation of fitness
    require_demo_superior_quality: bool = True
    demo_quality_multiplier: float = 1.3

    # ==========================================================================
    # CURRICULUM
    # ==========================================================================
    enable_curriculum: bool = True
    auto_advance_curriculum: bool = True
    advancement_fitness_percentile: float = 0.6

    # ==========================================================================
    # LEARNING
    # ==========================================================================
    imitation_strength: float = 0.3  # Blend weight of learned vs evolved weights
    base_learning_rate: float = 0.01  # Scaled by frame quality
    min_frame_quality: float = 0.5  # Admission floor when curriculum is off
    min_demonstrations_required: int = 1
    use_only_best_demos: bool = True
    max_demos_to_use: int = 3
    enable_multi_layer: bool = True
    layer_learning_decay: float = 0.6  # Rate multiplier per layer away from output
    layers_to_modify: int = 2
    weight_clamp: float = 2.0

    # ==========================================================================
    # TARGET SELECTION
    # ==========================================================================
    target_npc_count: int = 5
    min_fitness_percentile: float = 0.3
    max_fitness_percentile: float = 0.8

    # ==========================================================================
    # VALIDATION
    # ==========================================================================
    enable_validation: bool = True
    validation_generations: int = 2
    minimum_improvement_threshold: float = 0.05
    auto_rollback_on_failure: bool = True
    auto_adjust_strength: bool = True
    strength_increase_factor: float = 1.1
    strength_decrease_factor: float = 0.8
    max_strength: float = 0.8
    min_strength: float = 0.1

    # ==========================================================================
    # MISC
    # ==========================================================================
    random_seed: Optional[int] = None

    def validate(self) -> 'ImitationConfig':
        """Check ranges; raises ConfigError on the first bad value."""
        def check(condition: bool, message: str):
            if not condition:
                raise ConfigError(message)

        check(self.sensor_width > 0 and self.action_width > 0, "vector widths must be positive")
        check(0.0 <= self.imitation_strength <= 1.0, "imitation_strength must be in [0, 1]")
        check(0.0 <= self.min_strength <= self.max_strength <= 1.0,
              "need 0 <= min_strength <= max_strength <= 1")
        check(0.0 <= self.min_fitness_percentile <= self.max_fitness_percentile <= 1.0,
              "need 0 <= min_fitness_percentile <= max_fitness_percentile <= 1")
        check(0.0 <= self.advancement_fitness_percentile <= 1.0,
              "advancement_fitness_percentile must be in [0, 1]")
        check(0.0 < self.layer_learning_decay <= 1.0, "layer_learning_decay must be in (0, 1]")
        check(1 <= self.layers_to_modify <= 3, "layers_to_modify must be 1, 2 or 3")
        check(self.fitness_history_size >= 3, "fitness_history_size must be at least 3")
        check(self.max_demonstrations_to_keep >= 1, "max_demonstrations_to_keep must be >= 1")
        check(self.weight_clamp > 0, "weight_clamp must be positive")
        for name in ('minimum_cooldown', 'maximum_interval', 'validation_generations',
                     'target_npc_count', 'max_demos_to_use', 'min_demonstrations_required'):
            check(getattr(self, name) >= 0, f"{name} must not be negative")
        return self

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ImitationConfig':
        """Build from a dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


def create_config(**overrides) -> ImitationConfig:
    """
    Create a validated configuration.

    Example:
        config = create_config(imitation_strength=0.5, enable_curriculum=False)
    """
    config = ImitationConfig()
    for key, value in overrides.items():
        if not hasattr(config, key):
            raise ConfigError(f"Unknown configuration key: {key}")
        setattr(config, key, value)
    return config.validate()

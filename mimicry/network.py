"""
Feedforward Network

The fixed-width tanh network that population agents carry. Selection and
breeding happen outside this package; only the weight get/set and mutation
primitives live here.
"""

import logging
from typing import List, Optional, Sequence

import numpy as np

from .weights import NetworkWeights, random_weights

logger = logging.getLogger(__name__)


class FeedForwardNetwork:
    """
    Fully-connected network with tanh activations on every non-input layer.

    Default shape is 8 sensors -> 6 hidden -> 4 actions
    (forward, turn left, turn right, jump).
    """

    DEFAULT_LAYERS = (8, 6, 4)

    def __init__(
        self,
        layers: Sequence[int] = DEFAULT_LAYERS,
        rng: Optional[np.random.Generator] = None,
        weights: Optional[NetworkWeights] = None,
    ):
        self.layers: List[int] = [int(n) for n in layers]
        self.rng = rng if rng is not None else np.random.default_rng()

        if weights is None:
            self.weights = random_weights(self.layers, self.rng)
        else:
            if list(weights.layers) != self.layers:
                raise ValueError(f"Weights {weights.layers} do not match layers {self.layers}")
            self.weights = weights.copy()

    @property
    def input_size(self) -> int:
        return self.layers[0]

    @property
    def output_size(self) -> int:
        return self.layers[-1]

    def feed_forward(self, inputs: Sequence[float]) -> np.ndarray:
        """Propagate a sensor vector and return the output activations."""
        activation = np.zeros(self.input_size)
        values = np.asarray(inputs, dtype=np.float64).ravel()[:self.input_size]
        activation[:values.size] = values

        for layer in range(self.weights.num_layers):
            activation = np.tanh(activation @ self.weights.layer_view(layer))
        return activation

    # ------------------------------------------------------------------ weights

    def get_weights(self) -> NetworkWeights:
        """Live weights (mutating the result mutates the network)."""
        return self.weights

    def set_weights(self, new_weights: Optional[NetworkWeights]) -> bool:
        """
        Copy new weights in. Mismatched shapes are rejected and logged,
        leaving the current weights untouched.
        """
        if new_weights is None:
            logger.error("Cannot set weights: weight set is None")
            return False
        if not self.weights.same_shape(new_weights):
            logger.error(
                "Cannot set weights: expected layers %s, got %s",
                self.layers, new_weights.layers,
            )
            return False
        self.weights.assign(new_weights)
        return True

    # ---------------------------------------------------------------- evolution

    def mutate(self, mutation_rate: float) -> int:
        return self.weights.mutate(mutation_rate, self.rng)

    def copy(self) -> 'FeedForwardNetwork':
        return FeedForwardNetwork(self.layers, rng=self.rng, weights=self.weights)

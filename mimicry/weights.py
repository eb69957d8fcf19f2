"""
Network Weights

Flat weight buffer for a fully-connected feedforward network.

The ragged tensor weights[layer][source][destination] is stored as one
contiguous float64 array. Each weight layer l connects layers[l] source
neurons to layers[l+1] destination neurons and lives at

    offsets[l] + source * layers[l+1] + destination

so a layer is always a contiguous row-major block that numpy can view as a
(source, destination) matrix without copying.

Payload format (JSON):
    {"layers": [8, 6, 4], "flattenedWeights": [...]}
"""

import logging
from typing import Dict, List, Optional, Sequence, Any

import numpy as np

logger = logging.getLogger(__name__)


# =============================================================================
# NETWORK WEIGHTS
# =============================================================================

class NetworkWeights:
    """
    Weights of a layered network in a single flat buffer.

    Layer views returned by layer_view() share memory with the buffer, so
    writing into a view mutates the weights in place.
    """

    def __init__(self, layers: Sequence[int], values: Optional[np.ndarray] = None):
        layers = [int(n) for n in layers]
        if len(layers) < 2:
            raise ValueError(f"Need at least 2 layers, got {layers}")
        if any(n <= 0 for n in layers):
            raise ValueError(f"Layer sizes must be positive, got {layers}")

        self.layers: List[int] = layers

        # Offset of each weight layer inside the flat buffer
        sizes = [layers[i] * layers[i + 1] for i in range(len(layers) - 1)]
        self.offsets: List[int] = [0]
        for size in sizes[:-1]:
            self.offsets.append(self.offsets[-1] + size)
        self.size = int(sum(sizes))

        if values is None:
            self.data = np.zeros(self.size, dtype=np.float64)
        else:
            values = np.asarray(values, dtype=np.float64).ravel()
            if values.size != self.size:
                raise ValueError(
                    f"Expected {self.size} weights for layers {layers}, got {values.size}"
                )
            self.data = values.copy()

    # ---------------------------------------------------------------- shape

    @property
    def num_layers(self) -> int:
        """Number of weight layers (one less than neuron layers)."""
        return len(self.layers) - 1

    def layer_shape(self, layer: int) -> tuple:
        return (self.layers[layer], self.layers[layer + 1])

    def same_shape(self, other: 'NetworkWeights') -> bool:
        return list(self.layers) == list(other.layers)

    def offset(self, layer: int, row: int, col: int) -> int:
        """Flat index of weights[layer][row][col]."""
        rows, cols = self.layer_shape(layer)
        if not (0 <= row < rows and 0 <= col < cols):
            raise IndexError(f"({row}, {col}) outside layer {layer} of shape {(rows, cols)}")
        return self.offsets[layer] + row * cols + col

    # --------------------------------------------------------------- access

    def layer_view(self, layer: int) -> np.ndarray:
        """Writable (source, destination) view of one weight layer."""
        if layer < 0:
            layer += self.num_layers
        if not 0 <= layer < self.num_layers:
            raise IndexError(f"Weight layer {layer} out of range")
        rows, cols = self.layer_shape(layer)
        start = self.offsets[layer]
        return self.data[start:start + rows * cols].reshape(rows, cols)

    def get(self, layer: int, row: int, col: int) -> float:
        return float(self.data[self.offset(layer, row, col)])

    def set(self, layer: int, row: int, col: int, value: float):
        self.data[self.offset(layer, row, col)] = value

    def copy(self) -> 'NetworkWeights':
        return NetworkWeights(self.layers, self.data)

    def assign(self, other: 'NetworkWeights'):
        """Overwrite every weight with the values of another set of the same shape."""
        if not self.same_shape(other):
            raise ValueError(f"Cannot assign weights {other.layers} onto {self.layers}")
        self.data[:] = other.data

    def array_equal(self, other: 'NetworkWeights') -> bool:
        return self.same_shape(other) and np.array_equal(self.data, other.data)

    # ------------------------------------------------------------ evolution

    def mutate(
        self,
        rate: float,
        rng: np.random.Generator,
        magnitude: float = 0.1,
    ) -> int:
        """
        Perturb each weight with probability `rate` by U(-magnitude, magnitude).

        Returns the number of mutated weights.
        """
        mask = rng.random(self.size) < rate
        count = int(mask.sum())
        if count:
            self.data[mask] += rng.uniform(-magnitude, magnitude, size=count)
        return count

    # -------------------------------------------------------- serialization

    def flatten(self) -> List[float]:
        """Row-major, layer-by-layer list of every weight."""
        return self.data.tolist()

    def to_nested(self) -> List[List[List[float]]]:
        return [self.layer_view(i).tolist() for i in range(self.num_layers)]

    @classmethod
    def from_nested(cls, nested: Sequence[Sequence[Sequence[float]]]) -> 'NetworkWeights':
        """Build from ragged weights[layer][source][destination] lists."""
        if not nested:
            raise ValueError("Empty weight tensor")
        layers = [len(nested[0])]
        for layer in nested:
            if len(layer) != layers[-1]:
                raise ValueError("Ragged weights do not chain between layers")
            layers.append(len(layer[0]) if len(layer) else 0)
        values = np.concatenate([np.asarray(layer, dtype=np.float64).ravel() for layer in nested])
        return cls(layers, values)

    def to_payload(self) -> Dict[str, Any]:
        return {
            'layers': list(self.layers),
            'flattenedWeights': self.flatten(),
        }

    def __repr__(self) -> str:
        return f"NetworkWeights(layers={self.layers})"


# =============================================================================
# CONSTRUCTION HELPERS
# =============================================================================

def random_weights(layers: Sequence[int], rng: np.random.Generator,
                   forward_bias: float = 0.5) -> NetworkWeights:
    """
    Uniform [-1, 1] initialisation.

    Every connection into output 0 (the forward-movement neuron) gets
    `forward_bias` added so fresh agents start out moving.
    """
    weights = NetworkWeights(layers)
    weights.data[:] = rng.uniform(-1.0, 1.0, size=weights.size)
    weights.layer_view(-1)[:, 0] += forward_bias
    return weights


def rebuild_weights(flat_weights: Sequence[float], layers: Sequence[int],
                    rng: Optional[np.random.Generator] = None) -> NetworkWeights:
    """
    Rebuild weights from a flattened payload by replaying the layer sizes.

    A payload shorter than the layers imply is padded with U(-1, 1) values;
    surplus values are dropped. Both cases are logged, never raised.
    """
    if layers is None or len(layers) < 2:
        raise ValueError(f"Invalid layer structure: {layers}")

    weights = NetworkWeights(layers)
    flat = np.asarray([] if flat_weights is None else flat_weights, dtype=np.float64).ravel()

    if flat.size < weights.size:
        missing = weights.size - flat.size
        logger.warning(
            "Weight payload for layers %s has %d of %d values; filling %d with random weights",
            list(layers), flat.size, weights.size, missing,
        )
        rng = rng if rng is not None else np.random.default_rng()
        flat = np.concatenate([flat, rng.uniform(-1.0, 1.0, size=missing)])
    elif flat.size > weights.size:
        logger.warning(
            "Weight payload for layers %s has %d surplus values; ignoring them",
            list(layers), flat.size - weights.size,
        )
        flat = flat[:weights.size]

    weights.data[:] = flat
    return weights


def weights_from_payload(payload: Dict[str, Any],
                         rng: Optional[np.random.Generator] = None) -> NetworkWeights:
    """Inverse of NetworkWeights.to_payload()."""
    return rebuild_weights(payload.get('flattenedWeights', []), payload['layers'], rng)

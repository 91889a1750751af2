"""Two-layer Q-network with a hand-written forward and backward pass."""

import math
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

GRAD_CLIP = 5.0


def _uniform_matrix(rows: int, cols: int, rng, scale: float) -> np.ndarray:
    """Row-major uniform draws in [-scale, scale] from the simulation RNG."""
    return np.array([[rng.range(-scale, scale) for _ in range(cols)] for _ in range(rows)],
                    dtype=np.float64).reshape(rows, cols)


class QNetwork:
    """dense(input -> hidden) + ReLU, dense(hidden -> output), linear output.

    Every instance owns its weight arrays; ``copy_from`` copies values into
    them and never shares storage with the source network.
    """

    def __init__(self, input_size: int, hidden_size: int, output_size: int, rng):
        self.input_size = input_size
        self.hidden_size = hidden_size
        self.output_size = output_size

        scale1 = math.sqrt(2 / (input_size + hidden_size))
        scale2 = math.sqrt(2 / (hidden_size + output_size))

        self.w1 = _uniform_matrix(hidden_size, input_size, rng, scale1)
        self.b1 = np.zeros(hidden_size)
        self.w2 = _uniform_matrix(output_size, hidden_size, rng, scale2)
        self.b2 = np.zeros(output_size)

    def copy_from(self, other: 'QNetwork'):
        """Hard-sync every weight and bias from ``other``."""
        np.copyto(self.w1, other.w1)
        np.copyto(self.b1, other.b1)
        np.copyto(self.w2, other.w2)
        np.copyto(self.b2, other.b2)

    def forward(self, observation) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Return ``(pre_hidden, hidden, q_values)``; intermediates are kept for backprop."""
        x = np.asarray(observation, dtype=np.float64)
        pre_hidden = self.w1 @ x + self.b1
        hidden = np.maximum(pre_hidden, 0.0)
        q_values = self.w2 @ hidden + self.b2
        return pre_hidden, hidden, q_values

    def predict(self, observation) -> np.ndarray:
        return self.forward(observation)[2]

    def train_batch(self, batch: Sequence, target_network: 'QNetwork',
                    gamma: float, learning_rate: float) -> Optional[float]:
        """Run one SGD step on the mean TD loss of ``batch``.

        Only the taken action's output unit receives gradient for a sample.
        Averaged gradients are clipped component-wise to [-5, 5] before the
        update. Returns the mean loss, or ``None`` for an empty batch.
        """
        if not len(batch):
            return None

        grad_w1 = np.zeros_like(self.w1)
        grad_b1 = np.zeros_like(self.b1)
        grad_w2 = np.zeros_like(self.w2)
        grad_b2 = np.zeros_like(self.b2)
        loss = 0.0

        for sample in batch:
            state = np.asarray(sample.state, dtype=np.float64)
            pre_hidden, hidden, q_values = self.forward(state)
            action = sample.action

            if sample.done:
                target = sample.reward
            else:
                target = sample.reward + gamma * float(np.max(target_network.predict(sample.next_state)))

            error = float(q_values[action]) - target
            loss += 0.5 * error * error

            grad_b2[action] += error
            grad_w2[action] += error * hidden

            # ReLU passes gradient only where the pre-activation was positive
            hidden_grad = np.where(pre_hidden > 0, self.w2[action] * error, 0.0)
            grad_b1 += hidden_grad
            grad_w1 += np.outer(hidden_grad, state)

        inv_batch = 1.0 / len(batch)
        for param, grad in ((self.w1, grad_w1), (self.b1, grad_b1),
                            (self.w2, grad_w2), (self.b2, grad_b2)):
            param -= learning_rate * np.clip(grad * inv_batch, -GRAD_CLIP, GRAD_CLIP)

        return loss * inv_batch

    def get_weights(self) -> Dict[str, List]:
        """Export weights as nested lists of Python floats."""
        return {
            'w1': self.w1.tolist(),
            'b1': self.b1.tolist(),
            'w2': self.w2.tolist(),
            'b2': self.b2.tolist(),
        }

    def set_weights(self, weights: Dict[str, Sequence]):
        """Load weights exported by ``get_weights``.

        Raises ``ValueError`` if a tensor is missing, has the wrong shape or
        holds non-finite values; nothing is modified in that case.
        """
        expected = {
            'w1': (self.hidden_size, self.input_size),
            'b1': (self.hidden_size,),
            'w2': (self.output_size, self.hidden_size),
            'b2': (self.output_size,),
        }
        arrays = {}
        for name, shape in expected.items():
            if name not in weights:
                raise ValueError(f"Missing tensor '{name}'")
            try:
                array = np.array(weights[name], dtype=np.float64)
            except (TypeError, ValueError) as e:
                raise ValueError(f"Tensor '{name}' is not numeric: {e}")
            if array.shape != shape:
                raise ValueError(f"Tensor '{name}' has shape {array.shape}, expected {shape}")
            if not np.all(np.isfinite(array)):
                raise ValueError(f"Tensor '{name}' contains non-finite values")
            arrays[name] = array

        for name, array in arrays.items():
            np.copyto(getattr(self, name), array)

"""Experience replay ring buffer."""

from collections import deque
from dataclasses import dataclass
from typing import Any, List

import numpy as np


@dataclass
class Transition:
    """A single experience tuple."""
    state: np.ndarray
    action: int
    reward: float
    next_state: np.ndarray
    done: bool


class ReplayBuffer:
    """Fixed-capacity circular buffer; the oldest items are dropped on overflow."""

    def __init__(self, capacity: int):
        self._buffer = deque(maxlen=max(1, int(capacity)))

    @property
    def capacity(self) -> int:
        return self._buffer.maxlen

    @property
    def size(self) -> int:
        return len(self._buffer)

    def __len__(self) -> int:
        return len(self._buffer)

    def push(self, item: Any):
        self._buffer.append(item)

    def sample(self, batch_size: int, rng) -> List[Any]:
        """Draw ``batch_size`` items uniformly with replacement.

        Duplicates within a batch are expected. An empty buffer yields an
        empty list; callers check the size before training.
        """
        count = max(1, int(batch_size))
        size = len(self._buffer)
        if size == 0:
            return []
        return [self._buffer[int(rng.next() * size)] for _ in range(count)]

    def clear(self):
        self._buffer.clear()

    def resize(self, capacity: int):
        """Change capacity, keeping the newest items in insertion order."""
        capacity = max(1, int(capacity))
        if capacity == self._buffer.maxlen:
            return
        self._buffer = deque(self._buffer, maxlen=capacity)

    def to_list(self) -> List[Any]:
        """Stored items, oldest first."""
        return list(self._buffer)

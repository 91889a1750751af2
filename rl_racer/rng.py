"""Seedable xorshift32 random number generator.

Every stochastic decision in the simulation and the agent draws from an
``RNG`` instance, so a fixed seed plus a fixed call sequence reproduces a
training run exactly.
"""

import math
import random
from typing import Any, Optional, Sequence

UINT32_MAX = 0x100000000
_MASK32 = 0xFFFFFFFF


def _normalize_number(value: float) -> int:
    return (abs(math.floor(value)) & _MASK32) or 1


def normalize_seed(seed: Any) -> int:
    """Map an int, float or string seed onto a non-zero 32-bit state.

    Numeric strings are parsed as numbers; any other string is hashed with
    FNV-1a. Anything unusable falls back to 1.
    """
    if isinstance(seed, bool):
        return 1

    if isinstance(seed, (int, float)):
        if not math.isfinite(seed):
            return 1
        return _normalize_number(seed)

    if isinstance(seed, str):
        trimmed = seed.strip()
        if not trimmed:
            return 1

        try:
            numeric = float(trimmed)
        except ValueError:
            numeric = None

        if numeric is not None and math.isfinite(numeric):
            return _normalize_number(numeric)

        hashed = 2166136261
        for char in trimmed:
            hashed ^= ord(char)
            hashed = (hashed * 16777619) & _MASK32
        return hashed or 1

    return 1


def random_seed() -> int:
    """Draw a fresh non-zero seed from the operating system."""
    return random.SystemRandom().getrandbits(32) or 1


class RNG:
    """Deterministic uniform generator with a 32-bit xorshift state."""

    def __init__(self, seed: Any = 1):
        self.state = normalize_seed(seed)

    def next(self) -> float:
        """Return a float in [0, 1)."""
        x = self.state
        x ^= (x << 13) & _MASK32
        x ^= x >> 17
        x ^= (x << 5) & _MASK32
        self.state = x & _MASK32
        return self.state / UINT32_MAX

    def range(self, low: float, high: float) -> float:
        return low + (high - low) * self.next()

    def int(self, low: float, high: float) -> int:
        """Return an integer in the inclusive range [low, high]."""
        low = math.ceil(low)
        high = math.floor(high)
        if high <= low:
            return low
        return low + math.floor(self.next() * (high - low + 1))

    def pick(self, items: Sequence) -> Optional[Any]:
        if not items:
            return None
        return items[self.int(0, len(items) - 1)]

    def clone(self) -> 'RNG':
        copy = RNG(1)
        copy.state = self.state
        return copy

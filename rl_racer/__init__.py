"""Real-time racing DQN trainer: track, environment, agent and training loop."""

from .agents import DQNAgent, SnapshotError
from .env import RacingEnv
from .replay import ReplayBuffer, Transition
from .rng import RNG
from .track import Track
from .training import Trainer

__all__ = ['DQNAgent', 'SnapshotError', 'RacingEnv', 'ReplayBuffer', 'Transition', 'RNG', 'Track',
           'Trainer']

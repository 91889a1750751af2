"""DQN agent: epsilon-greedy acting, experience replay and target-network sync."""

import copy
import math
import logging
from typing import Any, Dict, Mapping, Optional

import numpy as np

from rl_racer.hyperparams import clamp_hyperparams
from rl_racer.network import QNetwork
from rl_racer.physics import coerce_action_index
from rl_racer.replay import ReplayBuffer, Transition

logger = logging.getLogger('rl_training')

SNAPSHOT_VERSION = 1


class SnapshotError(ValueError):
    """Raised when an agent snapshot cannot be restored."""


class DQNAgent:
    """Online/target Q-network pair trained from a replay buffer.

    The agent owns both networks, the replay buffer, its RNG and the
    exploration schedule. It is driven by an external loop in strict
    alternation with the environment: ``act -> step -> remember -> train``.
    """

    def __init__(self, observation_size: int, action_size: int, rng,
                 hyperparams: Optional[Mapping[str, Any]] = None, hidden_size: int = 32):
        """Initialize agent.

        Args:
            observation_size: Length of the observation vector
            action_size: Number of discrete actions
            rng: Seedable RNG used for weight init, exploration and sampling
            hyperparams: Partial or complete hyperparameter dict
            hidden_size: Width of the hidden layer
        """
        self.observation_size = observation_size
        self.action_size = action_size
        self.hidden_size = hidden_size
        self.rng = rng
        self.hyperparams = clamp_hyperparams(hyperparams)

        self._build_networks()
        self.replay = ReplayBuffer(self.hyperparams['replay_buffer_size'])
        self.epsilon = self.hyperparams['epsilon_start']
        self.training_step_count = 0
        self.last_loss = None

    def _build_networks(self):
        self.online_network = QNetwork(self.observation_size, self.hidden_size, self.action_size, self.rng)
        self.target_network = QNetwork(self.observation_size, self.hidden_size, self.action_size, self.rng)
        self.target_network.copy_from(self.online_network)

    def set_hyperparams(self, next_hyperparams: Mapping[str, Any]):
        """Hot-swap hyperparameters; safe to call at any time."""
        merged = clamp_hyperparams({**self.hyperparams, **next_hyperparams})
        previous_capacity = self.hyperparams['replay_buffer_size']
        self.hyperparams = merged

        if merged['replay_buffer_size'] != previous_capacity:
            self.replay.resize(merged['replay_buffer_size'])

        self.epsilon = max(merged['epsilon_min'], min(merged['epsilon_start'], self.epsilon))

    def act(self, observation) -> int:
        """Select an action index with an epsilon-greedy policy."""
        if self.rng.next() < self.epsilon:
            return int(self.rng.next() * self.action_size)

        q_values = self.online_network.predict(observation)
        return int(np.argmax(q_values))

    def remember(self, transition: Transition):
        """Store a transition, copying both observations into owned arrays."""
        self.replay.push(Transition(
            state=np.array(transition.state, dtype=np.float64),
            action=coerce_action_index(transition.action, self.action_size),
            reward=float(transition.reward),
            next_state=np.array(transition.next_state, dtype=np.float64),
            done=bool(transition.done),
        ))

    def train(self, steps_override: Optional[float] = None) -> Dict[str, Any]:
        """Run up to ``steps`` gradient updates.

        Returns:
            Dict with ``updates``, ``loss`` (last update's loss or None),
            ``replay_size`` and ``skipped``.
        """
        requested = self.hyperparams['training_steps_per_env_step']
        if steps_override is not None:
            try:
                override = float(steps_override)
            except (TypeError, ValueError):
                override = math.nan
            if math.isfinite(override):
                requested = math.floor(override)
        steps = max(1, requested)

        updates = 0
        latest_loss = None

        for _ in range(steps):
            if len(self.replay) == 0:
                break

            batch_size = max(1, min(self.hyperparams['batch_size'], len(self.replay)))
            batch = self.replay.sample(batch_size, self.rng)
            if not batch:
                break

            latest_loss = self.online_network.train_batch(
                batch,
                self.target_network,
                self.hyperparams['gamma'],
                self.hyperparams['learning_rate'],
            )
            self.training_step_count += 1
            updates += 1

            if self.training_step_count % self.hyperparams['target_update_period'] == 0:
                self.target_network.copy_from(self.online_network)
                logger.debug(f"Target network synced at update {self.training_step_count}")

        if updates > 0:
            self.last_loss = latest_loss

        return {
            'updates': updates,
            'loss': latest_loss,
            'replay_size': len(self.replay),
            'skipped': updates == 0,
        }

    def on_episode_end(self):
        """Decay exploration; called only at episode boundaries."""
        self.epsilon = max(self.hyperparams['epsilon_min'],
                           self.epsilon * self.hyperparams['epsilon_decay'])

    def reset_model(self):
        """Fresh weights, empty replay, epsilon and step count reset. The RNG stream continues."""
        self._build_networks()
        self.replay = ReplayBuffer(self.hyperparams['replay_buffer_size'])
        self.epsilon = self.hyperparams['epsilon_start']
        self.training_step_count = 0
        self.last_loss = None

    def export_snapshot(self) -> Dict[str, Any]:
        """Everything needed to resume training, as plain Python data."""
        return {
            'version': SNAPSHOT_VERSION,
            'observation_size': self.observation_size,
            'action_size': self.action_size,
            'hidden_size': self.hidden_size,
            'hyperparams': dict(self.hyperparams),
            'epsilon': self.epsilon,
            'training_step_count': self.training_step_count,
            'online': self.online_network.get_weights(),
            'target': self.target_network.get_weights(),
        }

    def import_snapshot(self, snapshot: Mapping[str, Any]):
        """Restore a snapshot produced by ``export_snapshot``.

        The snapshot is fully validated before anything is applied; on
        failure ``SnapshotError`` is raised and the live agent is unchanged.
        """
        if not isinstance(snapshot, Mapping):
            raise SnapshotError("Snapshot must be a mapping")

        for key in ('observation_size', 'action_size', 'hidden_size'):
            if snapshot.get(key, getattr(self, key)) != getattr(self, key):
                raise SnapshotError(
                    f"Snapshot {key}={snapshot.get(key)} does not match agent ({getattr(self, key)})"
                )

        hyperparams = snapshot.get('hyperparams', self.hyperparams)
        if not isinstance(hyperparams, Mapping):
            raise SnapshotError("Snapshot hyperparams must be a mapping")
        hyperparams = clamp_hyperparams({**self.hyperparams, **hyperparams})

        try:
            epsilon = float(snapshot.get('epsilon', hyperparams['epsilon_start']))
            training_step_count = int(snapshot.get('training_step_count', 0))
        except (TypeError, ValueError, OverflowError) as e:
            raise SnapshotError(f"Invalid snapshot counters: {e}")
        if not math.isfinite(epsilon) or training_step_count < 0:
            raise SnapshotError("Snapshot epsilon or training step count out of range")

        online = copy.deepcopy(self.online_network)
        target = copy.deepcopy(self.target_network)
        for network, key in ((online, 'online'), (target, 'target')):
            weights = snapshot.get(key)
            if not isinstance(weights, Mapping):
                raise SnapshotError(f"Snapshot is missing '{key}' network weights")
            try:
                network.set_weights(weights)
            except ValueError as e:
                raise SnapshotError(f"Invalid '{key}' network weights: {e}")

        previous_capacity = self.hyperparams['replay_buffer_size']
        self.hyperparams = hyperparams
        if hyperparams['replay_buffer_size'] != previous_capacity:
            self.replay.resize(hyperparams['replay_buffer_size'])
        self.online_network = online
        self.target_network = target
        self.epsilon = max(hyperparams['epsilon_min'], min(hyperparams['epsilon_start'], epsilon))
        self.training_step_count = training_step_count
        self.last_loss = None

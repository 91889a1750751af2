"""Training module containing the Trainer and training orchestration logic."""

import logging
import math
import time
from typing import Any, Dict, Mapping, Optional

from rl_racer.agents import DQNAgent, SnapshotError
from rl_racer.config import config
from rl_racer.env import DEFAULT_MAX_SENSOR_DISTANCE, DEFAULT_SENSOR_ANGLES, RacingEnv
from rl_racer.hyperparams import DEFAULT_HYPERPARAMS, clamp_hyperparams
from rl_racer.monitoring import MetricsCollector
from rl_racer.persistence import PersistenceManager
from rl_racer.physics import ACTIONS, CarConfig
from rl_racer.replay import Transition
from rl_racer.rng import RNG, normalize_seed
from rl_racer.track import Track

logger = logging.getLogger('rl_training')

ENV_SEED_SALT = 0x9E3779B9
AGENT_SEED_SALT = 0x85EBCA6B


def default_track() -> Track:
    """Circular track described by the ``track`` config section."""
    return Track.circle(
        config.get('track.center_x', 450),
        config.get('track.center_y', 300),
        config.get('track.radius', 220),
        width=config.get('track.width', 112),
        samples=config.get('track.samples', 300),
    )


def _reward_weights(hyperparams: Mapping[str, Any]) -> Dict[str, float]:
    return {
        'progress_weight': hyperparams['progress_reward_weight'],
        'off_track_penalty': hyperparams['off_track_penalty'],
        'speed_penalty_weight': hyperparams['speed_penalty_weight'],
    }


def _episode_count(value: Any) -> int:
    """Saved episode counter, or 1 when missing or not a finite number."""
    try:
        episodes = float(value)
    except (TypeError, ValueError):
        return 1
    if not math.isfinite(episodes):
        return 1
    return max(1, math.floor(episodes))


def _best_return(value: Any) -> float:
    """Saved best return, or -inf when missing or not a finite number."""
    try:
        best = float(value)
    except (TypeError, ValueError):
        return -math.inf
    return best if math.isfinite(best) else -math.inf


class Trainer:
    """Drives one (agent, environment) pair: act -> step -> remember -> train.

    Also owns the lifecycle commands a host issues between ticks: episode
    reset, model reset, track swap, hyperparameter updates and saving or
    deploying racers.
    """

    def __init__(self, config_path: Optional[str] = None, seed: Any = None,
                 track: Optional[Track] = None, log_dir: Optional[str] = None,
                 model_dir: Optional[str] = None):
        """Initialize the trainer."""
        if config_path:
            config.load_config(config_path)

        self.seed = normalize_seed(seed if seed is not None else config.get('training.seed', 1))
        self.env_rng = RNG(self.seed ^ ENV_SEED_SALT)
        self.agent_rng = RNG(self.seed ^ AGENT_SEED_SALT)

        self.hyperparams = clamp_hyperparams({**DEFAULT_HYPERPARAMS, **config.section('hyperparams')})

        self.env = RacingEnv(
            track or default_track(),
            self.env_rng,
            dt=config.get('environment.dt', 1 / 30),
            max_episode_steps=self.hyperparams['max_episode_steps'],
            action_smoothing=self.hyperparams['action_smoothing'],
            reward_weights=_reward_weights(self.hyperparams),
            sensor_angles=config.get('sensors.angles', DEFAULT_SENSOR_ANGLES),
            max_sensor_distance=config.get('sensors.max_distance', DEFAULT_MAX_SENSOR_DISTANCE),
            car_config=CarConfig(**config.section('car')),
        )
        self.observation = self.env.current_observation

        self.agent = DQNAgent(
            observation_size=self.env.observation_size,
            action_size=len(ACTIONS),
            rng=self.agent_rng,
            hyperparams=self.hyperparams,
            hidden_size=config.get('agent.hidden_size', 32),
        )

        self.metrics = MetricsCollector(log_dir or config.get('training.log_dir', 'logs'))
        self.persistence = PersistenceManager(
            model_dir or config.get('model.save_path', 'models/'),
            max_saved=config.get('model.max_saved', 4),
        )

        self.episode_number = 1
        self.best_episode_return = -math.inf
        self.episode_returns = []
        self.losses = []
        self.stats_window = config.get('training.stats_window', 100)
        self.running = False

        logger.info(
            f"Trainer initialized - seed: {self.seed}, observation size: {self.env.observation_size}, "
            f"actions: {len(ACTIONS)}"
        )

    def apply_hyperparams(self, next_hyperparams: Mapping[str, Any]):
        """Hot-swap hyperparameters on both the agent and the environment."""
        self.hyperparams = clamp_hyperparams({**self.hyperparams, **next_hyperparams})
        self.agent.set_hyperparams(self.hyperparams)
        self.env.update_config(
            max_episode_steps=self.hyperparams['max_episode_steps'],
            action_smoothing=self.hyperparams['action_smoothing'],
            reward_weights=_reward_weights(self.hyperparams),
        )

    def run_step(self) -> Dict[str, Any]:
        """Run one environment tick with its training updates."""
        action_index = self.agent.act(self.observation)
        next_observation, reward, done, info = self.env.step(action_index)

        self.agent.remember(Transition(self.observation, action_index, reward, next_observation, done))

        train_result = self.agent.train(self.hyperparams['training_steps_per_env_step'])
        if train_result['loss'] is not None:
            self._record_loss(train_result['loss'])

        self.observation = next_observation
        summary = None
        if done:
            summary = self._handle_episode_termination(info)

        return {
            'action': action_index,
            'reward': reward,
            'done': done,
            'info': info,
            'train': train_result,
            'episode_summary': summary,
        }

    def _record_loss(self, loss: float):
        self.losses.append(loss)
        if len(self.losses) > self.stats_window:
            self.losses = self.losses[-self.stats_window:]

    def _handle_episode_termination(self, info: Dict[str, Any]) -> Dict[str, Any]:
        finished_return = self.env.episode_return
        if finished_return > self.best_episode_return:
            self.best_episode_return = finished_return

        self.episode_returns.append(finished_return)
        if len(self.episode_returns) > self.stats_window:
            self.episode_returns = self.episode_returns[-self.stats_window:]

        render_state = self.env.get_render_state()
        summary = {
            'episode': self.episode_number,
            'episode_return': finished_return,
            'steps': self.env.step_count,
            'off_track': info['off_track'],
            'laps': render_state['current_lap_count'],
            'best_lap_time_sec': render_state['best_lap_time_sec'],
            'epsilon': self.agent.epsilon,
            'loss': self.agent.last_loss,
            'training_steps': self.agent.training_step_count,
            'replay_size': len(self.agent.replay),
        }

        self.agent.on_episode_end()
        self.metrics.log_episode(summary)
        self.reset_episode(count_as_new_episode=True)

        forced = self.agent.train(1)
        if forced['loss'] is not None:
            self._record_loss(forced['loss'])

        return summary

    def reset_episode(self, count_as_new_episode: bool = True):
        if count_as_new_episode:
            self.episode_number += 1
        self.observation = self.env.reset(True)

    def run_episode(self, max_steps: Optional[int] = None) -> Optional[Dict[str, Any]]:
        """Tick until the current episode ends; returns its summary.

        Returns None if ``max_steps`` ticks elapse first.
        """
        steps = 0
        while max_steps is None or steps < max_steps:
            result = self.run_step()
            steps += 1
            if result['done']:
                return result['episode_summary']
        return None

    def run(self, max_episodes: Optional[int] = None, save_best: bool = False):
        """Run the training loop until stopped or ``max_episodes`` complete."""
        self.running = True
        completed = 0
        logger.info(f"Starting training (max_episodes={max_episodes})")

        try:
            while self.running:
                if max_episodes and completed >= max_episodes:
                    logger.info(f"Reached maximum episodes: {max_episodes}")
                    break

                previous_best = self.best_episode_return
                summary = self.run_episode()
                completed += 1

                if save_best and summary['episode_return'] > previous_best:
                    self.save_racer(f"best-ep{summary['episode']}")
        finally:
            self.running = False
            logger.info(f"Training stopped. Episodes: {self.episode_number}, "
                        f"updates: {self.agent.training_step_count}")

    def stop(self):
        self.running = False

    def new_racer(self):
        """Start a fresh model: new weights, empty replay, cleared records."""
        self.agent.reset_model()
        self.env.clear_lap_history(reset_best_lap_count=True)
        self.best_episode_return = -math.inf
        self.episode_returns = []
        self.losses = []
        self.episode_number = 1
        self.observation = self.env.reset(True)

    def replace_track(self, track: Track):
        self.observation = self.env.set_track(track)

    def current_metrics(self) -> Dict[str, Any]:
        render_state = self.env.get_render_state()
        return {
            'episodes': max(1, self.episode_number),
            'best_lap_count': render_state['best_lap_count'],
            'best_return': self.best_episode_return if math.isfinite(self.best_episode_return) else None,
            'training_steps': self.agent.training_step_count,
            'best_lap_time_sec': render_state['best_lap_time_sec'],
            'worst_lap_time_sec': render_state['worst_lap_time_sec'],
        }

    def save_racer(self, name: str) -> str:
        payload = {
            'name': str(name)[:48],
            'hyperparams': dict(self.hyperparams),
            'agent_snapshot': self.agent.export_snapshot(),
            'metrics': self.current_metrics(),
            'created_at': time.time(),
        }
        return self.persistence.save_racer(payload)

    def load_racer(self, identifier: str) -> bool:
        """Deploy a saved racer. Returns False and keeps the current model on failure."""
        payload = self.persistence.load_racer(identifier)
        if not isinstance(payload, dict):
            logger.warning(f"Racer {identifier} not found")
            return False

        snapshot = payload.get('agent_snapshot')

        # Everything read from the payload is sanitized before the agent is touched
        metrics = payload.get('metrics')
        if not isinstance(metrics, Mapping):
            metrics = {}
        episode_number = _episode_count(metrics.get('episodes'))
        best_episode_return = _best_return(metrics.get('best_return'))
        saved_hyperparams = snapshot.get('hyperparams') if isinstance(snapshot, Mapping) else None
        if not saved_hyperparams:
            saved_hyperparams = payload.get('hyperparams')
        if not isinstance(saved_hyperparams, Mapping):
            saved_hyperparams = {}

        try:
            self.agent.import_snapshot(snapshot)
        except SnapshotError as e:
            logger.warning(f"Racer {identifier} has an invalid snapshot: {e}")
            return False

        self.apply_hyperparams(saved_hyperparams)
        self.episode_number = episode_number
        self.best_episode_return = best_episode_return

        self.env.clear_lap_history()
        self.env.set_lap_history(metrics)
        self.observation = self.env.reset(True)

        logger.info(f"Deployed racer {identifier} (episode {self.episode_number})")
        return True

    def get_training_stats(self) -> Dict[str, Any]:
        """Get current training statistics."""
        render_state = self.env.get_render_state()
        return {
            'episode': self.episode_number,
            'step': self.env.step_count,
            'training_steps': self.agent.training_step_count,
            'epsilon': float(self.agent.epsilon),
            'last_reward': self.env.last_reward,
            'episode_return': self.env.episode_return,
            'best_return': self.best_episode_return if math.isfinite(self.best_episode_return) else None,
            'episode_returns': list(self.episode_returns),
            'losses': list(self.losses),
            'last_loss': self.agent.last_loss,
            'replay_size': len(self.agent.replay),
            'lap_progress': render_state['lap_progress'],
            'current_lap_count': render_state['current_lap_count'],
            'best_lap_count': render_state['best_lap_count'],
            'best_lap_time_sec': render_state['best_lap_time_sec'],
            'running': self.running,
        }

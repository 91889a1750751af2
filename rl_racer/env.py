"""Racing environment: car physics, ray sensors, reward shaping and lap bookkeeping."""

import math
from collections import deque
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from rl_racer.physics import ACTIONS, CAR_CONFIG, CarConfig, CarState, clamp, coerce_action_index, \
    step_car, wrap_angle
from rl_racer.track import Projection, Track, wrapped_progress_delta

DEFAULT_SENSOR_ANGLES = (-0.95, -0.6, -0.3, 0.0, 0.3, 0.6, 0.95)
DEFAULT_MAX_SENSOR_DISTANCE = 360.0
DEFAULT_REWARD_WEIGHTS = {
    'progress_weight': 1.8,
    'off_track_penalty': -5.0,
    'speed_penalty_weight': 0.5,
}

SPAWN_SPEED = 48.0
MAX_TRAIL_POINTS = 900
MAX_PROGRESS_DELTA = 0.04


def cast_ray(origin_x: float, origin_y: float, angle: float, starts: np.ndarray,
             ends: np.ndarray, max_distance: float) -> float:
    """Distance to the nearest segment hit along a ray, or ``max_distance``.

    Solves origin + t*dir = a + u*(b - a) with 2D cross products for every
    segment at once; a hit needs t >= 0 and 0 <= u <= 1.
    """
    if not len(starts):
        return max_distance

    dir_x = math.cos(angle)
    dir_y = math.sin(angle)
    seg_x = ends[:, 0] - starts[:, 0]
    seg_y = ends[:, 1] - starts[:, 1]
    denom = dir_x * seg_y - dir_y * seg_x

    qx = starts[:, 0] - origin_x
    qy = starts[:, 1] - origin_y
    valid = np.abs(denom) >= 1e-9
    safe_denom = np.where(valid, denom, 1.0)
    t = (qx * seg_y - qy * seg_x) / safe_denom
    u = (qx * dir_y - qy * dir_x) / safe_denom

    hits = valid & (t >= 0) & (u >= 0) & (u <= 1)
    if not hits.any():
        return max_distance
    return min(max_distance, float(t[hits].min()))


class RacingEnv:
    """Fixed-timestep racing environment with 9 discrete actions.

    Observation layout (length 6 + number of sensors):
    ``[speed, cos(heading_error), sin(heading_error), lateral_offset, steer,
    progress_delta * 25, sensor_0 .. sensor_n]``
    """

    def __init__(self, track: Track, rng, dt: float = 1 / 30, max_episode_steps: int = 1200,
                 action_smoothing: float = 0.4, reward_weights: Optional[Mapping[str, float]] = None,
                 sensor_angles: Sequence[float] = DEFAULT_SENSOR_ANGLES,
                 max_sensor_distance: float = DEFAULT_MAX_SENSOR_DISTANCE,
                 car_config: CarConfig = CAR_CONFIG):
        """Initialize the environment and start the first episode.

        Args:
            track: Read-only track geometry
            rng: Seedable RNG used for spawn jitter
            dt: Simulation timestep in seconds
            max_episode_steps: Step limit per episode
            action_smoothing: Steering lag factor, clamped to [0, 0.9]
            reward_weights: Overrides for progress/off-track/speed-penalty weights
            sensor_angles: Ray angles relative to the car heading
            max_sensor_distance: Sensor range used for misses and normalisation
            car_config: Physics constants
        """
        self.track = track
        self.rng = rng
        self.dt = dt
        self.max_episode_steps = max_episode_steps
        self.action_smoothing = clamp(action_smoothing, 0.0, 0.9)
        self.reward_weights = dict(DEFAULT_REWARD_WEIGHTS)
        self.reward_weights.update(reward_weights or {})
        self.sensor_angles = tuple(sensor_angles)
        self.max_sensor_distance = float(max_sensor_distance)
        self.car_config = car_config

        self.car = CarState(0.0, 0.0, 0.0)
        self.trajectory = deque(maxlen=MAX_TRAIL_POINTS)
        self.last_sensor_hits: List[Dict[str, float]] = []

        self.step_count = 0
        self.last_reward = 0.0
        self.last_progress_delta = 0.0
        self.episode_return = 0.0
        self.done = False
        self.prev_projection: Optional[Projection] = None
        self.lap_progress = 0.0
        self.lap_elapsed_sec = 0.0

        self.clear_lap_history(reset_best_lap_count=True)
        self.current_observation = self.reset(True)
        self.observation_size = len(self.current_observation)

    @property
    def observation_shape(self) -> Tuple[int]:
        return (6 + len(self.sensor_angles),)

    @property
    def action_size(self) -> int:
        return len(ACTIONS)

    def set_track(self, track: Track) -> np.ndarray:
        """Swap the track; lap records (except best lap count) are cleared."""
        self.track = track
        self.clear_lap_history()
        return self.reset(True)

    def clear_lap_history(self, reset_best_lap_count: bool = False):
        self.best_lap_time_sec = None
        self.worst_lap_time_sec = None
        self.last_lap_time_sec = None
        self.current_lap_count = 0
        if reset_best_lap_count:
            self.best_lap_count = 0

    def set_lap_history(self, records: Mapping[str, Any]):
        """Restore persisted lap records; invalid values are discarded."""
        def positive_or_none(value):
            try:
                value = float(value)
            except (TypeError, ValueError):
                return None
            return value if math.isfinite(value) and value > 0 else None

        self.best_lap_time_sec = positive_or_none(records.get('best_lap_time_sec'))
        self.worst_lap_time_sec = positive_or_none(records.get('worst_lap_time_sec'))
        try:
            best_lap_count = float(records.get('best_lap_count'))
        except (TypeError, ValueError):
            best_lap_count = 0.0
        self.best_lap_count = max(0, math.floor(best_lap_count)) if math.isfinite(best_lap_count) else 0

    def update_config(self, max_episode_steps: Optional[int] = None,
                      action_smoothing: Optional[float] = None,
                      reward_weights: Optional[Mapping[str, float]] = None):
        """Hot-swap episode length, steering lag and reward weights."""
        if max_episode_steps is not None:
            self.max_episode_steps = max(50, math.floor(max_episode_steps))
        if action_smoothing is not None:
            self.action_smoothing = clamp(action_smoothing, 0.0, 0.9)
        if reward_weights:
            for key in DEFAULT_REWARD_WEIGHTS:
                try:
                    weight = float(reward_weights.get(key))
                except (TypeError, ValueError):
                    continue
                # non-numeric and non-finite weights leave the current value
                if math.isfinite(weight):
                    self.reward_weights[key] = weight

    def spawn_pose(self) -> Tuple[float, float, float, float]:
        """Start pose ``(x, y, heading, speed)`` at the track's start vertex."""
        centerline = self.track.centerline
        idx = self.track.start_index
        x1, y1 = centerline[idx]
        x2, y2 = centerline[(idx + 1) % len(centerline)]
        return float(x1), float(y1), math.atan2(y2 - y1, x2 - x1), SPAWN_SPEED

    def reset(self, with_noise: bool = True) -> np.ndarray:
        """Start a new episode and return its first observation."""
        x, y, heading, speed = self.spawn_pose()
        heading_jitter = self.rng.range(-0.08, 0.08) if with_noise else 0.0
        speed_jitter = self.rng.range(-10, 10) if with_noise else 0.0

        self.car = CarState(x, y, heading + heading_jitter, max(0.0, speed + speed_jitter))

        self.step_count = 0
        self.last_reward = 0.0
        self.last_progress_delta = 0.0
        self.episode_return = 0.0
        self.done = False
        self.lap_progress = 0.0
        self.lap_elapsed_sec = 0.0
        self.current_lap_count = 0

        self.trajectory.clear()
        self.trajectory.append((self.car.x, self.car.y))

        self.prev_projection = self.track.project(self.car.x, self.car.y)
        self.current_observation = self._compute_observation(self.prev_projection)
        return self.current_observation

    def _compute_observation(self, projection: Projection) -> np.ndarray:
        sensor_values = np.zeros(len(self.sensor_angles))
        sensor_hits = []

        for i, relative_angle in enumerate(self.sensor_angles):
            angle = self.car.heading + relative_angle
            distance = cast_ray(self.car.x, self.car.y, angle, self.track.boundary_starts,
                                self.track.boundary_ends, self.max_sensor_distance)
            normalized = clamp(distance / self.max_sensor_distance, 0.0, 1.0)
            sensor_values[i] = normalized
            sensor_hits.append({
                'x': self.car.x + math.cos(angle) * distance,
                'y': self.car.y + math.sin(angle) * distance,
                'distance': distance,
                'normalized_distance': normalized,
                'angle': angle,
            })

        self.last_sensor_hits = sensor_hits

        heading_error = wrap_angle(self.car.heading - projection.tangent_angle)
        lateral = clamp(projection.signed_distance / self.track.half_width, -1.0, 1.0)

        header = [
            clamp(self.car.speed / self.car_config.max_speed, 0.0, 1.0),
            math.cos(heading_error),
            math.sin(heading_error),
            lateral,
            self.car.steer,
            self.last_progress_delta * 25,
        ]
        return np.concatenate((header, sensor_values))

    def _advance_lap(self, progress_delta: float):
        self.lap_elapsed_sec += self.dt
        lap_progress = max(0.0, self.lap_progress + progress_delta)

        while lap_progress >= 1:
            lap_progress -= 1
            lap_time = self.lap_elapsed_sec
            self.last_lap_time_sec = lap_time
            if self.best_lap_time_sec is None or lap_time < self.best_lap_time_sec:
                self.best_lap_time_sec = lap_time
            if self.worst_lap_time_sec is None or lap_time > self.worst_lap_time_sec:
                self.worst_lap_time_sec = lap_time
            self.current_lap_count += 1
            self.best_lap_count = max(self.best_lap_count, self.current_lap_count)
            self.lap_elapsed_sec = 0.0

        self.lap_progress = lap_progress

    def compute_reward(self, progress_delta: float, speed_norm: float, steer: float,
                       off_track: bool) -> float:
        """Shaped reward for one step; depends only on its arguments and the weights."""
        weights = self.reward_weights
        reward = (weights['progress_weight'] * progress_delta * 120
                  - weights['speed_penalty_weight'] * (1 - speed_norm) * 0.04
                  - abs(steer) * 0.0025)
        if off_track:
            reward += weights['off_track_penalty']
        return reward

    def step(self, action_index: Any) -> Tuple[np.ndarray, float, bool, Dict[str, Any]]:
        """Advance one timestep.

        Returns:
            observation: Next observation
            reward: Shaped reward for the step
            done: Whether the episode ended (off track or step limit)
            info: off_track, max_steps_reached, progress, step, episode_return
        """
        if self.done:
            return self.current_observation, 0.0, True, {
                'off_track': False,
                'max_steps_reached': False,
                'progress': self.prev_projection.progress if self.prev_projection else 0.0,
                'step': self.step_count,
                'episode_return': self.episode_return,
            }

        action = ACTIONS[coerce_action_index(action_index)]
        step_car(self.car, action, self.dt, self.action_smoothing, self.car_config)

        self.step_count += 1
        self.trajectory.append((self.car.x, self.car.y))

        projection = self.track.project(self.car.x, self.car.y)
        # the clamp bounds reward spikes when the projection jumps across the seam
        progress_delta = clamp(
            wrapped_progress_delta(self.prev_projection.progress, projection.progress),
            -MAX_PROGRESS_DELTA, MAX_PROGRESS_DELTA,
        )
        self.last_progress_delta = progress_delta
        self._advance_lap(progress_delta)

        speed_norm = clamp(self.car.speed / self.car_config.max_speed, 0.0, 1.0)
        off_track = abs(projection.signed_distance) > self.track.half_width
        reward = self.compute_reward(progress_delta, speed_norm, self.car.steer, off_track)

        max_steps_reached = self.step_count >= self.max_episode_steps
        self.done = off_track or max_steps_reached
        self.last_reward = reward
        self.episode_return += reward
        self.prev_projection = projection

        self.current_observation = self._compute_observation(projection)

        return self.current_observation, reward, self.done, {
            'off_track': off_track,
            'max_steps_reached': max_steps_reached,
            'progress': projection.progress,
            'step': self.step_count,
            'episode_return': self.episode_return,
        }

    def get_render_state(self) -> Dict[str, Any]:
        """Snapshot of everything a renderer or dashboard needs."""
        return {
            'track': self.track,
            'car': self.car.copy(),
            'trail': list(self.trajectory),
            'sensor_hits': [dict(hit) for hit in self.last_sensor_hits],
            'progress': self.prev_projection.progress if self.prev_projection else 0.0,
            'lap_progress': self.lap_progress,
            'this_lap_time_sec': self.lap_elapsed_sec,
            'last_lap_time_sec': self.last_lap_time_sec,
            'best_lap_time_sec': self.best_lap_time_sec,
            'worst_lap_time_sec': self.worst_lap_time_sec,
            'current_lap_count': self.current_lap_count,
            'best_lap_count': self.best_lap_count,
        }

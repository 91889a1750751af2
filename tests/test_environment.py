"""
Tests for environment dynamics, observations, reward and lap bookkeeping.
"""
import math

import numpy as np
import pytest

from rl_racer.env import MAX_TRAIL_POINTS, RacingEnv, cast_ray
from rl_racer.physics import coerce_action_index
from rl_racer.rng import RNG
from rl_racer.track import Track


@pytest.fixture
def track():
    return Track.circle(400, 400, 300, width=112, samples=300)


@pytest.fixture
def env(track):
    env = RacingEnv(track, RNG(11))
    env.reset(False)
    return env


class TestActionCoercion:
    """Test that any input maps onto a valid action index."""

    @pytest.mark.parametrize('value,expected', [
        (None, 4), ('abc', 4), (float('nan'), 4), (float('inf'), 4),
        (0, 0), (8, 8), (9, 0), (-1, 8), (2.7, 2), ('3', 3),
    ])
    def test_coerce(self, value, expected):
        assert coerce_action_index(value) == expected


class TestRayCast:
    """Test ray/segment intersection."""

    def test_hits_perpendicular_segment(self):
        starts = np.array([[10.0, -5.0]])
        ends = np.array([[10.0, 5.0]])
        assert cast_ray(0.0, 0.0, 0.0, starts, ends, 360.0) == pytest.approx(10.0)

    def test_misses_return_max_distance(self):
        """Segments behind the origin, parallel or out of range count as misses."""
        behind = (np.array([[-10.0, -5.0]]), np.array([[-10.0, 5.0]]))
        parallel = (np.array([[0.0, 1.0]]), np.array([[10.0, 1.0]]))
        far = (np.array([[500.0, -5.0]]), np.array([[500.0, 5.0]]))
        for starts, ends in (behind, parallel, far):
            assert cast_ray(0.0, 0.0, 0.0, starts, ends, 360.0) == 360.0

    def test_no_segments(self):
        assert cast_ray(0.0, 0.0, 1.0, np.zeros((0, 2)), np.zeros((0, 2)), 50.0) == 50.0

    def test_nearest_hit_wins(self):
        starts = np.array([[30.0, -5.0], [20.0, -5.0]])
        ends = np.array([[30.0, 5.0], [20.0, 5.0]])
        assert cast_ray(0.0, 0.0, 0.0, starts, ends, 360.0) == pytest.approx(20.0)


class TestReset:
    """Test episode start."""

    def test_observation_shape(self, env):
        """Test observation layout: six header features plus one per sensor."""
        obs = env.reset(False)
        assert obs.shape == (13,)
        assert env.observation_shape == (13,)
        assert env.observation_size == 13
        assert env.action_size == 9
        assert np.all(np.isfinite(obs))

    def test_noiseless_spawn(self, env, track):
        """Without noise the car sits on the start vertex aligned with the track."""
        obs = env.reset(False)
        x, y = track.centerline[track.start_index]
        assert env.car.x == pytest.approx(x)
        assert env.car.y == pytest.approx(y)
        assert env.car.speed == 48.0
        assert obs[0] == pytest.approx(48.0 / 340.0)
        assert obs[1] == pytest.approx(1.0, abs=1e-3)
        assert obs[2] == pytest.approx(0.0, abs=0.03)
        assert obs[3] == pytest.approx(0.0, abs=1e-9)
        assert obs[4] == 0.0
        assert obs[5] == 0.0

    def test_noisy_spawn_within_jitter(self, env):
        heading = env.spawn_pose()[2]
        for _ in range(20):
            env.reset(True)
            assert abs(env.car.heading - heading) <= 0.08
            assert 38.0 <= env.car.speed <= 58.0

    def test_reset_clears_episode_state(self, env):
        for _ in range(5):
            env.step(1)
        env.reset(True)
        assert env.step_count == 0
        assert env.episode_return == 0.0
        assert env.current_lap_count == 0
        assert env.lap_progress == 0.0
        assert not env.done
        assert len(env.trajectory) == 1

    def test_sensor_readings(self, env):
        """The straight-ahead ray hits the outer wall about 195 px away."""
        obs = env.reset(False)
        sensors = obs[6:]
        assert np.all((sensors >= 0.0) & (sensors <= 1.0))
        assert sensors[3] == pytest.approx(0.54, abs=0.01)
        assert len(env.last_sensor_hits) == 7
        assert env.last_sensor_hits[3]['normalized_distance'] == sensors[3]


class TestStep:
    """Test stepping, reward and termination."""

    def test_accelerating_along_track(self, env):
        """Full throttle from the start line stays on track and earns positive reward."""
        for _ in range(30):
            obs, reward, done, info = env.step(1)
            assert reward > 0
            assert not done
            assert not info['off_track']
            assert np.all(np.isfinite(obs))
        assert env.step_count == 30
        assert env.lap_progress > 0

    def test_info_fields(self, env):
        _, _, _, info = env.step(4)
        assert set(info) == {'off_track', 'max_steps_reached', 'progress', 'step', 'episode_return'}
        assert info['step'] == 1
        assert 0.0 <= info['progress'] < 1.0

    def test_episode_return_accumulates(self, env):
        total = 0.0
        for _ in range(10):
            _, reward, _, _ = env.step(4)
            total += reward
        assert env.episode_return == pytest.approx(total)

    def test_off_track_terminates(self, env):
        """Test leaving the track ends the episode with the penalty applied."""
        env.car.y = 20.0
        _, reward, done, info = env.step(4)
        assert info['off_track']
        assert done
        assert reward < -4.0

    def test_step_after_done_is_noop(self, env):
        env.car.y = 20.0
        obs, _, done, _ = env.step(4)
        assert done
        step_count = env.step_count
        next_obs, reward, still_done, _ = env.step(1)
        assert still_done
        assert reward == 0.0
        assert env.step_count == step_count
        np.testing.assert_array_equal(next_obs, obs)

    def test_max_episode_steps(self, env):
        """Step limit is floored at 50 and ends the episode on the last step."""
        env.update_config(max_episode_steps=10)
        assert env.max_episode_steps == 50
        for i in range(50):
            _, _, done, info = env.step(4)
            assert done == (i == 49)
        assert info['max_steps_reached']
        assert not info['off_track']

    def test_invalid_action_is_neutral(self, track):
        a = RacingEnv(track, RNG(5))
        b = RacingEnv(track, RNG(5))
        obs_a = a.step('garbage')[0]
        obs_b = b.step(4)[0]
        np.testing.assert_array_equal(obs_a, obs_b)

    def test_same_seed_same_trajectory(self, track):
        a = RacingEnv(track, RNG(21))
        b = RacingEnv(track, RNG(21))
        for action in [1, 1, 0, 2, 4, 7, 1, 1]:
            obs_a = a.step(action)[0]
            obs_b = b.step(action)[0]
            np.testing.assert_array_equal(obs_a, obs_b)

    def test_trail_is_bounded(self, env):
        assert env.trajectory.maxlen == MAX_TRAIL_POINTS


class TestReward:
    """Test the shaped reward formula."""

    def test_reward_terms(self, env):
        reward = env.compute_reward(0.01, 0.5, 0.0, False)
        assert reward == pytest.approx(1.8 * 0.01 * 120 - 0.5 * 0.5 * 0.04)

    def test_steer_cost(self, env):
        straight = env.compute_reward(0.0, 1.0, 0.0, False)
        turning = env.compute_reward(0.0, 1.0, -1.0, False)
        assert straight - turning == pytest.approx(0.0025)

    def test_off_track_penalty(self, env):
        on_track = env.compute_reward(0.0, 1.0, 0.0, False)
        off_track = env.compute_reward(0.0, 1.0, 0.0, True)
        assert off_track - on_track == pytest.approx(-5.0)

    def test_weights_hot_swap(self, env):
        env.update_config(reward_weights={'progress_weight': 0.0, 'off_track_penalty': -1.0})
        assert env.compute_reward(0.02, 1.0, 0.0, True) == pytest.approx(-1.0)
        assert env.reward_weights['speed_penalty_weight'] == 0.5

    def test_malformed_weights_ignored(self, env):
        """Non-numeric and non-finite weights keep the current value."""
        env.update_config(reward_weights={'progress_weight': 'heavy',
                                          'off_track_penalty': float('nan'),
                                          'speed_penalty_weight': 1.0})
        assert env.reward_weights == {'progress_weight': 1.8, 'off_track_penalty': -5.0,
                                      'speed_penalty_weight': 1.0}
        env.update_config(reward_weights={'off_track_penalty': float('-inf'), 'progress_weight': [1]})
        assert env.reward_weights['off_track_penalty'] == -5.0
        assert env.reward_weights['progress_weight'] == 1.8

    def test_smoothing_clamped(self, env):
        env.update_config(action_smoothing=2.0)
        assert env.action_smoothing == 0.9


class TestLaps:
    """Test lap counting and lap-time records."""

    def test_lap_completion(self, env):
        env.lap_progress = 0.99
        env.lap_elapsed_sec = 12.0
        env._advance_lap(0.02)
        assert env.current_lap_count == 1
        assert env.best_lap_count == 1
        assert env.last_lap_time_sec == pytest.approx(12.0 + env.dt)
        assert env.best_lap_time_sec == env.worst_lap_time_sec == env.last_lap_time_sec
        assert env.lap_progress == pytest.approx(0.01)
        assert env.lap_elapsed_sec == 0.0

    def test_best_and_worst_laps(self, env):
        for elapsed in (20.0, 15.0, 30.0):
            env.lap_progress = 0.99
            env.lap_elapsed_sec = elapsed
            env._advance_lap(0.02)
        assert env.current_lap_count == 3
        assert env.best_lap_time_sec == pytest.approx(15.0 + env.dt)
        assert env.worst_lap_time_sec == pytest.approx(30.0 + env.dt)

    def test_laps_on_tiny_circle(self):
        """Holding right + accel on a tiny, very wide circle keeps orbiting the center."""
        env = RacingEnv(Track.circle(0, 0, 40, width=1000), RNG(2))
        env.reset(False)
        for _ in range(600):
            _, _, done, info = env.step(2)
            assert not info['off_track']
        assert not done
        assert env.current_lap_count >= 3
        assert env.best_lap_count == env.current_lap_count
        assert 0 < env.best_lap_time_sec <= env.worst_lap_time_sec
        assert env.last_lap_time_sec is not None

    def test_backwards_progress_floored(self, env):
        env._advance_lap(-0.3)
        assert env.lap_progress == 0.0
        assert env.current_lap_count == 0

    def test_best_lap_count_survives_reset(self, env):
        env.lap_progress = 0.99
        env._advance_lap(0.02)
        env.reset(True)
        assert env.current_lap_count == 0
        assert env.best_lap_count == 1

    def test_set_track_keeps_best_lap_count(self, env):
        env.best_lap_count = 3
        env.best_lap_time_sec = 12.0
        env.set_track(Track.circle(500, 500, 250))
        assert env.best_lap_count == 3
        assert env.best_lap_time_sec is None
        assert env.step_count == 0

    def test_clear_lap_history(self, env):
        env.best_lap_count = 3
        env.clear_lap_history(reset_best_lap_count=True)
        assert env.best_lap_count == 0

    def test_set_lap_history_discards_invalid(self, env):
        env.set_lap_history({'best_lap_time_sec': -1, 'worst_lap_time_sec': 'slow', 'best_lap_count': 2.7})
        assert env.best_lap_time_sec is None
        assert env.worst_lap_time_sec is None
        assert env.best_lap_count == 2

    def test_set_lap_history(self, env):
        env.set_lap_history({'best_lap_time_sec': 14.5, 'worst_lap_time_sec': 19.0, 'best_lap_count': 4})
        assert env.best_lap_time_sec == 14.5
        assert env.worst_lap_time_sec == 19.0
        assert env.best_lap_count == 4


class TestRenderState:
    """Test the renderer snapshot."""

    def test_render_state_is_a_copy(self, env):
        env.step(1)
        state = env.get_render_state()
        state['car'].x = -1000.0
        state['trail'].append((0.0, 0.0))
        assert env.car.x != -1000.0
        assert len(env.trajectory) == 2

    def test_render_state_fields(self, env):
        state = env.get_render_state()
        assert state['track'] is env.track
        assert len(state['sensor_hits']) == 7
        assert math.isfinite(state['progress'])
        assert state['best_lap_time_sec'] is None

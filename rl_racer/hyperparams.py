"""Hyperparameter table, defaults and clamping."""

import math
from typing import Any, Dict, Mapping, NamedTuple, Optional


class ParamSpec(NamedTuple):
    low: float
    high: float
    default: float
    integer: bool = False


PARAM_SPECS = {
    'learning_rate': ParamSpec(1e-5, 1e-2, 3e-4),
    'gamma': ParamSpec(0.8, 0.999, 0.99),
    'epsilon_start': ParamSpec(0.1, 1.0, 1.0),
    'epsilon_min': ParamSpec(0.01, 0.2, 0.05),
    'epsilon_decay': ParamSpec(0.9, 0.9999, 0.995),
    'batch_size': ParamSpec(16, 256, 64, integer=True),
    'replay_buffer_size': ParamSpec(1000, 50000, 12000, integer=True),
    'target_update_period': ParamSpec(50, 5000, 500, integer=True),
    'training_steps_per_env_step': ParamSpec(1, 10, 2, integer=True),
    'max_episode_steps': ParamSpec(200, 5000, 1200, integer=True),
    'action_smoothing': ParamSpec(0.0, 0.9, 0.45),
    'progress_reward_weight': ParamSpec(0.0, 5.0, 1.8),
    'off_track_penalty': ParamSpec(-10.0, 0.0, -5.0),
    'speed_penalty_weight': ParamSpec(0.0, 2.0, 0.5),
}

DEFAULT_HYPERPARAMS = {name: spec.default for name, spec in PARAM_SPECS.items()}


def _sanitize(spec: ParamSpec, value: Any):
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        numeric = spec.default
    if not math.isfinite(numeric):
        numeric = spec.default

    clamped = max(spec.low, min(spec.high, numeric))
    return int(math.floor(clamped)) if spec.integer else clamped


def clamp_hyperparams(values: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Return a complete, clamped hyperparameter dict.

    Missing or non-finite entries take their default. ``epsilon_min`` never
    exceeds ``epsilon_start``.
    """
    values = values or {}
    result = {name: _sanitize(spec, values.get(name, spec.default))
              for name, spec in PARAM_SPECS.items()}

    if result['epsilon_min'] > result['epsilon_start']:
        result['epsilon_min'] = result['epsilon_start']

    return result

"""Car physics: the discrete action table and the fixed-timestep integrator."""

import math
from dataclasses import dataclass
from typing import Any, NamedTuple, Optional


class Action(NamedTuple):
    steer: int
    throttle: int
    label: str


# Trained policies address actions by position; never reorder this table.
ACTIONS = (
    Action(-1, 1, 'left + accel'),
    Action(0, 1, 'straight + accel'),
    Action(1, 1, 'right + accel'),
    Action(-1, 0, 'left + coast'),
    Action(0, 0, 'straight + coast'),
    Action(1, 0, 'right + coast'),
    Action(-1, -1, 'left + brake'),
    Action(0, -1, 'straight + brake'),
    Action(1, -1, 'right + brake'),
)

NEUTRAL_ACTION_INDEX = 4


@dataclass(frozen=True)
class CarConfig:
    max_speed: float = 340.0
    accel: float = 300.0
    brake: float = 360.0
    drag: float = 1.1
    turn_rate: float = 3.1


CAR_CONFIG = CarConfig()


@dataclass
class CarState:
    """Mutable per-tick car state, owned by a single environment."""
    x: float
    y: float
    heading: float
    speed: float = 0.0
    steer: float = 0.0
    angular_velocity: float = 0.0

    def copy(self) -> 'CarState':
        return CarState(self.x, self.y, self.heading, self.speed,
                        self.steer, self.angular_velocity)


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def coerce_action_index(action_index: Any, action_count: int = len(ACTIONS)) -> int:
    """Map any input onto a valid index in ``[0, action_count)``.

    Non-numeric and non-finite values select the neutral action; everything
    else is floored and wrapped modulo the table size.
    """
    try:
        value = float(action_index)
    except (TypeError, ValueError):
        return NEUTRAL_ACTION_INDEX % action_count
    if not math.isfinite(value):
        return NEUTRAL_ACTION_INDEX % action_count
    return math.floor(value) % action_count


def wrap_angle(angle: float) -> float:
    """Wrap an angle into (-pi, pi]."""
    wrapped = (angle + math.pi) % (2 * math.pi) - math.pi
    if wrapped == -math.pi:
        return math.pi
    return wrapped


def step_car(state: CarState, action: Optional[Action], dt: float,
             action_smoothing: float, config: CarConfig = CAR_CONFIG) -> CarState:
    """Advance ``state`` in place by one timestep and return it."""
    smoothing = clamp(action_smoothing, 0.0, 0.9)
    chosen = action or ACTIONS[NEUTRAL_ACTION_INDEX]

    # first-order actuator lag
    state.steer = state.steer * smoothing + chosen.steer * (1 - smoothing)

    acceleration = 0.0
    if chosen.throttle > 0:
        acceleration = config.accel * chosen.throttle
    elif chosen.throttle < 0:
        acceleration = config.brake * chosen.throttle

    state.speed += acceleration * dt
    state.speed *= max(0.0, 1 - config.drag * dt)
    state.speed = clamp(state.speed, 0.0, config.max_speed)

    # turn authority grows with speed so the car cannot spin in place
    speed_factor = 0.22 + 0.78 * (state.speed / config.max_speed)
    state.angular_velocity = state.steer * config.turn_rate * speed_factor
    state.heading = wrap_angle(state.heading + state.angular_velocity * dt)

    state.x += math.cos(state.heading) * state.speed * dt
    state.y += math.sin(state.heading) * state.speed * dt

    return state

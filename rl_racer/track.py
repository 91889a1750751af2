"""Read-only track geometry: boundaries, arclength and centerline projection."""

import math
from typing import NamedTuple, Optional, Sequence, Tuple

import numpy as np

DEFAULT_TRACK_WIDTH = 112.0
DEFAULT_SAMPLES = 300


class Projection(NamedTuple):
    """Nearest point on the centerline for a world position."""
    progress: float
    distance: float
    signed_distance: float
    tangent_angle: float
    point: Tuple[float, float]
    segment_index: int


def wrapped_progress_delta(previous: float, current: float) -> float:
    """Progress change between two projections, unwrapped through the 1.0 -> 0.0 seam."""
    delta = current - previous
    if delta > 0.5:
        delta -= 1
    elif delta < -0.5:
        delta += 1
    return delta


def _segments(points: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Return (starts, deltas) of the closed polyline through ``points``."""
    starts = points
    ends = np.roll(points, -1, axis=0)
    return starts, ends - starts


def _normals(points: np.ndarray) -> np.ndarray:
    tangents = np.roll(points, -1, axis=0) - np.roll(points, 1, axis=0)
    lengths = np.hypot(tangents[:, 0], tangents[:, 1])
    lengths[lengths == 0] = 1.0
    return np.column_stack((-tangents[:, 1] / lengths, tangents[:, 0] / lengths))


class Track:
    """Closed racing track built from a sampled centerline.

    Exposes the centerline, left/right boundaries, boundary segments for ray
    casts, cumulative arclength per centerline vertex and a nearest-point
    projection. Instances are never mutated after construction.
    """

    def __init__(self, centerline: Sequence[Sequence[float]], width: float = DEFAULT_TRACK_WIDTH,
                 seed: Optional[int] = None):
        self.seed = seed
        self.width = float(width)
        self.centerline = np.asarray(centerline, dtype=np.float64).reshape(-1, 2)

        half_width = self.width * 0.5
        normals = _normals(self.centerline)
        self.left_boundary = self.centerline + normals * half_width
        self.right_boundary = self.centerline - normals * half_width

        self.segment_starts, self.segment_deltas = _segments(self.centerline)
        self.segment_lengths = np.hypot(self.segment_deltas[:, 0], self.segment_deltas[:, 1])

        left_starts, left_deltas = _segments(self.left_boundary)
        right_starts, right_deltas = _segments(self.right_boundary)
        self.boundary_starts = np.vstack((left_starts, right_starts))
        self.boundary_ends = self.boundary_starts + np.vstack((left_deltas, right_deltas))

        self.cumulative_lengths = np.concatenate(([0.0], np.cumsum(self.segment_lengths)))
        self.total_length = float(self.cumulative_lengths[-1]) or 1.0
        self.start_index = int(np.argmin(self.centerline[:, 1])) if len(self.centerline) else 0

    @classmethod
    def circle(cls, center_x: float, center_y: float, radius: float,
               width: float = DEFAULT_TRACK_WIDTH, samples: int = DEFAULT_SAMPLES) -> 'Track':
        """Build a circular track sampled at ``samples`` evenly spaced vertices."""
        angles = np.linspace(0.0, 2 * math.pi, int(samples), endpoint=False)
        points = np.column_stack((center_x + radius * np.cos(angles),
                                  center_y + radius * np.sin(angles)))
        return cls(points, width=width)

    @property
    def half_width(self) -> float:
        return self.width * 0.5

    @property
    def boundary_segments(self):
        """Boundary segments as ``((ax, ay), (bx, by))`` pairs."""
        return [((a[0], a[1]), (b[0], b[1]))
                for a, b in zip(self.boundary_starts, self.boundary_ends)]

    def project(self, x: float, y: float) -> Projection:
        """Project a world position onto the nearest centerline segment."""
        if not len(self.centerline):
            return Projection(0.0, 0.0, 0.0, 0.0, (x, y), 0)

        vx = self.segment_deltas[:, 0]
        vy = self.segment_deltas[:, 1]
        len_sq = vx * vx + vy * vy
        len_sq = np.where(len_sq > 0, len_sq, 1.0)

        wx = x - self.segment_starts[:, 0]
        wy = y - self.segment_starts[:, 1]
        t = np.clip((wx * vx + wy * vy) / len_sq, 0.0, 1.0)

        proj_x = self.segment_starts[:, 0] + vx * t
        proj_y = self.segment_starts[:, 1] + vy * t
        dist_sq = (x - proj_x) ** 2 + (y - proj_y) ** 2

        i = int(np.argmin(dist_sq))
        distance = math.sqrt(dist_sq[i])
        cross = vx[i] * (y - proj_y[i]) - vy[i] * (x - proj_x[i])
        along = self.cumulative_lengths[i] + self.segment_lengths[i] * t[i]

        return Projection(
            progress=float(along / self.total_length) % 1.0,
            distance=distance,
            signed_distance=distance if cross >= 0 else -distance,
            tangent_angle=math.atan2(vy[i], vx[i]),
            point=(float(proj_x[i]), float(proj_y[i])),
            segment_index=i,
        )

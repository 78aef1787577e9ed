"""
Trajectory data model consumed by the longitudinal controller.
"""

import math
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

import numpy as np

from data.formats.data_format import Pose


@dataclass(frozen=True)
class TrajectoryPoint:
    """Single point in trajectory."""
    x: float
    y: float
    z: float = 0.0
    yaw: float = 0.0           # radians
    velocity: float = 0.0      # longitudinal target velocity, m/s (signed)
    acceleration: float = 0.0  # longitudinal target acceleration, m/s^2

    @property
    def pose(self) -> Pose:
        return Pose(x=self.x, y=self.y, z=self.z, yaw=self.yaw)

    @property
    def position(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z])


@dataclass(frozen=True)
class Trajectory:
    """Immutable, ordered sequence of at least two trajectory points."""
    points: Tuple[TrajectoryPoint, ...]

    def __post_init__(self):
        # Accept any iterable but always store a tuple
        object.__setattr__(self, 'points', tuple(self.points))

    def __len__(self) -> int:
        return len(self.points)

    def __getitem__(self, idx: int) -> TrajectoryPoint:
        return self.points[idx]

    @property
    def xy(self) -> np.ndarray:
        """[N, 2] array of planar positions."""
        return np.array([[p.x, p.y] for p in self.points], dtype=float)

    @property
    def length(self) -> float:
        """Total planar arc length (meters)."""
        xy = self.xy
        if len(xy) < 2:
            return 0.0
        return float(np.sum(np.linalg.norm(np.diff(xy, axis=0), axis=1)))

    @classmethod
    def from_points(cls, points: Iterable[TrajectoryPoint]) -> 'Trajectory':
        return cls(points=tuple(points))


def _is_finite_point(point: TrajectoryPoint) -> bool:
    return all(math.isfinite(v) for v in (
        point.x, point.y, point.z, point.yaw, point.velocity, point.acceleration
    ))


def validate_trajectory(trajectory: Optional[Trajectory]) -> Optional[str]:
    """
    Check that a trajectory can be followed.

    Returns:
        None when valid, otherwise a short reason string
    """
    if trajectory is None:
        return "trajectory is missing"
    if len(trajectory.points) < 2:
        return f"trajectory size {len(trajectory.points)} < 2"
    for i, point in enumerate(trajectory.points):
        if not _is_finite_point(point):
            return f"non-finite value at point {i}"
    # Arc length must strictly increase along the trajectory
    seg_lengths = np.linalg.norm(np.diff(trajectory.xy, axis=0), axis=1)
    zero_segments = np.flatnonzero(seg_lengths < 1e-9)
    if zero_segments.size > 0:
        return f"zero-length segment at point {int(zero_segments[0])}"
    return None

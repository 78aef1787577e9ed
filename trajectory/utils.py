"""
Trajectory sampling helpers: nearest-point search, signed arc length,
interpolation around the vehicle position, stop distance and road pitch.
"""

from __future__ import annotations

import math
from typing import Optional, Sequence

import numpy as np

from data.formats.data_format import Pose
from trajectory.models.trajectory import Trajectory, TrajectoryPoint


ZERO_VELOCITY_EPSILON = 1e-3  # m/s


def normalize_angle(angle: float) -> float:
    """Wrap an angle to [-pi, pi]."""
    return float(math.atan2(math.sin(angle), math.cos(angle)))


def _xy(points: Sequence[TrajectoryPoint]) -> np.ndarray:
    return np.array([[p.x, p.y] for p in points], dtype=float)


def find_nearest_index(
    points: Sequence[TrajectoryPoint],
    pose: Pose,
    max_dist: float = math.inf,
    max_yaw: float = math.inf,
) -> Optional[int]:
    """
    Find the closest point whose position and heading are within tolerance.

    Returns:
        Index of the nearest admissible point, or None if no point qualifies
    """
    if len(points) == 0:
        return None
    return _gated_argmin(points, pose.x, pose.y, pose.yaw, max_dist, max_yaw)


def _gated_argmin(points: Sequence[TrajectoryPoint], x: float, y: float, yaw: float,
                  max_dist: float, max_yaw: float) -> Optional[int]:
    xy = _xy(points)
    squared_dist = np.sum((xy - np.array([x, y])) ** 2, axis=1)
    yaws = np.array([p.yaw for p in points], dtype=float)
    yaw_dev = np.abs(np.arctan2(np.sin(yaws - yaw), np.cos(yaws - yaw)))

    admissible = (squared_dist <= max_dist * max_dist) & (yaw_dev <= max_yaw)
    if not np.any(admissible):
        return None
    masked = np.where(admissible, squared_dist, np.inf)
    return int(np.argmin(masked))


def calc_longitudinal_offset_to_segment(
    points: Sequence[TrajectoryPoint], seg_idx: int, x: float, y: float
) -> float:
    """Signed projection of (x, y) onto segment [seg_idx, seg_idx + 1], from its start."""
    p_front = points[seg_idx]
    p_back = points[seg_idx + 1]
    segment_vec = np.array([p_back.x - p_front.x, p_back.y - p_front.y])
    target_vec = np.array([x - p_front.x, y - p_front.y])
    segment_len = float(np.linalg.norm(segment_vec))
    if segment_len < 1e-9:
        return 0.0
    return float(np.dot(segment_vec, target_vec) / segment_len)


def find_nearest_segment_index(
    points: Sequence[TrajectoryPoint],
    x: float,
    y: float,
    yaw: float = 0.0,
    max_dist: float = math.inf,
    max_yaw: float = math.inf,
) -> int:
    """
    Index of the segment start closest to (x, y), in [0, len(points) - 2].

    Points outside the distance/yaw gates are skipped. When no point passes
    the gates, the plain nearest point is used.
    """
    nearest_idx = _gated_argmin(points, x, y, yaw, max_dist, max_yaw)
    if nearest_idx is None:
        nearest_idx = _gated_argmin(points, x, y, yaw, math.inf, math.inf)
    if nearest_idx == 0:
        return 0
    if nearest_idx == len(points) - 1:
        return len(points) - 2
    if calc_longitudinal_offset_to_segment(points, nearest_idx, x, y) <= 0.0:
        return nearest_idx - 1
    return nearest_idx


def calc_arc_length_between(points: Sequence[TrajectoryPoint], src_idx: int, dst_idx: int) -> float:
    """Signed arc length from point src_idx to point dst_idx."""
    if src_idx == dst_idx:
        return 0.0
    lo, hi = min(src_idx, dst_idx), max(src_idx, dst_idx)
    xy = _xy(points[lo:hi + 1])
    length = float(np.sum(np.linalg.norm(np.diff(xy, axis=0), axis=1)))
    return length if src_idx < dst_idx else -length


def calc_signed_arc_length(points: Sequence[TrajectoryPoint], x: float, y: float, dst_idx: int,
                           yaw: float = 0.0, max_dist: float = math.inf, max_yaw: float = math.inf) -> float:
    """Signed arc length from the projection of (x, y) to point dst_idx."""
    src_seg_idx = find_nearest_segment_index(points, x, y, yaw, max_dist, max_yaw)
    length_on_traj = calc_arc_length_between(points, src_seg_idx, dst_idx)
    src_offset = calc_longitudinal_offset_to_segment(points, src_seg_idx, x, y)
    return length_on_traj - src_offset


def search_zero_velocity_index(points: Sequence[TrajectoryPoint]) -> Optional[int]:
    """First index whose target velocity is (numerically) zero."""
    for i, point in enumerate(points):
        if abs(point.velocity) < ZERO_VELOCITY_EPSILON:
            return i
    return None


def calc_stop_distance(pose: Pose, trajectory: Trajectory,
                       max_dist: float = math.inf, max_yaw: float = math.inf) -> float:
    """
    Signed distance from the pose to the first zero-velocity point.

    Falls back to the distance to the trajectory end when no stop point
    exists. Negative once the stop point has been passed.
    """
    points = trajectory.points
    stop_idx = search_zero_velocity_index(points)
    end_idx = stop_idx if stop_idx is not None else len(points) - 1
    stop_dist = calc_signed_arc_length(points, pose.x, pose.y, end_idx, pose.yaw, max_dist, max_yaw)
    if math.isnan(stop_dist):
        return 0.0
    return stop_dist


def calc_pose_after_time_delay(pose: Pose, delay_time: float, current_vel: float) -> Pose:
    """Advance a pose along its heading by the distance travelled during the delay."""
    running_distance = delay_time * current_vel
    return Pose(
        x=pose.x + running_distance * math.cos(pose.yaw),
        y=pose.y + running_distance * math.sin(pose.yaw),
        z=pose.z,
        yaw=pose.yaw,
        pitch=pose.pitch,
    )


def _lerp(a: float, b: float, ratio: float) -> float:
    return a + (b - a) * ratio


def lerp_trajectory_point(points: Sequence[TrajectoryPoint], pose: Pose,
                          max_dist: float = math.inf, max_yaw: float = math.inf) -> TrajectoryPoint:
    """Linearly interpolate a trajectory point at the projection of the pose."""
    seg_idx = find_nearest_segment_index(points, pose.x, pose.y, pose.yaw, max_dist, max_yaw)
    len_to_interpolated = calc_longitudinal_offset_to_segment(points, seg_idx, pose.x, pose.y)
    len_segment = calc_arc_length_between(points, seg_idx, seg_idx + 1)
    ratio = 0.0 if len_segment <= 0.0 else min(1.0, max(0.0, len_to_interpolated / len_segment))

    front = points[seg_idx]
    back = points[seg_idx + 1]
    return TrajectoryPoint(
        x=_lerp(front.x, back.x, ratio),
        y=_lerp(front.y, back.y, ratio),
        z=_lerp(front.z, back.z, ratio),
        yaw=normalize_angle(front.yaw + normalize_angle(back.yaw - front.yaw) * ratio),
        velocity=_lerp(front.velocity, back.velocity, ratio),
        acceleration=_lerp(front.acceleration, back.acceleration, ratio),
    )


def calc_interpolated_target_value(trajectory: Trajectory, pose: Pose, nearest_idx: int,
                                   max_dist: float = math.inf, max_yaw: float = math.inf) -> TrajectoryPoint:
    """
    Target point for the given pose.

    Outside the trajectory the edge point is used, inside it the two
    surrounding points are interpolated.
    """
    points = trajectory.points
    if len(points) == 1:
        return points[0]

    gates = (pose.yaw, max_dist, max_yaw)
    if nearest_idx == 0 and calc_signed_arc_length(points, pose.x, pose.y, 0, *gates) > 0.0:
        return points[0]
    last_idx = len(points) - 1
    if nearest_idx == last_idx and calc_signed_arc_length(points, pose.x, pose.y, last_idx, *gates) < 0.0:
        return points[last_idx]

    return lerp_trajectory_point(points, pose, max_dist, max_yaw)


def calc_elevation_angle(p_from: TrajectoryPoint, p_to: TrajectoryPoint) -> float:
    """Angle of the line p_from -> p_to above the horizontal plane."""
    dz = p_to.z - p_from.z
    dist_2d = math.hypot(p_to.x - p_from.x, p_to.y - p_from.y)
    return math.atan2(dz, dist_2d)


def get_pitch_by_traj(trajectory: Trajectory, nearest_idx: int, wheel_base: float) -> float:
    """
    Road pitch from trajectory geometry, between the rear axle (nearest point)
    and a point one wheel base ahead.

    Uses the vehicle pitch convention (climbing = negative).
    """
    points = trajectory.points
    if len(points) <= 1:
        return 0.0

    nearest = points[nearest_idx]
    for i in range(nearest_idx + 1, len(points)):
        if math.hypot(points[i].x - nearest.x, points[i].y - nearest.y) > wheel_base:
            return -calc_elevation_angle(nearest, points[i])

    # Close to the goal: use the last wheel-base-long stretch
    last = points[-1]
    for i in range(len(points) - 1, 0, -1):
        if math.hypot(last.x - points[i].x, last.y - points[i].y) > wheel_base:
            return -calc_elevation_angle(points[i], last)

    # Trajectory shorter than the wheel base
    return -calc_elevation_angle(points[0], last)

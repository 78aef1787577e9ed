"""
Smooth-stop deceleration profile.

Open-loop acceleration schedule used while approaching a stop point. The
strong deceleration is fixed when the profile is initialized (from the
velocity and distance predicted after the actuation delay) and the profile
then switches between a weak and a strong deceleration depending on how
soon the vehicle is expected to stop.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence, Tuple

import numpy as np


logger = logging.getLogger(__name__)

SETTLING_TIME = 0.5  # seconds of weak braking kept after the vehicle stops


class SmoothStopPhase(Enum):
    FAST_APPROACH = "fast_approach"  # strong_acc, vehicle will not stop soon enough
    RUNNING = "running"              # weak_acc, vehicle is about to stop
    SETTLING = "settling"            # weak_acc, just stopped
    WEAK_STOP = "weak_stop"          # slightly past the stop point
    STRONG_STOP = "strong_stop"      # well past the stop point, or at rest


@dataclass(frozen=True)
class SmoothStopParams:
    """Smooth-stop tuning values. Accelerations are negative (m/s^2)."""
    max_strong_acc: float = -0.5
    min_strong_acc: float = -0.8
    weak_acc: float = -0.3
    weak_stop_acc: float = -0.8
    strong_stop_acc: float = -3.4
    max_fast_vel: float = 0.5      # m/s
    min_running_vel: float = 0.01  # m/s
    min_running_acc: float = 0.01  # m/s^2
    weak_stop_time: float = 0.8    # s
    weak_stop_dist: float = -0.3   # m
    strong_stop_dist: float = -0.5  # m


class SmoothStop:
    """Staged open-loop deceleration toward a stop point."""

    def __init__(self, params: SmoothStopParams = SmoothStopParams()):
        self.params = params
        self.strong_acc: Optional[float] = None
        self.weak_acc_time: Optional[float] = None
        self.phase: Optional[SmoothStopPhase] = None
        self.phase_start_time: Optional[float] = None

    @property
    def is_initialized(self) -> bool:
        return self.strong_acc is not None

    def set_params(self, params: SmoothStopParams):
        self.params = params

    def init(self, pred_vel_in_target: float, pred_stop_dist: float, now: float):
        """
        Start a new stopping maneuver.

        Args:
            pred_vel_in_target: Velocity predicted after the actuation delay (m/s)
            pred_stop_dist: Stop distance predicted after the actuation delay (m)
            now: Current time (seconds)
        """
        p = self.params
        self.weak_acc_time = now
        self.phase = None
        self.phase_start_time = now

        if pred_stop_dist < np.finfo(float).eps:
            # Stop point is already at (or behind) the vehicle
            self.strong_acc = p.min_strong_acc
        else:
            strong_acc = -(pred_vel_in_target ** 2) / (2.0 * pred_stop_dist)
            self.strong_acc = float(min(max(strong_acc, p.min_strong_acc), p.max_strong_acc))
        logger.debug(
            f"[SMOOTH_STOP] init: pred_vel={pred_vel_in_target:.3f}, "
            f"pred_stop_dist={pred_stop_dist:.3f}, strong_acc={self.strong_acc:.3f}"
        )

    def reset(self):
        """Discard the maneuver state."""
        self.strong_acc = None
        self.weak_acc_time = None
        self.phase = None
        self.phase_start_time = None

    @staticmethod
    def calc_time_to_stop(vel_hist: Sequence[Tuple[float, float]], now: float) -> Optional[float]:
        """
        Estimate when the velocity reaches zero by fitting v = a * t + b.

        Args:
            vel_hist: (timestamp, velocity) samples
            now: Current time, the origin of t

        Returns:
            Seconds until stop, or None if it cannot be estimated
        """
        if len(vel_hist) == 0:
            return None

        hist = np.asarray(vel_hist, dtype=float)
        t = hist[:, 0] - now
        v = hist[:, 1]
        n = float(len(hist))
        mean_t = float(np.mean(t))
        mean_v = float(np.mean(v))
        sum_tv = float(np.sum(t * v))
        sum_tt = float(np.sum(t * t))

        denominator = n * mean_t * mean_t - sum_tt
        if abs(denominator) < np.finfo(float).eps:
            return None

        a = (n * mean_t * mean_v - sum_tv) / denominator
        b = mean_v - a * mean_t
        if abs(a) < np.finfo(float).eps:
            return None

        time_to_stop = -b / a
        if time_to_stop > 0.0:
            return float(time_to_stop)
        return None

    def calculate(
        self,
        stop_dist: float,
        current_vel: float,
        current_acc: float,
        vel_hist: Sequence[Tuple[float, float]],
        delay_time: float,
        now: float,
    ) -> float:
        """
        Acceleration command for this cycle.

        Args:
            stop_dist: Signed distance to the stop point (m)
            current_vel: Measured velocity (m/s)
            current_acc: Measured acceleration (m/s^2)
            vel_hist: Recent (timestamp, velocity) samples
            delay_time: Actuation delay (s)
            now: Current time (s)
        """
        if not self.is_initialized:
            raise RuntimeError("SmoothStop.calculate called before init")

        phase, acc = self._select(stop_dist, current_vel, current_acc, vel_hist, delay_time, now)
        if phase is not self.phase:
            self.phase = phase
            self.phase_start_time = now
        return acc

    def _select(self, stop_dist, current_vel, current_acc, vel_hist, delay_time, now):
        p = self.params
        time_to_stop = self.calc_time_to_stop(vel_hist, now)

        is_fast_vel = abs(current_vel) > p.max_fast_vel
        is_running = abs(current_vel) > p.min_running_vel or abs(current_acc) > p.min_running_acc

        # Past the stop point (stop_dist is negative here)
        if stop_dist < p.strong_stop_dist:
            return SmoothStopPhase.STRONG_STOP, p.strong_stop_acc
        if stop_dist < p.weak_stop_dist:
            return SmoothStopPhase.WEAK_STOP, p.weak_stop_acc

        if is_running:
            if time_to_stop is not None and time_to_stop > p.weak_stop_time + delay_time:
                return SmoothStopPhase.FAST_APPROACH, self.strong_acc
            if time_to_stop is None and is_fast_vel:
                return SmoothStopPhase.FAST_APPROACH, self.strong_acc

            self.weak_acc_time = now
            return SmoothStopPhase.RUNNING, p.weak_acc

        if now - self.weak_acc_time < SETTLING_TIME:
            return SmoothStopPhase.SETTLING, p.weak_acc

        return SmoothStopPhase.STRONG_STOP, p.strong_stop_acc

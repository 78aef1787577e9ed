"""
PID controller for longitudinal velocity feedback.
"""

from dataclasses import dataclass
from typing import Tuple

import numpy as np


@dataclass(frozen=True)
class PIDContributions:
    """Individual P/I/D terms of the last output (for diagnostics)."""
    p: float = 0.0
    i: float = 0.0
    d: float = 0.0


@dataclass(frozen=True)
class PIDLimits:
    """Output and per-term limits (m/s^2)."""
    max_out: float = 1.0
    min_out: float = -1.0
    max_p: float = 1.0
    min_p: float = -1.0
    max_i: float = 0.3
    min_i: float = -0.3
    max_d: float = 0.0
    min_d: float = 0.0


class PIDController:
    """
    PID controller with per-term clamping and integral windup protection.
    """

    def __init__(self, kp: float, ki: float, kd: float, limits: PIDLimits = PIDLimits()):
        """
        Initialize PID controller.

        Args:
            kp: Proportional gain
            ki: Integral gain
            kd: Derivative gain
            limits: Output and per-term limits
        """
        self.set_gains(kp, ki, kd)
        self.set_limits(limits)

        self.integral = 0.0
        self.prev_error = 0.0
        self.is_first_time = True
        self.last_contributions = PIDContributions()

    def set_gains(self, kp: float, ki: float, kd: float):
        self.kp = kp
        self.ki = ki
        self.kd = kd

    def set_limits(self, limits: PIDLimits):
        self.limits = limits

    def calculate(self, error: float, dt: float, enable_integration: bool) -> Tuple[float, PIDContributions]:
        """
        Update PID controller.

        Args:
            error: Current error
            dt: Time step (seconds, positive)
            enable_integration: Accumulate the integral term on this call

        Returns:
            (control output, P/I/D contributions)
        """
        lim = self.limits

        # Proportional term
        p_term = float(np.clip(self.kp * error, lim.min_p, lim.max_p))

        # Integral term (anti-windup: the accumulator is bounded by the I-term limits)
        if enable_integration:
            self.integral += error * dt
            if self.ki != 0.0:
                bounds = sorted((lim.min_i / self.ki, lim.max_i / self.ki))
                self.integral = float(np.clip(self.integral, bounds[0], bounds[1]))
        i_term = self.ki * self.integral

        # Derivative term
        if self.is_first_time or dt <= 0.0:
            error_differential = 0.0
            self.is_first_time = False
        else:
            error_differential = (error - self.prev_error) / dt
        d_term = float(np.clip(self.kd * error_differential, lim.min_d, lim.max_d))

        self.prev_error = error
        self.last_contributions = PIDContributions(p=p_term, i=i_term, d=d_term)

        output = float(np.clip(p_term + i_term + d_term, lim.min_out, lim.max_out))
        return output, self.last_contributions

    def reset(self):
        """Reset controller state."""
        self.integral = 0.0
        self.prev_error = 0.0
        self.is_first_time = True

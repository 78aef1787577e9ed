"""
Numeric filter primitives shared by the longitudinal controller.
"""

import math
from typing import Optional


GRAVITY = 9.81  # m/s^2


def clamp(value: float, lower: float, upper: float) -> float:
    """Clamp value into [lower, upper]."""
    return float(max(lower, min(upper, value)))


def apply_diff_limit_filter(input_val: float, prev_val: float, dt: float,
                            max_val: float, min_val: Optional[float] = None) -> float:
    """
    Limit the rate of change of a signal between two cycles.

    Args:
        input_val: Desired value for this cycle
        prev_val: Value emitted on the previous cycle
        dt: Cycle time step (seconds, must be positive)
        max_val: Maximum rate of change (per second)
        min_val: Minimum rate of change (per second). When omitted, the limit
            is symmetric: [-|max_val|, |max_val|].

    Returns:
        Rate-limited value
    """
    if dt <= 0.0:
        raise ValueError(f"dt must be positive, got {dt}")
    if min_val is None:
        limit = abs(max_val)
        max_val, min_val = limit, -limit
    diff_raw = (input_val - prev_val) / dt
    diff = clamp(diff_raw, min_val, max_val)
    return float(prev_val + diff * dt)


def apply_slope_compensation(input_acc: float, pitch: float, shift_sign: float,
                             min_pitch: float, max_pitch: float) -> float:
    """
    Offset an acceleration command by the gravity component along the road.

    Pitch is positive when the vehicle nose points down, so a climbing vehicle
    driving forward (negative pitch) receives a larger command.

    Args:
        input_acc: Acceleration command before compensation (m/s^2)
        pitch: Road pitch (radians)
        shift_sign: -1 for forward, +1 for reverse, 0 for neutral
        min_pitch: Lower pitch bound (radians)
        max_pitch: Upper pitch bound (radians)
    """
    pitch_limited = clamp(pitch, min_pitch, max_pitch)
    return float(input_acc + shift_sign * GRAVITY * math.sin(pitch_limited))


class LowpassFilter1d:
    """
    First-order low-pass filter.

    y[k] = gain * y[k-1] + (1 - gain) * u[k]
    A gain close to 1.0 smooths heavily, 0.0 passes the input through.
    """

    def __init__(self, x: float = 0.0, gain: float = 0.0):
        if not 0.0 <= gain <= 1.0:
            raise ValueError(f"low-pass gain must be in [0, 1], got {gain}")
        self.x = float(x)
        self.gain = float(gain)

    def filter(self, u: float) -> float:
        """Feed one sample and return the filtered value."""
        self.x = self.gain * self.x + (1.0 - self.gain) * float(u)
        return self.x

    def reset(self, x: float = 0.0):
        """Reset filter state."""
        self.x = float(x)

    def get_value(self) -> float:
        return self.x

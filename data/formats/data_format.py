"""
Data format definitions for the longitudinal controller.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ControlState(Enum):
    """Longitudinal control state. Exactly one is active at a time."""
    DRIVE = 0
    STOPPING = 1
    STOPPED = 2
    EMERGENCY = 3


class Shift(Enum):
    """Direction implied by the trajectory target velocity."""
    FORWARD = 0
    REVERSE = 1
    NEUTRAL = 2

    @property
    def slope_sign(self) -> float:
        # Acceleration commands are positive when speeding up in either direction
        if self is Shift.FORWARD:
            return -1.0
        if self is Shift.REVERSE:
            return 1.0
        return 0.0


@dataclass(frozen=True)
class Pose:
    """Vehicle or trajectory pose in the trajectory frame."""
    x: float
    y: float
    z: float = 0.0
    yaw: float = 0.0    # radians
    pitch: float = 0.0  # radians, positive = nose down


@dataclass(frozen=True)
class OdometrySample:
    """Longitudinal velocity measurement."""
    timestamp: float  # seconds
    velocity: float   # m/s, signed


@dataclass(frozen=True)
class Motion:
    """Velocity/acceleration pair (m/s, m/s^2)."""
    velocity: float = 0.0
    acceleration: float = 0.0


@dataclass(frozen=True)
class ControlData:
    """Per-cycle snapshot assembled by the controller before the state update."""
    dt: float
    current_motion: Motion
    nearest_idx: Optional[int] = None
    shift: Shift = Shift.FORWARD
    stop_dist: float = 0.0
    slope_angle: float = 0.0
    is_far_from_trajectory: bool = False


@dataclass(frozen=True)
class LongitudinalCommand:
    """Output command, one per successful cycle."""
    timestamp: float
    velocity: float      # m/s
    acceleration: float  # m/s^2


@dataclass
class LongitudinalDiagnostics:
    """Diagnostic scalars for one cycle. Carry no control semantics."""
    timestamp: float
    dt: float = 0.0
    control_state: Optional[ControlState] = None
    shift: Optional[Shift] = None
    stop_dist: Optional[float] = None
    is_far_from_trajectory: bool = False
    # Measured motion
    current_vel: float = 0.0
    calculated_acc: float = 0.0
    # Targets
    target_vel: Optional[float] = None
    target_acc: Optional[float] = None
    nearest_vel: Optional[float] = None
    nearest_acc: Optional[float] = None
    error_vel: Optional[float] = None
    predicted_vel: Optional[float] = None
    # Velocity feedback
    error_vel_filtered: Optional[float] = None
    acc_cmd_pid_applied: Optional[float] = None
    acc_cmd_fb_p_contribution: Optional[float] = None
    acc_cmd_fb_i_contribution: Optional[float] = None
    acc_cmd_fb_d_contribution: Optional[float] = None
    # Smooth stop
    smooth_stop_phase: Optional[str] = None
    # Output shaping
    acc_cmd_raw: Optional[float] = None
    acc_cmd_acc_limited: Optional[float] = None
    acc_cmd_slope_applied: Optional[float] = None
    acc_cmd_jerk_limited: Optional[float] = None
    acc_cmd_published: Optional[float] = None
    # Pitch
    slope_angle: Optional[float] = None
    pitch_lpf_rad: Optional[float] = None
    pitch_raw_rad: Optional[float] = None
    pitch_raw_traj_rad: Optional[float] = None

"""
Configuration for the longitudinal controller.

The controller reads one immutable LongitudinalControllerConfig snapshot per
cycle. Live updates build a new snapshot and swap it in whole.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

import yaml

from control.pid_controller import PIDLimits
from control.smooth_stop import SmoothStopParams


logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "longitudinal_controller.yaml"


@dataclass(frozen=True)
class LongitudinalControllerConfig:
    """All longitudinal controller parameters."""

    # Timing
    ctrl_period: float = 0.03  # s
    delay_compensation_time: float = 0.17  # s
    wheel_base: float = 2.79  # m

    # Feature switches
    enable_smooth_stop: bool = True
    enable_overshoot_emergency: bool = True
    enable_large_tracking_error_emergency: bool = True
    enable_slope_compensation: bool = False
    enable_keep_stopped_until_steer_convergence: bool = True

    # State transition
    drive_state_stop_dist: float = 0.5  # m
    drive_state_offset_stop_dist: float = 1.0  # m
    stopping_state_stop_dist: float = 0.49  # m
    stopped_state_entry_duration_time: float = 0.1  # s
    stopped_state_entry_vel: float = 0.1  # m/s
    stopped_state_entry_acc: float = 0.1  # m/s^2
    emergency_state_overshoot_stop_dist: float = 1.5  # m
    emergency_state_traj_trans_dev: float = 3.0  # m
    emergency_state_traj_rot_dev: float = 0.7  # rad

    # Drive state: velocity feedback
    kp: float = 1.0
    ki: float = 0.1
    kd: float = 0.0
    max_out: float = 1.0
    min_out: float = -1.0
    max_p_effort: float = 1.0
    min_p_effort: float = -1.0
    max_i_effort: float = 0.3
    min_i_effort: float = -0.3
    max_d_effort: float = 0.0
    min_d_effort: float = 0.0
    lpf_vel_error_gain: float = 0.9
    current_vel_threshold_pid_integration: float = 0.5  # m/s
    enable_brake_keeping_before_stop: bool = False
    brake_keeping_acc: float = -0.2  # m/s^2

    # Stopping state: smooth stop
    smooth_stop_max_strong_acc: float = -0.5
    smooth_stop_min_strong_acc: float = -0.8
    smooth_stop_weak_acc: float = -0.3
    smooth_stop_weak_stop_acc: float = -0.8
    smooth_stop_strong_stop_acc: float = -3.4
    smooth_stop_max_fast_vel: float = 0.5
    smooth_stop_min_running_vel: float = 0.01
    smooth_stop_min_running_acc: float = 0.01
    smooth_stop_weak_stop_time: float = 0.8
    smooth_stop_weak_stop_dist: float = -0.3
    smooth_stop_strong_stop_dist: float = -0.5

    # Stopped state
    stopped_vel: float = 0.0
    stopped_acc: float = -3.4
    stopped_jerk: float = -5.0

    # Emergency state
    emergency_vel: float = 0.0
    emergency_acc: float = -5.0
    emergency_jerk: float = -3.0

    # Output limits
    max_acc: float = 3.0
    min_acc: float = -5.0
    max_jerk: float = 2.0
    min_jerk: float = -5.0

    # Slope compensation
    use_trajectory_for_pitch_calculation: bool = False
    lpf_pitch_gain: float = 0.95
    max_pitch_rad: float = 0.1
    min_pitch_rad: float = -0.1

    # Measured acceleration smoothing
    lpf_acc_gain: float = 0.2

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, float) and not math.isfinite(value):
                raise ValueError(f"{f.name} must be finite, got {value}")
        if self.ctrl_period <= 0.0:
            raise ValueError(f"ctrl_period must be positive, got {self.ctrl_period}")
        if self.delay_compensation_time < 0.0:
            raise ValueError("delay_compensation_time must be non-negative")
        if self.wheel_base <= 0.0:
            raise ValueError("wheel_base must be positive")
        if self.min_acc > self.max_acc:
            raise ValueError(f"min_acc {self.min_acc} > max_acc {self.max_acc}")
        if self.min_jerk > self.max_jerk:
            raise ValueError(f"min_jerk {self.min_jerk} > max_jerk {self.max_jerk}")
        if self.min_pitch_rad > self.max_pitch_rad:
            raise ValueError(f"min_pitch_rad {self.min_pitch_rad} > max_pitch_rad {self.max_pitch_rad}")
        if self.min_out > self.max_out:
            raise ValueError(f"min_out {self.min_out} > max_out {self.max_out}")
        if self.smooth_stop_min_strong_acc > self.smooth_stop_max_strong_acc:
            raise ValueError("smooth_stop_min_strong_acc must not exceed smooth_stop_max_strong_acc")
        for name in ("smooth_stop_weak_acc", "smooth_stop_weak_stop_acc", "smooth_stop_min_strong_acc"):
            if getattr(self, name) < self.smooth_stop_strong_stop_acc:
                raise ValueError(f"{name} must not be stronger than smooth_stop_strong_stop_acc")
        for name in ("lpf_vel_error_gain", "lpf_pitch_gain", "lpf_acc_gain"):
            gain = getattr(self, name)
            if not 0.0 <= gain <= 1.0:
                raise ValueError(f"{name} must be in [0, 1], got {gain}")

    @property
    def pid_limits(self) -> PIDLimits:
        return PIDLimits(
            max_out=self.max_out, min_out=self.min_out,
            max_p=self.max_p_effort, min_p=self.min_p_effort,
            max_i=self.max_i_effort, min_i=self.min_i_effort,
            max_d=self.max_d_effort, min_d=self.min_d_effort,
        )

    @property
    def smooth_stop_params(self) -> SmoothStopParams:
        return SmoothStopParams(
            max_strong_acc=self.smooth_stop_max_strong_acc,
            min_strong_acc=self.smooth_stop_min_strong_acc,
            weak_acc=self.smooth_stop_weak_acc,
            weak_stop_acc=self.smooth_stop_weak_stop_acc,
            strong_stop_acc=self.smooth_stop_strong_stop_acc,
            max_fast_vel=self.smooth_stop_max_fast_vel,
            min_running_vel=self.smooth_stop_min_running_vel,
            min_running_acc=self.smooth_stop_min_running_acc,
            weak_stop_time=self.smooth_stop_weak_stop_time,
            weak_stop_dist=self.smooth_stop_weak_stop_dist,
            strong_stop_dist=self.smooth_stop_strong_stop_dist,
        )

    @property
    def velocity_history_size(self) -> int:
        """Number of velocity samples kept (0.5 s worth of cycles)."""
        return max(2, int(0.5 / self.ctrl_period))


def load_config(config_path: Optional[str] = None) -> dict:
    """Load configuration from YAML file or use defaults."""
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH
    else:
        config_path = Path(config_path)

    if config_path.exists():
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f) or {}
        logger.info(f"[CONFIG] Loaded configuration from {config_path}")
        return config
    else:
        logger.warning(f"[CONFIG] Config file not found at {config_path}, using defaults")
        return {}


def build_longitudinal_config(config: dict) -> LongitudinalControllerConfig:
    """
    Build a LongitudinalControllerConfig from a parsed config dictionary.

    Values are read from config['control']['longitudinal']; missing keys keep
    their defaults and unknown keys are ignored with a warning.
    """
    section = (config or {}).get('control', {}).get('longitudinal', {}) or {}
    defaults = LongitudinalControllerConfig()
    known = {f.name for f in fields(LongitudinalControllerConfig)}

    unknown = sorted(set(section) - known)
    if unknown:
        logger.warning(f"[CONFIG] Ignoring unknown longitudinal parameters: {unknown}")

    values = {}
    for name in known:
        default = getattr(defaults, name)
        raw = section.get(name, default)
        values[name] = bool(raw) if isinstance(default, bool) else float(raw)
    return LongitudinalControllerConfig(**values)

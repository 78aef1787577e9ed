"""
Longitudinal controller: per-cycle orchestration.

Each call to run() assembles a ControlData snapshot from the latest inputs,
updates the control state, generates the raw command for that state and
shapes it (acceleration clamp -> slope compensation -> jerk limit).

All mutable control state (PID integral, filters, command history, control
state) is owned by one LongitudinalController instance and only touched from
the thread that calls run(). Configuration may be replaced from any thread.
"""

import dataclasses
import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

from control.delay_predictor import CommandHistory, predict_velocity
from control.filters import (
    LowpassFilter1d,
    apply_diff_limit_filter,
    apply_slope_compensation,
    clamp,
)
from control.longitudinal_config import LongitudinalControllerConfig
from control.pid_controller import PIDController
from control.smooth_stop import SmoothStop
from control.state_machine import ControlStateMachine, StateTransition
from data.formats.data_format import (
    ControlData,
    ControlState,
    LongitudinalCommand,
    LongitudinalDiagnostics,
    Motion,
    OdometrySample,
    Pose,
    Shift,
)
from trajectory.models.trajectory import Trajectory, validate_trajectory
from trajectory.utils import (
    calc_interpolated_target_value,
    calc_pose_after_time_delay,
    calc_stop_distance,
    find_nearest_index,
    get_pitch_by_traj,
    search_zero_velocity_index,
)


logger = logging.getLogger(__name__)

LOG_THROTTLE_PERIOD = 3.0  # s
SHIFT_VELOCITY_EPSILON = 1e-5  # m/s
MIN_ODOMETRY_DT = 1e-3  # s


class LongitudinalController:
    """
    Longitudinal (speed/acceleration) controller for trajectory following.
    """

    def __init__(self, config: Optional[LongitudinalControllerConfig] = None,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initialize longitudinal controller.

        Args:
            config: Initial parameter snapshot (defaults when omitted)
            clock: Time source in seconds, used when run() is not given a time
        """
        self._config_lock = threading.Lock()
        self._config = config if config is not None else LongitudinalControllerConfig()
        self._applied_config: Optional[LongitudinalControllerConfig] = None
        self._clock = clock

        # Inputs
        self._trajectory: Optional[Trajectory] = None
        self._current_odometry: Optional[OdometrySample] = None
        self._prev_odometry: Optional[OdometrySample] = None
        self._current_pose: Optional[Pose] = None
        self._is_steer_converged = False

        # Control state
        cfg = self._config
        self.state_machine = ControlStateMachine(ControlState.STOPPED)
        self.pid_vel = PIDController(cfg.kp, cfg.ki, cfg.kd, cfg.pid_limits)
        self.lpf_vel_error = LowpassFilter1d(0.0, cfg.lpf_vel_error_gain)
        self.lpf_pitch = LowpassFilter1d(0.0, cfg.lpf_pitch_gain)
        self.lpf_acc = LowpassFilter1d(0.0, cfg.lpf_acc_gain)
        self.smooth_stop = SmoothStop(cfg.smooth_stop_params)
        self.command_history = CommandHistory()
        self.vel_hist: List[Tuple[float, float]] = []
        self.prev_shift = Shift.FORWARD
        self.prev_raw_ctrl_cmd = Motion()
        self.prev_ctrl_cmd = Motion()
        self.prev_control_time: Optional[float] = None

        self.diagnostics: Optional[LongitudinalDiagnostics] = None
        self._diag: Optional[LongitudinalDiagnostics] = None
        self._last_log_times: Dict[str, float] = {}

        self._command_generators = {
            ControlState.DRIVE: self._calc_drive_cmd,
            ControlState.STOPPING: self._calc_stopping_cmd,
            ControlState.STOPPED: self._calc_stopped_cmd,
            ControlState.EMERGENCY: self._calc_emergency_cmd,
        }

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def config(self) -> LongitudinalControllerConfig:
        with self._config_lock:
            return self._config

    def update_config(self, config: LongitudinalControllerConfig):
        """Replace the whole parameter snapshot. Takes effect on the next cycle."""
        if not isinstance(config, LongitudinalControllerConfig):
            raise TypeError(f"expected LongitudinalControllerConfig, got {type(config).__name__}")
        with self._config_lock:
            self._config = config
        logger.info("[CONFIG] Longitudinal parameters replaced")

    def update_parameters(self, **changes) -> LongitudinalControllerConfig:
        """
        Change individual parameters atomically.

        Raises:
            TypeError: unknown parameter name
            ValueError: resulting configuration is invalid (nothing is changed)
        """
        with self._config_lock:
            new_config = dataclasses.replace(self._config, **changes)
            self._config = new_config
        logger.info(f"[CONFIG] Updated longitudinal parameters: {sorted(changes)}")
        return new_config

    def _apply_config(self, config: LongitudinalControllerConfig):
        if config is self._applied_config:
            return
        self.pid_vel.set_gains(config.kp, config.ki, config.kd)
        self.pid_vel.set_limits(config.pid_limits)
        self.lpf_vel_error.gain = config.lpf_vel_error_gain
        self.lpf_pitch.gain = config.lpf_pitch_gain
        self.lpf_acc.gain = config.lpf_acc_gain
        self.smooth_stop.set_params(config.smooth_stop_params)
        self._applied_config = config

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    @property
    def control_state(self) -> ControlState:
        return self.state_machine.state

    @property
    def trajectory(self) -> Optional[Trajectory]:
        return self._trajectory

    def set_input_data(self, trajectory: Optional[Trajectory] = None,
                       odometry: Optional[OdometrySample] = None,
                       pose: Optional[Pose] = None,
                       is_steer_converged: Optional[bool] = None):
        """Push any subset of the inputs."""
        if trajectory is not None:
            self.set_trajectory(trajectory)
        if odometry is not None:
            self.set_current_odometry(odometry)
        if pose is not None:
            self.set_current_pose(pose)
        if is_steer_converged is not None:
            self.set_steer_converged(is_steer_converged)

    def set_trajectory(self, trajectory: Trajectory) -> bool:
        """
        Accept a new trajectory if it is valid.

        Returns:
            True if accepted. On rejection the previous trajectory is kept.
        """
        if trajectory is None:
            return False
        if len(trajectory.points) < 2:
            self._log_throttled(
                logging.WARNING, 'trajectory_size',
                f"[TRAJECTORY] Unexpected trajectory size {len(trajectory.points)} < 2. Ignored."
            )
            return False
        reason = validate_trajectory(trajectory)
        if reason is not None:
            self._log_throttled(
                logging.ERROR, 'trajectory_invalid',
                f"[TRAJECTORY] Received invalid trajectory ({reason}). Ignored."
            )
            return False
        self._trajectory = trajectory
        return True

    def set_current_odometry(self, sample: OdometrySample):
        if self._current_odometry is not None:
            self._prev_odometry = self._current_odometry
        self._current_odometry = sample

    def set_current_pose(self, pose: Optional[Pose]):
        """Pose from the external transform lookup; None when unavailable."""
        self._current_pose = pose

    def set_steer_converged(self, is_steer_converged: bool):
        self._is_steer_converged = bool(is_steer_converged)

    def _inputs_ready(self) -> bool:
        return (
            self._current_odometry is not None
            and self._prev_odometry is not None
            and self._trajectory is not None
            and self._current_pose is not None
        )

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def run(self, now: Optional[float] = None) -> Optional[LongitudinalCommand]:
        """
        Run one control cycle.

        Args:
            now: Cycle time in seconds (defaults to the controller clock)

        Returns:
            Command for this cycle, or None while inputs are not available
        """
        if not self._inputs_ready():
            logger.debug("[LONGITUDINAL] Waiting for trajectory, odometry and pose")
            return None

        if now is None:
            now = self._clock()
        config = self.config
        self._apply_config(config)
        pose = self._current_pose

        self._diag = LongitudinalDiagnostics(timestamp=now)
        control_data = self._get_control_data(pose, config, now)

        if control_data.is_far_from_trajectory:
            return self._run_far_from_trajectory(control_data, config, now)

        transition = self.state_machine.transition(
            control_data, config, self._is_steer_converged, now
        )
        self._handle_transition(transition, control_data, config, now)

        raw_ctrl_cmd = self._command_generators[transition.state](control_data, pose, config, now)
        # Baseline for the next jerk-limited ramp, before clamp and slope compensation
        self.prev_raw_ctrl_cmd = raw_ctrl_cmd
        self._diag.acc_cmd_raw = raw_ctrl_cmd.acceleration

        filtered_acc = self._calc_filtered_acc(raw_ctrl_cmd.acceleration, control_data, config, now)
        self._update_debug_vel_acc(pose, control_data, config)
        return self._create_ctrl_cmd(Motion(raw_ctrl_cmd.velocity, filtered_acc), control_data, config, now)

    def _run_far_from_trajectory(self, control_data: ControlData,
                                 config: LongitudinalControllerConfig, now: float) -> LongitudinalCommand:
        if config.enable_large_tracking_error_emergency:
            self.state_machine.force(ControlState.EMERGENCY)
        raw_ctrl_cmd = self._calc_emergency_cmd(control_data, self._current_pose, config, now)
        self.prev_raw_ctrl_cmd = raw_ctrl_cmd
        self._diag.acc_cmd_raw = raw_ctrl_cmd.acceleration

        # No slope compensation, but the published command stays jerk limited
        acc_limited = clamp(raw_ctrl_cmd.acceleration, config.min_acc, config.max_acc)
        acc_jerk = apply_diff_limit_filter(
            acc_limited, self.prev_ctrl_cmd.acceleration, control_data.dt, config.max_jerk, config.min_jerk
        )
        acc = clamp(acc_jerk, config.min_acc, config.max_acc)
        self._diag.acc_cmd_acc_limited = acc_limited
        self._diag.acc_cmd_jerk_limited = acc_jerk
        return self._create_ctrl_cmd(Motion(raw_ctrl_cmd.velocity, acc), control_data, config, now)

    def _handle_transition(self, transition: StateTransition, control_data: ControlData,
                           config: LongitudinalControllerConfig, now: float):
        if transition.entered_stopping:
            # Predictions after the actuation delay
            current_vel = control_data.current_motion.velocity
            delay = config.delay_compensation_time
            pred_vel = predict_velocity(
                control_data.current_motion, self.command_history.entries(), delay, now
            )
            pred_stop_dist = control_data.stop_dist - 0.5 * (pred_vel + current_vel) * delay
            self.smooth_stop.init(pred_vel, pred_stop_dist, now)
            logger.info(
                f"[LONGITUDINAL] DRIVE -> STOPPING: stop_dist={control_data.stop_dist:.2f}, "
                f"pred_vel={pred_vel:.2f}"
            )
        elif transition.departed:
            self.pid_vel.reset()
            self.lpf_vel_error.reset(0.0)
            # Do not start moving from a braking command
            self.prev_ctrl_cmd = Motion(
                self.prev_ctrl_cmd.velocity, max(0.0, self.prev_ctrl_cmd.acceleration)
            )
            logger.info(f"[LONGITUDINAL] Departure: stop_dist={control_data.stop_dist:.2f}")

        if transition.state is not ControlState.STOPPING and self.smooth_stop.is_initialized:
            self.smooth_stop.reset()

    def _get_dt(self, config: LongitudinalControllerConfig, now: float) -> float:
        if self.prev_control_time is None:
            dt = config.ctrl_period
        else:
            dt = now - self.prev_control_time
        self.prev_control_time = now
        return clamp(dt, config.ctrl_period * 0.5, config.ctrl_period * 2.0)

    def _get_current_motion(self) -> Motion:
        current = self._current_odometry
        prev = self._prev_odometry
        dv = current.velocity - prev.velocity
        dt = max(current.timestamp - prev.timestamp, MIN_ODOMETRY_DT)
        current_acc = self.lpf_acc.filter(dv / dt)
        return Motion(current.velocity, current_acc)

    def _get_current_shift(self, nearest_idx: int) -> Shift:
        target_vel = self._trajectory.points[nearest_idx].velocity
        if target_vel > SHIFT_VELOCITY_EPSILON:
            return Shift.FORWARD
        if target_vel < -SHIFT_VELOCITY_EPSILON:
            return Shift.REVERSE
        return self.prev_shift

    def _get_control_data(self, pose: Pose, config: LongitudinalControllerConfig, now: float) -> ControlData:
        dt = self._get_dt(config, now)
        current_motion = self._get_current_motion()
        diag = self._diag
        diag.dt = dt
        diag.current_vel = current_motion.velocity
        diag.calculated_acc = current_motion.acceleration

        trajectory = self._trajectory
        nearest_idx = find_nearest_index(
            trajectory.points, pose,
            config.emergency_state_traj_trans_dev, config.emergency_state_traj_rot_dev,
        )
        if nearest_idx is None:
            diag.is_far_from_trajectory = True
            return ControlData(dt=dt, current_motion=current_motion, is_far_from_trajectory=True)

        shift = self._get_current_shift(nearest_idx)
        if shift is not self.prev_shift:
            self.pid_vel.reset()
        self.prev_shift = shift

        stop_dist = calc_stop_distance(
            pose, trajectory, config.emergency_state_traj_trans_dev, config.emergency_state_traj_rot_dev
        )

        raw_pitch = pose.pitch
        traj_pitch = get_pitch_by_traj(trajectory, nearest_idx, config.wheel_base)
        if config.use_trajectory_for_pitch_calculation:
            slope_angle = traj_pitch
        else:
            slope_angle = self.lpf_pitch.filter(raw_pitch)

        diag.shift = shift
        diag.stop_dist = stop_dist
        diag.slope_angle = slope_angle
        diag.pitch_lpf_rad = self.lpf_pitch.get_value()
        diag.pitch_raw_rad = raw_pitch
        diag.pitch_raw_traj_rad = traj_pitch

        return ControlData(
            dt=dt,
            current_motion=current_motion,
            nearest_idx=nearest_idx,
            shift=shift,
            stop_dist=stop_dist,
            slope_angle=slope_angle,
        )

    # ------------------------------------------------------------------
    # Per-state raw commands
    # ------------------------------------------------------------------

    def _calc_drive_cmd(self, control_data: ControlData, pose: Pose,
                        config: LongitudinalControllerConfig, now: float) -> Motion:
        current_vel = control_data.current_motion.velocity
        delay = config.delay_compensation_time

        target_pose = calc_pose_after_time_delay(pose, delay, current_vel)
        target_point = calc_interpolated_target_value(
            self._trajectory, target_pose, control_data.nearest_idx,
            config.emergency_state_traj_trans_dev, config.emergency_state_traj_rot_dev,
        )
        target_motion = Motion(target_point.velocity, target_point.acceleration)
        target_motion = self._keep_brake_before_stop(target_motion, control_data.nearest_idx, config)

        pred_vel = predict_velocity(control_data.current_motion, self.command_history.entries(), delay, now)
        self._diag.predicted_vel = pred_vel
        self._diag.target_vel = target_motion.velocity
        self._diag.target_acc = target_motion.acceleration

        acc = self._apply_velocity_feedback(target_motion, control_data.dt, pred_vel, config)
        logger.debug(
            f"[LONGITUDINAL] feedback: vel={target_motion.velocity:.3f}, acc={acc:.3f}, "
            f"dt={control_data.dt:.3f}, v_curr={current_vel:.3f}, v_pred={pred_vel:.3f}"
        )
        return Motion(target_motion.velocity, acc)

    def _calc_stopping_cmd(self, control_data: ControlData, pose: Pose,
                           config: LongitudinalControllerConfig, now: float) -> Motion:
        motion = control_data.current_motion
        acc = self.smooth_stop.calculate(
            control_data.stop_dist, motion.velocity, motion.acceleration,
            self.vel_hist, config.delay_compensation_time, now,
        )
        self._diag.smooth_stop_phase = self.smooth_stop.phase.value
        logger.debug(f"[LONGITUDINAL] smooth stop: vel={config.stopped_vel:.3f}, acc={acc:.3f}")
        return Motion(config.stopped_vel, acc)

    def _calc_stopped_cmd(self, control_data: ControlData, pose: Pose,
                          config: LongitudinalControllerConfig, now: float) -> Motion:
        # Without slope compensation
        acc = apply_diff_limit_filter(
            config.stopped_acc, self.prev_raw_ctrl_cmd.acceleration, control_data.dt, config.stopped_jerk
        )
        return Motion(config.stopped_vel, acc)

    def _calc_emergency_cmd(self, control_data: ControlData, pose: Pose,
                            config: LongitudinalControllerConfig, now: float) -> Motion:
        # Without slope compensation
        vel = apply_diff_limit_filter(
            config.emergency_vel, self.prev_raw_ctrl_cmd.velocity, control_data.dt, config.emergency_acc
        )
        acc = apply_diff_limit_filter(
            config.emergency_acc, self.prev_raw_ctrl_cmd.acceleration, control_data.dt, config.emergency_jerk
        )
        self._log_throttled(
            logging.ERROR, 'emergency',
            f"[LONGITUDINAL] Emergency stop: vel={vel:.3f}, acc={acc:.3f}", now
        )
        return Motion(vel, acc)

    def _keep_brake_before_stop(self, target_motion: Motion, nearest_idx: int,
                                config: LongitudinalControllerConfig) -> Motion:
        """Hold the planned deceleration near the stop point instead of releasing it early."""
        if not config.enable_brake_keeping_before_stop:
            return target_motion
        points = self._trajectory.points
        stop_idx = search_zero_velocity_index(points)
        if stop_idx is None:
            return target_motion

        min_acc_before_stop = float('inf')
        min_acc_idx = len(points)
        for i in range(stop_idx, -1, -1):
            if points[i].acceleration > min_acc_before_stop:
                break
            min_acc_before_stop = points[i].acceleration
            min_acc_idx = i

        brake_keeping_acc = max(config.brake_keeping_acc, min_acc_before_stop)
        if nearest_idx >= min_acc_idx and target_motion.acceleration > brake_keeping_acc:
            return Motion(target_motion.velocity, brake_keeping_acc)
        return target_motion

    def _apply_velocity_feedback(self, target_motion: Motion, dt: float, current_vel: float,
                                 config: LongitudinalControllerConfig) -> float:
        current_vel_abs = abs(current_vel)
        target_vel_abs = abs(target_motion.velocity)
        enable_integration = current_vel_abs > config.current_vel_threshold_pid_integration
        error_vel_filtered = self.lpf_vel_error.filter(target_vel_abs - current_vel_abs)

        pid_acc, contributions = self.pid_vel.calculate(error_vel_filtered, dt, enable_integration)
        feedback_acc = target_motion.acceleration + pid_acc

        diag = self._diag
        diag.error_vel_filtered = error_vel_filtered
        diag.acc_cmd_pid_applied = feedback_acc
        diag.acc_cmd_fb_p_contribution = contributions.p
        diag.acc_cmd_fb_i_contribution = contributions.i
        diag.acc_cmd_fb_d_contribution = contributions.d
        return feedback_acc

    # ------------------------------------------------------------------
    # Output shaping
    # ------------------------------------------------------------------

    def _calc_filtered_acc(self, raw_acc: float, control_data: ControlData,
                           config: LongitudinalControllerConfig, now: float) -> float:
        acc_limited = clamp(raw_acc, config.min_acc, config.max_acc)

        # The delay predictor integrates commands without slope compensation
        self.command_history.store(
            now, acc_limited,
            in_drive=self.state_machine.state is ControlState.DRIVE,
            horizon=config.delay_compensation_time,
        )

        if config.enable_slope_compensation:
            acc_slope = apply_slope_compensation(
                acc_limited, control_data.slope_angle, control_data.shift.slope_sign,
                config.min_pitch_rad, config.max_pitch_rad,
            )
        else:
            acc_slope = acc_limited

        # Jerk limit must come after slope compensation
        acc_jerk = apply_diff_limit_filter(
            acc_slope, self.prev_ctrl_cmd.acceleration, control_data.dt, config.max_jerk, config.min_jerk
        )
        acc_out = clamp(acc_jerk, config.min_acc, config.max_acc)

        diag = self._diag
        diag.acc_cmd_acc_limited = acc_limited
        diag.acc_cmd_slope_applied = acc_slope
        diag.acc_cmd_jerk_limited = acc_jerk
        return acc_out

    def _update_debug_vel_acc(self, pose: Pose, control_data: ControlData,
                              config: LongitudinalControllerConfig):
        nearest_point = calc_interpolated_target_value(
            self._trajectory, pose, control_data.nearest_idx,
            config.emergency_state_traj_trans_dev, config.emergency_state_traj_rot_dev,
        )
        diag = self._diag
        diag.nearest_vel = nearest_point.velocity
        diag.nearest_acc = nearest_point.acceleration
        if diag.target_vel is not None:
            diag.error_vel = diag.target_vel - control_data.current_motion.velocity

    def _create_ctrl_cmd(self, ctrl_cmd: Motion, control_data: ControlData,
                         config: LongitudinalControllerConfig, now: float) -> LongitudinalCommand:
        cmd = LongitudinalCommand(timestamp=now, velocity=ctrl_cmd.velocity, acceleration=ctrl_cmd.acceleration)

        self.vel_hist.append((now, control_data.current_motion.velocity))
        excess = len(self.vel_hist) - config.velocity_history_size
        if excess > 0:
            del self.vel_hist[:excess]

        self.prev_ctrl_cmd = ctrl_cmd

        diag = self._diag
        diag.control_state = self.state_machine.state
        diag.acc_cmd_published = ctrl_cmd.acceleration
        self.diagnostics = diag
        return cmd

    def _log_throttled(self, level: int, key: str, message: str, now: Optional[float] = None):
        """Log at most once per LOG_THROTTLE_PERIOD for a given key."""
        if now is None:
            now = self._clock()
        last = self._last_log_times.get(key)
        if last is not None and now - last < LOG_THROTTLE_PERIOD:
            return
        self._last_log_times[key] = now
        logger.log(level, message)

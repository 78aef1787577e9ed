"""
Control-state machine for the longitudinal controller.

Decides the next ControlState from the current one and the per-cycle
ControlData. The only state kept here is the last time the vehicle was
observed moving; side effects of a transition (smooth-stop initialization,
PID reset) are reported as flags and carried out by the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from control.longitudinal_config import LongitudinalControllerConfig
from data.formats.data_format import ControlData, ControlState


@dataclass(frozen=True)
class StateTransition:
    """Result of one state update."""
    state: ControlState
    entered_stopping: bool = False
    departed: bool = False  # STOPPING/STOPPED -> DRIVE


class ControlStateMachine:
    """Evaluates state transition conditions once per cycle."""

    def __init__(self, initial_state: ControlState = ControlState.STOPPED):
        self.state = initial_state
        self.last_running_time: Optional[float] = None

    def force(self, state: ControlState):
        """Set the state without evaluating transitions (far-from-trajectory path)."""
        self.state = state

    def update_last_running_time(self, control_data: ControlData,
                                 config: LongitudinalControllerConfig, now: float):
        motion = control_data.current_motion
        if (abs(motion.velocity) > config.stopped_state_entry_vel
                or abs(motion.acceleration) > config.stopped_state_entry_acc):
            self.last_running_time = now

    def is_stopped_long_enough(self, config: LongitudinalControllerConfig, now: float) -> bool:
        if self.last_running_time is None:
            return False
        return now - self.last_running_time > config.stopped_state_entry_duration_time

    def transition(
        self,
        control_data: ControlData,
        config: LongitudinalControllerConfig,
        is_steer_converged: bool,
        now: float,
    ) -> StateTransition:
        """
        Evaluate the transition for this cycle and update the current state.

        Args:
            control_data: Snapshot of this cycle
            config: Parameter snapshot of this cycle
            is_steer_converged: Lateral controller convergence flag
            now: Current time (seconds)
        """
        self.update_last_running_time(control_data, config, now)
        result = self.next_state(self.state, control_data, config, is_steer_converged, now)
        self.state = result.state
        return result

    def next_state(
        self,
        current: ControlState,
        control_data: ControlData,
        config: LongitudinalControllerConfig,
        is_steer_converged: bool,
        now: float,
    ) -> StateTransition:
        """Pure transition function given the stored last running time."""
        c = config
        stop_dist = control_data.stop_dist

        departure_from_stopping = stop_dist > c.drive_state_stop_dist + c.drive_state_offset_stop_dist
        departure_from_stopped = stop_dist > c.drive_state_stop_dist
        keep_stopped = c.enable_keep_stopped_until_steer_convergence and not is_steer_converged
        stopping = stop_dist < c.stopping_state_stop_dist
        stopped = self.is_stopped_long_enough(c, now)
        emergency = c.enable_overshoot_emergency and stop_dist < -c.emergency_state_overshoot_stop_dist

        if current is ControlState.DRIVE:
            if emergency:
                return StateTransition(ControlState.EMERGENCY)
            if c.enable_smooth_stop:
                if stopping:
                    return StateTransition(ControlState.STOPPING, entered_stopping=True)
            elif stopped and not departure_from_stopped:
                return StateTransition(ControlState.STOPPED)

        elif current is ControlState.STOPPING:
            if emergency:
                return StateTransition(ControlState.EMERGENCY)
            if stopped:
                return StateTransition(ControlState.STOPPED)
            if departure_from_stopping:
                return StateTransition(ControlState.DRIVE, departed=True)

        elif current is ControlState.STOPPED:
            if keep_stopped:
                return StateTransition(ControlState.STOPPED)
            if departure_from_stopped:
                return StateTransition(ControlState.DRIVE, departed=True)

        elif current is ControlState.EMERGENCY:
            if stopped and not emergency:
                return StateTransition(ControlState.STOPPED)

        return StateTransition(current)

#!/usr/bin/env python3
"""
Closed-loop stop maneuver simulation.

Runs the longitudinal controller against LongitudinalVehicleModel on a
straight trajectory that ends in a stop point, then reports where and how
the vehicle stopped.

Usage:
    python tools/simulate_stop.py
    python tools/simulate_stop.py --cruise-speed 5 --stop-position 40
    python tools/simulate_stop.py --pitch -0.05 --json diagnostics.json
"""

import argparse
import json
import logging
import sys
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import numpy as np

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from control.longitudinal_config import (  # noqa: E402
    LongitudinalControllerConfig,
    build_longitudinal_config,
    load_config,
)
from control.longitudinal_controller import LongitudinalController  # noqa: E402
from control.vehicle_model import LongitudinalVehicleModel  # noqa: E402
from data.formats.data_format import ControlState  # noqa: E402
from trajectory.models.trajectory import Trajectory, TrajectoryPoint  # noqa: E402



@dataclass
class SimulationResult:
    """Summary of one simulated stop."""
    final_state: str
    final_position: float
    final_velocity: float
    stop_position_error: float  # positive = overshoot (m)
    peak_jerk: float            # max |d(acc_cmd)/dt| (m/s^3)
    min_acc_cmd: float
    max_acc_cmd: float
    stop_time: Optional[float]  # first time STOPPED was reached (s)
    cycles: int


def build_stop_trajectory(stop_position: float, cruise_speed: float, decel: float,
                          spacing: float = 0.5, tail: float = 5.0, pitch: float = 0.0) -> Trajectory:
    """
    Straight trajectory along +x with a constant-deceleration velocity profile
    reaching zero at stop_position.

    Args:
        stop_position: x of the stop point (meters)
        cruise_speed: Velocity before braking (m/s)
        decel: Planned deceleration magnitude (m/s^2)
        spacing: Distance between points (meters)
        tail: Length of zero-velocity trajectory after the stop point (meters)
        pitch: Road pitch (radians, nose-up negative), applied to z
    """
    xs = np.arange(0.0, stop_position + tail + 1e-9, spacing)
    points = []
    for x in xs:
        remaining = stop_position - x
        if remaining <= 1e-9:
            velocity = 0.0
            acceleration = 0.0
        else:
            velocity = float(min(cruise_speed, np.sqrt(2.0 * decel * remaining)))
            acceleration = -decel if velocity < cruise_speed else 0.0
        points.append(TrajectoryPoint(
            x=float(x), y=0.0, z=float(-np.tan(pitch) * x), yaw=0.0,
            velocity=velocity, acceleration=acceleration,
        ))
    return Trajectory.from_points(points)


def _jsonable(record: Dict) -> Dict:
    return {k: (v.name if isinstance(v, Enum) else v) for k, v in record.items()}


def run_simulation(config: LongitudinalControllerConfig, trajectory: Trajectory,
                   vehicle: LongitudinalVehicleModel, duration: float,
                   stop_position: float) -> Tuple[SimulationResult, List[Dict]]:
    """
    Run the closed loop for the given duration.

    Returns:
        (summary, per-cycle diagnostics)
    """
    dt = config.ctrl_period
    controller = LongitudinalController(config=config, clock=lambda: vehicle.time)
    controller.set_input_data(
        trajectory=trajectory,
        odometry=vehicle.odometry,
        pose=vehicle.pose(),
        is_steer_converged=True,
    )

    acc_cmd = 0.0
    published = []
    records = []
    stop_time = None
    has_driven = False
    n_steps = int(round(duration / dt))
    for _ in range(n_steps):
        vehicle.step(acc_cmd, dt)
        controller.set_input_data(odometry=vehicle.odometry, pose=vehicle.pose())
        cmd = controller.run(now=vehicle.time)
        if cmd is None:
            continue

        acc_cmd = cmd.acceleration
        published.append(acc_cmd)
        records.append(_jsonable(asdict(controller.diagnostics)))

        if controller.control_state is ControlState.DRIVE:
            has_driven = True
        elif stop_time is None and has_driven and controller.control_state is ControlState.STOPPED:
            stop_time = vehicle.time

    acc = np.asarray(published, dtype=float)
    peak_jerk = float(np.max(np.abs(np.diff(acc))) / dt) if len(acc) > 1 else 0.0
    result = SimulationResult(
        final_state=controller.control_state.name,
        final_position=vehicle.position,
        final_velocity=vehicle.velocity,
        stop_position_error=vehicle.position - stop_position,
        peak_jerk=peak_jerk,
        min_acc_cmd=float(np.min(acc)) if len(acc) else 0.0,
        max_acc_cmd=float(np.max(acc)) if len(acc) else 0.0,
        stop_time=stop_time,
        cycles=len(published),
    )
    return result, records


def print_result(result: SimulationResult):
    print("=" * 60)
    print("STOP MANEUVER SIMULATION")
    print("=" * 60)
    print(f"Final state:          {result.final_state}")
    print(f"Final position:       {result.final_position:.3f} m")
    print(f"Final velocity:       {result.final_velocity:.3f} m/s")
    print(f"Stop position error:  {result.stop_position_error:+.3f} m")
    print(f"Peak jerk:            {result.peak_jerk:.3f} m/s^3")
    print(f"Acc command range:    [{result.min_acc_cmd:.3f}, {result.max_acc_cmd:.3f}] m/s^2")
    if result.stop_time is not None:
        print(f"Stopped at:           {result.stop_time:.2f} s")
    print(f"Cycles:               {result.cycles}")


def main():
    parser = argparse.ArgumentParser(description='Simulate a stop maneuver with the longitudinal controller')
    parser.add_argument('--config', type=str, default=None,
                        help='Path to longitudinal controller YAML config')
    parser.add_argument('--cruise-speed', type=float, default=3.0,
                        help='Trajectory velocity before braking (m/s)')
    parser.add_argument('--stop-position', type=float, default=30.0,
                        help='Distance to the stop point (m)')
    parser.add_argument('--decel', type=float, default=1.0,
                        help='Planned deceleration (m/s^2)')
    parser.add_argument('--pitch', type=float, default=0.0,
                        help='Road pitch (rad, nose-up negative)')
    parser.add_argument('--time-constant', type=float, default=0.2,
                        help='Actuator lag time constant (s)')
    parser.add_argument('--actuator-delay', type=float, default=0.1,
                        help='Actuator transport delay (s)')
    parser.add_argument('--duration', type=float, default=40.0,
                        help='Simulated time (s)')
    parser.add_argument('--json', type=str, default=None,
                        help='Write per-cycle diagnostics to this JSON file')
    parser.add_argument('--verbose', action='store_true',
                        help='Enable debug logging')
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        config = build_longitudinal_config(load_config(args.config))
        vehicle = LongitudinalVehicleModel(
            time_constant=args.time_constant, delay=args.actuator_delay, pitch=args.pitch
        )
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

    trajectory = build_stop_trajectory(args.stop_position, args.cruise_speed, args.decel, pitch=args.pitch)
    result, records = run_simulation(config, trajectory, vehicle, args.duration, args.stop_position)
    print_result(result)

    if args.json:
        with open(args.json, 'w') as f:
            json.dump({'summary': asdict(result), 'cycles': records}, f, indent=2)
        print(f"\nDiagnostics saved to: {args.json}")


if __name__ == '__main__':
    main()

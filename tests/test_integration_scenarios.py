"""
Closed-loop scenarios: controller + LongitudinalVehicleModel.

These run the full stop maneuver (depart, cruise, approach, stop, hold)
through tools/simulate_stop.py, the same way the CLI does.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from control.longitudinal_config import LongitudinalControllerConfig
from control.vehicle_model import LongitudinalVehicleModel
from tools.simulate_stop import build_stop_trajectory, run_simulation


def _run(config=None, pitch=0.0, stop_position=30.0, cruise_speed=3.0, duration=40.0):
    config = config or LongitudinalControllerConfig()
    trajectory = build_stop_trajectory(stop_position, cruise_speed, decel=1.0, pitch=pitch)
    vehicle = LongitudinalVehicleModel(time_constant=0.2, delay=0.1, pitch=pitch)
    result, records = run_simulation(config, trajectory, vehicle, duration, stop_position)
    return result, records, vehicle


class TestVehicleModel:
    def test_transport_delay_and_lag(self):
        vehicle = LongitudinalVehicleModel(time_constant=0.2, delay=0.1)
        vehicle.step(1.0, 0.05)
        assert vehicle.actuator_acc == 0.0
        for _ in range(100):
            vehicle.step(1.0, 0.05)
        assert vehicle.actuator_acc == pytest.approx(1.0, abs=1e-3)

    def test_brakes_do_not_reverse(self):
        vehicle = LongitudinalVehicleModel(time_constant=0.0, delay=0.0, initial_velocity=0.5)
        for _ in range(50):
            vehicle.step(-3.0, 0.03)
        assert vehicle.velocity == 0.0

    def test_gravity_on_slope(self):
        vehicle = LongitudinalVehicleModel(time_constant=0.0, delay=0.0, pitch=0.1, initial_velocity=1.0)
        vehicle.step(0.0, 0.1)
        assert vehicle.velocity == pytest.approx(1.0 + 9.81 * np.sin(0.1) * 0.1)

    def test_invalid_parameters(self):
        with pytest.raises(ValueError):
            LongitudinalVehicleModel(delay=-0.1)
        with pytest.raises(ValueError):
            LongitudinalVehicleModel().step(0.0, 0.0)


class TestStopManeuver:
    def test_stops_near_stop_point(self):
        result, records, vehicle = _run()
        assert result.final_state == "STOPPED"
        assert result.stop_time is not None
        assert vehicle.velocity == 0.0
        assert -1.0 < result.stop_position_error < 1.5

    def test_passes_through_all_normal_states(self):
        _, records, _ = _run()
        states = [r['control_state'] for r in records]
        assert "DRIVE" in states
        assert "STOPPING" in states
        assert "EMERGENCY" not in states
        assert states[-1] == "STOPPED"

    def test_reaches_cruise_speed(self):
        _, records, _ = _run()
        peak = max(r['current_vel'] for r in records)
        assert 2.8 <= peak <= 3.75

    @pytest.mark.parametrize("pitch", [-0.05, 0.05])
    def test_slope_compensated_stop(self, pitch):
        config = LongitudinalControllerConfig(enable_slope_compensation=True)
        result, _, vehicle = _run(config=config, pitch=pitch)
        assert result.final_state == "STOPPED"
        assert vehicle.velocity == 0.0
        assert -1.0 < result.stop_position_error < 1.5

    def test_command_limits_hold_in_closed_loop(self):
        config = LongitudinalControllerConfig()
        _, records, _ = _run(config=config)
        prev_acc = 0.0
        prev_state = None
        for r in records:
            acc = r['acc_cmd_published']
            assert config.min_acc <= acc <= config.max_acc
            departed = r['control_state'] == "DRIVE" and prev_state != "DRIVE"
            if not departed:
                jerk = (acc - prev_acc) / r['dt']
                assert config.min_jerk - 1e-6 <= jerk <= config.max_jerk + 1e-6
            prev_acc = acc
            prev_state = r['control_state']

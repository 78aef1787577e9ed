"""
Tests for the smooth-stop deceleration profile.
"""

import pytest

from control.smooth_stop import SETTLING_TIME, SmoothStop, SmoothStopParams, SmoothStopPhase


PARAMS = SmoothStopParams()


def _decelerating_history(now, v_now, decel, n=10, dt=0.03):
    """Velocity samples ending at now, falling linearly at decel (m/s^2)."""
    return [(now - k * dt, v_now + decel * k * dt) for k in range(n - 1, -1, -1)]


def _init(pred_vel=2.0, pred_stop_dist=3.0, now=0.0):
    smooth_stop = SmoothStop(PARAMS)
    smooth_stop.init(pred_vel, pred_stop_dist, now)
    return smooth_stop


class TestInit:
    def test_strong_acc_from_kinematics(self):
        # -v^2 / (2d) = -4 / 6, inside [-0.8, -0.5]
        assert _init(2.0, 3.0).strong_acc == pytest.approx(-4.0 / 6.0)

    @pytest.mark.parametrize("pred_vel,pred_stop_dist,expected", [
        (5.0, 1.0, PARAMS.min_strong_acc),
        (0.5, 10.0, PARAMS.max_strong_acc),
        (2.0, 0.0, PARAMS.min_strong_acc),
        (2.0, -1.0, PARAMS.min_strong_acc),
    ])
    def test_strong_acc_clamped(self, pred_vel, pred_stop_dist, expected):
        assert _init(pred_vel, pred_stop_dist).strong_acc == pytest.approx(expected)

    def test_calculate_before_init_raises(self):
        with pytest.raises(RuntimeError):
            SmoothStop(PARAMS).calculate(1.0, 1.0, 0.0, [], 0.17, 0.0)

    def test_reset(self):
        smooth_stop = _init()
        smooth_stop.reset()
        assert not smooth_stop.is_initialized
        assert smooth_stop.phase is None


class TestTimeToStop:
    def test_linear_fit(self):
        hist = _decelerating_history(now=5.0, v_now=1.0, decel=1.0)
        assert SmoothStop.calc_time_to_stop(hist, 5.0) == pytest.approx(1.0)

    def test_empty(self):
        assert SmoothStop.calc_time_to_stop([], 0.0) is None

    def test_accelerating(self):
        hist = _decelerating_history(now=5.0, v_now=1.0, decel=-1.0)
        assert SmoothStop.calc_time_to_stop(hist, 5.0) is None


class TestPhases:
    def test_strong_stop_when_far_past_stop_point(self):
        smooth_stop = _init()
        acc = smooth_stop.calculate(-0.6, 1.0, -0.5, [], 0.17, 1.0)
        assert acc == PARAMS.strong_stop_acc
        assert smooth_stop.phase is SmoothStopPhase.STRONG_STOP

    def test_weak_stop_when_slightly_past_stop_point(self):
        smooth_stop = _init()
        acc = smooth_stop.calculate(-0.4, 1.0, -0.5, [], 0.17, 1.0)
        assert acc == PARAMS.weak_stop_acc
        assert smooth_stop.phase is SmoothStopPhase.WEAK_STOP

    def test_fast_approach_when_stop_is_far_in_time(self):
        smooth_stop = _init()
        hist = _decelerating_history(now=1.0, v_now=2.0, decel=0.5)  # 4 s to stop
        acc = smooth_stop.calculate(2.0, 2.0, -0.5, hist, 0.17, 1.0)
        assert acc == pytest.approx(smooth_stop.strong_acc)
        assert smooth_stop.phase is SmoothStopPhase.FAST_APPROACH

    def test_fast_approach_when_time_unknown_and_fast(self):
        smooth_stop = _init()
        acc = smooth_stop.calculate(2.0, 1.0, 0.0, [], 0.17, 1.0)
        assert acc == pytest.approx(smooth_stop.strong_acc)

    def test_running_when_about_to_stop(self):
        smooth_stop = _init()
        hist = _decelerating_history(now=1.0, v_now=0.3, decel=1.0)  # 0.3 s to stop
        acc = smooth_stop.calculate(0.2, 0.3, -1.0, hist, 0.17, 1.0)
        assert acc == PARAMS.weak_acc
        assert smooth_stop.phase is SmoothStopPhase.RUNNING
        assert smooth_stop.weak_acc_time == 1.0

    def test_settling_then_strong_stop(self):
        smooth_stop = _init(now=0.0)
        smooth_stop.calculate(0.2, 0.3, -1.0, [], 0.17, 1.0)  # RUNNING at t = 1.0

        acc = smooth_stop.calculate(0.1, 0.0, 0.0, [], 0.17, 1.0 + SETTLING_TIME / 2)
        assert acc == PARAMS.weak_acc
        assert smooth_stop.phase is SmoothStopPhase.SETTLING

        acc = smooth_stop.calculate(0.1, 0.0, 0.0, [], 0.17, 1.0 + SETTLING_TIME + 0.01)
        assert acc == PARAMS.strong_stop_acc
        assert smooth_stop.phase is SmoothStopPhase.STRONG_STOP

    def test_phase_start_time_tracks_changes(self):
        smooth_stop = _init(now=0.0)
        smooth_stop.calculate(-0.4, 1.0, -0.5, [], 0.17, 1.0)
        smooth_stop.calculate(-0.4, 1.0, -0.5, [], 0.17, 1.1)
        assert smooth_stop.phase_start_time == 1.0
        smooth_stop.calculate(-0.6, 1.0, -0.5, [], 0.17, 1.2)
        assert smooth_stop.phase_start_time == 1.2

    def test_output_bounded_by_strong_stop_acc(self):
        smooth_stop = _init(5.0, 0.1)
        for i in range(200):
            now = i * 0.03
            stop_dist = 1.0 - i * 0.01
            v = max(0.0, 2.0 - i * 0.02)
            acc = smooth_stop.calculate(stop_dist, v, -0.5, [], 0.17, now)
            assert PARAMS.strong_stop_acc <= acc <= 0.0

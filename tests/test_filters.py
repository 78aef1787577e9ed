"""
Unit tests for control/filters.py.
"""

import math

import pytest

from control.filters import (
    GRAVITY,
    LowpassFilter1d,
    apply_diff_limit_filter,
    apply_slope_compensation,
    clamp,
)
from data.formats.data_format import Shift


class TestClamp:
    @pytest.mark.parametrize("value,expected", [(-2.0, -1.0), (0.5, 0.5), (3.0, 2.0)])
    def test_clamp(self, value, expected):
        assert clamp(value, -1.0, 2.0) == expected


class TestDiffLimitFilter:
    def test_stopped_ramp_example(self):
        """Stopped state: 0.0 -> -1.0 with jerk limit 0.5 over 0.1 s moves by 0.05."""
        assert apply_diff_limit_filter(-1.0, 0.0, 0.1, 0.5) == pytest.approx(-0.05)

    def test_single_limit_uses_absolute_value(self):
        # A negative limit (e.g. stopped_jerk = -5.0) still means +/-5
        assert apply_diff_limit_filter(10.0, 0.0, 0.1, -5.0) == pytest.approx(0.5)
        assert apply_diff_limit_filter(-10.0, 0.0, 0.1, -5.0) == pytest.approx(-0.5)

    def test_asymmetric_limits(self):
        assert apply_diff_limit_filter(10.0, 1.0, 0.1, 2.0, -5.0) == pytest.approx(1.2)
        assert apply_diff_limit_filter(-10.0, 1.0, 0.1, 2.0, -5.0) == pytest.approx(0.5)

    def test_within_limit_reaches_input(self):
        assert apply_diff_limit_filter(0.1, 0.0, 0.1, 2.0, -5.0) == pytest.approx(0.1)

    @pytest.mark.parametrize("dt", [0.0, -0.03])
    def test_non_positive_dt_rejected(self, dt):
        with pytest.raises(ValueError):
            apply_diff_limit_filter(1.0, 0.0, dt, 1.0)


class TestSlopeCompensation:
    def test_forward_downhill_subtracts_gravity_component(self):
        out = apply_slope_compensation(0.0, 0.1, Shift.FORWARD.slope_sign, -0.1, 0.1)
        assert out == pytest.approx(-GRAVITY * math.sin(0.1))

    def test_forward_uphill_adds_gravity_component(self):
        out = apply_slope_compensation(0.5, -0.05, Shift.FORWARD.slope_sign, -0.1, 0.1)
        assert out == pytest.approx(0.5 + GRAVITY * math.sin(0.05))

    def test_reverse_has_opposite_sign(self):
        out = apply_slope_compensation(0.0, 0.1, Shift.REVERSE.slope_sign, -0.1, 0.1)
        assert out == pytest.approx(GRAVITY * math.sin(0.1))

    def test_neutral_leaves_input(self):
        assert apply_slope_compensation(0.3, 0.1, Shift.NEUTRAL.slope_sign, -0.1, 0.1) == pytest.approx(0.3)

    def test_pitch_is_clamped(self):
        out = apply_slope_compensation(0.0, 0.5, Shift.FORWARD.slope_sign, -0.1, 0.1)
        assert out == pytest.approx(-GRAVITY * math.sin(0.1))


class TestLowpassFilter1d:
    def test_filter_equation(self):
        lpf = LowpassFilter1d(x=1.0, gain=0.8)
        assert lpf.filter(2.0) == pytest.approx(0.8 * 1.0 + 0.2 * 2.0)
        assert lpf.get_value() == pytest.approx(1.2)

    def test_zero_gain_passes_through(self):
        lpf = LowpassFilter1d(gain=0.0)
        assert lpf.filter(3.5) == pytest.approx(3.5)

    def test_converges_to_constant_input(self):
        lpf = LowpassFilter1d(gain=0.9)
        for _ in range(300):
            lpf.filter(1.0)
        assert lpf.get_value() == pytest.approx(1.0, abs=1e-6)

    def test_reset(self):
        lpf = LowpassFilter1d(gain=0.5)
        lpf.filter(4.0)
        lpf.reset()
        assert lpf.get_value() == 0.0
        lpf.reset(2.0)
        assert lpf.get_value() == 2.0

    @pytest.mark.parametrize("gain", [-0.1, 1.5])
    def test_invalid_gain(self, gain):
        with pytest.raises(ValueError):
            LowpassFilter1d(gain=gain)

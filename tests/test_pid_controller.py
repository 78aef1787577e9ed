"""
Tests for the velocity-feedback PID controller.
"""

import pytest

from control.pid_controller import PIDController, PIDLimits


WIDE_LIMITS = PIDLimits(max_out=10.0, min_out=-10.0, max_p=10.0, min_p=-10.0,
                        max_i=10.0, min_i=-10.0, max_d=10.0, min_d=-10.0)


class TestPIDTerms:
    def test_proportional_only(self):
        pid = PIDController(kp=2.0, ki=0.0, kd=0.0, limits=WIDE_LIMITS)
        output, contributions = pid.calculate(0.5, 0.1, enable_integration=True)
        assert output == pytest.approx(1.0)
        assert contributions.p == pytest.approx(1.0)
        assert contributions.i == 0.0
        assert contributions.d == 0.0

    def test_integral_accumulates_only_when_enabled(self):
        pid = PIDController(kp=0.0, ki=1.0, kd=0.0, limits=WIDE_LIMITS)
        pid.calculate(1.0, 0.1, enable_integration=True)
        pid.calculate(1.0, 0.1, enable_integration=True)
        assert pid.integral == pytest.approx(0.2)
        output, _ = pid.calculate(1.0, 0.1, enable_integration=False)
        assert pid.integral == pytest.approx(0.2)
        assert output == pytest.approx(0.2)

    def test_derivative_zero_on_first_call(self):
        pid = PIDController(kp=0.0, ki=0.0, kd=1.0, limits=WIDE_LIMITS)
        _, first = pid.calculate(1.0, 0.1, enable_integration=False)
        _, second = pid.calculate(1.5, 0.1, enable_integration=False)
        assert first.d == 0.0
        assert second.d == pytest.approx(5.0)

    def test_reset_clears_memory(self):
        pid = PIDController(kp=0.0, ki=1.0, kd=1.0, limits=WIDE_LIMITS)
        pid.calculate(1.0, 0.1, enable_integration=True)
        pid.reset()
        assert pid.integral == 0.0
        assert pid.is_first_time
        _, contributions = pid.calculate(3.0, 0.1, enable_integration=False)
        assert contributions.d == 0.0


class TestPIDLimits:
    def test_term_limits(self):
        limits = PIDLimits(max_out=5.0, min_out=-5.0, max_p=1.0, min_p=-1.0,
                           max_i=0.3, min_i=-0.3, max_d=0.0, min_d=0.0)
        pid = PIDController(kp=10.0, ki=0.0, kd=10.0, limits=limits)
        pid.calculate(0.0, 0.1, enable_integration=False)
        output, contributions = pid.calculate(1.0, 0.1, enable_integration=False)
        assert contributions.p == pytest.approx(1.0)
        assert contributions.d == 0.0
        assert output == pytest.approx(1.0)

    def test_output_limit(self):
        limits = PIDLimits(max_out=0.5, min_out=-0.5, max_p=2.0, min_p=-2.0)
        pid = PIDController(kp=1.0, ki=0.0, kd=0.0, limits=limits)
        output, _ = pid.calculate(-2.0, 0.1, enable_integration=False)
        assert output == pytest.approx(-0.5)

    def test_integral_bounded_by_i_limits(self):
        """Integral accumulator is bounded to [min_i / ki, max_i / ki]."""
        pid = PIDController(kp=0.0, ki=0.1, kd=0.0, limits=PIDLimits())
        for _ in range(1000):
            _, contributions = pid.calculate(1.0, 0.1, enable_integration=True)
        assert pid.integral == pytest.approx(0.3 / 0.1)
        assert contributions.i == pytest.approx(0.3)

        # Windup is bounded, so the term unwinds promptly
        for _ in range(40):
            _, contributions = pid.calculate(-1.0, 0.1, enable_integration=True)
        assert contributions.i < 0.0

    def test_zero_ki_does_not_divide(self):
        pid = PIDController(kp=0.0, ki=0.0, kd=0.0)
        output, contributions = pid.calculate(1.0, 0.1, enable_integration=True)
        assert output == 0.0
        assert contributions.i == 0.0

    def test_set_gains_and_limits(self):
        pid = PIDController(kp=1.0, ki=0.0, kd=0.0)
        pid.set_gains(0.5, 0.0, 0.0)
        pid.set_limits(WIDE_LIMITS)
        output, _ = pid.calculate(4.0, 0.1, enable_integration=False)
        assert output == pytest.approx(2.0)

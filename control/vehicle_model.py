"""
Longitudinal vehicle dynamics model.
Used for closed-loop simulation of the longitudinal controller.
"""

from collections import deque
from typing import Tuple

import numpy as np

from control.filters import GRAVITY
from data.formats.data_format import OdometrySample, Pose


class LongitudinalVehicleModel:
    """
    Point-mass model moving forward along the x axis.

    The acceleration command passes through a pure transport delay and a
    first-order actuator lag. Road pitch adds g * sin(pitch) (nose-up pitch is
    negative, so climbing decelerates the vehicle).
    """

    def __init__(self, time_constant: float = 0.2, delay: float = 0.1,
                 pitch: float = 0.0, initial_velocity: float = 0.0,
                 initial_position: float = 0.0, initial_time: float = 0.0):
        """
        Initialize vehicle model.

        Args:
            time_constant: Actuator lag time constant (seconds, >= 0)
            delay: Actuator transport delay (seconds, >= 0)
            pitch: Road pitch (radians)
            initial_velocity: Initial velocity (m/s)
            initial_position: Initial x position (meters)
            initial_time: Initial simulation time (seconds)
        """
        if time_constant < 0.0 or delay < 0.0:
            raise ValueError("time_constant and delay must be non-negative")
        self.time_constant = time_constant
        self.delay = delay
        self.pitch = pitch

        self.time = initial_time
        self.position = initial_position
        self.velocity = initial_velocity
        self.actuator_acc = 0.0  # acceleration produced by the powertrain/brakes
        self.acceleration = 0.0  # total, including gravity

        self._pending = deque()  # (apply_time, acc_cmd)
        self._delayed_cmd = 0.0

    def step(self, acc_cmd: float, dt: float) -> Tuple[float, float, float]:
        """
        Advance the model by dt.

        Args:
            acc_cmd: Commanded acceleration (m/s^2)
            dt: Time step (seconds)

        Returns:
            New (position, velocity, acceleration)
        """
        if dt <= 0.0:
            raise ValueError(f"dt must be positive, got {dt}")

        self._pending.append((self.time + self.delay, acc_cmd))
        self.time += dt
        while self._pending and self._pending[0][0] <= self.time + 1e-9:
            self._delayed_cmd = self._pending.popleft()[1]

        # First-order lag (exact discretization)
        if self.time_constant > 0.0:
            alpha = 1.0 - np.exp(-dt / self.time_constant)
        else:
            alpha = 1.0
        self.actuator_acc += alpha * (self._delayed_cmd - self.actuator_acc)

        acc = self.actuator_acc + GRAVITY * np.sin(self.pitch)
        new_velocity = self.velocity + acc * dt

        # Forward motion only: the vehicle comes to rest instead of reversing
        if self.velocity >= 0.0 and new_velocity < 0.0:
            new_velocity = 0.0

        self.position += 0.5 * (self.velocity + new_velocity) * dt
        self.acceleration = (new_velocity - self.velocity) / dt
        self.velocity = float(new_velocity)
        return self.position, self.velocity, self.acceleration

    @property
    def odometry(self) -> OdometrySample:
        return OdometrySample(timestamp=self.time, velocity=self.velocity)

    def pose(self, y: float = 0.0, yaw: float = 0.0) -> Pose:
        return Pose(x=self.position, y=y, yaw=yaw, pitch=self.pitch)

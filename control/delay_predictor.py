"""
Command history and actuation-delay velocity prediction.

The controller publishes an acceleration every cycle, but the vehicle only
reacts to it after the actuation delay. To feed the velocity feedback with
the velocity the vehicle will have once the current command takes effect,
the recently published accelerations are integrated over the delay horizon.
"""

from __future__ import annotations

import math
from collections import deque
from dataclasses import dataclass
from typing import Deque, Iterator, List, Sequence

from data.formats.data_format import Motion


NEGLIGIBLE_VELOCITY = 0.1  # m/s, no prediction below this speed


@dataclass(frozen=True)
class CommandHistoryEntry:
    """Acceleration published at a given time."""
    timestamp: float
    acceleration: float


class CommandHistory:
    """Time-ordered buffer of published accelerations."""

    def __init__(self):
        self._entries: Deque[CommandHistoryEntry] = deque()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[CommandHistoryEntry]:
        return iter(self._entries)

    def entries(self) -> List[CommandHistoryEntry]:
        return list(self._entries)

    def clear(self):
        self._entries.clear()

    def append(self, timestamp: float, acceleration: float):
        if self._entries and timestamp < self._entries[-1].timestamp:
            raise ValueError(
                f"command history must be time ordered: {timestamp} < {self._entries[-1].timestamp}"
            )
        self._entries.append(CommandHistoryEntry(float(timestamp), float(acceleration)))

    def store(self, now: float, acceleration: float, in_drive: bool, horizon: float):
        """
        Record this cycle's command.

        Commands are only accumulated while driving; any other state clears
        the buffer. Entries are evicted once the second-oldest one is older
        than the horizon, so the oldest retained entry always covers the
        start of the horizon.

        A timestamp earlier than the newest entry restarts the history from
        this sample.
        """
        if in_drive:
            if self._entries and now < self._entries[-1].timestamp:
                self._entries.clear()
            self.append(now, acceleration)
        else:
            self._entries.clear()

        while len(self._entries) > 2 and now - self._entries[1].timestamp > horizon:
            self._entries.popleft()


def _keep_direction(pred_vel: float, current_vel: float) -> float:
    # The prediction must not reverse the direction of travel
    return math.copysign(pred_vel, current_vel) if pred_vel > 0.0 else 0.0


def predict_velocity(
    current_motion: Motion,
    history: Sequence[CommandHistoryEntry],
    delay_time: float,
    now: float,
) -> float:
    """
    Predict the velocity at now + delay_time.

    Args:
        current_motion: Measured velocity and acceleration
        history: Published accelerations, oldest first
        delay_time: Actuation delay (seconds)
        now: Current time (seconds)

    Returns:
        Predicted signed velocity (m/s). Same sign as the current velocity,
        or 0.0 when the prediction would cross zero.
    """
    current_vel = current_motion.velocity
    if abs(current_vel) < NEGLIGIBLE_VELOCITY:
        return current_vel

    current_vel_abs = abs(current_vel)
    entries = list(history)
    if not entries:
        # Measured acceleration is signed with the direction of travel
        speed_gain = math.copysign(1.0, current_vel) * current_motion.acceleration
        return _keep_direction(current_vel_abs + speed_gain * delay_time, current_vel)

    pred_vel = current_vel_abs
    past_delay_time = now - delay_time
    for i, entry in enumerate(entries):
        if now - entry.timestamp >= delay_time:
            continue
        if i == 0:
            # History is shorter than the delay horizon
            pred_vel = current_vel_abs + entry.acceleration * delay_time
            return _keep_direction(pred_vel, current_vel)
        prev = entries[i - 1]
        time_to_next_acc = min(entry.timestamp - prev.timestamp, entry.timestamp - past_delay_time)
        pred_vel += prev.acceleration * time_to_next_acc

    last = entries[-1]
    pred_vel += last.acceleration * (now - last.timestamp)

    return _keep_direction(pred_vel, current_vel)

"""Ultrasonic range finder driven by a trigger pin and an echo pin."""

from __future__ import annotations

import time
from typing import Protocol

SPEED_OF_SOUND = 340.0
_TRIGGER_PULSE = 10e-6


class _Pins(Protocol):
    def write(self, pin: int, state: bool) -> None: ...

    def read(self, pin: int) -> bool: ...


class UltrasonicSensor:
    """Measures distance from the width of the echo pulse."""

    timeout: float = 1.0

    def __init__(self, trigger_pin: int, gpio: _Pins) -> None:
        self.trigger_pin = trigger_pin
        self._gpio = gpio

    def measure(self, echo_pin: int) -> float:
        """Distance in metres; raises TimeoutError when the echo never starts or ends."""
        self._gpio.write(self.trigger_pin, False)
        time.sleep(_TRIGGER_PULSE)
        self._gpio.write(self.trigger_pin, True)
        time.sleep(_TRIGGER_PULSE)
        self._gpio.write(self.trigger_pin, False)

        start = time.perf_counter()
        while not self._gpio.read(echo_pin):
            if time.perf_counter() - start > self.timeout:
                raise TimeoutError("no echo received")
        rise = time.perf_counter()

        while self._gpio.read(echo_pin):
            if time.perf_counter() - rise > self.timeout:
                raise TimeoutError("echo pulse did not end")
        fall = time.perf_counter()

        return (fall - rise) * SPEED_OF_SOUND / 2.0
"""PCA9685 16-channel PWM driver over Linux I2C."""

from __future__ import annotations

import contextlib
import fcntl
import os
import threading
import time

from dronenav.events import Component, Event, EventManager, Severity, Subcomponent

I2C_SLAVE = 0x0703

_MODE1 = 0x00
_MODE1_CONFIG = 0b00100001
_LED0_ON_L = 0x06
_FRAME_SIZE = 33
_CHANNELS = 8
_MAX_TICKS = 4095
_REFRESH_PERIOD = 0.05


def pwm_ticks(pwm: float) -> int:
    """Off tick (0-4095) for a duty cycle given in percent, clamped to 0-100."""
    pwm = min(max(pwm, 0.0), 100.0)
    return min(int(pwm / 100.0 * 4096), _MAX_TICKS)


class PCA9685:
    """Keeps a register frame of PWM outputs and streams it to the chip."""

    def __init__(
        self,
        events: EventManager,
        address: int = 0x70,
        bus: str | os.PathLike[str] = "/dev/i2c-1",
    ) -> None:
        self._events = events
        self._lock = threading.Lock()
        self._stopped = threading.Event()
        self._frame = bytearray(_FRAME_SIZE)
        self._frame[0] = _LED0_ON_L

        with self._lock:
            try:
                self._fd: int | None = os.open(bus, os.O_RDWR)
            except OSError:
                self._fd = None
            ready = self._fd is not None
            if ready:
                try:
                    fcntl.ioctl(self._fd, I2C_SLAVE, address)
                except OSError:
                    ready = False

            if ready:
                self._report(Subcomponent.I2C, Severity.INFO, "port i2c ouvert")
            else:
                self._report(Subcomponent.I2C, Severity.FATAL, "impossible d ouvrir le port i2c")

            self._write(bytes([_MODE1, _MODE1_CONFIG]))
        time.sleep(0.1)

    def _report(self, subcomponent: Subcomponent, severity: Severity, message: str) -> None:
        self._events.report(Event(Component.PCA, subcomponent, severity, message))

    def _write(self, data: bytes) -> None:
        if self._fd is None:
            return
        with contextlib.suppress(OSError):
            os.write(self._fd, data)

    def run(self) -> None:
        """Send the register frame periodically until stopped."""
        while not self._stopped.is_set():
            with self._lock:
                self._write(bytes(self._frame))
            self._stopped.wait(_REFRESH_PERIOD)

    def stop(self) -> None:
        self._stopped.set()

    def set_pwm(self, output: int, pwm: float) -> None:
        """Set the duty cycle, in percent, of one output."""
        if not 0 <= output < _CHANNELS:
            raise ValueError(f"output must be in 0..{_CHANNELS - 1}, got {output}")
        self._report(
            Subcomponent.DATA_LINK,
            Severity.INFO,
            f"pwm mit a jour SORTIE : {output} NIVEAU : {int(pwm)}",
        )
        on_tick = 0
        off_tick = pwm_ticks(pwm)
        base = 1 + output * 4
        with self._lock:
            self._frame[base : base + 4] = bytes(
                (
                    on_tick & 0xFF,
                    (on_tick >> 8) & 0x0F,
                    off_tick & 0xFF,
                    (off_tick >> 8) & 0x0F,
                )
            )

    def register_frame(self) -> bytes:
        """Copy of the frame written to the chip: start register then channel bytes."""
        with self._lock:
            return bytes(self._frame)

    def close(self) -> None:
        self.stop()
        with self._lock:
            if self._fd is not None:
                os.close(self._fd)
                self._fd = None
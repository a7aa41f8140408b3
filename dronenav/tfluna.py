"""TF-Luna lidar range finder over Linux I2C."""

from __future__ import annotations

import contextlib
import fcntl
import os
import time

I2C_SLAVE = 0x0703

DIST_LOW = 0x00
POWER = 0x28


def decode_distance(data: bytes) -> float:
    """Distance in metres from the little-endian centimetre register pair."""
    if len(data) < 2:
        raise ValueError(f"distance needs 2 bytes, got {len(data)}")
    return int.from_bytes(bytes(data[:2]), "little") / 100.0


class TFLuna:
    """Lidar distance sensor."""

    def __init__(self, address: int = 0x10, bus: str | os.PathLike[str] = "/dev/i2c-1") -> None:
        self._fd: int | None = os.open(bus, os.O_RDWR)
        with contextlib.suppress(OSError):
            fcntl.ioctl(self._fd, I2C_SLAVE, address)
        os.write(self._fd, bytes([POWER, 0x00]))
        time.sleep(0.1)

    def _file(self) -> int:
        if self._fd is None:
            raise ValueError("sensor is closed")
        return self._fd

    def set_power(self, on: bool) -> None:
        os.write(self._file(), bytes([POWER, 0x00 if on else 0x01]))

    def distance(self) -> float:
        """Measured distance in metres."""
        fd = self._file()
        os.write(fd, bytes([DIST_LOW]))
        return decode_distance(os.read(fd, 2))

    def close(self) -> None:
        if self._fd is not None:
            os.close(self._fd)
            self._fd = None
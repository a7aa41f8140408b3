"""BMP280 barometer over Linux I2C, with integer compensation."""

from __future__ import annotations

import fcntl
import os
import struct
import threading
import time
from dataclasses import dataclass

from dronenav.events import Component, Event, EventManager, Severity, Subcomponent

I2C_SLAVE = 0x0703

_COEF = 0x88
_CTRL_MEAS = 0xF4
_CONFIG = 0xF5
_TEMP_REG = 0xFA
_PRESS_REG = 0xF7
_CALIB_FORMAT = "<HhhHhhhhhhhh"
_CALIB_SIZE = struct.calcsize(_CALIB_FORMAT)


@dataclass(frozen=True)
class Calibration:
    dig_t1: int
    dig_t2: int
    dig_t3: int
    dig_p1: int
    dig_p2: int
    dig_p3: int
    dig_p4: int
    dig_p5: int
    dig_p6: int
    dig_p7: int
    dig_p8: int
    dig_p9: int

    @classmethod
    def from_bytes(cls, data: bytes) -> Calibration:
        """Decode the 24-byte little-endian calibration block."""
        if len(data) < _CALIB_SIZE:
            raise ValueError(f"calibration needs {_CALIB_SIZE} bytes, got {len(data)}")
        return cls(*struct.unpack(_CALIB_FORMAT, bytes(data[:_CALIB_SIZE])))


@dataclass(frozen=True)
class Reading:
    temperature: float
    pressure: float


def parse_adc(data: bytes) -> int:
    """Assemble a 20-bit raw ADC value from MSB, LSB and XLSB bytes."""
    if len(data) < 3:
        raise ValueError(f"ADC value needs 3 bytes, got {len(data)}")
    msb, lsb, xlsb = data[0], data[1], data[2]
    return (msb << 12) | (lsb << 4) | (xlsb >> 4)


def _div_trunc(numerator: int, denominator: int) -> int:
    quotient = abs(numerator) // abs(denominator)
    return quotient if (numerator < 0) == (denominator < 0) else -quotient


def compensate(calibration: Calibration, adc_t: int, adc_p: int) -> Reading:
    """Temperature in degrees Celsius and pressure in hPa from raw ADC values."""
    c = calibration
    var1 = (((adc_t >> 3) - (c.dig_t1 << 1)) * c.dig_t2) >> 11
    delta = (adc_t >> 4) - c.dig_t1
    var2 = (((delta * delta) >> 12) * c.dig_t3) >> 14
    t_fine = var1 + var2
    temperature = (t_fine * 5 + 128) / 25600.0

    v1 = t_fine - 128000
    v2 = v1 * v1 * c.dig_p6
    v2 += (v1 * c.dig_p5) << 17
    v2 += c.dig_p4 << 35
    p_acc = ((v1 * v1 * c.dig_p3) >> 8) + ((v1 * c.dig_p2) << 12)
    p_acc = (((1 << 47) + p_acc) * c.dig_p1) >> 33

    if p_acc == 0:
        return Reading(temperature, 0.0)

    p = 1048576 - adc_p
    p = _div_trunc(((p << 31) - v2) * 3125, p_acc)
    v1 = (c.dig_p9 * (p >> 13) * (p >> 13)) >> 25
    v2 = (c.dig_p8 * p) >> 19
    p = ((p + v1 + v2) >> 8) + (c.dig_p7 << 4)
    return Reading(temperature, p / 25600.0)


def _is_plausible(reading: Reading) -> bool:
    return -10 <= reading.temperature <= 50 and 900 <= reading.pressure <= 1100


class BMP280:
    """Barometric pressure and temperature sensor on an I2C bus."""

    def __init__(
        self,
        events: EventManager,
        address: int = 0x76,
        bus: str | os.PathLike[str] = "/dev/i2c-4",
    ) -> None:
        self._events = events
        self.address = address
        self._lock = threading.Lock()
        self._fd: int | None = None
        self.calibration: Calibration | None = None

        with self._lock:
            fd = self._open(bus, address)
            if fd is None:
                self._report(Subcomponent.I2C, Severity.CRITICAL, "impossible d ouvrir port i2c")
                return
            self._report(Subcomponent.I2C, Severity.INFO, "port i2c ouvert")
            self._fd = fd

            self.calibration = Calibration.from_bytes(self._read_register(_COEF, _CALIB_SIZE))
            self._write_config(_CTRL_MEAS, (0b101 << 5) | (0b101 << 2) | 0b11)
            self._write_config(_CONFIG, (0b000 << 5) | (0b000 << 2))

    @staticmethod
    def _open(bus: str | os.PathLike[str], address: int) -> int | None:
        try:
            fd = os.open(bus, os.O_RDWR)
        except OSError:
            return None
        try:
            fcntl.ioctl(fd, I2C_SLAVE, address)
        except OSError:
            os.close(fd)
            return None
        return fd

    def _report(self, subcomponent: Subcomponent, severity: Severity, message: str) -> None:
        self._events.report(Event(Component.BMP, subcomponent, severity, message))

    def _read_register(self, register: int, size: int) -> bytes:
        assert self._fd is not None
        os.write(self._fd, bytes([register]))
        time.sleep(0.001)
        return os.read(self._fd, size)

    def _write_config(self, register: int, value: int) -> None:
        assert self._fd is not None
        os.write(self._fd, bytes([register, value]))
        time.sleep(0.001)

    def read(self) -> Reading:
        """Measure temperature and pressure; zeros when the device is unavailable."""
        with self._lock:
            if self._fd is None or self.calibration is None:
                return Reading(0.0, 0.0)
            adc_t = parse_adc(self._read_register(_TEMP_REG, 3))
            adc_p = parse_adc(self._read_register(_PRESS_REG, 3))
            reading = compensate(self.calibration, adc_t, adc_p)

            if _is_plausible(reading):
                self._report(Subcomponent.COMPUTING, Severity.INFO, "valeur calculee normale")
            else:
                self._report(Subcomponent.COMPUTING, Severity.CRITICAL, "valeur calculee anormale")
            return reading

    def close(self) -> None:
        with self._lock:
            if self._fd is not None:
                os.close(self._fd)
                self._fd = None

    def __enter__(self) -> BMP280:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
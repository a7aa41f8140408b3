"""Inertial navigation: attitude from the ESP32, heading from the magnetometer,
position from the GPS and the barometer."""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass, field
from typing import Protocol

import numpy as np

from dronenav.bmp280 import Reading
from dronenav.esp32 import EspData
from dronenav.events import Component, Event, EventManager, Severity, Subcomponent
from dronenav.neo6m import Coordinates

logger = logging.getLogger(__name__)

WGS84_A = 6378137.0
WGS84_F = 1 / 298.257223563
_WGS84_E2 = WGS84_F * (2 - WGS84_F)

MAG_BIAS = np.array([192.046411, -68.294232, 508.612908])
MAG_MATRIX = np.array(
    [
        [1.110525, -0.009313, -0.005285],
        [-0.009313, 1.148244, 0.001096],
        [-0.005285, 0.001096, 1.207234],
    ]
)
_KALMAN_Q = 100.0
_KALMAN_R = 800.0


class _EspSource(Protocol):
    def data(self) -> EspData: ...


class _BaroSource(Protocol):
    def read(self) -> Reading: ...


class _GpsSource(Protocol):
    def coordinates(self) -> Coordinates: ...

    def is_fixed(self) -> bool: ...


@dataclass
class InsSettings:
    refresh_rate: int = 200
    z_refresh_rate: int = 1
    alpha_heading: float = 0.5
    n_gps_attempt: int = 500
    n_gps_calib: int = 10
    base_altitude: float = 120.0
    poll_interval: float = 1.0

    def __post_init__(self) -> None:
        if self.refresh_rate <= 0 or self.z_refresh_rate <= 0:
            raise ValueError("refresh rates must be positive")
        if self.n_gps_calib < 1:
            raise ValueError("n_gps_calib must be at least 1")


@dataclass(eq=False)
class State3D:
    pos: np.ndarray = field(default_factory=lambda: np.zeros(3))
    vel: np.ndarray = field(default_factory=lambda: np.zeros(3))
    att: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def copy(self) -> State3D:
        return State3D(self.pos.copy(), self.vel.copy(), self.att.copy())


class Kalman1D:
    """Constant-velocity Kalman filter over a single scalar measurement."""

    def __init__(self, q: float, r: float) -> None:
        self.state = np.zeros(2)
        self.covariance = np.eye(2)
        self.process_noise = np.eye(2) * q
        self.measurement_noise = float(r)

    def update(self, z: float, dt: float) -> None:
        transition = np.array([[1.0, dt], [0.0, 1.0]])
        observation = np.array([1.0, 0.0])

        self.state = transition @ self.state
        self.covariance = transition @ self.covariance @ transition.T + self.process_noise

        innovation = z - observation @ self.state
        innovation_var = observation @ self.covariance @ observation + self.measurement_noise
        gain = self.covariance @ observation / innovation_var

        self.state = self.state + gain * innovation
        self.covariance = (np.eye(2) - np.outer(gain, observation)) @ self.covariance

    def value(self) -> float:
        return float(self.state[0])

    def velocity(self) -> float:
        return float(self.state[1])


def _check_latitude(lat: float) -> None:
    if not -90.0 <= lat <= 90.0:
        raise ValueError(f"latitude must be within [-90, 90], got {lat}")


def _ecef(lat: float, lon: float, h: float) -> np.ndarray:
    phi, lam = math.radians(lat), math.radians(lon)
    sin_phi = math.sin(phi)
    n = WGS84_A / math.sqrt(1 - _WGS84_E2 * sin_phi * sin_phi)
    return np.array(
        [
            (n + h) * math.cos(phi) * math.cos(lam),
            (n + h) * math.cos(phi) * math.sin(lam),
            (n * (1 - _WGS84_E2) + h) * sin_phi,
        ]
    )


class LocalCartesian:
    """East-north-up coordinates on the WGS84 ellipsoid around an origin."""

    def __init__(self, lat0: float = 0.0, lon0: float = 0.0, h0: float = 0.0) -> None:
        self.reset(lat0, lon0, h0)

    def reset(self, lat0: float, lon0: float, h0: float) -> None:
        _check_latitude(lat0)
        self.lat0, self.lon0, self.h0 = lat0, lon0, h0
        self._origin = _ecef(lat0, lon0, h0)
        phi, lam = math.radians(lat0), math.radians(lon0)
        sp, cp, sl, cl = math.sin(phi), math.cos(phi), math.sin(lam), math.cos(lam)
        self._rotation = np.array(
            [
                [-sl, cl, 0.0],
                [-sp * cl, -sp * sl, cp],
                [cp * cl, cp * sl, sp],
            ]
        )

    def forward(self, lat: float, lon: float, h: float) -> tuple[float, float, float]:
        """Geodetic position to (east, north, up) in metres."""
        _check_latitude(lat)
        east, north, up = self._rotation @ (_ecef(lat, lon, h) - self._origin)
        return float(east), float(north), float(up)


def barometric_altitude(
    temperature: float, pressure: float, base_pressure: float, base_altitude: float
) -> float:
    """Altitude in metres from the pressure relative to the reference pressure."""
    if pressure <= 0:
        raise ValueError(f"pressure must be positive, got {pressure}")
    return ((temperature + 273.15) / 0.0065) * (
        (base_pressure / pressure) ** 0.1903 - 1
    ) + base_altitude


class INS:
    """Fuses the ESP32 attitude, magnetometer, GPS and barometer into a 3D state."""

    def __init__(
        self,
        events: EventManager,
        esp: _EspSource,
        baro: _BaroSource,
        gps: _GpsSource,
        settings: InsSettings | None = None,
    ) -> None:
        self._events = events
        self._esp = esp
        self._baro = baro
        self._gps = gps
        self.settings = settings if settings is not None else InsSettings()
        self.do_debug = False

        self._lock = threading.Lock()
        self._stopped = threading.Event()
        self._state = State3D()
        self._esp_data = EspData()
        self._coord = Coordinates()
        self._baro_data = Reading(0.0, 0.0)
        self._z = np.zeros(3)
        self._filters = tuple(Kalman1D(_KALMAN_Q, _KALMAN_R) for _ in range(3))
        self.filtered_mag = np.zeros(3)
        self.projection = LocalCartesian()
        self.base_pressure = 0.0

        self._t_mag = time.monotonic()
        self._t_z = time.monotonic()
        self._calibrate()

    def _report(self, subcomponent: Subcomponent, severity: Severity, message: str) -> None:
        self._events.report(Event(Component.INS, subcomponent, severity, message))

    def _calibrate(self) -> None:
        s = self.settings
        attempts = 0
        while not self._gps.is_fixed() and attempts < s.n_gps_attempt:
            attempts += 1
            time.sleep(s.poll_interval)
            logger.debug("waiting for GPS fix, attempt %d", attempts)
        if not self._gps.is_fixed():
            self._report(Subcomponent.DATA_LINK, Severity.CRITICAL, "impossible d'obtenir un FIX 3D")

        latitudes, longitudes, pressures = [], [], []
        for _ in range(s.n_gps_calib):
            coord = self._gps.coordinates()
            time.sleep(s.poll_interval)
            latitudes.append(coord.latitude)
            longitudes.append(coord.longitude)
            pressures.append(self._baro.read().pressure)

        self.base_pressure = sum(pressures) / len(pressures)
        self.projection.reset(
            sum(latitudes) / len(latitudes), sum(longitudes) / len(longitudes), s.base_altitude
        )

    def run(self) -> None:
        """Update the state at the configured rate until stopped."""
        s = self.settings
        period = int(1000.0 / s.refresh_rate) / 1000.0
        z_period = (1000 // s.z_refresh_rate) / 1000.0
        while not self._stopped.is_set():
            start = time.monotonic()
            self._acquire_mpu()
            self._compute_heading()
            if time.monotonic() - self._t_z >= z_period:
                self._t_z = time.monotonic()
                self._acquire_z()
                self._compute_z()
            elapsed = time.monotonic() - start
            self._stopped.wait(max(0.0, period - elapsed))

    def stop(self) -> None:
        self._stopped.set()

    def _acquire_mpu(self) -> None:
        data = self._esp.data()
        self._esp_data = data
        self._report(Subcomponent.DATA_LINK, Severity.INFO, "reception donne esp32")
        with self._lock:
            self._state.att[0] = -data.roll
            self._state.att[1] = data.pitch

    def _acquire_z(self) -> None:
        self._coord = self._gps.coordinates()
        self._baro_data = self._baro.read()

    def _compute_heading(self) -> None:
        d = self._esp_data
        raw = np.array([d.my, d.mx, -d.mz])
        mag = MAG_MATRIX @ (raw - MAG_BIAS)

        pitch = math.radians(d.pitch)
        roll = math.radians(-d.roll)
        rx_inv = np.array(
            [
                [1.0, 0.0, 0.0],
                [0.0, math.cos(roll), math.sin(roll)],
                [0.0, -math.sin(roll), math.cos(roll)],
            ]
        )
        ry_inv = np.array(
            [
                [math.cos(pitch), 0.0, -math.sin(pitch)],
                [0.0, 1.0, 0.0],
                [math.sin(pitch), 0.0, math.cos(pitch)],
            ]
        )
        mag = ry_inv @ rx_inv @ mag

        now = time.monotonic()
        dt = now - self._t_mag
        self._t_mag = now

        for axis, (kalman, value) in enumerate(zip(self._filters, mag)):
            kalman.update(float(value), dt)
            self.filtered_mag[axis] = kalman.value()

        heading = math.degrees(math.atan2(self.filtered_mag[1], self.filtered_mag[0]))
        with self._lock:
            delta = heading - self._state.att[2]
            if delta > 180:
                delta -= 360
            if delta < -180:
                delta += 360
            self._state.att[2] += self.settings.alpha_heading * delta

    def _compute_z(self) -> None:
        reading = self._baro_data
        try:
            altitude = barometric_altitude(
                reading.temperature,
                reading.pressure,
                self.base_pressure,
                self.settings.base_altitude,
            )
        except ValueError:
            logger.debug("no usable pressure reading, position kept")
            return
        logger.debug("altitude %f", altitude)
        position = self.projection.forward(self._coord.latitude, self._coord.longitude, altitude)
        with self._lock:
            self._z = np.array(position)

    def state3d(self) -> State3D:
        """Copy of the current state, with the latest local position."""
        with self._lock:
            self._state.pos = self._z.copy()
            return self._state.copy()

    def print_data(self) -> None:
        with self._lock:
            att = self._state.att
            print(f"yaw : {att[2]:g}roll : {att[0]:g}pitch : {att[1]:g}")
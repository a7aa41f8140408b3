import threading
import time

import numpy as np
import pytest

from dronenav.bmp280 import Reading
from dronenav.esp32 import EspData
from dronenav.events import Component, EventManager, Severity, Subcomponent
from dronenav.ins import (
    INS,
    InsSettings,
    Kalman1D,
    LocalCartesian,
    State3D,
    barometric_altitude,
)
from dronenav.neo6m import Coordinates


class FakeEsp:
    def __init__(self, value=None):
        self.value = value or EspData()

    def data(self):
        return self.value


class FakeBaro:
    def __init__(self, pressures, temperature=20.0):
        self._pressures = list(pressures)
        self._index = 0
        self.temperature = temperature

    def read(self):
        pressure = self._pressures[self._index % len(self._pressures)]
        self._index += 1
        return Reading(self.temperature, pressure)


class FakeGps:
    def __init__(self, fixed=True, coord=Coordinates(2.35, 48.85)):
        self.fixed = fixed
        self.coord = coord

    def coordinates(self):
        return self.coord

    def is_fixed(self):
        return self.fixed


def _settings(**overrides):
    values = dict(poll_interval=0.0, n_gps_calib=2, n_gps_attempt=2)
    values.update(overrides)
    return InsSettings(**values)


def _run_for(ins, seconds):
    thread = threading.Thread(target=ins.run, daemon=True)
    thread.start()
    time.sleep(seconds)
    ins.stop()
    thread.join(timeout=5)
    assert not thread.is_alive()


def test_kalman_starts_at_rest():
    kalman = Kalman1D(100.0, 800.0)
    assert kalman.value() == 0.0
    assert kalman.velocity() == 0.0


def test_kalman_first_update_moves_towards_measurement():
    kalman = Kalman1D(100.0, 800.0)
    kalman.update(10.0, 0.01)
    assert 0.0 < kalman.value() < 10.0


def test_kalman_converges_on_constant_measurement():
    kalman = Kalman1D(100.0, 800.0)
    for _ in range(2000):
        kalman.update(5.0, 0.01)
    assert kalman.value() == pytest.approx(5.0, abs=0.05)


def test_kalman_tracks_ramp_velocity():
    kalman = Kalman1D(100.0, 800.0)
    dt = 0.1
    for step in range(1, 1000):
        kalman.update(2.0 * step * dt, dt)
    assert kalman.velocity() == pytest.approx(2.0, rel=1e-2)


def test_local_cartesian_origin_maps_to_zero():
    proj = LocalCartesian(48.85, 2.35, 120.0)
    assert proj.forward(48.85, 2.35, 120.0) == pytest.approx((0.0, 0.0, 0.0), abs=1e-6)


def test_local_cartesian_height_is_up():
    proj = LocalCartesian(48.85, 2.35, 120.0)
    assert proj.forward(48.85, 2.35, 145.0) == pytest.approx((0.0, 0.0, 25.0), abs=1e-6)


def test_local_cartesian_directions():
    proj = LocalCartesian(10.0, 20.0, 0.0)
    east, north, _ = proj.forward(10.001, 20.0, 0.0)
    assert north > 0
    assert abs(east) < 1e-6
    east, north, _ = proj.forward(10.0, 20.001, 0.0)
    assert east > 0
    assert abs(north) < 1e-3


def test_local_cartesian_reset_moves_origin():
    proj = LocalCartesian()
    proj.reset(45.0, 5.0, 10.0)
    assert (proj.lat0, proj.lon0, proj.h0) == (45.0, 5.0, 10.0)
    assert proj.forward(45.0, 5.0, 10.0) == pytest.approx((0.0, 0.0, 0.0), abs=1e-6)


def test_local_cartesian_rejects_bad_latitude():
    with pytest.raises(ValueError):
        LocalCartesian(91.0, 0.0, 0.0)


def test_barometric_altitude_at_base_pressure_is_base_altitude():
    assert barometric_altitude(20.0, 1013.0, 1013.0, 120.0) == pytest.approx(120.0)


def test_barometric_altitude_rises_as_pressure_falls():
    low = barometric_altitude(20.0, 1000.0, 1013.0, 120.0)
    lower = barometric_altitude(20.0, 990.0, 1013.0, 120.0)
    assert 120.0 < low < lower


def test_barometric_altitude_rejects_zero_pressure():
    with pytest.raises(ValueError):
        barometric_altitude(20.0, 0.0, 1013.0, 120.0)


def test_settings_validation():
    with pytest.raises(ValueError):
        InsSettings(n_gps_calib=0)
    with pytest.raises(ValueError):
        InsSettings(refresh_rate=0)


def test_state3d_copy_is_independent():
    state = State3D()
    copied = state.copy()
    copied.att[0] = 3.0
    assert state.att[0] == 0.0


def test_calibration_averages_pressure_and_position():
    pressures = [1000.0, 1010.0]
    ins = INS(EventManager(), FakeEsp(), FakeBaro(pressures), FakeGps(), _settings())
    assert ins.base_pressure == pytest.approx(sum(pressures) / len(pressures))
    assert ins.projection.lat0 == pytest.approx(48.85)
    assert ins.projection.lon0 == pytest.approx(2.35)
    assert ins.projection.h0 == pytest.approx(120.0)


def test_missing_fix_is_reported():
    events = EventManager()
    INS(events, FakeEsp(), FakeBaro([1000.0]), FakeGps(fixed=False), _settings())
    log = events.events()[(Component.INS, Subcomponent.DATA_LINK)]
    assert log.severity is Severity.CRITICAL
    assert log.message == "impossible d'obtenir un FIX 3D"


def test_run_updates_attitude_and_heading():
    events = EventManager()
    esp = FakeEsp(EspData(roll=10.0, pitch=-5.0, mx=30.0, my=-20.0, mz=40.0))
    ins = INS(events, esp, FakeBaro([1000.0]), FakeGps(), _settings(refresh_rate=1000))
    _run_for(ins, 0.2)
    state = ins.state3d()
    assert state.att[0] == pytest.approx(-10.0)
    assert state.att[1] == pytest.approx(-5.0)
    assert -180.0 <= state.att[2] <= 180.0
    assert events.events()[(Component.INS, Subcomponent.DATA_LINK)].message == "reception donne esp32"


def test_run_projects_gps_movement_north():
    gps = FakeGps()
    ins = INS(
        EventManager(),
        FakeEsp(),
        FakeBaro([1000.0]),
        gps,
        _settings(refresh_rate=1000, z_refresh_rate=1000),
    )
    gps.coord = Coordinates(2.35, 48.851)
    _run_for(ins, 0.2)
    east, north, up = ins.state3d().pos
    assert north > 0
    assert abs(east) < 1e-6
    assert abs(up) < 1.0


def test_print_data_reports_angles(capsys):
    ins = INS(EventManager(), FakeEsp(), FakeBaro([1000.0]), FakeGps(), _settings())
    ins.print_data()
    assert capsys.readouterr().out.strip() == "yaw : 0roll : 0pitch : 0"


def test_state3d_position_starts_at_zero():
    ins = INS(EventManager(), FakeEsp(), FakeBaro([1000.0]), FakeGps(), _settings())
    assert np.array_equal(ins.state3d().pos, np.zeros(3))
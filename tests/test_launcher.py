import pytest

from dronenav.bmp280 import BMP280
from dronenav.esp32 import ESP32
from dronenav.events import Component, EventLog, EventManager, Severity, Subcomponent
from dronenav.ins import INS, InsSettings
from dronenav.launcher import Launcher, Parameters, main
from dronenav.neo6m import NEO6m


@pytest.fixture
def params(tmp_path):
    return Parameters(
        com_port=0,
        ins_settings=InsSettings(n_gps_attempt=0, n_gps_calib=1, poll_interval=0.0),
        baro_bus=str(tmp_path / "i2c-missing"),
        esp_port=str(tmp_path / "tty-esp-missing"),
        gps_port=str(tmp_path / "tty-gps-missing"),
    )


@pytest.fixture
def launcher(params):
    instance = Launcher(params)
    instance.events = EventManager()
    yield instance
    instance.stop()


def test_sensors_need_event_manager(params):
    launcher = Launcher(params)
    launcher.start_baro()
    launcher.start_gps()
    launcher.start_esp()
    launcher.start_ins()
    assert (launcher.baro, launcher.gps, launcher.esp, launcher.ins) == (None, None, None, None)


def test_default_parameters_used_when_none_given():
    launcher = Launcher()
    assert launcher.parameters == Parameters()


def test_start_baro_reports_missing_bus(launcher):
    launcher.start_baro()
    assert isinstance(launcher.baro, BMP280)
    assert launcher.events.events()[(Component.BMP, Subcomponent.I2C)] == EventLog(
        Severity.CRITICAL, "impossible d ouvrir port i2c"
    )


def test_start_gps_reports_missing_port(launcher):
    launcher.start_gps()
    assert isinstance(launcher.gps, NEO6m)
    assert launcher.events.events()[(Component.GPS, Subcomponent.SERIAL)] == EventLog(
        Severity.CRITICAL, "impossible d ouvrir le port serie"
    )


def test_start_esp_reports_missing_port(launcher):
    launcher.start_esp()
    assert isinstance(launcher.esp, ESP32)
    assert launcher.events.events()[(Component.ESP, Subcomponent.SERIAL)].severity is Severity.CRITICAL


def test_start_ins_requires_all_sensors(launcher):
    launcher.start_baro()
    launcher.start_gps()
    launcher.start_ins()
    assert launcher.ins is None


def test_start_ins_with_all_sensors(launcher):
    launcher.start_baro()
    launcher.start_gps()
    launcher.start_esp()
    launcher.start_ins()
    assert isinstance(launcher.ins, INS)
    assert launcher.ins.settings is launcher.parameters.ins_settings
    assert (Component.INS, Subcomponent.DATA_LINK) in launcher.events.events()


def test_start_ins_again_replaces_instance(launcher):
    launcher.start_baro()
    launcher.start_gps()
    launcher.start_esp()
    launcher.start_ins()
    first = launcher.ins
    launcher.start_ins()
    assert launcher.ins is not first
    assert isinstance(launcher.ins, INS)


def test_start_com_wires_monitoring_and_server(params):
    launcher = Launcher(params)
    try:
        launcher.start_com()
        assert isinstance(launcher.events, EventManager)
        assert launcher.monitoring.refresh_rate == params.com_refresh_rate
        assert launcher.com.refresh_rate == params.com_refresh_rate
        assert launcher.com.port == params.com_port
    finally:
        launcher.stop()


def test_main_help_exits_cleanly(capsys):
    with pytest.raises(SystemExit) as info:
        main(["--help"])
    assert info.value.code == 0
    assert "--port" in capsys.readouterr().out


def test_main_rejects_bad_port():
    with pytest.raises(SystemExit) as info:
        main(["--port", "not-a-number"])
    assert info.value.code == 2
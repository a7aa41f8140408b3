"""Start-up sequence: events, telemetry, sensors, then navigation."""

from __future__ import annotations

import argparse
import logging
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from dronenav.bmp280 import BMP280
from dronenav.com import Com
from dronenav.esp32 import ESP32
from dronenav.events import EventManager
from dronenav.ins import INS, InsSettings
from dronenav.monitoring import SysMonitoring
from dronenav.neo6m import NEO6m
from dronenav.pca9685 import PCA9685

logger = logging.getLogger(__name__)

_INS_RESTART_DELAY = 20.0


@dataclass
class Parameters:
    monitoring_refresh_rate: int = 10
    com_refresh_rate: int = 5
    com_port: int = 9001
    ins_settings: InsSettings = field(default_factory=InsSettings)
    log_path: str | None = None
    baro_address: int = 0x76
    baro_bus: str = "/dev/i2c-4"
    esp_port: str = "/dev/ttyAMA0"
    gps_port: str = "/dev/ttyAMA1"


def _spawn(target: Callable[[], None], name: str) -> threading.Thread:
    thread = threading.Thread(target=target, name=name, daemon=True)
    thread.start()
    return thread


class Launcher:
    """Creates the components in dependency order and runs each in its own thread."""

    def __init__(self, parameters: Parameters | None = None) -> None:
        self.parameters = parameters if parameters is not None else Parameters()
        self.events: EventManager | None = None
        self.esp: ESP32 | None = None
        self.gps: NEO6m | None = None
        self.baro: BMP280 | None = None
        self.ins: INS | None = None
        self.pca: PCA9685 | None = None
        self.monitoring: SysMonitoring | None = None
        self.com: Com | None = None
        self._lock = threading.Lock()

    def start_com(self) -> None:
        """Create the event manager, then start monitoring and the telemetry server."""
        p = self.parameters
        with self._lock:
            self.events = EventManager(p.log_path)
            self.monitoring = SysMonitoring(self.events, self, p.com_refresh_rate)
            self.com = Com(self.monitoring, p.com_refresh_rate, p.com_port)
            _spawn(self.monitoring.run, "monitoring")
            _spawn(self.com.run, "com")

    def start_baro(self) -> None:
        """Open the barometer; does nothing before the event manager exists."""
        p = self.parameters
        with self._lock:
            if self.events is not None:
                self.baro = BMP280(self.events, p.baro_address, p.baro_bus)

    def start_esp(self) -> None:
        """Connect to the ESP32 and start reading its packets."""
        with self._lock:
            if self.events is not None:
                self.esp = ESP32(self.events, self.parameters.esp_port)
                _spawn(self.esp.run, "esp32")

    def start_gps(self) -> None:
        """Configure the GPS receiver and start decoding its messages."""
        with self._lock:
            if self.events is not None:
                self.gps = NEO6m(self.events, self.parameters.gps_port)
                _spawn(self.gps.run, "gps")

    def start_ins(self) -> None:
        """Start navigation once every sensor exists; a running INS is replaced."""
        with self._lock:
            if None in (self.events, self.esp, self.baro, self.gps):
                return
            if self.ins is not None:
                self.ins.stop()
            self.ins = INS(self.events, self.esp, self.baro, self.gps, self.parameters.ins_settings)
            _spawn(self.ins.run, "ins")

    def stop(self) -> None:
        """Stop every running component and release the devices."""
        with self._lock:
            if self.com is not None:
                self.com.stop()
                self.com.node.stop()
            for component in (self.monitoring, self.ins, self.esp, self.gps):
                if component is not None:
                    component.stop()
            if self.pca is not None:
                self.pca.close()
            if self.baro is not None:
                self.baro.close()
            if self.events is not None:
                self.events.close()


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dronenav", description="Run the drone navigation stack.")
    parser.add_argument("--port", type=int, default=9001, help="WebSocket telemetry port")
    parser.add_argument("--com-rate", type=int, default=5, help="telemetry refresh rate in Hz")
    parser.add_argument("--log-file", default=None, help="file receiving the event log")
    parser.add_argument(
        "--ins-restart",
        type=float,
        default=_INS_RESTART_DELAY,
        help="seconds before the INS is started a second time",
    )
    parser.add_argument("--verbose", action="store_true", help="print events as they arrive")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = _parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    launcher = Launcher(
        Parameters(com_refresh_rate=args.com_rate, com_port=args.port, log_path=args.log_file)
    )
    try:
        launcher.start_com()
        if launcher.events is not None:
            launcher.events.do_log = args.verbose
        launcher.start_baro()
        launcher.start_gps()
        launcher.start_esp()
        launcher.start_ins()
        time.sleep(args.ins_restart)
        launcher.start_ins()
        while True:
            time.sleep(1.0)
    except KeyboardInterrupt:
        print("\nArret du programme")
    finally:
        launcher.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
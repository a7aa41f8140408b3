"""Periodic snapshot of sensors, navigation state, events and host performance."""

from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Protocol

from dronenav.bmp280 import Reading
from dronenav.esp32 import EspData
from dronenav.events import Component, EventLog, EventManager, Subcomponent
from dronenav.ins import State3D
from dronenav.neo6m import GpsState

CPU_TEMP_PATH = "/sys/class/thermal/thermal_zone0/temp"
MEMINFO_PATH = "/proc/meminfo"


class _Source(Protocol):
    esp: Any
    baro: Any
    gps: Any
    ins: Any


@dataclass(frozen=True)
class SensorData:
    esp: EspData = field(default_factory=EspData)
    baro: Reading = field(default_factory=lambda: Reading(0.0, 0.0))
    gps: GpsState = field(default_factory=GpsState)


@dataclass(frozen=True)
class PiPerf:
    cpu_temp: float = 0.0
    ram_usage: float = 0.0


@dataclass(frozen=True)
class SysData:
    sensor: SensorData = field(default_factory=SensorData)
    state3d: State3D = field(default_factory=State3D)
    events: dict[tuple[Component, Subcomponent], EventLog] = field(default_factory=dict)
    perf: PiPerf = field(default_factory=PiPerf)


def read_cpu_temp(path: str | os.PathLike[str] = CPU_TEMP_PATH) -> float:
    """CPU temperature in degrees Celsius; 0.0 when it cannot be read."""
    try:
        fields = Path(path).read_text().split()
        return int(fields[0]) / 1000.0
    except (OSError, IndexError, ValueError):
        return 0.0


def read_ram_usage(path: str | os.PathLike[str] = MEMINFO_PATH) -> float:
    """Used memory in MiB: total minus free, buffers and cache."""
    values = {"MemTotal:": 0, "MemFree:": 0, "Buffers:": 0, "Cached:": 0}
    try:
        text = Path(path).read_text()
    except OSError:
        return 0.0
    for line in text.splitlines():
        parts = line.split()
        if len(parts) >= 2 and parts[0] in values:
            try:
                values[parts[0]] = int(parts[1])
            except ValueError:
                continue
    used_kb = (
        values["MemTotal:"] - values["MemFree:"] - values["Buffers:"] - values["Cached:"]
    )
    return used_kb / 1024.0


class SysMonitoring:
    """Collects data from whichever components the source has started."""

    cpu_temp_path: str | os.PathLike[str] = CPU_TEMP_PATH
    meminfo_path: str | os.PathLike[str] = MEMINFO_PATH

    def __init__(self, events: EventManager, source: _Source, refresh_rate: int) -> None:
        if refresh_rate <= 0:
            raise ValueError(f"refresh rate must be positive, got {refresh_rate}")
        self._events = events
        self._source = source
        self.refresh_rate = refresh_rate
        self._lock = threading.Lock()
        self._stopped = threading.Event()
        self._data = SysData()

    def refresh(self) -> None:
        """Take one snapshot; components not yet started keep their last values."""
        esp = getattr(self._source, "esp", None)
        baro = getattr(self._source, "baro", None)
        gps = getattr(self._source, "gps", None)
        ins = getattr(self._source, "ins", None)

        with self._lock:
            current = self._data
        sensor = current.sensor
        if esp is not None:
            sensor = replace(sensor, esp=esp.data())
        if baro is not None:
            sensor = replace(sensor, baro=baro.read())
        if gps is not None:
            sensor = replace(sensor, gps=gps.state())
        state3d = ins.state3d() if ins is not None else current.state3d

        snapshot = SysData(
            sensor=sensor,
            state3d=state3d,
            events=self._events.events(),
            perf=PiPerf(read_cpu_temp(self.cpu_temp_path), read_ram_usage(self.meminfo_path)),
        )
        with self._lock:
            self._data = snapshot

    def run(self) -> None:
        """Refresh at the configured rate until stopped."""
        period = int(1000.0 / self.refresh_rate) / 1000.0
        while not self._stopped.is_set():
            start = time.monotonic()
            self.refresh()
            elapsed = time.monotonic() - start
            self._stopped.wait(max(0.0, period - elapsed))

    def stop(self) -> None:
        self._stopped.set()

    def data(self) -> SysData:
        with self._lock:
            return self._data
"""u-blox NEO-6M GPS receiver speaking the UBX binary protocol."""

from __future__ import annotations

import enum
import logging
import struct
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from typing import Any, Protocol

import serial

from dronenav.events import Component, Event, EventManager, Severity, Subcomponent

logger = logging.getLogger(__name__)

SYNC_1 = 0xB5
SYNC_2 = 0x62
MAX_PAYLOAD = 1024
BAUDRATE = 9600

NAV_CLASS = 0x01
NAV_POSLLH = 0x02
NAV_STATUS = 0x03
NAV_SOL = 0x06
NAV_VELNED = 0x12
NAV_TIMEUTC = 0x21
NAV_SVINFO = 0x30
_HANDLED_IDS = frozenset({NAV_SVINFO, NAV_SOL, NAV_TIMEUTC, NAV_VELNED, NAV_STATUS, NAV_POSLLH})
_FIX_3D = 0x03

_STARTUP_DELAY = 1.0
_ERROR_DELAY = 0.001

CONFIG_COMMANDS = tuple(
    bytes.fromhex(command)
    for command in (
        "B5 62 06 01 08 00 F0 00 00 00 00 00 00 01 00 24",
        "B5 62 06 01 08 00 F0 01 00 00 00 00 00 01 01 2B",
        "B5 62 06 01 08 00 F0 02 00 00 00 00 00 01 02 32",
        "B5 62 06 01 08 00 F0 03 00 00 00 00 00 01 03 39",
        "B5 62 06 01 08 00 F0 04 00 00 00 00 00 01 04 40",
        "B5 62 06 01 08 00 F0 05 00 00 00 00 00 01 05 47",
        "B5 62 06 01 08 00 01 02 00 01 00 00 00 00 13 BE",
        "B5 62 06 01 08 00 01 03 00 01 00 00 00 00 14 C5",
        "B5 62 06 01 08 00 01 12 00 01 00 00 00 00 23 2E",
        "B5 62 06 01 08 00 01 06 00 01 00 00 00 00 17 DA",
        "B5 62 06 01 08 00 01 21 00 01 00 00 00 00 32 97",
        "B5 62 06 01 08 00 01 30 00 01 00 00 00 00 41 00",
        "B5 62 06 24 24 00 FF FF 06 03 00 00 00 00 10 27 00 00 05 00 FA 00"
        " FA 00 64 00 2C 01 00 00 00 00 00 00 00 00 00 00 00 00 00 00 16 DC",
        "B5 62 06 08 06 00 F4 01 01 00 01 00 0B 77",
    )
)


class SerialLike(Protocol):
    def read(self, size: int) -> bytes: ...

    def write(self, data: bytes) -> int | None: ...

    def flush(self) -> None: ...


def char_to_hex(c: int | str | bytes) -> str:
    """Two-digit lower-case hex of a byte."""
    if isinstance(c, (bytes, bytearray)):
        value = c[0]
    elif isinstance(c, str):
        value = ord(c)
    else:
        value = c
    return f"{value & 0xFF:02x}"


@dataclass(frozen=True)
class Coordinates:
    longitude: float = 0.0
    latitude: float = 0.0


@dataclass(frozen=True)
class SatelliteInfo:
    id: int
    strength: int
    quality: int


@dataclass(frozen=True)
class GpsState:
    sats: tuple[SatelliteInfo, ...] = ()
    coord: Coordinates = Coordinates()
    time: tuple[int, ...] = (0, 0, 0, 0, 0, 0)
    fix_ok: bool = False
    vel_ned: tuple[int, int, int] = (0, 0, 0)
    speed: int = 0
    ground_speed: int = 0
    heading: float = 0.0


@dataclass(frozen=True)
class UbxFrame:
    message_class: int
    message_id: int
    payload: bytes


class _Stage(enum.Enum):
    SYNC_1 = enum.auto()
    SYNC_2 = enum.auto()
    CLASS = enum.auto()
    ID = enum.auto()
    LENGTH_LOW = enum.auto()
    LENGTH_HIGH = enum.auto()
    PAYLOAD = enum.auto()
    CHECKSUM_A = enum.auto()
    CHECKSUM_B = enum.auto()


class UbxParser:
    """Incremental UBX frame decoder; checksums are skipped, not verified."""

    def __init__(self) -> None:
        self._stage = _Stage.SYNC_1
        self._class = 0
        self._id = 0
        self._length = 0
        self._payload = bytearray()

    def feed(self, data: Iterable[int]) -> list[UbxFrame]:
        """Consume bytes and return the frames they complete."""
        frames = []
        for byte in data:
            frame = self._step(byte)
            if frame is not None:
                frames.append(frame)
        return frames

    def _step(self, byte: int) -> UbxFrame | None:
        stage = self._stage
        if stage is _Stage.SYNC_1:
            if byte == SYNC_1:
                self._stage = _Stage.SYNC_2
        elif stage is _Stage.SYNC_2:
            self._stage = _Stage.CLASS if byte == SYNC_2 else _Stage.SYNC_1
        elif stage is _Stage.CLASS:
            self._class = byte
            self._stage = _Stage.ID
        elif stage is _Stage.ID:
            self._id = byte
            self._stage = _Stage.LENGTH_LOW
        elif stage is _Stage.LENGTH_LOW:
            self._length = byte
            self._stage = _Stage.LENGTH_HIGH
        elif stage is _Stage.LENGTH_HIGH:
            self._length |= byte << 8
            if self._length > MAX_PAYLOAD:
                self._stage = _Stage.SYNC_1
            else:
                self._payload = bytearray()
                self._stage = _Stage.PAYLOAD if self._length else _Stage.CHECKSUM_A
        elif stage is _Stage.PAYLOAD:
            self._payload.append(byte)
            if len(self._payload) == self._length:
                self._stage = _Stage.CHECKSUM_A
        elif stage is _Stage.CHECKSUM_A:
            self._stage = _Stage.CHECKSUM_B
        else:
            self._stage = _Stage.SYNC_1
            return UbxFrame(self._class, self._id, bytes(self._payload))
        return None


def _decode_timeutc(payload: bytes) -> dict[str, Any]:
    if len(payload) != 20:
        return {}
    year = payload[12] | (payload[13] << 8)
    return {"time": (year, *payload[14:19])}


def _decode_status(payload: bytes) -> dict[str, Any]:
    if len(payload) != 16:
        return {}
    return {"fix_ok": payload[4] == _FIX_3D}


def _decode_velned(payload: bytes) -> dict[str, Any]:
    if len(payload) != 36:
        return {}
    north, east, down = struct.unpack_from("<iii", payload, 4)
    speed, ground_speed = struct.unpack_from("<II", payload, 16)
    (heading,) = struct.unpack_from("<i", payload, 24)
    return {
        "vel_ned": (north, east, down),
        "speed": speed,
        "ground_speed": ground_speed,
        "heading": heading * 1e-5,
    }


def _decode_posllh(payload: bytes) -> dict[str, Any]:
    if len(payload) != 28:
        return {}
    longitude, latitude = struct.unpack_from("<ii", payload, 4)
    return {"coord": Coordinates(longitude * 1e-7, latitude * 1e-7)}


def _decode_svinfo(payload: bytes) -> dict[str, Any]:
    count = payload[4] if len(payload) > 4 else 0
    sats = tuple(
        SatelliteInfo(payload[9 + 12 * n], payload[12 + 12 * n], payload[11 + 12 * n])
        for n in range(count)
        if 12 + 12 * n < len(payload)
    )
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("%d visible satellites\n%s", count, _format_satellites(sats))
    return {"sats": sats}


def _format_satellites(sats: Iterable[SatelliteInfo]) -> str:
    rule = "-" * 31
    lines = [rule, " ID  | Strenght | Quality", rule]
    lines.extend(f" {sat.id:>3} | {sat.strength:>8} | {sat.quality:>7}" for sat in sats)
    lines.append(rule)
    return "\n".join(lines)


_DECODERS: dict[int, Callable[[bytes], dict[str, Any]]] = {
    NAV_TIMEUTC: _decode_timeutc,
    NAV_STATUS: _decode_status,
    NAV_VELNED: _decode_velned,
    NAV_POSLLH: _decode_posllh,
    NAV_SVINFO: _decode_svinfo,
}


def _open_serial(port_name: str) -> serial.Serial:
    return serial.Serial(
        port_name,
        baudrate=BAUDRATE,
        bytesize=serial.EIGHTBITS,
        parity=serial.PARITY_NONE,
        stopbits=serial.STOPBITS_ONE,
        xonxoff=False,
        rtscts=False,
        timeout=0.1,
    )


class NEO6m:
    """Configures the receiver and tracks the navigation state it reports."""

    def __init__(
        self,
        events: EventManager,
        port_name: str = "/dev/ttyAMA1",
        opener: Callable[[str], SerialLike] | None = None,
    ) -> None:
        self._events = events
        self.port_name = port_name
        self._lock = threading.Lock()
        self._stopped = threading.Event()
        self._parser = UbxParser()
        self._state = GpsState()

        try:
            self._port: SerialLike | None = (opener or _open_serial)(port_name)
        except OSError:
            self._port = None

        if self._port is None:
            self._report(Subcomponent.SERIAL, Severity.CRITICAL, "impossible d ouvrir le port serie")
            return
        self._report(Subcomponent.SERIAL, Severity.INFO, "port serie ouvert")
        for command in CONFIG_COMMANDS:
            self._port.write(command)
            self._port.flush()

    def _report(self, subcomponent: Subcomponent, severity: Severity, message: str) -> None:
        self._events.report(Event(Component.GPS, subcomponent, severity, message))

    def run(self) -> None:
        """Decode navigation messages until stopped."""
        port = self._port
        if port is None or self._stopped.wait(_STARTUP_DELAY):
            return
        while not self._stopped.is_set():
            try:
                data = port.read(getattr(port, "in_waiting", 0) or 1)
            except OSError:
                self._stopped.wait(_ERROR_DELAY)
                continue
            for frame in self._parser.feed(data):
                if frame.message_class == NAV_CLASS and frame.message_id in _HANDLED_IDS:
                    self.handle(frame)

    def stop(self) -> None:
        self._stopped.set()

    def handle(self, frame: UbxFrame) -> None:
        """Apply one UBX message to the navigation state."""
        self._report(
            Subcomponent.PARSER, Severity.INFO, f"reception d un paquet ID : {frame.message_id}"
        )
        if frame.message_class != NAV_CLASS:
            return
        decoder = _DECODERS.get(frame.message_id)
        if decoder is None:
            return
        changes = decoder(frame.payload)
        if changes:
            with self._lock:
                self._state = replace(self._state, **changes)

    def coordinates(self) -> Coordinates:
        with self._lock:
            return self._state.coord

    def state(self) -> GpsState:
        with self._lock:
            return self._state

    def is_fixed(self) -> bool:
        """Whether the receiver reports a 3D fix."""
        with self._lock:
            return self._state.fix_ok
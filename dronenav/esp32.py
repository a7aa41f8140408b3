"""Serial link to the ESP32 that streams attitude, acceleration and magnetometer data."""

from __future__ import annotations

import struct
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import serial

from dronenav.events import Component, Event, EventManager, Severity, Subcomponent

HEADER = b"\x24\x09"
FOOTER = b"\x20\x08"
ACK = b"\x02"
EVENT_ACK_REQUEST = 0x01
EVENT_PACKET = 0x02
BAUDRATE = 460800
DEFAULT_TIMEOUT = 0.01

_PACKET_FORMAT = "<B9d"
PACKET_SIZE = struct.calcsize(_PACKET_FORMAT)
_HANDSHAKE_SIZE = 200
_HANDSHAKE_TIMEOUT = 0.05
_CONNECT_ATTEMPTS = 50
_RETRY_DELAY = 0.01
_EMPTY_READ_DELAY = 0.001


class SerialLike(Protocol):
    def read(self, size: int) -> bytes: ...

    def write(self, data: bytes) -> int | None: ...

    def close(self) -> None: ...


@dataclass(frozen=True)
class EspData:
    event: int = 0
    roll: float = 0.0
    pitch: float = 0.0
    yaw: float = 0.0
    ax: float = 0.0
    ay: float = 0.0
    az: float = 0.0
    mx: float = 0.0
    my: float = 0.0
    mz: float = 0.0

    @classmethod
    def from_bytes(cls, data: bytes) -> EspData:
        """Decode a packed packet: one event byte then nine little-endian doubles."""
        if len(data) != PACKET_SIZE:
            raise ValueError(f"packet needs {PACKET_SIZE} bytes, got {len(data)}")
        return cls(*struct.unpack(_PACKET_FORMAT, bytes(data)))


def read_exact(port: SerialLike, size: int, timeout: float = DEFAULT_TIMEOUT) -> bytes:
    """Read exactly ``size`` bytes, raising TimeoutError if they do not arrive in time."""
    deadline = time.monotonic() + timeout
    buffer = bytearray()
    while len(buffer) < size:
        if deadline - time.monotonic() <= 0:
            raise TimeoutError(f"read {len(buffer)} of {size} bytes before timeout")
        chunk = port.read(size - len(buffer))
        if not chunk:
            time.sleep(_EMPTY_READ_DELAY)
            continue
        buffer += chunk
    return bytes(buffer)


def _open_serial(port_name: str) -> serial.Serial:
    return serial.Serial(
        port_name,
        baudrate=BAUDRATE,
        bytesize=serial.EIGHTBITS,
        parity=serial.PARITY_NONE,
        stopbits=serial.STOPBITS_ONE,
        xonxoff=False,
        rtscts=False,
        timeout=0,
    )


class ESP32:
    """Connects to the ESP32, then keeps the latest packet it sends."""

    def __init__(
        self,
        events: EventManager,
        port_name: str = "/dev/ttyAMA0",
        opener: Callable[[str], SerialLike] | None = None,
    ) -> None:
        self._events = events
        self.port_name = port_name
        self._opener = opener or _open_serial
        self._lock = threading.Lock()
        self._stopped = threading.Event()
        self._data = EspData()
        self._port = self._connect()

    def _report(self, subcomponent: Subcomponent, severity: Severity, message: str) -> None:
        self._events.report(Event(Component.ESP, subcomponent, severity, message))

    def _connect(self) -> SerialLike | None:
        for _ in range(_CONNECT_ATTEMPTS):
            try:
                port = self._opener(self.port_name)
            except OSError:
                time.sleep(_RETRY_DELAY)
                continue
            try:
                greeting = read_exact(port, _HANDSHAKE_SIZE, _HANDSHAKE_TIMEOUT)
            except OSError:
                port.close()
                time.sleep(_RETRY_DELAY)
                continue
            if HEADER in greeting:
                self._report(Subcomponent.SERIAL, Severity.INFO, "port serie ouvert")
                return port
            port.close()
        self._report(Subcomponent.SERIAL, Severity.CRITICAL, "impossible d ouvrir le port serie")
        return None

    @staticmethod
    def _read_packet(port: SerialLike) -> EspData | None:
        if read_exact(port, len(HEADER)) != HEADER:
            return None
        body = read_exact(port, PACKET_SIZE)
        if read_exact(port, len(FOOTER)) != FOOTER:
            return None
        return EspData.from_bytes(body)

    def run(self) -> None:
        """Read packets until stopped; returns at once when no port is connected."""
        port = self._port
        if port is None:
            return
        while not self._stopped.is_set():
            try:
                packet = self._read_packet(port)
            except OSError:
                continue
            if packet is None:
                continue
            with self._lock:
                self._data = packet
            if packet.event == EVENT_ACK_REQUEST:
                port.write(ACK)
            elif packet.event == EVENT_PACKET:
                self._report(Subcomponent.PARSER, Severity.INFO, "reception d un paquet")

    def stop(self) -> None:
        self._stopped.set()

    def data(self) -> EspData:
        """The latest packet received."""
        with self._lock:
            return self._data
"""WebSocket telemetry server and the companion Node.js web application."""

from __future__ import annotations

import asyncio
import json
import logging
import math
import signal
import ssl
import subprocess
import threading
from typing import Any, Protocol

import websockets

from dronenav.events import stringify_events
from dronenav.monitoring import SysData

logger = logging.getLogger(__name__)

NODE_SCRIPT = "app/server.js"
REPLY = "ta geule"
_MAX_PAYLOAD = 100 * 1024 * 1024


class _Monitoring(Protocol):
    def data(self) -> SysData: ...


def _num(value: float) -> float | None:
    value = float(value)
    return value if math.isfinite(value) else None


def _document(data: SysData) -> dict[str, Any]:
    esp = data.sensor.esp
    baro = data.sensor.baro
    gps = data.sensor.gps
    state = data.state3d
    return {
        "sensor": {
            "esp": {
                "event": esp.event,
                "roll": _num(esp.roll),
                "pitch": _num(esp.pitch),
                "yaw": _num(esp.yaw),
                "ax": _num(esp.ax),
                "ay": _num(esp.ay),
                "az": _num(esp.az),
                "mx": _num(esp.mx),
                "my": _num(esp.my),
                "mz": _num(esp.mz),
            },
            "baro": {"temp": _num(baro.temperature), "pressure": _num(baro.pressure)},
            "gps": {
                "sats": [
                    {"ID": sat.id, "strenght": sat.strength, "quality": sat.quality}
                    for sat in gps.sats
                ],
                "coord": {
                    "longitude": _num(gps.coord.longitude),
                    "latitude": _num(gps.coord.latitude),
                },
                "timeArray": list(gps.time),
                "gpsFixOk": gps.fix_ok,
                "velNED": list(gps.vel_ned),
                "speed": gps.speed,
                "GS": gps.ground_speed,
                "heading": _num(gps.heading),
            },
        },
        "state3D": {
            "pos": [_num(v) for v in state.pos],
            "vel": [_num(v) for v in state.vel],
            "att": [_num(v) for v in state.att],
        },
        "events": stringify_events(data.events),
        "perf": {"CPUtemp": _num(data.perf.cpu_temp), "RAMusage": _num(data.perf.ram_usage)},
    }


def to_json(data: SysData) -> str:
    """Compact JSON of a system snapshot, keys sorted, non-finite numbers as null."""
    return json.dumps(_document(data), separators=(",", ":"), sort_keys=True, ensure_ascii=False)


class NodeProcess:
    """The Node.js server serving the web interface."""

    def __init__(self, script: str = NODE_SCRIPT) -> None:
        self.script = str(script)
        self._process: subprocess.Popen[bytes] | None = None

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    def start(self) -> None:
        """Launch the server unless it is already running."""
        if self._process is not None:
            return
        try:
            self._process = subprocess.Popen(["node", self.script])
        except OSError as error:
            logger.error("could not start Node.js: %s", error)
            return
        logger.info("Node.js started with PID %d", self._process.pid)

    def stop(self) -> None:
        """Interrupt the server if it was started."""
        if self._process is None:
            return
        logger.info("stopping Node.js server (PID %d)", self._process.pid)
        self._process.send_signal(signal.SIGINT)
        self._process = None


class Com:
    """Broadcasts monitoring snapshots to every connected WebSocket client."""

    def __init__(
        self,
        monitoring: _Monitoring,
        refresh_rate: int,
        port: int = 9001,
        ssl_context: ssl.SSLContext | None = None,
    ) -> None:
        if refresh_rate <= 0:
            raise ValueError(f"refresh rate must be positive, got {refresh_rate}")
        self._monitoring = monitoring
        self.refresh_rate = refresh_rate
        self.port = port
        self._ssl_context = ssl_context
        self.node = NodeProcess(NODE_SCRIPT)
        self._clients: set[Any] = set()
        self._stopped = threading.Event()

    def payload(self) -> str:
        """The JSON message for the current monitoring snapshot."""
        return to_json(self._monitoring.data())

    def run(self) -> None:
        """Start the web application and serve clients until stopped."""
        self.node.start()
        asyncio.run(self._serve())

    def stop(self) -> None:
        self._stopped.set()

    async def _serve(self) -> None:
        period = int(1000.0 / self.refresh_rate) / 1000.0
        loop = asyncio.get_running_loop()
        async with websockets.serve(
            self._handle, None, self.port, ssl=self._ssl_context, max_size=_MAX_PAYLOAD
        ):
            while not self._stopped.is_set():
                start = loop.time()
                await self._broadcast(self.payload())
                elapsed = loop.time() - start
                await asyncio.sleep(max(0.0, period - elapsed))

    async def _broadcast(self, message: str) -> None:
        for client in list(self._clients):
            try:
                await client.send(message)
            except websockets.ConnectionClosed:
                self._clients.discard(client)

    async def _handle(self, websocket: Any) -> None:
        self._clients.add(websocket)
        try:
            async for message in websocket:
                await websocket.send(REPLY if isinstance(message, str) else REPLY.encode())
        except websockets.ConnectionClosed:
            pass
        finally:
            self._clients.discard(websocket)
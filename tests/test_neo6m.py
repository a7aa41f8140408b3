import struct
import threading

import pytest

from dronenav.events import Component, EventLog, EventManager, Severity, Subcomponent
from dronenav.neo6m import (
    NEO6m,
    Coordinates,
    GpsState,
    SatelliteInfo,
    UbxFrame,
    UbxParser,
    char_to_hex,
)

SERIAL_KEY = (Component.GPS, Subcomponent.SERIAL)
PARSER_KEY = (Component.GPS, Subcomponent.PARSER)
DISABLE_GGA = bytes.fromhex("B5 62 06 01 08 00 F0 00 00 00 00 00 00 01 00 24")
SET_RATE = bytes.fromhex("B5 62 06 08 06 00 F4 01 01 00 01 00 0B 77")


class FakePort:
    def __init__(self, data=b""):
        self._buffer = bytearray(data)
        self._lock = threading.Lock()
        self.written = []
        self.flushes = 0
        self.drained = threading.Event()

    def read(self, size):
        with self._lock:
            if not self._buffer:
                self.drained.set()
                return b""
            chunk = bytes(self._buffer[:size])
            del self._buffer[:size]
            return chunk

    def write(self, data):
        self.written.append(bytes(data))
        return len(data)

    def flush(self):
        self.flushes += 1


def frame(message_class, message_id, payload):
    return (
        b"\xb5\x62"
        + bytes([message_class, message_id])
        + struct.pack("<H", len(payload))
        + payload
        + b"\x00\x00"
    )


def posllh_payload(longitude, latitude):
    return struct.pack("<IiiiiII", 0, longitude, latitude, 0, 0, 0, 0)


def status_payload(fix_type):
    return struct.pack("<IBBBBII", 0, fix_type, 0, 0, 0, 0, 0)


def make_gps(events=None, data=b""):
    port = FakePort(data)
    gps = NEO6m(events or EventManager(), "/dev/fake", opener=lambda name: port)
    return gps, port


@pytest.mark.parametrize("value, expected", [("\xb5", "b5"), (0x0A, "0a"), (-1, "ff"), (b"\x62", "62")])
def test_char_to_hex(value, expected):
    assert char_to_hex(value) == expected


def test_parser_decodes_configuration_command():
    frames = UbxParser().feed(bytes.fromhex("B5 62 06 01 08 00 01 02 00 01 00 00 00 00 13 BE"))
    assert frames == [UbxFrame(0x06, 0x01, bytes.fromhex("01 02 00 01 00 00 00 00"))]


def test_parser_handles_bytes_fed_one_at_a_time():
    data = frame(0x01, 0x02, posllh_payload(5, 6))
    parser = UbxParser()
    collected = []
    for byte in data:
        collected.extend(parser.feed(bytes([byte])))
    assert collected == UbxParser().feed(data)
    assert collected[0].payload == posllh_payload(5, 6)


def test_parser_skips_garbage_before_sync():
    data = b"\x00\x62\xb5\x00" + frame(0x01, 0x03, b"\x01\x02")
    assert UbxParser().feed(data) == [UbxFrame(0x01, 0x03, b"\x01\x02")]


def test_parser_drops_oversized_length():
    data = b"\xb5\x62\x01\x02\x01\x04" + frame(0x01, 0x12, b"\x09")
    assert UbxParser().feed(data) == [UbxFrame(0x01, 0x12, b"\x09")]


def test_parser_accepts_maximum_payload():
    frames = UbxParser().feed(frame(0x01, 0x30, bytes(1024)))
    assert len(frames) == 1
    assert len(frames[0].payload) == 1024


def test_parser_handles_empty_payload():
    data = frame(0x05, 0x01, b"") + frame(0x01, 0x03, b"\x07")
    assert UbxParser().feed(data) == [UbxFrame(0x05, 0x01, b""), UbxFrame(0x01, 0x03, b"\x07")]


def test_construction_sends_configuration():
    events = EventManager()
    gps, port = make_gps(events)
    assert len(port.written) == 14
    assert port.written[0] == DISABLE_GGA
    assert port.written[-1] == SET_RATE
    assert port.flushes == 14
    assert events.events()[SERIAL_KEY] == EventLog(Severity.INFO, "port serie ouvert")
    assert gps.state() == GpsState()


def test_construction_reports_unavailable_port():
    events = EventManager()

    def opener(name):
        raise OSError("no device")

    gps = NEO6m(events, "/dev/fake", opener=opener)
    assert events.events()[SERIAL_KEY] == EventLog(
        Severity.CRITICAL, "impossible d ouvrir le port serie"
    )
    assert gps.is_fixed() is False


def test_posllh_updates_coordinates():
    events = EventManager()
    gps, _ = make_gps(events)
    gps.handle(UbxFrame(0x01, 0x02, posllh_payload(123456789, -987654321)))
    coord = gps.coordinates()
    assert coord.longitude == pytest.approx(12.3456789)
    assert coord.latitude == pytest.approx(-98.7654321)
    assert events.events()[PARSER_KEY] == EventLog(Severity.INFO, "reception d un paquet ID : 2")


def test_posllh_with_wrong_size_is_ignored():
    gps, _ = make_gps()
    gps.handle(UbxFrame(0x01, 0x02, posllh_payload(1, 2)[:27]))
    assert gps.coordinates() == Coordinates(0.0, 0.0)


def test_status_sets_fix_only_for_3d():
    gps, _ = make_gps()
    gps.handle(UbxFrame(0x01, 0x03, status_payload(0x03)))
    assert gps.is_fixed() is True
    gps.handle(UbxFrame(0x01, 0x03, status_payload(0x02)))
    assert gps.is_fixed() is False


def test_velned_updates_velocity():
    gps, _ = make_gps()
    payload = struct.pack("<IiiiIIiII", 0, -100, 250, 30, 400, 270, 9000000, 0, 0)
    gps.handle(UbxFrame(0x01, 0x12, payload))
    state = gps.state()
    assert state.vel_ned == (-100, 250, 30)
    assert (state.speed, state.ground_speed) == (400, 270)
    assert state.heading == pytest.approx(90.0)


def test_timeutc_updates_time():
    gps, _ = make_gps()
    payload = struct.pack("<IIiHBBBBBB", 0, 0, 0, 2024, 5, 17, 12, 34, 56, 7)
    gps.handle(UbxFrame(0x01, 0x21, payload))
    assert gps.state().time == (2024, 5, 17, 12, 34, 56)


def test_svinfo_lists_satellites():
    gps, _ = make_gps()

    def channel(number, sv_id, quality, cno):
        return struct.pack("<BBBBbbhi", number, sv_id, 0, quality, cno, 10, 100, 0)

    payload = struct.pack("<IBBH", 0, 2, 0, 0) + channel(0, 17, 4, 42) + channel(1, 5, 7, 30)
    gps.handle(UbxFrame(0x01, 0x30, payload))
    assert gps.state().sats == (SatelliteInfo(17, 42, 4), SatelliteInfo(5, 30, 7))


def test_other_class_leaves_state_unchanged():
    gps, _ = make_gps()
    gps.handle(UbxFrame(0x05, 0x02, posllh_payload(10, 20)))
    assert gps.coordinates() == Coordinates()


def test_state_snapshot_is_unaffected_by_later_updates():
    gps, _ = make_gps()
    before = gps.state()
    gps.handle(UbxFrame(0x01, 0x02, posllh_payload(10, 20)))
    assert before.coord == Coordinates(0.0, 0.0)
    assert gps.state().coord != before.coord


def test_run_decodes_navigation_frames_only():
    events = EventManager()
    data = (
        frame(0x01, 0x02, posllh_payload(123456789, 450000000))
        + frame(0x01, 0x03, status_payload(0x03))
        + frame(0x05, 0x01, b"\x06\x01")
    )
    gps, port = make_gps(events, data)
    thread = threading.Thread(target=gps.run, daemon=True)
    thread.start()
    assert port.drained.wait(3)
    gps.stop()
    thread.join(2)
    assert not thread.is_alive()
    assert gps.coordinates().latitude == pytest.approx(45.0)
    assert gps.is_fixed() is True
    assert events.events()[PARSER_KEY].message == "reception d un paquet ID : 3"
"""Component event tracking: latest state per subsystem plus a text log."""

from __future__ import annotations

import enum
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from os import PathLike
from typing import TextIO


class Severity(enum.IntEnum):
    INFO = 0
    WARNING = 1
    CRITICAL = 2
    FATAL = 3


class Component(enum.IntEnum):
    GPS = 0
    ESP = 1
    BMP = 2
    INS = 3
    PCA = 4


class Subcomponent(enum.IntEnum):
    SERIAL = 0
    I2C = 1
    COMPUTING = 2
    DATA_LINK = 3
    PARSER = 4


_SEVERITY_NAMES = {
    Severity.INFO: "INFO",
    Severity.WARNING: "WARNING",
    Severity.CRITICAL: "CRITICAL",
    Severity.FATAL: "FATAL",
}

_COMPONENT_NAMES = {
    Component.GPS: "GPS",
    Component.ESP: "ESP",
    Component.BMP: "BMP",
    Component.INS: "INS",
}

_SUBCOMPONENT_NAMES = {
    Subcomponent.SERIAL: "serial",
    Subcomponent.I2C: "i2c",
    Subcomponent.COMPUTING: "computing",
    Subcomponent.DATA_LINK: "dataLink",
}


def severity_name(severity: Severity) -> str:
    """Display name of a severity."""
    return _SEVERITY_NAMES.get(severity, "UNKNOWN_SEVERITY")


def component_name(component: Component) -> str:
    """Display name of a component."""
    return _COMPONENT_NAMES.get(component, "UNKNOWN_COMPONENT")


def subcomponent_name(subcomponent: Subcomponent) -> str:
    """Display name of a subcomponent."""
    return _SUBCOMPONENT_NAMES.get(subcomponent, "UNKNOWN_SUBCOMPONENT")


@dataclass(frozen=True)
class Event:
    component: Component
    subcomponent: Subcomponent
    severity: Severity
    message: str

    @property
    def key(self) -> tuple[Component, Subcomponent]:
        return (self.component, self.subcomponent)

    def __str__(self) -> str:
        return " ".join(
            (
                component_name(self.component),
                subcomponent_name(self.subcomponent),
                severity_name(self.severity),
                self.message,
            )
        )


@dataclass(frozen=True)
class EventLog:
    severity: Severity
    message: str


EventMap = Mapping[tuple[Component, Subcomponent], EventLog]


def stringify_events(events: EventMap) -> str:
    """Render events one per line, ordered by key, skipping empty messages."""
    lines = []
    for (component, subcomponent), log in sorted(events.items(), key=lambda item: item[0]):
        if not log.message:
            continue
        lines.append(
            f"{component_name(component)} | {subcomponent_name(subcomponent)} | "
            f"{severity_name(log.severity)} | {log.message}\n"
        )
    return "".join(lines)


class EventManager:
    """Keeps the latest event for each (component, subcomponent) pair."""

    def __init__(self, log_path: str | PathLike[str] | None = None, do_log: bool = False) -> None:
        self.do_log = do_log
        self._lock = threading.Lock()
        self._events: dict[tuple[Component, Subcomponent], EventLog] = {}
        self._log: TextIO | None = (
            open(log_path, "w", encoding="utf-8") if log_path is not None else None
        )

    def report(self, event: Event) -> None:
        """Record an event; changed messages and non-INFO events go to the log file."""
        line = str(event)
        with self._lock:
            previous = self._events.get(event.key)
            previous_message = previous.message if previous is not None else ""
            if self._log is not None and (
                previous_message != event.message or event.severity is not Severity.INFO
            ):
                self._log.write(line + "\n")
                self._log.flush()
            self._events[event.key] = EventLog(event.severity, event.message)
            if self.do_log:
                print(line)

    def clear(self, event: Event) -> None:
        """Forget the state stored for the event's component and subcomponent."""
        with self._lock:
            self._events.pop(event.key, None)

    def events(self) -> dict[tuple[Component, Subcomponent], EventLog]:
        """Snapshot of the current events, ordered by key."""
        with self._lock:
            return dict(sorted(self._events.items(), key=lambda item: item[0]))

    def close(self) -> None:
        with self._lock:
            if self._log is not None:
                self._log.close()
                self._log = None

    def __enter__(self) -> EventManager:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
"""Digital GPIO access through the sysfs interface."""

from __future__ import annotations

import logging
import os
from pathlib import Path

_PIN_COUNT = 40

logger = logging.getLogger(__name__)


class Gpio:
    """Reads and writes pins, configuring each one on first use."""

    def __init__(self, root: str | os.PathLike[str] = "/sys/class/gpio") -> None:
        self._root = Path(root)
        self._initialised: set[int] = set()
        if not self._root.is_dir():
            logger.error("GPIO initialisation failed: %s is not available", self._root)

    def _pin_dir(self, pin: int) -> Path:
        return self._root / f"gpio{pin}"

    def _setup(self, pin: int, direction: str) -> Path:
        if not 0 <= pin < _PIN_COUNT:
            raise ValueError(f"pin must be in 0..{_PIN_COUNT - 1}, got {pin}")
        pin_dir = self._pin_dir(pin)
        if pin not in self._initialised:
            if not pin_dir.exists():
                (self._root / "export").write_text(str(pin))
            (pin_dir / "direction").write_text(direction)
            self._initialised.add(pin)
        return pin_dir

    def write(self, pin: int, state: bool) -> None:
        pin_dir = self._setup(pin, "out")
        (pin_dir / "value").write_text("1" if state else "0")

    def read(self, pin: int) -> bool:
        pin_dir = self._setup(pin, "in")
        return (pin_dir / "value").read_text().strip() == "1"
"""Sensor drivers, inertial navigation, system monitoring and WebSocket telemetry for a small drone."""

__version__ = "0.1.0"
[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "dronenav"
version = "0.1.0"
description = "Drone navigation stack: sensor drivers, inertial navigation, system monitoring and live telemetry over WebSocket"
requires-python = ">=3.10"
keywords = ["drone", "ins", "gps", "ubx", "bmp280", "pca9685", "telemetry", "kalman", "websocket"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering",
    "Topic :: System :: Hardware",
]
dependencies = [
    "numpy",
    "pyserial",
    "websockets",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[project.scripts]
dronenav = "dronenav.launcher:main"

[tool.hatch.build.targets.wheel]
packages = ["dronenav"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true

# dronenav

Flight-side navigation software for a small drone that runs on a Linux single-board computer.
It reads the onboard sensors and fuses them into an attitude and position estimate. It also
tracks the health of the system and streams everything as JSON to WebSocket clients.

## Modules

- `dronenav.events`: `EventManager` keeps the latest `Event` for each `(Component, Subcomponent)`
  pair. When it is given a log file, it writes each changed message and each non-INFO event to
  that file. With `do_log` set, it also prints them. `stringify_events` renders the table one
  line per entry, in key order, and skips entries with an empty message.
- `dronenav.bmp280`: `BMP280` is a barometer on a Linux I²C bus. `read()` returns a `Reading`
  (°C, hPa). It returns zeros when the device could not be opened. The integer compensation
  is `compensate(calibration, adc_t, adc_p)`. It works without hardware, together with
  `Calibration.from_bytes` and `parse_adc`.
- `dronenav.pca9685`: `PCA9685` is a PWM driver for outputs 0–7. `set_pwm(output, percent)`
  updates the register frame, clamping the duty cycle to 0–100 %. `register_frame()` returns
  a copy of that frame. `run()` writes the frame to the chip about every 50 ms until `stop()`.
  `pwm_ticks(percent)` gives the off tick (0–4095).
- `dronenav.tfluna`: `TFLuna` is a lidar on I²C. `distance()` returns metres and
  `set_power(on)` switches the sensor on or off.
- `dronenav.gpio`: `Gpio` controls digital pins 0–39 through the sysfs GPIO interface
  (`/sys/class/gpio` by default). It exports each pin and sets its direction on first use.
- `dronenav.ussensor`: `UltrasonicSensor` triggers a pulse and times the echo. `measure(echo_pin)`
  returns metres, or raises `TimeoutError` when the echo does not start or does not end within
  `timeout` seconds.
- `dronenav.esp32`: `ESP32` is a serial link to an IMU co-processor. Frames carry a `$\t` header,
  a packed `EspData` (event byte plus roll, pitch, yaw, acceleration and magnetometer values) and
  a footer. When connecting, it tries up to 50 times to open the port and see a frame header.
  `run()` keeps the latest packet, which `data()` returns. It answers acknowledgement requests.
- `dronenav.neo6m`: `NEO6m` is a u-blox GPS receiver. On opening, it disables the NMEA
  sentences, enables the UBX NAV messages, selects the airborne dynamic model and sets the
  measurement rate. `UbxParser.feed(bytes)` yields `UbxFrame`s. It skips checksums and does
  not verify them. `handle(frame)` applies position, status, velocity, UTC time and satellite
  messages to a `GpsState`. Read the results with `coordinates()`, `state()` and `is_fixed()`.
- `dronenav.ins`: `INS` waits for a 3D GPS fix, or gives up after
  `InsSettings.n_gps_attempt` polls. It then averages `n_gps_calib` GPS positions and pressure
  readings to set its reference point. While running, it does the following:
  - takes roll and pitch from the ESP32;
  - computes a tilt-compensated magnetic heading, smoothed by per-axis `Kalman1D` filters and
    the `alpha_heading` factor;
  - at `z_refresh_rate`, computes a local east/north/up position from the GPS and
    `barometric_altitude`, through `LocalCartesian` (WGS84).

  `state3d()` returns a copy of the `State3D`.
- `dronenav.monitoring`: `SysMonitoring` snapshots the components that exist on its source
  object (`esp`, `baro`, `gps`, `ins`), together with the events, CPU temperature
  (`read_cpu_temp`) and used RAM in MiB (`read_ram_usage`).
- `dronenav.com`: `Com` runs a WebSocket server. At its refresh rate it sends `to_json` of the
  latest monitoring snapshot to every connected client. `to_json` produces compact JSON with
  sorted keys and `null` for non-finite numbers. Every message a client sends gets a fixed text
  reply. `Com.run()` first starts `NodeProcess`, which runs `node app/server.js`.
- `dronenav.launcher`: `Launcher` creates the components in dependency order and runs each one
  in a daemon thread. `main()` is the command-line entry point.

## Installation

```
pip install .
```

For the test suite:

```
pip install ".[test]"
pytest
```

## Running

```
dronenav [--port 9001] [--com-rate 5] [--log-file FILE] [--ins-restart 20] [--verbose]
```

The command starts the following, in order:

1. the event registry, the monitoring loop and the WebSocket telemetry server (which also
   launches the Node.js server);
2. the barometer (`/dev/i2c-4`), the GPS (`/dev/ttyAMA1`) and the ESP32 link (`/dev/ttyAMA0`);
3. the INS, which it starts again, replacing the first instance, after `--ins-restart` seconds.

`--verbose` prints events as they arrive and turns on debug logging. Press Ctrl-C to stop every
component, interrupt the Node.js server and close the devices.

## Using the pieces directly

```python
from dronenav.events import EventManager
from dronenav.pca9685 import PCA9685, pwm_ticks

events = EventManager("drone.log", do_log=True)
pca = PCA9685(events, 0x70, "/dev/i2c-1")
pca.set_pwm(0, 42.5)        # output 0 at 42.5 % duty cycle
print(pwm_ticks(50.0))      # 2048
```

```python
from dronenav.neo6m import UbxParser

parser = UbxParser()
for frame in parser.feed(raw_bytes):
    print(frame.message_class, frame.message_id, len(frame.payload))
```

## What it does not do

- The web application itself is not included. `Com` only launches `node app/server.js`, relative
  to the working directory, and logs an error if Node.js cannot be started.
- The `dronenav` command serves WebSocket telemetry without TLS. To use TLS, pass an
  `ssl.SSLContext` to `Com` yourself.
- The command does not create or drive the PWM outputs, the lidar or the ultrasonic sensor.
  Those classes are available for your own code.
- The INS estimates attitude and position only. The velocity in `State3D` stays at zero.
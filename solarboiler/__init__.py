"""
Solar Boiler Controller

Drives a two-tank solar thermal installation through a serial link to
its micro controller:
- telemetry-link: owns the serial device, stores readings, sends actuator frames
- control-engine-tick: decides the next control state from the stored readings
- metrics-flush: publishes state, readings, sun position and trend over UDP
"""

__version__ = "1.0.0"

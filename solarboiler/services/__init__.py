"""
Services

- control - Control engine (sun gate, trend, transition table)
- telemetry - Serial telemetry link and device lease
- reporting - Metrics, remote diagnostics, alerts
"""

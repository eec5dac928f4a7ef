#!/usr/bin/env python3
"""
Solar Boiler Controller - Main Entry Point

Usage:
    solarboiler telemetry-link          # Resident serial owner
    solarboiler control-engine-tick     # One control pass (schedule every minute)
    solarboiler metrics-flush           # One metrics snapshot

The configuration file is taken from $SOLARBOILER_CONFIG, else
/etc/solarboiler/config.yaml, /opt/solarboiler/config.yaml or ./config.yaml.

Exit codes: 0 on a normal run (including a telemetry link that finds the
serial device already leased), 1 on any other failure.
"""

import argparse
import asyncio
import os
import sys

from solarboiler import __version__
from solarboiler.common.config import AppConfig, load_config_file
from solarboiler.common.exceptions import ConfigError, LeaseConflict, SolarBoilerError
from solarboiler.common.logging_setup import (
    configure_service_loggers,
    get_service_logger,
    log_failure,
)
from solarboiler.common.state import SharedState
from solarboiler.services.control import ControlEngine, ControlService
from solarboiler.services.reporting import AlertNotifier, MetricsReporter
from solarboiler.services.telemetry import TelemetryLink

TELEMETRY_LINK = "telemetry-link"
CONTROL_ENGINE_TICK = "control-engine-tick"
METRICS_FLUSH = "metrics-flush"

RUN_MODES = (TELEMETRY_LINK, CONTROL_ENGINE_TICK, METRICS_FLUSH)

logger = get_service_logger("main")


async def run_telemetry_link(config: AppConfig, store: SharedState) -> None:
    notifier = AlertNotifier(store, config.alerts)
    link = TelemetryLink(store, config, notifier=notifier)
    await link.run()


async def run_control_tick(config: AppConfig, store: SharedState) -> None:
    notifier = AlertNotifier(store, config.alerts)
    service = ControlService(ControlEngine(store, config), notifier)
    await service.run_once()


async def run_metrics_flush(config: AppConfig, store: SharedState) -> None:
    reporter = MetricsReporter(store, config)
    try:
        reporter.flush()
    finally:
        reporter.close()


RUNNERS = {
    TELEMETRY_LINK: run_telemetry_link,
    CONTROL_ENGINE_TICK: run_control_tick,
    METRICS_FLUSH: run_metrics_flush,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="solarboiler",
        description="Solar Boiler Controller (configuration via $SOLARBOILER_CONFIG)"
    )
    parser.add_argument(
        "mode",
        choices=RUN_MODES,
        help="Run mode"
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point. Returns the process exit code."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config_file()
    except ConfigError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    log_format = os.environ.get("SOLARBOILER_LOG_FORMAT")
    json_format = log_format.lower() == "json" if log_format else config.logging.json_format
    configure_service_loggers(config.logging.level, json_format)

    store = SharedState(config.store.state_dir)
    logger.info(f"Solar boiler controller {__version__}: {args.mode}")

    try:
        asyncio.run(RUNNERS[args.mode](config, store))
    except KeyboardInterrupt:
        logger.info("Stopped by user")
    except LeaseConflict as e:
        logger.warning(f"{e.message}, exiting", extra={"holder": e.holder})
    except SolarBoilerError as e:
        log_failure(logger, e.kind.value if e.kind else "error", e.message, fatal=True)
        return 1
    except Exception:
        logger.exception(f"Unhandled error in {args.mode}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())

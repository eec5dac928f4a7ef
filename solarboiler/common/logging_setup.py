"""
Structured Logging Setup

Consistent logging configuration across all run modes.
Uses JSON format for structured logs in production.
"""

import logging
import sys
import os
from datetime import datetime, timezone
import json

# Record attributes that belong to logging itself and are not extra context
_RESERVED_ATTRS = frozenset((
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "service",
    "message", "taskName",
))


class JsonFormatter(logging.Formatter):
    """JSON log formatter for structured logging"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "service": getattr(record, "service", "unknown"),
            "message": record.getMessage(),
            "logger": record.name,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


class ServiceLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds service name to all logs"""

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        kwargs.setdefault("extra", {})
        kwargs["extra"]["service"] = self.extra.get("service", "unknown")
        return msg, kwargs


def setup_logging(
    service_name: str,
    log_level: str = "INFO",
    json_format: bool = True,
) -> logging.Logger:
    """
    Set up structured logging for a service.

    Args:
        service_name: Name of the service (e.g., "telemetry", "control")
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format (True for production, False for dev)

    Returns:
        Configured logger instance
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger(f"solarboiler.{service_name}")
    logger.setLevel(numeric_level)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)

    if json_format:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handler.setFormatter(formatter)
    logger.addHandler(handler)

    # Don't propagate to root logger
    logger.propagate = False

    return logger


def get_service_logger(service_name: str) -> ServiceLoggerAdapter:
    """
    Get a logger adapter with service context.

    Level and format can be overridden with SOLARBOILER_LOG_LEVEL and
    SOLARBOILER_LOG_FORMAT ("json" or "text").
    """
    log_level = os.environ.get("SOLARBOILER_LOG_LEVEL", "INFO")
    json_format = os.environ.get("SOLARBOILER_LOG_FORMAT", "json").lower() == "json"

    logger = setup_logging(service_name, log_level, json_format)
    return ServiceLoggerAdapter(logger, {"service": service_name})


def configure_service_loggers(log_level: str, json_format: bool) -> None:
    """Re-apply level and format to every service logger created so far"""
    for name in list(logging.Logger.manager.loggerDict):
        if name.startswith("solarboiler."):
            setup_logging(name[len("solarboiler."):], log_level, json_format)


def log_transition(
    logger: logging.LoggerAdapter,
    previous: str | None,
    current: str,
    reason: str,
    flow_out: float | None = None,
) -> None:
    """Log a control state transition"""
    logger.info(
        f"State {previous or 'absent'} -> {current}: {reason}",
        extra={
            "previous_state": previous,
            "state": current,
            "reason": reason,
            "flow_out": flow_out,
        },
    )


def log_sensor_fault(logger: logging.LoggerAdapter, fault) -> None:
    """Log a SensorFault (reading dropped by the outlier filter)"""
    logger.warning(
        fault.message,
        extra={"failure_kind": fault.kind.value, "field": fault.field, "raw": fault.raw},
    )


def log_frame(
    logger: logging.LoggerAdapter,
    kind: str,
    line: str,
    command: str | None = None,
) -> None:
    """Log an inbound serial frame and the command sent back"""
    logger.debug(
        f"Frame [{kind}] {line!r} -> {command}",
        extra={"frame_kind": kind, "line": line, "command": command},
    )


def log_failure(
    logger: logging.LoggerAdapter,
    kind: str,
    message: str,
    fatal: bool = False,
) -> None:
    """Log a classified failure"""
    log_method = logger.critical if fatal else logger.error
    log_method(
        f"FAILURE [{kind}] {message}",
        extra={"failure_kind": kind, "fatal": fatal},
    )

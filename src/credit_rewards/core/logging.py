from __future__ import annotations

import json
import logging
import sys
from logging import LogRecord
from typing import Any, Dict

from loguru import logger
from opentelemetry import trace


# Attributes every LogRecord carries; anything else came in through ``extra=``.
_STANDARD_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

_NOISY_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "apscheduler.executors.default": logging.WARNING,
}


class InterceptHandler(logging.Handler):
    """Send stdlib records (uvicorn, sqlalchemy, apscheduler, alembic) to Loguru."""

    def emit(self, record: LogRecord) -> None:  # pragma: no cover - bridging glue
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        extra = {key: value for key, value in vars(record).items() if key not in _STANDARD_RECORD_ATTRS}
        # Loguru formats braces in messages; stdlib messages are already rendered.
        message = record.getMessage().replace("{", "{{").replace("}", "}}")

        target = logger.bind(logger_name=record.name, **extra)
        target.opt(depth=6, exception=record.exc_info).log(level, message)


def _trace_fields() -> Dict[str, str]:
    span_context = trace.get_current_span().get_span_context()
    if not span_context.is_valid:
        return {}
    return {
        "trace_id": f"{span_context.trace_id:032x}",
        "span_id": f"{span_context.span_id:016x}",
    }


def _json_sink(metadata: Dict[str, str]):
    def sink(message: "logger.Message") -> None:
        record = message.record
        payload: Dict[str, Any] = {
            "timestamp": record["time"].isoformat(),
            "level": record["level"].name.lower(),
            "message": record["message"],
            "logger": record["name"],
            **metadata,
            **_trace_fields(),
            **record["extra"],
        }
        if record["exception"] is not None:
            payload["exception"] = repr(record["exception"].value)
        sys.stdout.write(json.dumps(payload, default=str) + "\n")

    return sink


def configure_logging(
    *,
    service_name: str,
    environment: str,
    version: str,
    level: str = "INFO",
    json_logs: bool = True,
) -> None:
    """Route all application and library logging through a single Loguru sink.

    JSON lines carry service metadata, bound context (``reward_type``,
    ``to_user_id``...) and the active OpenTelemetry trace ids. Local
    development can switch to Loguru's human readable format instead.
    """

    logger.remove()
    if json_logs:
        metadata = {"service": service_name, "environment": environment, "version": version}
        logger.add(_json_sink(metadata), level=level, backtrace=False, diagnose=False)
    else:
        logger.add(sys.stderr, level=level, backtrace=False, diagnose=False)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name, logger_level in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(logger_level)


__all__ = ["InterceptHandler", "configure_logging"]

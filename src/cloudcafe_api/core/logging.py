"""Loguru configuration: JSON lines with trace ids and redacted secrets."""

from __future__ import annotations

import json
import logging
import sys
from typing import Any, Dict, Mapping

from loguru import logger
from opentelemetry import trace

# Attributes every stdlib LogRecord carries; anything else is caller context.
_STDLIB_RECORD_FIELDS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message",
    "asctime",
}

_REDACTED_KEYS = frozenset(
    {
        "authorization",
        "password",
        "service_key",
        "worldpay_password",
        "worldpay_service_key",
    }
)


class InterceptHandler(logging.Handler):
    """Route stdlib records (uvicorn, sqlalchemy, httpx) through Loguru."""

    def emit(self, record: logging.LogRecord) -> None:  # pragma: no cover - bridging glue
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        context = {key: value for key, value in vars(record).items() if key not in _STDLIB_RECORD_FIELDS}
        message = record.getMessage().replace("{", "{{").replace("}", "}}")
        logger.bind(stdlib_logger=record.name, **context).opt(
            depth=6,
            exception=record.exc_info,
        ).log(level, message)


def redact(values: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        key: "[redacted]" if key.lower() in _REDACTED_KEYS else value
        for key, value in values.items()
    }


def _trace_context() -> Dict[str, str]:
    span_context = trace.get_current_span().get_span_context()
    if not span_context.is_valid:
        return {}
    return {
        "trace_id": format(span_context.trace_id, "032x"),
        "span_id": format(span_context.span_id, "016x"),
    }


def _json_sink(metadata: Mapping[str, str]):
    def sink(message: "logger.Message") -> None:
        record = message.record
        line: Dict[str, Any] = {
            "ts": record["time"].isoformat(),
            "level": record["level"].name.lower(),
            "msg": record["message"],
            "module": record["name"],
            **metadata,
            **_trace_context(),
            **redact(record["extra"]),
        }
        if record["exception"] is not None:
            line["exception"] = repr(record["exception"].value)
        sys.stdout.write(json.dumps(line, default=str) + "\n")

    return sink


def configure_logging(
    *,
    service_name: str,
    environment: str,
    version: str,
    level: str = "INFO",
    fmt: str = "json",
) -> None:
    """Install the Loguru sink and send stdlib logging through it.

    ``fmt="console"`` keeps Loguru's coloured default for local work.
    """

    logger.remove()
    if fmt == "console":
        logger.add(sys.stderr, level=level, backtrace=False, diagnose=False)
    else:
        metadata = {"service": service_name, "env": environment, "version": version}
        logger.add(_json_sink(metadata), level=level, backtrace=False, diagnose=False)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for noisy in ("uvicorn.access", "sqlalchemy.engine", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


__all__ = ["InterceptHandler", "configure_logging", "redact"]

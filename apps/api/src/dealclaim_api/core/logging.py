from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from logging import LogRecord
from typing import Any, Dict, Iterator

from loguru import logger
from opentelemetry import trace


_RESERVED_LOG_RECORD_ATTRS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
}

# Identifiers that tie a log line to one claim's lifecycle; grouped under "lifecycle".
LIFECYCLE_KEYS = ("claim_id", "deal_id", "customer_id", "vendor_id", "redemption_id", "transfer_id")

# Bearer credentials: anyone holding one can redeem or confirm the claim.
_CREDENTIAL_KEYS = frozenset({"qr_code", "redemption_code", "session_token", "payment_reference"})


class InterceptHandler(logging.Handler):
    """Route stdlib logging records (uvicorn, sqlalchemy) through Loguru."""

    def emit(self, record: LogRecord) -> None:  # pragma: no cover - bridging glue
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        try:
            message = record.getMessage()
        except Exception:  # pragma: no cover - malformed format strings
            message = record.msg if isinstance(record.msg, str) else str(record.msg)

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_LOG_RECORD_ATTRS
        }

        safe_message = message.replace("{", "{{").replace("}", "}}")

        bound_logger = logger.bind(**extra) if extra else logger
        bound_logger.opt(depth=6, exception=record.exc_info, record=True).log(
            level, safe_message
        )


def mask_credential(value: Any) -> str:
    text = str(value)
    if len(text) <= 3:
        return "***"
    return "***" + text[-3:]


def _component(logger_name: str | None) -> str:
    """``dealclaim_api.services.claims.redemption`` logs as ``redemption``."""

    if not logger_name:
        return "unknown"
    return logger_name.rsplit(".", 1)[-1]


def build_log_payload(record: Dict[str, Any], metadata: Dict[str, Any]) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name.lower(),
        "message": record["message"],
        "logger": record["name"],
        "component": _component(record["name"]),
        "service": metadata.get("service_name", "unknown"),
        "environment": metadata.get("environment", "unknown"),
        "version": metadata.get("version", "unknown"),
    }

    span = trace.get_current_span()
    span_context = span.get_span_context() if span else None
    if span_context and span_context.is_valid:
        payload["trace_id"] = f"{span_context.trace_id:032x}"
        payload["span_id"] = f"{span_context.span_id:016x}"

    lifecycle: Dict[str, Any] = {}
    for key, value in (record["extra"] or {}).items():
        if key in LIFECYCLE_KEYS:
            if value is not None:
                lifecycle[key] = value
        elif key in _CREDENTIAL_KEYS and value is not None:
            payload[key] = mask_credential(value)
        else:
            payload[key] = value
    if lifecycle:
        payload["lifecycle"] = lifecycle

    if record["exception"] is not None:
        exc_type, exc_value, _ = record["exception"]
        payload["exception"] = {
            "type": exc_type.__name__ if exc_type else None,
            "message": str(exc_value) if exc_value else None,
        }
    return payload


def _serialize_log(message: "logger.Message", metadata: Dict[str, Any]) -> None:
    print(json.dumps(build_log_payload(message.record, metadata), default=str))


@contextmanager
def claim_context(**identifiers: Any) -> Iterator[None]:
    """Attach lifecycle identifiers to every log line emitted inside the block."""

    bound = {key: str(value) for key, value in identifiers.items() if key in LIFECYCLE_KEYS and value is not None}
    with logger.contextualize(**bound):
        yield


def configure_logging(*, service_name: str, environment: str, version: str) -> None:
    """Configure Loguru + stdlib logging with structured JSON output."""

    logger.remove()
    metadata = {"service_name": service_name, "environment": environment, "version": version}
    logger.add(lambda message: _serialize_log(message, metadata), backtrace=False, diagnose=False)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


__all__ = ["LIFECYCLE_KEYS", "build_log_payload", "claim_context", "configure_logging", "mask_credential"]

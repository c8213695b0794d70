"""Plantwatch — Structured Logging.

JSON logging for deployed environments and colored console output for
local development, with secret/PII redaction and per-request context.

Usage:
    from logger import get_logger, configure_logging

    configure_logging(environment="production")

    logger = get_logger(__name__)
    logger.info("Machine started", machine_id=3)
"""

from __future__ import annotations

import logging
import re
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Any

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from structlog.types import EventDict, Processor, WrappedLogger

# =============================================================================
# Context Variables for Request Tracking
# =============================================================================

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)


# =============================================================================
# Secret and PII Filtering
# =============================================================================

SENSITIVE_FIELD_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"password", re.IGNORECASE),
    re.compile(r"secret", re.IGNORECASE),
    re.compile(r"token", re.IGNORECASE),
    re.compile(r"api[_-]?key", re.IGNORECASE),
    re.compile(r"authorization", re.IGNORECASE),
    re.compile(r"bearer", re.IGNORECASE),
    re.compile(r"jwt", re.IGNORECASE),
    re.compile(r"cookie", re.IGNORECASE),
)

PII_VALUE_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}"), "[EMAIL_REDACTED]"),
    (re.compile(r"\bBearer\s+[A-Za-z0-9\-._~+/]+=*", re.IGNORECASE), "Bearer [REDACTED]"),
)

REDACTED = "[REDACTED]"


def _is_sensitive_field(field_name: str) -> bool:
    return any(pattern.search(field_name) for pattern in SENSITIVE_FIELD_PATTERNS)


def _redact_pii_in_value(value: str) -> str:
    result = value
    for pattern, replacement in PII_VALUE_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


def _sanitize_value(value: Any, field_name: str = "") -> Any:
    """Recursively sanitize a value, redacting sensitive data."""
    if field_name and _is_sensitive_field(field_name):
        return REDACTED

    if isinstance(value, str):
        return _redact_pii_in_value(value)

    if isinstance(value, dict):
        return {k: _sanitize_value(v, str(k)) for k, v in value.items()}

    if isinstance(value, (list, tuple)):
        return type(value)(_sanitize_value(item) for item in value)

    return value


# =============================================================================
# Structlog Processors
# =============================================================================

def add_request_context(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Inject request context (request_id, user_id) into log entries."""
    request_id = request_id_var.get()
    if request_id:
        event_dict["request_id"] = request_id

    user_id = user_id_var.get()
    if user_id:
        event_dict.setdefault("user_id", user_id)

    return event_dict


def sanitize_sensitive_data(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Remove PII and secrets from log entries."""
    return {k: _sanitize_value(v, k) for k, v in event_dict.items()}


def add_service_context(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    event_dict["app"] = "plantwatch"
    return event_dict


def drop_color_message_key(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Remove the color_message key uvicorn adds (not needed in JSON)."""
    event_dict.pop("color_message", None)
    return event_dict


# =============================================================================
# Logging Configuration
# =============================================================================

def configure_logging(
    environment: str = "development",
    log_level: str = "INFO",
    json_format: bool | None = None,
) -> None:
    """Configure structured logging for the application.

    Args:
        environment: Deployment environment (development, test, staging, production).
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        json_format: Force JSON output. If None, JSON everywhere except development.
    """
    use_json = json_format if json_format is not None else (environment != "development")

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        add_service_context,
        add_request_context,
        sanitize_sensitive_data,
    ]

    if use_json:
        shared_processors.extend([
            drop_color_message_key,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ])
    else:
        shared_processors.append(
            structlog.dev.ConsoleRenderer(
                colors=True,
                exception_formatter=structlog.dev.rich_traceback,
            ),
        )

    structlog.configure(
        processors=shared_processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
        force=True,
    )

    for noisy_logger in ("uvicorn.access", "httpx", "httpcore", "asyncio", "aiosqlite"):
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a configured structlog logger.

    Args:
        name: Logger name (typically __name__).

    Returns:
        Configured structlog logger with automatic context injection.
    """
    return structlog.stdlib.get_logger(name)


# =============================================================================
# FastAPI Middleware for Request Context
# =============================================================================

class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind a request id to every log entry emitted while serving a request.

    The id is taken from ``X-Request-ID`` when the client supplies one and
    echoed back on the response.
    """

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request_id_var.set(request_id)

        logger = get_logger("plantwatch.http")
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.info(
                "Request completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration_ms, 2),
            )
            response.headers["X-Request-ID"] = request_id
            return response

        except Exception as exc:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.exception(
                "Request failed",
                method=request.method,
                path=request.url.path,
                duration_ms=round(duration_ms, 2),
                error_type=type(exc).__name__,
            )
            raise

        finally:
            request_id_var.set(None)
            user_id_var.set(None)

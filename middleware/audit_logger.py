"""Plantwatch — HTTP Audit Middleware.

Writes one structlog event per request to a sensitive route (and, when
configured, per request to any route). This is the transport-level trail;
the domain audit log in ``services.audit_service`` records what changed.

Logged fields:
    - user_id (resolved identity, or "anonymous")
    - ip (X-Forwarded-For aware)
    - action (HTTP method + path)
    - status
    - duration_ms
"""

from __future__ import annotations

import re
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from logger import get_logger

audit_logger = get_logger("security.audit")

# =============================================================================
# SENSITIVE ROUTES
# =============================================================================
SENSITIVE_ROUTES = {
    # Authentication & user administration
    "POST /api/auth/login",
    "POST /api/auth/register",
    "POST /api/auth/approve/{user_id}",
    "POST /api/auth/reject/{user_id}",
    "POST /api/auth/role/{user_id}",
    "POST /api/auth/suspend/{user_id}",
    "POST /api/auth/reactivate/{user_id}",
    # Fleet administration
    "POST /api/machines",
    "PUT /api/machines/{machine_id}",
    "DELETE /api/machines/{machine_id}",
    "POST /api/machines/seed",
    "POST /api/machines/emergency/shutdown",
    "POST /api/machines/{machine_id}/thresholds",
    "POST /api/machines/{machine_id}/assign-engineer",
    # Alerts
    "POST /api/alerts",
    "POST /api/alerts/{alert_id}/resolve",
    # Audit log
    "GET /api/logs/export",
}


def _compile(routes: set[str]) -> list[tuple[str, re.Pattern[str]]]:
    compiled = []
    for route in routes:
        method, pattern = route.split(" ", 1)
        compiled.append((method, re.compile(re.sub(r"\{[^}]+\}", r"[^/]+", pattern))))
    return compiled


_SENSITIVE_PATTERNS = _compile(SENSITIVE_ROUTES)


def is_sensitive_route(method: str, path: str) -> bool:
    """Check a request against ``SENSITIVE_ROUTES``, matching path parameters."""
    return any(
        method == s_method and pattern.fullmatch(path)
        for s_method, pattern in _SENSITIVE_PATTERNS
    )


def get_client_ip(request: Request) -> str:
    """Client IP, preferring the first X-Forwarded-For hop."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def get_user_id(request: Request) -> str:
    # Set by dependencies.get_current_user once the token is resolved
    identity = getattr(request.state, "user", None)
    return str(identity.id) if identity is not None else "anonymous"


class AuditLoggerMiddleware(BaseHTTPMiddleware):
    """Audit trail for sensitive HTTP routes."""

    def __init__(self, app: ASGIApp, log_all_requests: bool = False):
        super().__init__(app)
        self.log_all_requests = log_all_requests

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()
        method = request.method
        path = request.url.path
        sensitive = is_sensitive_route(method, path)

        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            if sensitive or self.log_all_requests:
                log = audit_logger.info
                if status_code >= 500:
                    log = audit_logger.error
                elif status_code >= 400:
                    log = audit_logger.warning
                log(
                    "http_audit",
                    user_id=get_user_id(request),
                    ip=get_client_ip(request),
                    action=f"{method} {path}",
                    status=status_code,
                    duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
                    sensitive=sensitive,
                )

#!/usr/bin/env python3
"""Plantwatch — API Server.

Endpoints:
- /api/auth/*       : Registration, login, user administration
- /api/machines/*   : Machine registry and control
- /api/alerts/*     : Alert lifecycle
- /api/logs/*       : Audit log listing and CSV export
- /api/analytics/*  : Fleet summary
- /api/health       : Public health check
- /ws?token=        : WebSocket stream of machine_update / metrics_update
- /docs             : Swagger UI (auto-generated)
"""

import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Query, Request, WebSocket, WebSocketDisconnect, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded

import alert_api
import analytics_api
import auth_api
import log_api
import machine_api
from config import get_settings, validate_startup
from core.exceptions import PlantwatchBaseException
from database import check_database_health, get_db_context, init_database, shutdown_database
from logger import RequestContextMiddleware, configure_logging, get_logger
from middleware.audit_logger import AuditLoggerMiddleware
from schemas.response import ORJSONResponse
from services.auth_service import InvalidTokenError, get_auth_service
from services.broadcast_service import manager
from services.telemetry_service import TelemetrySimulator
from services.user_service import UserService

logger = get_logger(__name__)

# WebSocket close code for policy violations (RFC 6455)
WS_POLICY_VIOLATION = 1008


# =============================================================================
# LIFESPAN (Startup/Shutdown)
# =============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize resources on startup, cleanup on shutdown."""
    settings = get_settings()
    configure_logging(settings.environment, settings.log.level, settings.log.format == "json")
    logger.info(
        "Plantwatch starting",
        environment=settings.environment,
        database=settings.database.dsn_safe,
    )

    await init_database()

    simulator = TelemetrySimulator(settings.simulation)
    app.state.simulator = simulator
    if settings.simulation.enabled:
        simulator.start()

    yield

    logger.info("Plantwatch shutting down")
    await simulator.stop()
    await shutdown_database()


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================
async def domain_exception_handler(request: Request, exc: PlantwatchBaseException):
    """Map a domain exception to its status code and JSON envelope."""
    if exc.status_code >= 500:
        logger.error("Domain error", path=request.url.path, error=exc.message)
    else:
        logger.info(
            "Request rejected",
            path=request.url.path,
            error_type=type(exc).__name__,
            status_code=exc.status_code,
        )
    return ORJSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {
            "loc": [str(part) for part in error.get("loc", ())],
            "msg": error.get("msg", ""),
            "type": error.get("type", ""),
        }
        for error in exc.errors()
    ]
    return ORJSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "ValidationError",
            "message": "Request validation failed",
            "details": {"errors": errors},
        },
    )


async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return ORJSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={
            "error": "RateLimitExceeded",
            "message": f"Rate limit exceeded: {exc.detail}",
            "details": {},
        },
    )


async def global_exception_handler(request: Request, exc: Exception):
    """Catch-all: log the full trace, return a clean 500 with a reference id."""
    error_id = str(uuid.uuid4())
    logger.exception(
        "Unhandled exception",
        reference_id=error_id,
        path=request.url.path,
        method=request.method,
    )
    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "InternalServerError",
            "message": "An internal error occurred",
            "details": {},
            "reference_id": error_id,
        },
    )


# =============================================================================
# REST ENDPOINTS
# =============================================================================
async def health_check():
    """Public health check for load balancers."""
    database = await check_database_health()
    healthy = database["status"] == "healthy"
    return ORJSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ok" if healthy else "degraded",
            "database": database,
            "connected_clients": manager.client_count,
        },
    )


# =============================================================================
# WEBSOCKET ENDPOINT
# =============================================================================
async def websocket_stream(websocket: WebSocket, token: str = Query(None)):
    """Real-time fleet stream.

    Requires a valid JWT in the query string: ``/ws?token=...``. The server
    only pushes; anything the client sends is ignored.
    """
    if not token:
        await websocket.close(code=WS_POLICY_VIOLATION, reason="Missing authentication token")
        return

    try:
        token_data = get_auth_service().verify_token(token)
        async with get_db_context() as db:
            identity = await UserService(db).resolve_identity(token_data.user_id)
    except (InvalidTokenError, PlantwatchBaseException) as exc:
        logger.warning("WebSocket connection rejected", error=str(exc))
        await websocket.close(code=WS_POLICY_VIOLATION, reason="Invalid authentication token")
        return

    await manager.connect(websocket, identity.id)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await manager.disconnect(websocket)


# =============================================================================
# FASTAPI APP
# =============================================================================
def create_app() -> FastAPI:
    """Build the application from the current settings."""
    settings = get_settings()

    app = FastAPI(
        title=f"{settings.app_name} API",
        description="Role-based industrial machine monitoring and control.",
        version=settings.app_version,
        debug=settings.debug,
        lifespan=lifespan,
        default_response_class=ORJSONResponse,
    )

    # Rate limiting (login only, see auth_api)
    auth_api.limiter.enabled = settings.security.rate_limit_enabled
    app.state.limiter = auth_api.limiter

    app.add_exception_handler(PlantwatchBaseException, domain_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    # Middleware runs in reverse order of registration
    app.add_middleware(AuditLoggerMiddleware, log_all_requests=False)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.security.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth_api.router)
    app.include_router(machine_api.router)
    app.include_router(alert_api.router)
    app.include_router(log_api.router)
    app.include_router(analytics_api.router)

    app.add_api_route("/api/health", health_check, methods=["GET"], tags=["System"])
    app.add_api_websocket_route("/ws", websocket_stream)

    return app


app = create_app()


# =============================================================================
# MAIN
# =============================================================================
if __name__ == "__main__":
    import uvicorn

    validate_startup()
    settings = get_settings()
    uvicorn.run(
        "api_server:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level=settings.log.level.lower(),
    )

"""Plantwatch — Shared API Response Schemas.

Error envelope, pagination parameters and the orjson-backed default
response class.

Usage:
    from schemas.response import ORJSONResponse

    app = FastAPI(default_response_class=ORJSONResponse)
"""

from __future__ import annotations

from typing import Any, Generic, TypeVar

import orjson
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from schemas import CamelModel

T = TypeVar("T")


# =============================================================================
# High-Performance ORJSON Response
# =============================================================================

def _orjson_serializer(obj: Any) -> bytes:
    """Serialize object to JSON bytes using orjson."""
    return orjson.dumps(
        obj,
        option=(
            orjson.OPT_UTC_Z |                 # Use Z suffix for UTC
            orjson.OPT_NAIVE_UTC |             # Treat naive datetimes as UTC
            orjson.OPT_NON_STR_KEYS            # Allow non-string dict keys
        ),
    )


class ORJSONResponse(JSONResponse):
    """JSON response rendered with orjson.

    Naive datetimes (the storage convention) are emitted as UTC with a
    ``Z`` suffix.
    """

    media_type = "application/json"

    def render(self, content: Any) -> bytes:
        if isinstance(content, BaseModel):
            content = content.model_dump(mode="json", by_alias=True)
        return _orjson_serializer(content)


# =============================================================================
# Error Response Models
# =============================================================================

class ErrorResponse(BaseModel):
    """Standard error body for 4xx/5xx status codes.

    Example:
        {
            "error": "MaintenanceConflict",
            "message": "Machine under maintenance",
            "details": {"machine_id": 3}
        }
    """

    error: str = Field(..., description="Exception class name")
    message: str = Field(..., description="Human-readable error message")
    details: dict[str, Any] = Field(default_factory=dict, description="Additional context")
    reference_id: str | None = Field(None, description="Server log reference (500s only)")


# =============================================================================
# Pagination
# =============================================================================

class PaginationParams(BaseModel):
    """Page/limit query parameters for paginated listings."""

    page: int = Field(default=1, ge=1, description="Page number (1-indexed)")
    limit: int = Field(default=20, ge=1, le=500, description="Items per page")

    @property
    def offset(self) -> int:
        """Calculate SQL offset for pagination."""
        return (self.page - 1) * self.limit


class Page(CamelModel, Generic[T]):
    """One page of a listing plus the total row count."""

    total: int
    page: int
    limit: int
    data: list[T]

"""Plantwatch — Core Exceptions.

Domain-specific exceptions for the service layer. Each class carries the
HTTP status it maps to; the API layer converts them to JSON responses in a
single handler (see ``api_server.py``).

Usage:
    from core.exceptions import ResourceNotFound, MaintenanceConflict

    class MachineService:
        async def get_or_raise(self, machine_id: int):
            machine = await self.get(machine_id)
            if not machine:
                raise ResourceNotFound("Machine", machine_id)
            return machine
"""

from __future__ import annotations

from typing import Any


class PlantwatchBaseException(Exception):
    """Base exception for all Plantwatch domain errors."""

    status_code: int = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(PlantwatchBaseException):
    """Raised when input validation fails beyond Pydantic's scope.

    Maps to HTTP 400 Bad Request.
    """

    status_code = 400

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"Validation error on '{field}': {message}", {"field": field})


class BusinessRuleViolation(PlantwatchBaseException):
    """Raised when a request is well-formed but breaks an account rule.

    Maps to HTTP 400 Bad Request.

    Examples:
        - Approving a user who is already approved
        - Suspending your own account
        - Reactivating an account that is already active

    Attributes:
        rule: Description of the violated rule.
        context: Additional context about the violation.
    """

    status_code = 400

    def __init__(self, rule: str, context: dict[str, Any] | None = None):
        self.rule = rule
        self.context = context or {}
        super().__init__(rule, {"rule": rule, **self.context})


class AuthenticationFailed(PlantwatchBaseException):
    """Raised when credentials or tokens are missing, malformed or wrong.

    Maps to HTTP 401 Unauthorized.
    """

    status_code = 401

    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message)


class AccountForbidden(PlantwatchBaseException):
    """Raised when a known account may not act (inactive or unapproved).

    Maps to HTTP 403 Forbidden.
    """

    status_code = 403

    def __init__(self, message: str, user_id: int | None = None):
        self.user_id = user_id
        details = {"user_id": user_id} if user_id is not None else None
        super().__init__(message, details)


class PermissionDenied(PlantwatchBaseException):
    """Raised when the caller's role or ownership does not allow an action.

    Maps to HTTP 403 Forbidden.

    Attributes:
        action: The attempted operation (e.g., "start", "resolve_alert").
        resource: The target resource (optional).
        required_role: Roles that would be allowed (optional).
        reason: Human-readable denial reason, used as the message when set.
    """

    status_code = 403

    def __init__(
        self,
        action: str,
        resource: str | None = None,
        required_role: str | None = None,
        reason: str | None = None,
    ):
        self.action = action
        self.resource = resource
        self.required_role = required_role
        self.reason = reason

        if reason:
            message = reason
        elif resource:
            message = f"Permission denied: cannot {action} {resource}"
        else:
            message = f"Permission denied: cannot {action}"

        if required_role and not reason:
            message += f" (requires {required_role} role)"

        details: dict[str, Any] = {"action": action}
        if resource:
            details["resource"] = resource
        if required_role:
            details["required_role"] = required_role

        super().__init__(message, details)


class ResourceNotFound(PlantwatchBaseException):
    """Raised when a requested resource does not exist.

    Maps to HTTP 404 Not Found.

    Attributes:
        resource_type: Type of resource (e.g., "Machine", "Alert").
        resource_id: Identifier of the missing resource.
    """

    status_code = 404

    def __init__(self, resource_type: str, resource_id: Any):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type} with id '{resource_id}' not found"
        super().__init__(message, {"resource_type": resource_type, "resource_id": str(resource_id)})


class ConflictError(PlantwatchBaseException):
    """Raised when the current resource state forbids the operation.

    Maps to HTTP 409 Conflict.
    """

    status_code = 409


class MaintenanceConflict(ConflictError):
    """Control command issued while the machine is under maintenance."""

    def __init__(self, machine_id: int):
        self.machine_id = machine_id
        super().__init__("Machine under maintenance", {"machine_id": machine_id})


class UnresolvedCriticalAlert(ConflictError):
    """Start or Reset attempted while a High-severity alert is open."""

    def __init__(self, machine_id: int):
        self.machine_id = machine_id
        super().__init__("Critical alert unresolved", {"machine_id": machine_id})


class AlertAlreadyResolved(ConflictError):
    """Mutation attempted on an alert that has been resolved."""

    def __init__(self, alert_id: int):
        self.alert_id = alert_id
        super().__init__("Alert already resolved", {"alert_id": alert_id})


class DuplicateResource(ConflictError):
    """A unique attribute (such as a user's email) is already taken."""

    def __init__(self, resource_type: str, field: str):
        self.resource_type = resource_type
        self.field = field
        super().__init__(
            f"{resource_type} with this {field} already exists",
            {"resource_type": resource_type, "field": field},
        )

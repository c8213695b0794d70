"""Plantwatch — FastAPI Dependencies.

Dependency injection for authentication and authorization.

Identity is resolved on every request: the bearer token only names the
user, the role and active flag are always read from the database, so a
role change or suspension takes effect on the next request.

Usage:
    from dependencies import CurrentUser, OperationGuard

    @router.get("/machines")
    async def list_machines(user: CurrentUser):
        ...

    @router.delete("/machines/{machine_id}")
    async def delete_machine(
        user: Identity = Depends(OperationGuard(Operation.DELETE_MACHINE)),
    ):
        ...
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import AuthenticationFailed, PermissionDenied
from database import get_db
from logger import get_logger, user_id_var
from schemas.security import Identity, TokenData
from services.auth_service import AuthService, InvalidTokenError, get_auth_service
from services.rbac_service import Operation, allowed_roles, is_allowed
from services.user_service import UserService

logger = get_logger(__name__)

# =============================================================================
# Security Scheme
# =============================================================================

# Missing header is reported through AuthenticationFailed, not FastAPI's 403
_bearer_scheme = HTTPBearer(
    scheme_name="JWT",
    description="Enter your JWT access token",
    auto_error=False,
)

DbSession = Annotated[AsyncSession, Depends(get_db)]


# =============================================================================
# Authentication Dependencies
# =============================================================================

async def get_token_data(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
) -> TokenData:
    """Extract and validate the JWT from the Authorization header.

    Raises:
        AuthenticationFailed: Header missing, token malformed or expired.
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationFailed("Missing bearer token")

    try:
        return auth_service.verify_token(credentials.credentials)
    except InvalidTokenError as exc:
        logger.warning("Invalid token rejected", error=str(exc))
        raise AuthenticationFailed("Invalid token") from exc


async def get_current_user(
    token_data: Annotated[TokenData, Depends(get_token_data)],
    db: DbSession,
    request: Request,
) -> Identity:
    """Resolve the caller from the token subject.

    Returns:
        The caller's identity with the role currently stored for them.

    Raises:
        AuthenticationFailed: The user no longer exists.
        AccountForbidden: The account has been suspended.
    """
    identity = await UserService(db).resolve_identity(token_data.user_id)

    # Picked up by the request logging and HTTP audit middleware
    request.state.user = identity
    user_id_var.set(str(identity.id))

    logger.debug("User authenticated", user_id=identity.id, role=identity.role.value)
    return identity


CurrentUser = Annotated[Identity, Depends(get_current_user)]


# =============================================================================
# Operation Guard
# =============================================================================

class OperationGuard:
    """Callable dependency enforcing the (role, operation) permission table.

    Ownership is not checked here: it needs the freshly loaded machine and
    is applied by the control service inside the machine lock.

    Example:
        @router.post("/machines/{machine_id}/start")
        async def start(
            machine_id: int,
            user: Identity = Depends(OperationGuard(Operation.START)),
        ):
            ...
    """

    def __init__(self, operation: Operation) -> None:
        self.operation = operation
        self._role_names = sorted(r.value for r in allowed_roles(operation))

    async def __call__(self, user: CurrentUser) -> Identity:
        if not is_allowed(user.role, self.operation):
            logger.warning(
                "User lacks required permission",
                user_id=user.id,
                user_role=user.role.value,
                operation=self.operation.value,
                required_roles=self._role_names,
            )
            raise PermissionDenied(
                action=self.operation.value,
                required_role=", ".join(self._role_names),
            )
        return user

    def __repr__(self) -> str:
        return f"OperationGuard(operation={self.operation.value!r}, roles={self._role_names})"


def guard(operation: Operation):
    """``Depends`` shortcut for an ``OperationGuard``."""
    return Depends(OperationGuard(operation))

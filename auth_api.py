"""Plantwatch — Authentication & User Administration API.

Routes:
    POST /api/auth/register            Self-registration
    POST /api/auth/login               Credential login (rate limited)
    GET  /api/auth/me                  Current caller
    GET  /api/auth/pending             Users awaiting approval       (Admin)
    GET  /api/auth/users?role=         Approved users                (Admin)
    GET  /api/auth/counts              Approved users per role       (Admin)
    POST /api/auth/approve/{user_id}                                 (Admin)
    POST /api/auth/reject/{user_id}                                  (Admin)
    POST /api/auth/role/{user_id}                                    (Admin)
    POST /api/auth/suspend/{user_id}                                 (Admin)
    POST /api/auth/reactivate/{user_id}                              (Admin)
"""

from typing import Optional, Union

from fastapi import APIRouter, Query, Request, status
from slowapi import Limiter
from slowapi.util import get_remote_address

from config import get_settings
from dependencies import CurrentUser, DbSession, guard
from schemas.security import (
    AuthResponse,
    Identity,
    LoginRequest,
    RegisterRequest,
    RegistrationResponse,
    RoleChangeRequest,
    RoleCounts,
    UserActionResponse,
    UserRead,
    UserRole,
)
from services.auth_service import get_auth_service
from services.rbac_service import Operation
from services.user_service import UserService

router = APIRouter(prefix="/api/auth", tags=["Authentication"])

# Enabled/disabled from settings in create_app()
limiter = Limiter(key_func=get_remote_address)


def _auth_response(user) -> AuthResponse:
    auth = get_auth_service()
    return AuthResponse(
        token=auth.create_access_token(user.id, user.role),
        expires_in=auth.access_expiry_seconds,
        user=UserRead.model_validate(user),
    )


# =============================================================================
# Registration & Login
# =============================================================================

@router.post(
    "/register",
    response_model=Union[AuthResponse, RegistrationResponse],
    status_code=status.HTTP_201_CREATED,
)
async def register(payload: RegisterRequest, db: DbSession):
    """Register an account.

    Admins receive a token immediately; everyone else waits for approval.
    """
    user = await UserService(db).register(payload)
    if user.approved:
        return _auth_response(user)
    return RegistrationResponse(
        message="Registration received. Account pending approval by admin",
        user=UserRead.model_validate(user),
    )


@router.post("/login", response_model=AuthResponse)
@limiter.limit(lambda: get_settings().security.login_rate_limit)
async def login(request: Request, payload: LoginRequest, db: DbSession):
    user = await UserService(db).authenticate(
        str(payload.email), payload.password.get_secret_value()
    )
    return _auth_response(user)


@router.get("/me", response_model=UserRead)
async def me(user: CurrentUser, db: DbSession):
    return await UserService(db).get_or_404(user.id)


# =============================================================================
# User Administration
# =============================================================================

@router.get("/pending", response_model=list[UserRead])
async def list_pending(db: DbSession, admin: Identity = guard(Operation.MANAGE_USERS)):
    return await UserService(db).list_pending()


@router.get("/users", response_model=list[UserRead])
async def list_users(
    db: DbSession,
    role: Optional[UserRole] = Query(None),
    admin: Identity = guard(Operation.MANAGE_USERS),
):
    return await UserService(db).list_users(role)


@router.get("/counts", response_model=RoleCounts)
async def role_counts(db: DbSession, admin: Identity = guard(Operation.MANAGE_USERS)):
    return await UserService(db).role_counts()


@router.post("/approve/{user_id}", response_model=UserActionResponse)
async def approve_user(
    user_id: int, db: DbSession, admin: Identity = guard(Operation.MANAGE_USERS)
):
    user = await UserService(db).approve(admin, user_id)
    return UserActionResponse(message="User approved", user=UserRead.model_validate(user))


@router.post("/reject/{user_id}", response_model=UserActionResponse)
async def reject_user(
    user_id: int, db: DbSession, admin: Identity = guard(Operation.MANAGE_USERS)
):
    await UserService(db).reject(admin, user_id)
    return UserActionResponse(message="User rejected")


@router.post("/role/{user_id}", response_model=UserActionResponse)
async def change_role(
    user_id: int,
    payload: RoleChangeRequest,
    db: DbSession,
    admin: Identity = guard(Operation.MANAGE_USERS),
):
    user = await UserService(db).change_role(admin, user_id, payload.role)
    return UserActionResponse(message="Role updated", user=UserRead.model_validate(user))


@router.post("/suspend/{user_id}", response_model=UserActionResponse)
async def suspend_user(
    user_id: int, db: DbSession, admin: Identity = guard(Operation.MANAGE_USERS)
):
    user = await UserService(db).suspend(admin, user_id)
    return UserActionResponse(message="User suspended", user=UserRead.model_validate(user))


@router.post("/reactivate/{user_id}", response_model=UserActionResponse)
async def reactivate_user(
    user_id: int, db: DbSession, admin: Identity = guard(Operation.MANAGE_USERS)
):
    user = await UserService(db).reactivate(admin, user_id)
    return UserActionResponse(message="User reactivated", user=UserRead.model_validate(user))

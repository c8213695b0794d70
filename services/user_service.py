"""Plantwatch — User Service.

Registration, credential checks and admin user management. Passwords go
through ``AuthService``; every administrative change is audited.
"""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from config import get_settings
from core.exceptions import (
    AccountForbidden,
    AuthenticationFailed,
    BusinessRuleViolation,
    DuplicateResource,
    ResourceNotFound,
)
from db.models import Machine, User
from schemas.audit import LogAction
from schemas.security import Identity, RegisterRequest, RoleCounts, UserRole
from services.audit_service import AuditLogSink
from services.auth_service import AuthService, get_auth_service
from services.base import BaseService
from services.machine_locks import MachineLockRegistry, machine_locks

ACCOUNT_INACTIVE = "Account inactive"
PENDING_APPROVAL = "Account pending approval by admin"


class UserService(BaseService[User]):
    """Service for user accounts."""

    def __init__(
        self,
        db: AsyncSession,
        auth: AuthService | None = None,
        locks: MachineLockRegistry = machine_locks,
    ):
        super().__init__(User, db)
        self.auth = auth or get_auth_service()
        self.locks = locks
        self.audit = AuditLogSink(db)

    async def get_by_email(self, email: str) -> User | None:
        result = await self.db.execute(
            select(User).where(func.lower(User.email) == email.lower())
        )
        return result.scalar_one_or_none()

    # =========================================================================
    # Registration & login
    # =========================================================================

    async def register(self, payload: RegisterRequest) -> User:
        """Create an account. Admins are approved immediately, others wait.

        Raises:
            DuplicateResource: Email already registered.
        """
        email = str(payload.email).lower()
        if await self.get_by_email(email) is not None:
            raise DuplicateResource("User", "email")

        role = UserRole.normalize(payload.role)
        if role == UserRole.ADMIN and not get_settings().security.allow_admin_signup:
            role = UserRole.VIEWER

        user = await self.add(User(
            name=payload.name,
            email=email,
            password_hash=await self.auth.hash_password(payload.password.get_secret_value()),
            role=role,
            approved=role == UserRole.ADMIN,
            active=True,
        ))
        self.logger.info("User registered", user_id=user.id, role=role.value, approved=user.approved)
        return user

    async def authenticate(self, email: str, password: str) -> User:
        """Check credentials and account state.

        Raises:
            AuthenticationFailed: Unknown email or wrong password.
            AccountForbidden: Account suspended, or non-admin awaiting approval.
        """
        user = await self.get_by_email(email)
        if user is None or not await self.auth.verify_password(password, user.password_hash):
            self.logger.warning("login_failed")
            raise AuthenticationFailed("Invalid credentials")

        if not user.active:
            raise AccountForbidden(ACCOUNT_INACTIVE, user.id)
        if user.role != UserRole.ADMIN and not user.approved:
            raise AccountForbidden(PENDING_APPROVAL, user.id)

        self.logger.info("login_success", user_id=user.id)
        return user

    async def resolve_identity(self, user_id: int) -> Identity:
        """Load the caller's current role and status.

        Raises:
            AuthenticationFailed: The token's user no longer exists.
            AccountForbidden: The account is inactive.
        """
        user = await self.get(user_id, fresh=True)
        if user is None:
            raise AuthenticationFailed("Invalid token user")
        if not user.active:
            raise AccountForbidden(ACCOUNT_INACTIVE, user.id)
        return Identity.model_validate(user)

    # =========================================================================
    # Administration
    # =========================================================================

    async def list_pending(self) -> list[User]:
        result = await self.db.execute(
            select(User).where(User.approved.is_(False)).order_by(User.created_at, User.id)
        )
        return list(result.scalars().all())

    async def list_users(self, role: UserRole | None = None) -> list[User]:
        """Approved users, optionally filtered by role."""
        stmt = select(User).where(User.approved.is_(True)).order_by(User.created_at, User.id)
        if role is not None:
            stmt = stmt.where(User.role == role)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def role_counts(self) -> RoleCounts:
        result = await self.db.execute(
            select(User.role, func.count(User.id))
            .where(User.approved.is_(True))
            .group_by(User.role)
        )
        counts = {role: count for role, count in result.all()}
        return RoleCounts(
            viewer_count=counts.get(UserRole.VIEWER, 0),
            engineer_count=counts.get(UserRole.ENGINEER, 0),
            admin_count=counts.get(UserRole.ADMIN, 0),
        )

    async def approve(self, caller: Identity, user_id: int) -> User:
        user = await self.get_or_404(user_id, fresh=True)
        user.approved = True
        await self.commit_or_rollback()
        await self.audit.record(caller.id, None, LogAction.APPROVE_USER, f"userId={user_id}")
        return user

    async def reject(self, caller: Identity, user_id: int) -> None:
        """Delete a pending registration.

        Raises:
            BusinessRuleViolation: The user is already approved.
        """
        user = await self.get_or_404(user_id, fresh=True)
        if user.approved:
            raise BusinessRuleViolation("Cannot reject an already approved user")
        await self.remove(user)
        await self.audit.record(caller.id, None, LogAction.REJECT_USER, f"userId={user_id}")

    async def change_role(self, caller: Identity, user_id: int, role: UserRole) -> User:
        """Change a user's role.

        Machines assigned to a user who stops being an Engineer are released,
        each under its machine lock.
        """
        user = await self.get_or_404(user_id, fresh=True)
        user.role = role
        await self.commit_or_rollback()

        if role != UserRole.ENGINEER:
            result = await self.db.execute(
                select(Machine.id)
                .where(Machine.assigned_engineer_id == user_id)
                .order_by(Machine.id)
            )
            for machine_id in result.scalars().all():
                async with self.locks.hold(machine_id):
                    machine = await self.db.get(Machine, machine_id, populate_existing=True)
                    if machine is None or machine.assigned_engineer_id != user_id:
                        continue
                    machine.assigned_engineer_id = None
                    await self.commit_or_rollback()
                self.logger.info("Machine released", machine_id=machine_id, user_id=user_id)

        await self.audit.record(
            caller.id, None, LogAction.ROLE_CHANGE, f"userId={user_id}, role={role.value}",
        )
        return user

    async def suspend(self, caller: Identity, user_id: int) -> User:
        """Deactivate an account.

        Raises:
            BusinessRuleViolation: Self-suspension, or already inactive.
        """
        if caller.id == user_id:
            raise BusinessRuleViolation("Cannot suspend your own account")
        user = await self.get_or_404(user_id, fresh=True)
        if not user.active:
            raise BusinessRuleViolation("User is already inactive")
        user.active = False
        await self.commit_or_rollback()
        await self.audit.record(caller.id, None, LogAction.SUSPEND_USER, f"userId={user_id}")
        return user

    async def reactivate(self, caller: Identity, user_id: int) -> User:
        """Reactivate a suspended account.

        Raises:
            BusinessRuleViolation: Already active.
        """
        user = await self.get_or_404(user_id, fresh=True)
        if user.active:
            raise BusinessRuleViolation("User is already active")
        user.active = True
        await self.commit_or_rollback()
        await self.audit.record(caller.id, None, LogAction.REACTIVATE_USER, f"userId={user_id}")
        return user

"""Plantwatch — Authentication Service.

Password hashing (bcrypt, run off the event loop) and JWT access token
management (python-jose).

Security notes:
    - Passwords hashed with bcrypt at the configured work factor
    - JWTs have mandatory expiration and carry a JTI
    - Tokens identify the user only; role and active state are re-read
      from the database on every request

Usage:
    from services.auth_service import get_auth_service

    auth = get_auth_service()
    hashed = await auth.hash_password("user_password")
    if await auth.verify_password("user_password", hashed):
        token = auth.create_access_token(user_id=7, role=UserRole.ENGINEER)
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any
import asyncio
import uuid

import bcrypt
from jose import JWTError, jwt

from config import get_settings
from core.exceptions import AuthenticationFailed
from logger import get_logger
from schemas.security import TokenData, TokenType, UserRole

logger = get_logger(__name__)


class InvalidTokenError(AuthenticationFailed):
    """Raised when a JWT token is invalid or expired."""

    def __init__(self, message: str = "Invalid or expired token"):
        super().__init__(message)


# =============================================================================
# Authentication Service
# =============================================================================

class AuthService:
    """Core authentication service for password and token operations.

    Example:
        >>> auth = AuthService()
        >>> hashed = await auth.hash_password("my_secure_password")
        >>> await auth.verify_password("my_secure_password", hashed)
        True
    """

    def __init__(self) -> None:
        security = get_settings().security

        self._secret_key = security.jwt_secret.get_secret_value()
        self._algorithm = security.jwt_algorithm
        self._access_expiry_minutes = security.jwt_expiry_minutes
        self._bcrypt_rounds = security.bcrypt_rounds

        logger.debug(
            "AuthService initialized",
            algorithm=self._algorithm,
            access_expiry_minutes=self._access_expiry_minutes,
        )

    # =========================================================================
    # Password Operations
    # =========================================================================

    async def hash_password(self, plain_password: str) -> str:
        """Hash a plain-text password using bcrypt (non-blocking).

        Returns:
            The bcrypt hash string (includes salt and work factor).
        """
        def _hash() -> str:
            salt = bcrypt.gensalt(rounds=self._bcrypt_rounds)
            return bcrypt.hashpw(plain_password.encode("utf-8"), salt).decode("utf-8")

        return await asyncio.to_thread(_hash)

    async def verify_password(self, plain_password: str, hashed_password: str) -> bool:
        """Verify a plain-text password against a bcrypt hash (non-blocking).

        Returns:
            True if password matches, False otherwise (including a
            malformed stored hash).
        """
        def _verify() -> bool:
            try:
                return bcrypt.checkpw(
                    plain_password.encode("utf-8"),
                    hashed_password.encode("utf-8"),
                )
            except ValueError:
                return False

        return await asyncio.to_thread(_verify)

    # =========================================================================
    # JWT Token Operations
    # =========================================================================

    @property
    def access_expiry_seconds(self) -> int:
        return self._access_expiry_minutes * 60

    def create_access_token(
        self,
        user_id: int,
        role: UserRole = UserRole.VIEWER,
        expires_delta: timedelta | None = None,
    ) -> str:
        """Create a JWT access token.

        Args:
            user_id: User identifier (stored in the 'sub' claim as a string).
            role: Role at issue time (informational only).
            expires_delta: Custom expiration time. Defaults to config value.

        Returns:
            Encoded JWT access token string.
        """
        if expires_delta is None:
            expires_delta = timedelta(minutes=self._access_expiry_minutes)

        now = datetime.now(timezone.utc)
        expire = now + expires_delta
        jti = str(uuid.uuid4())

        payload: dict[str, Any] = {
            "sub": str(user_id),
            "role": UserRole(role).value,
            "token_type": TokenType.ACCESS.value,
            "exp": expire,
            "iat": now,
            "jti": jti,
        }

        token = jwt.encode(payload, self._secret_key, algorithm=self._algorithm)

        logger.info(
            "Token created",
            user_id=user_id,
            expires_at=expire.isoformat(),
            jti=jti,
        )
        return token

    def verify_token(self, token: str) -> TokenData:
        """Verify and decode a JWT access token.

        Raises:
            InvalidTokenError: If token is invalid, expired, or malformed.
        """
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except JWTError as exc:
            logger.warning(
                "Token verification failed",
                error_type=type(exc).__name__,
            )
            raise InvalidTokenError() from exc

        try:
            token_data = TokenData(
                sub=str(payload["sub"]),
                role=UserRole.normalize(payload.get("role")),
                token_type=TokenType(payload.get("token_type", TokenType.ACCESS.value)),
                exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
                iat=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
                jti=payload.get("jti", str(uuid.uuid4())),
            )
            token_data.user_id  # sub must be numeric
        except (KeyError, ValueError, TypeError) as exc:
            logger.warning("Token payload malformed", error_type=type(exc).__name__)
            raise InvalidTokenError() from exc

        return token_data


# =============================================================================
# Singleton
# =============================================================================

_auth_service: AuthService | None = None


def get_auth_service() -> AuthService:
    """Get the singleton AuthService instance."""
    global _auth_service
    if _auth_service is None:
        _auth_service = AuthService()
    return _auth_service


def reset_auth_service() -> None:
    """Drop the cached instance so the next call re-reads settings."""
    global _auth_service
    _auth_service = None

"""
Hamme — Account registration and login.
"""

from __future__ import annotations

import structlog
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import AuthenticationError, ValidationError
from app.models.user import User
from app.services.expiry_policy import utcnow
from app.utils.security import (
    create_access_token,
    decode_access_token,
    hash_password,
    verify_password,
)

logger = structlog.get_logger("hamme.auth_service")

MIN_PASSWORD_LENGTH = 6
# bcrypt only reads the first 72 bytes and rejects longer input.
MAX_PASSWORD_BYTES = 72


def normalise_email(email: str) -> str:
    return email.strip().lower()


class AuthService:
    """Password accounts with stateless JWT sessions."""

    async def register(
        self,
        email: str,
        password: str,
        name: str,
        db_session: AsyncSession,
    ) -> tuple[User, str]:
        """Create an account and return it with a fresh access token."""
        email = normalise_email(email)
        name = name.strip()
        log = logger.bind(email=email)

        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
            )
        if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValidationError(
                f"Password must be at most {MAX_PASSWORD_BYTES} bytes long"
            )
        if not 2 <= len(name) <= 50:
            raise ValidationError("Name must be between 2 and 50 characters")

        existing = await self._find_by_email(email, db_session)
        if existing is not None:
            log.warning("register_duplicate_email")
            raise ValidationError("User with this email already exists")

        user = User(
            email=email,
            password_hash=hash_password(password),
            name=name,
            photos=[],
            last_active=utcnow(),
        )
        db_session.add(user)
        try:
            await db_session.flush()
        except IntegrityError:
            # Lost a race with a concurrent registration for the same email.
            log.warning("register_duplicate_email")
            raise ValidationError("User with this email already exists")

        log.info("register_complete", user_id=str(user.id))
        return user, create_access_token(user.id, user.email)

    async def login(
        self,
        email: str,
        password: str,
        db_session: AsyncSession,
    ) -> tuple[User, str]:
        email = normalise_email(email)
        log = logger.bind(email=email)

        user = await self._find_by_email(email, db_session)
        if (
            user is None
            or len(password.encode("utf-8")) > MAX_PASSWORD_BYTES
            or not verify_password(password, user.password_hash)
        ):
            log.info("login_failed")
            raise AuthenticationError("Invalid email or password")

        user.last_active = utcnow()
        await db_session.flush()

        log.info("login_complete", user_id=str(user.id))
        return user, create_access_token(user.id, user.email)

    async def resolve_token(self, token: str, db_session: AsyncSession) -> User:
        """Map a bearer token to its (existing) user."""
        try:
            user_id = decode_access_token(token)
        except JWTError:
            raise AuthenticationError("Invalid or expired token")

        user = await db_session.get(User, user_id)
        if user is None:
            raise AuthenticationError("Invalid token - user not found")
        return user

    async def _find_by_email(self, email: str, db_session: AsyncSession) -> User | None:
        result = await db_session.execute(select(User).where(User.email == email))
        return result.scalar_one_or_none()

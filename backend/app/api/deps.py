"""Shared API dependencies."""

from dataclasses import dataclass
from typing import Annotated

import asyncio
import logging
import time

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.services.chats import ChatRepository, SQLChatRepository
from app.utils.auth import get_email_domain, is_allowed_domain

logger = logging.getLogger("veston.auth")

security = HTTPBearer()

_hash_pid_rate_limit: dict[str, tuple[int, float]] = {}
_hash_pid_rate_limit_lock = asyncio.Lock()


@dataclass
class CurrentUser:
    """Identity taken from a verified Supabase access token."""

    id: str
    email: str
    name: str | None = None
    avatar_url: str | None = None

    @property
    def domain(self) -> str | None:
        return get_email_domain(self.email)


def decode_access_token(token: str) -> dict:
    """Verify a Supabase-issued JWT and return its claims.

    Raises:
        JWTError: bad signature, wrong audience or expired token.
    """
    return jwt.decode(
        token,
        settings.supabase_jwt_secret,
        algorithms=[settings.jwt_algorithm],
        audience=settings.supabase_jwt_audience,
    )


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> CurrentUser:
    """Get the signed-in user from a valid access token on an allowed domain."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = decode_access_token(credentials.credentials)
    except JWTError:
        raise credentials_exception

    user_id: str | None = payload.get("sub")
    email: str | None = payload.get("email")
    if not user_id or not email:
        raise credentials_exception

    if not is_allowed_domain(email):
        logger.warning("Rejected sign-in from domain %s", get_email_domain(email))
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unauthorized domain",
        )

    metadata = payload.get("user_metadata") or {}
    return CurrentUser(
        id=str(user_id),
        email=email,
        name=metadata.get("full_name") or metadata.get("name"),
        avatar_url=metadata.get("avatar_url") or metadata.get("picture"),
    )


async def get_chat_repository(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> ChatRepository:
    return SQLChatRepository(db)


def read_api_key(request: Request) -> str | None:
    """API key from ``X-API-Key`` or an ``Authorization: Bearer`` header."""
    header_key = request.headers.get("x-api-key")
    if header_key:
        return header_key
    auth = request.headers.get("authorization")
    if not auth:
        return None
    scheme, _, token = auth.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return None


async def require_hash_pid_api_key(request: Request) -> None:
    """Require the server-to-server key used by workflows."""
    if not settings.hash_pid_api_key:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Missing HASH_PID_API_KEY",
        )
    if read_api_key(request) != settings.hash_pid_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )


async def rate_limit_hash_pid(request: Request) -> None:
    """Basic in-memory rate limiter for the tokenization endpoint."""
    window = settings.hash_pid_rate_limit_window_seconds
    max_requests = settings.hash_pid_rate_limit_max_requests
    client_ip = request.client.host if request.client else "unknown"
    now = time.monotonic()

    async with _hash_pid_rate_limit_lock:
        count, reset_at = _hash_pid_rate_limit.get(client_ip, (0, now + window))
        if now > reset_at:
            count = 0
            reset_at = now + window
        count += 1
        _hash_pid_rate_limit[client_ip] = (count, reset_at)

        if count > max_requests:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests. Please try again later.",
            )


def reset_rate_limits() -> None:
    _hash_pid_rate_limit.clear()

"""Password hashing, signed tokens and the get_current_user dependency."""

import asyncio
from datetime import datetime, timedelta, UTC

import bcrypt
import jwt
from fastapi import Depends, Request, Response
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sharesub.config import Settings
from sharesub.constants import COOKIE_NAME
from sharesub.context import AppContext, get_context
from sharesub.db.session import get_db
from sharesub.errors import AuthenticationError
from sharesub.models.user import User


async def hash_password(plaintext: str) -> str:
    digest = await asyncio.to_thread(bcrypt.hashpw, plaintext.encode(), bcrypt.gensalt())
    return digest.decode()


async def verify_password(plaintext: str, digest: str) -> bool:
    return await asyncio.to_thread(bcrypt.checkpw, plaintext.encode(), digest.encode())


def _sign(claims: dict, secret: str, ttl: timedelta, algorithm: str) -> str:
    payload = {**claims, "exp": datetime.now(UTC) + ttl}
    return jwt.encode(payload, secret, algorithm=algorithm)


def create_session_token(settings: Settings, username: str) -> str:
    """Long-lived token for a signed-in session."""
    return _sign(
        {"sub": username},
        settings.session_secret,
        timedelta(days=settings.session_expire_days),
        settings.jwt_algorithm,
    )


def create_step_up_token(settings: Settings, username: str, purpose: str, **claims) -> str:
    """Short-lived token for email verification and password reset links."""
    return _sign(
        {"sub": username, "purpose": purpose, **claims},
        settings.step_up_secret,
        timedelta(minutes=settings.step_up_expire_minutes),
        settings.jwt_algorithm,
    )


def decode_token(token: str, secret: str, algorithm: str) -> dict:
    try:
        return jwt.decode(
            token, secret, algorithms=[algorithm],
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token has expired")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Incorrect token")


def decode_step_up_token(settings: Settings, token: str, purpose: str) -> dict:
    claims = decode_token(token, settings.step_up_secret, settings.jwt_algorithm)
    if claims.get("purpose") != purpose:
        raise AuthenticationError("Incorrect token")
    return claims


def set_session_cookie(response: Response, settings: Settings, token: str) -> None:
    """Set the JWT as an HTTP-only cookie on the response."""
    response.set_cookie(
        key=COOKIE_NAME,
        value=token,
        httponly=True,
        secure=not settings.debug,
        samesite="lax",
        max_age=settings.session_expire_days * 86400,
        path="/",
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(key=COOKIE_NAME, path="/")


def _token_from_request(request: Request) -> str | None:
    auth_header = request.headers.get("authorization", "")
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip()
    return request.cookies.get(COOKIE_NAME)


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
) -> User:
    """FastAPI dependency: decode the session token and return the User, or raise 401."""
    token = _token_from_request(request)
    if not token:
        raise AuthenticationError("Not authenticated")

    settings = ctx.settings
    claims = decode_token(token, settings.session_secret, settings.jwt_algorithm)

    result = await db.execute(select(User).where(User.username == claims["sub"]))
    user = result.scalar_one_or_none()
    if not user:
        raise AuthenticationError("Incorrect token")
    return user

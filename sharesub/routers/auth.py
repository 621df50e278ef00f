"""Auth routes: signup, login, logout and account changes."""

import logging

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from sharesub.context import AppContext, get_context
from sharesub.db.session import get_db
from sharesub.models.user import User
from sharesub.schemas.auth import (
    ChangeEmailRequest,
    ChangePasswordRequest,
    ChangeUsernameRequest,
    LoginInfo,
    LoginRequest,
    ResetPasswordConfirm,
    ResetPasswordRequest,
    SignupRequest,
    TokenRequest,
)
from sharesub.services import user_service
from sharesub.services.auth_service import (
    clear_session_cookie,
    get_current_user,
    set_session_cookie,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])


def _login_response(response: Response, ctx: AppContext, info: user_service.LoginInfo) -> LoginInfo:
    set_session_cookie(response, ctx.settings, info.token)
    return LoginInfo(username=info.username, email=info.email, token=info.token)


@router.post("/signup", response_model=LoginInfo, status_code=201)
async def signup(
    body: SignupRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    info = await user_service.signup(db, ctx, **body.model_dump())
    return _login_response(response, ctx, info)


@router.post("/login", response_model=LoginInfo | None)
async def login(
    body: LoginRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    """Wrong password answers null; an unknown username is a 400."""
    info = await user_service.login(db, ctx, body.username, body.password)
    if info is None:
        return None
    return _login_response(response, ctx, info)


@router.post("/logout")
async def logout(response: Response):
    clear_session_cookie(response)
    return {"status": "ok"}


@router.post("/change-email")
async def change_email(
    body: ChangeEmailRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
) -> bool:
    return await user_service.change_email(db, ctx, user, body.new_email, body.password)


@router.post("/change-username", response_model=LoginInfo)
async def change_username(
    body: ChangeUsernameRequest,
    response: Response,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    info = await user_service.change_username(db, ctx, user, body.new_username, body.password)
    return _login_response(response, ctx, info)


@router.post("/change-password")
async def change_password(
    body: ChangePasswordRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> bool:
    return await user_service.change_password(db, user, body.current_password, body.new_password)


@router.post("/verify-email")
async def verify_email(
    body: TokenRequest,
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
) -> bool:
    return await user_service.verify_email(db, ctx, body.token)


@router.post("/reset-password")
async def reset_password(
    body: ResetPasswordRequest,
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
) -> bool:
    return await user_service.request_password_reset(db, ctx, body.username_or_email)


@router.post("/reset-password/confirm", response_model=LoginInfo)
async def reset_password_confirm(
    body: ResetPasswordConfirm,
    response: Response,
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    info = await user_service.reset_password_from_token(db, ctx, body.token, body.new_password)
    return _login_response(response, ctx, info)

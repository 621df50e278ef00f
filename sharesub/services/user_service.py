"""Account operations: signup, login, credential and contact changes."""

import asyncio
import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from sharesub.constants import PURPOSE_RESET_PASSWORD, PURPOSE_VERIFY_EMAIL
from sharesub.context import AppContext
from sharesub.errors import UserInputError, reraise_as_internal
from sharesub.models.user import User
from sharesub.services import ledger_service
from sharesub.services.auth_service import (
    create_session_token,
    create_step_up_token,
    decode_step_up_token,
    hash_password,
    verify_password,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoginInfo:
    username: str
    email: str
    token: str


def normalize(value: str) -> str:
    return value.strip().lower()


async def _send_verification(ctx: AppContext, user: User, email: str, returning: bool) -> bool:
    token = create_step_up_token(ctx.settings, user.username, PURPOSE_VERIFY_EMAIL, email=email)
    return await ctx.mailer.send(
        email,
        f"Verify your {ctx.settings.app_name} email",
        "verify_email.html",
        first_name=user.first_name,
        token=token,
        returning=returning,
        expires_minutes=ctx.settings.step_up_expire_minutes,
    )


async def signup(
    db: AsyncSession,
    ctx: AppContext,
    *,
    first_name: str,
    last_name: str,
    username: str,
    email: str,
    password: str,
) -> LoginInfo:
    """Create a user if neither the username nor the email is taken (username checked first)."""
    username = normalize(username)
    email = normalize(email)

    with reraise_as_internal("Unable to create user"):
        conflict = await ledger_service.find_user_conflict(db, username, email)
        if conflict:
            raise UserInputError(conflict)

        password_hash = await hash_password(password)
        customer_id = await ctx.gateway.create_customer(f"{first_name} {last_name}", email)
        user = await ledger_service.create_user(
            db,
            username=username,
            email=email,
            password_hash=password_hash,
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            stripe_customer_id=customer_id,
        )

    await _send_verification(ctx, user, email, returning=False)
    logger.info("User %s signed up", username)
    return LoginInfo(username=username, email=email, token=create_session_token(ctx.settings, username))


async def login(db: AsyncSession, ctx: AppContext, username: str, password: str) -> LoginInfo | None:
    """Unknown username raises UserInputError; a wrong password returns None."""
    username = normalize(username)
    with reraise_as_internal("Unable to log in"):
        user = await ledger_service.get_user_by_username_or_email(db, username)
        if user is None:
            raise UserInputError("This username does not exist")
        if not await verify_password(password, user.password_hash):
            return None

    return LoginInfo(
        username=user.username,
        email=user.email,
        token=create_session_token(ctx.settings, user.username),
    )


async def _check_password(user: User, password: str, action: str) -> None:
    with reraise_as_internal(f"Unable to {action}"):
        ok = await verify_password(password, user.password_hash)
    if not ok:
        raise UserInputError("Incorrect password")


async def change_email(db: AsyncSession, ctx: AppContext, user: User, new_email: str, password: str) -> bool:
    new_email = normalize(new_email)
    if new_email == user.email:
        raise UserInputError("No change in email")
    await _check_password(user, password, "change email")

    with reraise_as_internal("Unable to change email"):
        if await ledger_service.get_user_by_email(db, new_email):
            raise UserInputError("This email already exists")
        user.email = new_email
        user.email_verified = False
        # The email goes out alongside the ledger write
        _, sent = await asyncio.gather(
            db.commit(),
            _send_verification(ctx, user, new_email, returning=True),
        )
    if not sent:
        logger.warning("Verification email to %s for %s was not sent", new_email, user.username)
    logger.info("User %s changed email", user.username)
    return True


async def change_username(db: AsyncSession, ctx: AppContext, user: User, new_username: str, password: str) -> LoginInfo:
    new_username = normalize(new_username)
    if new_username == user.username:
        raise UserInputError("No change in username")
    await _check_password(user, password, "change username")

    with reraise_as_internal("Unable to change username"):
        if await ledger_service.get_user_by_username(db, new_username):
            raise UserInputError("This username already exists")
        old_username = user.username
        user.username = new_username
        await ledger_service.commit_user(db, user)

    logger.info("User %s is now %s", old_username, new_username)
    return LoginInfo(
        username=new_username,
        email=user.email,
        token=create_session_token(ctx.settings, new_username),
    )


async def change_password(db: AsyncSession, user: User, current_password: str, new_password: str) -> bool:
    await _check_password(user, current_password, "change password")
    if current_password == new_password:
        raise UserInputError("New password must differ from the current one")

    with reraise_as_internal("Unable to change password"):
        user.password_hash = await hash_password(new_password)
        await ledger_service.commit_user(db, user)
    return True


async def verify_email(db: AsyncSession, ctx: AppContext, token: str) -> bool:
    claims = decode_step_up_token(ctx.settings, token, PURPOSE_VERIFY_EMAIL)
    with reraise_as_internal("Unable to verify email"):
        user = await ledger_service.get_user_by_username(db, claims["sub"])
        # A later email change invalidates older links
        if user is None or user.email != claims.get("email"):
            raise UserInputError("This verification link is no longer valid")
        user.email_verified = True
        await ledger_service.commit_user(db, user)
    return True


async def request_password_reset(db: AsyncSession, ctx: AppContext, username_or_email: str) -> bool:
    """Email a reset link. Always True so callers cannot tell which accounts exist."""
    with reraise_as_internal("Unable to reset password"):
        user = await ledger_service.get_user_by_username_or_email(db, normalize(username_or_email))
    if user is None:
        logger.info("Password reset requested for unknown account")
        return True

    token = create_step_up_token(ctx.settings, user.username, PURPOSE_RESET_PASSWORD)
    await ctx.mailer.send(
        user.email,
        f"Reset your {ctx.settings.app_name} password",
        "reset_password.html",
        first_name=user.first_name,
        username=user.username,
        token=token,
        expires_minutes=ctx.settings.step_up_expire_minutes,
    )
    return True


async def reset_password_from_token(db: AsyncSession, ctx: AppContext, token: str, new_password: str) -> LoginInfo:
    claims = decode_step_up_token(ctx.settings, token, PURPOSE_RESET_PASSWORD)
    with reraise_as_internal("Unable to reset password"):
        user = await ledger_service.get_user_by_username(db, claims["sub"])
        if user is None:
            raise UserInputError("This username does not exist")
        user.password_hash = await hash_password(new_password)
        await ledger_service.commit_user(db, user)

    return LoginInfo(
        username=user.username,
        email=user.email,
        token=create_session_token(ctx.settings, user.username),
    )

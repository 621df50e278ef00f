"""Error taxonomy surfaced to API callers.

Expected failures (bad input, bad token, missing rights) are raised where they
happen. Anything else is logged in full and re-raised as a generic
``InternalError`` so no internal detail reaches the caller.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

logger = logging.getLogger(__name__)


class AppError(Exception):
    status_code = 500
    code = "INTERNAL_SERVER_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UserInputError(AppError):
    status_code = 400
    code = "BAD_USER_INPUT"


class AuthenticationError(AppError):
    status_code = 401
    code = "UNAUTHENTICATED"


class ForbiddenError(AppError):
    status_code = 403
    code = "FORBIDDEN"


class InternalError(AppError):
    pass


@contextmanager
def reraise_as_internal(message: str) -> Iterator[None]:
    """Let AppErrors through; log anything else and raise InternalError(message)."""
    try:
        yield
    except AppError:
        raise
    except Exception as exc:
        logger.exception("%s: %s", message, exc)
        raise InternalError(message) from exc

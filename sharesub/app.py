"""FastAPI application factory: entry point for the web app."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from sharesub.config import Settings, get_settings
from sharesub.context import build_context
from sharesub.db.session import create_engine, create_session_factory
from sharesub.errors import AppError, UserInputError
from sharesub.routers import auth, plans, webhooks
from sharesub.utils import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    from sharesub.models import Base

    settings: Settings = app.state.settings
    setup_logging(verbose=settings.debug)

    # Auto-create tables for SQLite (dev mode); PostgreSQL uses Alembic
    if settings.database_url.startswith("sqlite"):
        async with app.state.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    if not settings.stripe_secret_key:
        logger.warning("STRIPE_SECRET_KEY is not set; payment calls will fail")

    yield

    await app.state.context.locks.close()
    await app.state.engine.dispose()


def _error_body(code: str, message: str) -> dict:
    return {"error": {"code": code, "message": message}}


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        debug=settings.debug,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url=None,
    )

    app.state.settings = settings
    app.state.engine = create_engine(settings)
    app.state.session_factory = create_session_factory(app.state.engine)
    app.state.context = build_context(settings)

    # --- Error handlers ---
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        return JSONResponse(_error_body(exc.code, exc.message), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(part) for part in first.get("loc", ())[1:])
        message = f"{field}: {first.get('msg', 'invalid value')}" if field else "Invalid request"
        return JSONResponse(_error_body(UserInputError.code, message), status_code=400)

    @app.exception_handler(Exception)
    async def server_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            _error_body("INTERNAL_SERVER_ERROR", "An unexpected error occurred. Please try again later."),
            status_code=500,
        )

    # --- Routers ---
    app.include_router(auth.router)
    app.include_router(plans.router)
    app.include_router(webhooks.router)

    return app


app = create_app()

import os
from typing import AsyncGenerator

# sharesub.app builds a module-level app from the environment on import
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from sharesub.app import create_app
from sharesub.config import Settings
from sharesub.context import AppContext
from sharesub.models import Base
from tests.helpers import FakeGateway, FakeMailer


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        debug=True,
        database_url=f"sqlite:///{tmp_path / 'test.db'}",
        session_secret="test-session-secret",
        step_up_secret="test-step-up-secret",
        stripe_webhook_secret="whsec_test",
    )


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest_asyncio.fixture(scope="function")
async def app(settings, gateway, mailer):
    application = create_app(settings)
    application.state.context.gateway = gateway
    application.state.context.mailer = mailer

    async with application.state.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield application

    await application.state.context.locks.close()
    await application.state.engine.dispose()


@pytest.fixture
def ctx(app) -> AppContext:
    return app.state.context


@pytest_asyncio.fixture(scope="function")
async def db_session(app) -> AsyncGenerator[AsyncSession, None]:
    async with app.state.session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def test_client(app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

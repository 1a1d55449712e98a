import os
import uuid

# Settings are read at import time; point them at test values first
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["MPESA_CALLBACK_SECRET"] = "test-callback-secret"
os.environ.setdefault("LOG_LEVEL", "WARNING")

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

import app.models  # noqa: F401,E402
from app.core.config import ProviderConfig  # noqa: E402
from app.database import Base  # noqa: E402
from app.validators import ValidatorRegistry  # noqa: E402

# --- HTTP fixtures ---


class RecordingHandler:
    """MockTransport handler keyed by URL path; records every request it sees."""

    def __init__(self, routes: dict | None = None):
        self.routes = dict(routes or {})
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, json={"error": "not found"})
        if callable(route):
            return route(request)
        # Fresh copy so one scripted response can answer repeated calls
        return httpx.Response(route.status_code, headers=route.headers, content=route.content)

    def paths(self) -> list[str]:
        return [request.url.path for request in self.requests]


@pytest.fixture
def provider_handler() -> RecordingHandler:
    """Override per test module (or per test) to script provider responses."""
    return RecordingHandler()


@pytest_asyncio.fixture
async def http_client(provider_handler):
    async with httpx.AsyncClient(transport=httpx.MockTransport(provider_handler)) as client:
        yield client


@pytest.fixture
def provider_config() -> ProviderConfig:
    """No provider secrets configured."""
    return ProviderConfig(
        deriv_api_url="https://deriv.test/api/v1",
        binance_api_url="https://binance.test",
        mpesa_base_url="https://daraja.test",
    )


@pytest.fixture
def validators(provider_config, http_client) -> ValidatorRegistry:
    return ValidatorRegistry(provider_config, http_client)


# --- Database fixtures ---


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'accounts.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# --- Auth fixtures ---


@pytest.fixture
def user_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def auth_headers(user_id) -> dict[str, str]:
    from app.auth import create_access_token

    token = create_access_token({"sub": str(user_id)})
    return {"Authorization": f"Bearer {token}"}


# --- Application fixture ---


@pytest_asyncio.fixture
async def app_client(session_factory, validators):
    """ASGI client with the database and validator registry swapped for test doubles.

    ASGITransport does not run the lifespan, so app.state is never populated
    and every dependency the lifespan would feed is overridden here.
    """
    from app.accounts.dependencies import get_validators
    from app.core.rate_limit import limiter
    from app.database import get_async_db, get_session_factory, session_scope
    from app.main import app as fastapi_app

    async def override_get_async_db():
        async with session_scope(session_factory) as session:
            yield session

    fastapi_app.dependency_overrides[get_async_db] = override_get_async_db
    fastapi_app.dependency_overrides[get_session_factory] = lambda: session_factory
    fastapi_app.dependency_overrides[get_validators] = lambda: validators
    limiter.enabled = False

    transport = httpx.ASGITransport(app=fastapi_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    fastapi_app.dependency_overrides.clear()
    limiter.enabled = True

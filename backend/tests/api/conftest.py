"""API-specific test fixtures.

The app under test is assembled like ``crixen.main.create_app`` but with a
test lifespan: SQLite + fakeredis + a mocked Pingpay/Resend transport, all
created inside the TestClient's own event loop.
"""

from contextlib import asynccontextmanager

import httpx
import pytest
from fakeredis import FakeAsyncRedis
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import create_async_engine

from crixen.api.routes import api_router
from crixen.core.auth import AuthUser
from crixen.core.config import Settings
from crixen.core.container import BillingContainer
from crixen.db.base import Base, build_session_factory
from crixen.db.models.user import User
from crixen.main import register_exception_handlers
from crixen.middleware.correlation import setup_correlation_middleware

HOT_SECRET = "hot-secret"
PINGPAY_SECRET = "pingpay-secret"
BUYER_ID = 1


@pytest.fixture
def buyer() -> AuthUser:
    return AuthUser(user_id=BUYER_ID, email="buyer@example.com", claims={"id": BUYER_ID})


def _pingpay_handler(request: httpx.Request) -> httpx.Response:
    if request.url.host == "pay.pingpay.io":
        return httpx.Response(200, json={"sessionId": "cs_api", "url": "https://pay.pingpay.io/s/cs_api"})
    return httpx.Response(200, json={"id": "email_1"})


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        debug=False,
        backend_url="https://api.example.com",
        frontend_url="https://app.example.com",
        jwt_secret="jwt-test-secret",
        hot_pay_item_id="item-1",
        hot_pay_webhook_secret=HOT_SECRET,
        pingpay_api_url="https://pay.pingpay.io/api",
        pingpay_api_key="pp_test",
        pingpay_webhook_secret=PINGPAY_SECRET,
        resend_api_key="re_test",
        scheduler_enabled=False,
        metrics_enabled=False,
    )


@pytest.fixture
def test_app(tmp_path, test_settings) -> FastAPI:
    db_url = f"sqlite+aiosqlite:///{tmp_path / 'api.db'}"

    @asynccontextmanager
    async def test_lifespan(app: FastAPI):
        engine = create_async_engine(db_url, echo=False)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        session_factory = build_session_factory(engine)

        async with session_factory() as session:
            session.add(User(id=BUYER_ID, email="buyer@example.com", tier="starter"))
            await session.commit()

        redis = FakeAsyncRedis(decode_responses=True)
        app.state.billing = BillingContainer.from_settings(
            test_settings,
            session_factory,
            redis,
            transport=httpx.MockTransport(_pingpay_handler),
        )
        yield
        await redis.aclose()
        await engine.dispose()

    app = FastAPI(title=test_settings.app_name, lifespan=test_lifespan)
    setup_correlation_middleware(app)
    register_exception_handlers(app)
    app.include_router(api_router, prefix="/api")
    return app


@pytest.fixture
def api_client(test_app):
    with TestClient(test_app) as client:
        yield client

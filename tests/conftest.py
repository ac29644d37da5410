import os
from decimal import Decimal

os.environ.setdefault("ENV", "dev")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("PAYSTACK_SECRET_KEY", "sk_test_secret")

import httpx
import pytest
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient
from storefront.config.settings import Settings
from storefront.db.connection import build_engine, build_session_maker, create_all_tables
from storefront.main import create_app
from storefront.orders.repository import OrderStore
from storefront.orders.services import OrderService
from helpers import JWT_SECRET, SECRET_KEY, FakeGateway, PaystackStub


@pytest.fixture
def settings(tmp_path):
    # tax 0 and flat 500 shipping keep the arithmetic in tests readable
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'storefront_test.db'}",
        DB_CREATE_ALL=True,
        JWT_SECRET=JWT_SECRET,
        PAYSTACK_SECRET_KEY=SECRET_KEY,
        TAX_RATE=Decimal("0"),
        SHIPPING_FLAT=Decimal("500"),
        FREE_SHIPPING_THRESHOLD=None,
        DUPLICATE_ORDER_WINDOW_SECONDS=0,
        GATEWAY_VERIFY_RETRIES=0,
        GATEWAY_RETRY_BASE_DELAY=0.0,
    )


@pytest.fixture
async def session_maker(settings):
    engine = build_engine(settings.DATABASE_URL)
    await create_all_tables(engine)
    yield build_session_maker(engine)
    await engine.dispose()


@pytest.fixture
def store(session_maker):
    return OrderStore(session_maker)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def service(store, gateway, settings):
    return OrderService(store, gateway, settings=settings)


@pytest.fixture
def paystack():
    return PaystackStub()


@pytest.fixture
async def app(settings, paystack):
    app = create_app(settings, gateway_transport=httpx.MockTransport(paystack))
    async with LifespanManager(app):
        yield app


@pytest.fixture
async def ac_client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

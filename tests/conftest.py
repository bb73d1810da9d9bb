"""Shared fixtures: in-memory database, fake upstreams and per-service clients.

Every service app is driven in-process through ``httpx.ASGITransport``. Its
outbound clients (Strapi, MercadoPago, Resend) are swapped through FastAPI
dependency overrides for ones bound to the fakes in ``tests/fakes.py``.
"""

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from libs.auth.dependencies import _service_role_jwt
from libs.common.emails.client import ResendClient, get_email_client
from libs.common.rate_limit import limiter
from libs.common.strapi import StrapiClient, get_strapi_client
from libs.db.base import Base
from libs.db.session import get_async_db
from services.communications_service.attachments import PdfFetcher, get_pdf_fetcher
from services.communications_service.dedupe import RecentSends, get_recent_sends
from services.payments_service.mercadopago_client import (
    MercadoPagoClient,
    get_mercadopago_client,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from tests.fakes import (
    CUSTOMER_EMAIL,
    CUSTOMER_ID,
    CUSTOMER_TOKEN,
    FakeMercadoPago,
    FakeResend,
    FakeStrapi,
)

# Import all models so metadata includes every table
from services.payments_service import models as _payments_models  # noqa: F401
from services.store_service import models as _store_models  # noqa: F401


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine():
    """A private in-memory sqlite database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(
        bind=test_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with session_factory() as session:
        yield session


@pytest.fixture
def session_factory(test_engine):
    """For tests that need several independent sessions on one database."""
    return async_sessionmaker(
        bind=test_engine, class_=AsyncSession, expire_on_commit=False
    )


# ---------------------------------------------------------------------------
# Fake upstreams
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_strapi() -> FakeStrapi:
    fake = FakeStrapi()
    fake.add_user(CUSTOMER_TOKEN, CUSTOMER_ID, CUSTOMER_EMAIL)
    return fake


@pytest.fixture
def fake_mp() -> FakeMercadoPago:
    return FakeMercadoPago()


@pytest.fixture
def fake_resend() -> FakeResend:
    return FakeResend()


@pytest.fixture
def strapi(fake_strapi) -> StrapiClient:
    return StrapiClient(
        base_url=fake_strapi.base_url,
        token="strapi-test-token",
        transport=fake_strapi.transport,
    )


@pytest.fixture
def mp(fake_mp) -> MercadoPagoClient:
    return MercadoPagoClient(
        access_token="TEST-mp-token",
        base_url="https://mp.test",
        transport=fake_mp.transport,
    )


@pytest.fixture
def email_client(fake_resend) -> ResendClient:
    return ResendClient(
        api_key="re_test_key",
        base_url="https://resend.test",
        transport=fake_resend.transport,
    )


@pytest.fixture
def recent_sends() -> RecentSends:
    return RecentSends(window=10.0)


@pytest.fixture
def pdf_fetcher(fake_strapi) -> PdfFetcher:
    return PdfFetcher(max_bytes=1024 * 1024, transport=fake_strapi.transport)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


@pytest.fixture
def customer_headers() -> dict:
    """Session of the seeded customer (resolved by the fake users/me)."""
    return {"Authorization": f"Bearer {CUSTOMER_TOKEN}"}


@pytest.fixture
def service_headers() -> dict:
    return {"Authorization": f"Bearer {_service_role_jwt('tests')}"}


@pytest.fixture(autouse=True)
def reset_rate_limits():
    limiter.reset()
    yield
    limiter.reset()


# ---------------------------------------------------------------------------
# Service clients
# ---------------------------------------------------------------------------


def _db_override(db_session):
    async def _get_db():
        yield db_session

    return _get_db


@pytest_asyncio.fixture
async def store_client(strapi, db_session) -> AsyncGenerator[AsyncClient, None]:
    from services.store_service.app.main import app

    app.dependency_overrides[get_strapi_client] = lambda: strapi
    app.dependency_overrides[get_async_db] = _db_override(db_session)

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def payments_client(strapi, mp, db_session) -> AsyncGenerator[AsyncClient, None]:
    from services.payments_service.app.main import app

    app.dependency_overrides[get_strapi_client] = lambda: strapi
    app.dependency_overrides[get_mercadopago_client] = lambda: mp
    app.dependency_overrides[get_async_db] = _db_override(db_session)

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def communications_client(
    email_client, recent_sends, pdf_fetcher
) -> AsyncGenerator[AsyncClient, None]:
    from services.communications_service.app.main import app

    app.dependency_overrides[get_email_client] = lambda: email_client
    app.dependency_overrides[get_recent_sends] = lambda: recent_sends
    app.dependency_overrides[get_pdf_fetcher] = lambda: pdf_fetcher

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def gateway_client(strapi, mp, db_session) -> AsyncGenerator[AsyncClient, None]:
    """The public gateway, proxying to the in-process store and payments apps."""
    from services.gateway_service.app import clients
    from services.gateway_service.app.main import app
    from services.payments_service.app.main import app as payments_app
    from services.store_service.app.main import app as store_app

    for service_app in (store_app, payments_app):
        service_app.dependency_overrides[get_strapi_client] = lambda: strapi
        service_app.dependency_overrides[get_async_db] = _db_override(db_session)
    payments_app.dependency_overrides[get_mercadopago_client] = lambda: mp

    original_store_client = clients.store_client
    original_payments_client = clients.payments_client
    clients.store_client = clients.ServiceClient(
        "http://store.test", transport=ASGITransport(app=store_app)
    )
    clients.payments_client = clients.ServiceClient(
        "http://payments.test", transport=ASGITransport(app=payments_app)
    )

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    store_app.dependency_overrides.clear()
    payments_app.dependency_overrides.clear()
    clients.store_client = original_store_client
    clients.payments_client = original_payments_client


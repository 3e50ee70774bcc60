import pytest
import pytest_asyncio
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel
from fusionmarkt.config.settings import config_settings
from fusionmarkt.db.dependencies import get_session
from fusionmarkt.main import create_app
from fusionmarkt.payments.iyzico import IyzicoClient
from fusionmarkt.rate_limiting.limiter import RateLimiter
from tests.helpers import FakeClock, FakeIyzico, RecordingSender


@pytest.fixture
def settings():
    return config_settings.model_copy(update={
        "RATE_LIMIT_BACKEND": "memory",
        "BCRYPT_ROUNDS": 4,
        "IYZICO_API_KEY": None,
        "IYZICO_SECRET_KEY": None,
        "RESEND_API_KEY": None,
        "SITE_URL": "https://shop.test",
        "ADMIN_EMAIL": "admin@shop.test",
    })


@pytest.fixture
def card_settings(settings):
    return settings.model_copy(update={"IYZICO_API_KEY": "sandbox-key", "IYZICO_SECRET_KEY": "sandbox-secret"})


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool,
                                 connect_args={"check_same_thread": False})

    # let SQLAlchemy drive BEGIN/SAVEPOINT instead of the sqlite3 driver
    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def email_sender():
    return RecordingSender()


@pytest.fixture
def fake_iyzico():
    return FakeIyzico()


@pytest.fixture
def app(settings, session_factory, clock, email_sender):
    app = create_app()

    async def _get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _get_session
    app.state.settings = settings
    app.state.rate_limiter = RateLimiter(redis=None, fail_open=True, clock=clock)
    app.state.email_sender = email_sender
    app.state.gateway = IyzicoClient(settings)
    return app


@pytest_asyncio.fixture
async def ac_client(app):
    async with LifespanManager(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac

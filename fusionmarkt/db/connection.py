from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from fusionmarkt.config.settings import config_settings

_ASYNC_DRIVERS = {
    "postgres://": "postgresql+asyncpg://",
    "postgresql://": "postgresql+asyncpg://",
    "sqlite://": "sqlite+aiosqlite://",
}


def async_database_url(url: str) -> str:
    """Rewrite the plain scheme handed out by hosting providers to its async driver."""
    for plain, driver in _ASYNC_DRIVERS.items():
        if url.startswith(plain):
            return driver + url[len(plain):]
    return url


async_engine = create_async_engine(async_database_url(config_settings.DATABASE_URL), echo=config_settings.DB_ECHO,
                                   pool_pre_ping=True)

async_session = async_sessionmaker(bind=async_engine, class_=AsyncSession, expire_on_commit=False)

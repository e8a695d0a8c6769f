from sqlalchemy.ext.asyncio import create_async_engine,async_sessionmaker,AsyncSession
from cakeshop.config.settings import config_settings


def _async_driver_url(url: str) -> str:
    # hosted postgres hands out "postgres://" urls, the engine needs the asyncpg driver spelled out
    for scheme in ("postgres://", "postgresql://"):
        if url.startswith(scheme):
            return "postgresql+asyncpg://" + url[len(scheme):]
    return url


DATABASE_URL=_async_driver_url(config_settings.DATABASE_URL)

async_engine=create_async_engine(DATABASE_URL,echo=config_settings.DB_ECHO)

async_session=async_sessionmaker(bind=async_engine,class_=AsyncSession,expire_on_commit=False)

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from trendwatch.config import settings

engine = create_async_engine(settings.database_url, echo=settings.debug)


async_session_factory = async_sessionmaker(
    engine,
    expire_on_commit=False,
    class_=AsyncSession,
)

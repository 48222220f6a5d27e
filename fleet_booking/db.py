import logging

from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

logger = logging.getLogger(__name__)

Base = declarative_base()


def get_engine(database_url: str, echo: bool = False):
    return create_async_engine(database_url, echo=echo, future=True, pool_pre_ping=True)


def get_session(engine):
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False
    )


class Database:
    """Explicitly constructed engine + session factory, opened at startup and disposed at shutdown."""

    def __init__(self, database_url: str, echo: bool = False):
        self.url = database_url
        self.engine = get_engine(database_url, echo=echo)
        self.sessions = get_session(self.engine)

    async def create_all(self):
        # import registers the tables on Base.metadata
        from . import models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self):
        await self.engine.dispose()
        logger.info("Database engine disposed")

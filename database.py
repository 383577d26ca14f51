import logging

from sqlmodel import SQLModel
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from config import DATABASE_URL
import models  # noqa: F401  (registers tables on SQLModel.metadata)

logger = logging.getLogger(__name__)

# 1. If the URL is not set, raise an error to fail fast.
if not DATABASE_URL:
    raise ValueError("DATABASE_URL is not set. Please check your .env file.")


def make_engine(url: str) -> AsyncEngine:
    return create_async_engine(url, echo=False, future=True)


def make_session_factory(bind: AsyncEngine) -> sessionmaker:
    return sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


# 2. Create the Async Engine
engine = make_engine(DATABASE_URL)
async_session = make_session_factory(engine)


async def init_db(bind: AsyncEngine = engine):
    async with bind.begin() as conn:
        # This creates the tables if they don't exist
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("Database tables ready")


async def get_session() -> AsyncSession:
    async with async_session() as session:
        yield session

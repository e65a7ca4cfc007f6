from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from .config import settings

DATABASE_URL = settings.database_url

# postgres in production, sqlite for tests; upserts depend on which
_engine_kwargs = {} if make_url(DATABASE_URL).get_backend_name() == "sqlite" else {"pool_pre_ping": True}

engine: AsyncEngine = create_async_engine(DATABASE_URL, echo=False, **_engine_kwargs)

# expire_on_commit=False keeps rows readable after commit in handlers
async_session = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db():
    """Create tables at startup; there are no migrations."""
    from . import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


def insert_for(session, table):
    """Dialect-specific INSERT (for ON CONFLICT) matching the session's own engine."""
    if session.bind.dialect.name == "postgresql":
        return postgresql.insert(table)
    return sqlite.insert(table)

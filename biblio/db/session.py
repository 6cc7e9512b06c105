import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from biblio.core.config import settings
from biblio.core.errors import StoreFailure

logger = logging.getLogger(__name__)

# READ COMMITTED + row locks: a transaction blocked on FOR UPDATE re-reads the
# row the winner committed, so it sees the new status instead of a
# serialization error.
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DB_ECHO,
    pool_pre_ping=True,
    isolation_level="READ COMMITTED",
)

AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session


@asynccontextmanager
async def transaction(db: AsyncSession, operation: str) -> AsyncGenerator[AsyncSession, None]:
    """
    Scope one atomic unit of work on *db*.

    Everything read and written inside the block commits together when it
    exits cleanly.  Any exception rolls the whole unit back; database errors
    are logged with *operation* and re-raised as :class:`StoreFailure` so the
    caller never sees storage internals.
    """
    try:
        yield db
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("Store failure during %s", operation)
        raise StoreFailure() from exc
    except BaseException:
        await db.rollback()
        raise

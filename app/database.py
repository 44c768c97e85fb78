"""
Async SQLAlchemy engine, session factory and the conditional-update primitive
every state transition goes through.
"""
from typing import Any, AsyncIterator

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.config import get_settings

settings = get_settings()

engine = create_async_engine(settings.database_url, pool_pre_ping=True)
AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncIterator[AsyncSession]:
    async with AsyncSessionLocal() as session:
        yield session


async def update_if(
    db: AsyncSession,
    model: type[Base],
    ident: str,
    expected: dict[str, Any],
    **values: Any,
) -> bool:
    """
    UPDATE model SET values WHERE id = ident AND every column in `expected`
    still holds the expected value.

    Returns True when exactly one row changed. The check and the write are one
    statement, so concurrent callers are serialised by the database: a loser
    sees the winner's write and matches zero rows.
    """
    conditions = [model.id == ident]
    conditions.extend(getattr(model, column) == value for column, value in expected.items())
    result = await db.execute(
        update(model)
        .where(*conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1

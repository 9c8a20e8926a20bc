"""Database engine, session factory, and declarative base.

The engine is built from settings at import time but nothing connects
until the first session is used. Tests build their own engine and session
factory (SQLite via aiosqlite) and inject it into `create_app()`.
"""

from fastapi import Request
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from propertyhub.config import settings


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=echo)
    return create_async_engine(url, echo=echo, pool_size=20, max_overflow=10)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(settings.database_url, echo=settings.debug)

async_session = build_session_factory(engine)


class Base(DeclarativeBase):
    pass


async def get_db(request: Request) -> AsyncSession:
    """Yield a session from the app's factory; commit on success, roll back on error."""
    factory = getattr(request.app.state, "session_factory", async_session)
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise

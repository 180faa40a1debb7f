"""
Async SQLAlchemy engine and session factory.

Multi-row lifecycle changes rely on the database transaction as their
only concurrency primitive: sessions never autocommit, and every service
operation commits or rolls back exactly once (``services.transactions``).
"""

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from src.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=settings.db_echo,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=True,
)

# Entities are read back after commit, so nothing may expire on commit
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Declarative base for trip_offers, seat_ledgers and booking_requests."""


async def dispose_engine() -> None:
    await engine.dispose()

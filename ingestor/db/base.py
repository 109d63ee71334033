"""Declarative base, async engine and session factory."""

from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from ingestor.core.config import Settings, get_settings
from ingestor.core.errors import ConfigurationError


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    """
    Build an async engine from settings.

    Raises:
        ConfigurationError: If DATABASE_URL is not configured
    """
    if not settings.DATABASE_URL:
        raise ConfigurationError("DATABASE_URL missing; cannot connect to the datastore")
    return create_async_engine(settings.DATABASE_URL, pool_pre_ping=True, future=True)


def get_engine(settings: Optional[Settings] = None) -> AsyncEngine:
    """Return the process-wide engine, creating it on first use."""
    global _engine
    if _engine is None:
        _engine = create_engine_from_settings(settings or get_settings())
    return _engine


def get_session_factory(
    settings: Optional[Settings] = None,
) -> async_sessionmaker[AsyncSession]:
    """Return the process-wide session factory, creating it on first use."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(settings), class_=AsyncSession, expire_on_commit=False
        )
    return _session_factory


async def dispose_engine() -> None:
    """Close pooled connections and forget the cached engine."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None

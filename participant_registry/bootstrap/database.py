"""Async engine and session factory for the SQL document store.

Environment Variables:
- DATABASE_URL: Connection string. postgres:// and postgresql:// URLs use
  the asyncpg driver, sqlite:// URLs use aiosqlite; URLs that already name
  a driver are used as given.
- SQLALCHEMY_ECHO: Log emitted SQL when set to 1/true/yes
"""

from __future__ import annotations

import os

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from structlog import get_logger

logger = get_logger()

_ASYNC_DRIVERS = {
    "postgresql://": "postgresql+asyncpg://",
    "postgres://": "postgresql+asyncpg://",
    "sqlite://": "sqlite+aiosqlite://",
}

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def normalize_database_url(url: str) -> str:
    """Rewrite a connection string to name an async driver.

    A string without a scheme is taken to be a Postgres DSN.
    """
    for prefix, replacement in _ASYNC_DRIVERS.items():
        if url.startswith(prefix):
            return replacement + url[len(prefix) :]
    if "://" not in url:
        return f"postgresql+asyncpg://{url}"
    return url


def get_database_url() -> str:
    """DATABASE_URL in async-driver form.

    Raises:
        ValueError: If DATABASE_URL is not set.
    """
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise ValueError("DATABASE_URL is not set; the SQL document store needs it")
    return normalize_database_url(url)


def mask_database_url(url: str) -> str:
    """Replace the password of a connection string with ***."""
    scheme, separator, rest = url.partition("://")
    if not separator or "@" not in rest:
        return url
    credentials, host = rest.rsplit("@", 1)
    user, has_password, _ = credentials.partition(":")
    if not has_password:
        return url
    return f"{scheme}://{user}:***@{host}"


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Process-wide session factory, created on first use.

    Raises:
        ValueError: If DATABASE_URL is not set.
    """
    global _engine, _session_factory
    if _session_factory is None:
        url = get_database_url()
        _engine = create_async_engine(
            url,
            echo=os.environ.get("SQLALCHEMY_ECHO", "").lower() in ("1", "true", "yes"),
            pool_pre_ping=True,
        )
        _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
        logger.info(
            "database_engine_created",
            component="database_bootstrap",
            url=mask_database_url(url),
        )
    return _session_factory


def reset_database_bootstrap() -> None:
    """Forget the engine and session factory (for testing)."""
    global _engine, _session_factory
    _engine = None
    _session_factory = None


async def close_database_engine() -> None:
    """Dispose of the engine, if one was created."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None

"""
Shared pytest fixtures for integration tests.

Integration tests run against a file-backed SQLite database so that several
connections (threads or asyncio tasks) work on the same data at once.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Generator
from pathlib import Path
from typing import TYPE_CHECKING

import pytest
import pytest_asyncio
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from tests.conftest import AIOSQLITE_AVAILABLE
from tests.fixtures import Account, Base

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker


# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for integration tests."""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")


def _seed_accounts(session: Session) -> None:
    session.add_all(
        [
            Account(id=1, name="Acme", domain="acme.test", subdomain="acme"),
            Account(id=2, name="Globex", domain="globex.test", subdomain="globex"),
        ]
    )


# ============================================================================
# Sync Fixtures
# ============================================================================


@pytest.fixture
def file_engine(tmp_path: Path) -> Generator[Engine, None, None]:
    """SQLite engine on a temporary file, with the test tables and tenants."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'tenants.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        _seed_accounts(session)
        session.commit()
    yield engine
    engine.dispose()


@pytest.fixture
def file_session_factory(file_engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(file_engine, expire_on_commit=False)


# ============================================================================
# Async Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def async_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """aiosqlite engine on a temporary file, with the test tables and tenants."""
    if not AIOSQLITE_AVAILABLE:
        pytest.skip("aiosqlite not installed")

    from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'tenants.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with AsyncSession(engine) as session:
        _seed_accounts(session.sync_session)
        await session.commit()
    yield engine
    await engine.dispose()


@pytest.fixture
def async_session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    from sqlalchemy.ext.asyncio import async_sessionmaker

    return async_sessionmaker(async_engine, expire_on_commit=False)

"""
Shared pytest fixtures for the tenantguard library tests.

This module provides:
- Tenant state reset around every test (context and configuration)
- SQLite fixtures (engine, session_factory, session)
- Tenant fixtures (acme, globex)
- Statement capture for asserting that no SQL reached the database

All fixtures use an in-memory SQLite database shared through a static pool,
so sessions opened from several threads see the same data.
"""

from __future__ import annotations

from collections.abc import Generator

import pytest
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from tenantguard import reset_config, reset_tenant_context
from tests.fixtures import Account, Base

# ============================================================================
# SQLite Availability Check
# ============================================================================

AIOSQLITE_AVAILABLE = False
try:
    import aiosqlite  # noqa: F401

    AIOSQLITE_AVAILABLE = True
except ImportError:
    pass


# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for tests."""
    config.addinivalue_line("markers", "sqlite: marks tests that require SQLite (aiosqlite)")


skip_if_no_aiosqlite = pytest.mark.skipif(not AIOSQLITE_AVAILABLE, reason="aiosqlite not installed")


# ============================================================================
# Tenant State
# ============================================================================


@pytest.fixture(autouse=True)
def clean_tenant_state() -> Generator[None, None, None]:
    """Reset tenant context and configuration before and after each test."""
    reset_tenant_context()
    reset_config()
    yield
    reset_tenant_context()
    reset_config()


# ============================================================================
# SQLite Fixtures
# ============================================================================


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """In-memory SQLite engine with every test table created."""
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    with session_factory() as session:
        yield session


@pytest.fixture
def executed_statements(engine: Engine) -> Generator[list[str], None, None]:
    """
    Record every SQL statement sent to the database.

    Example:
        def test_something(session, executed_statements):
            executed_statements.clear()
            ...
            assert executed_statements == []
    """
    statements: list[str] = []

    def record(conn, cursor, statement, parameters, context, executemany) -> None:  # noqa: ANN001
        statements.append(statement)

    event.listen(engine, "before_cursor_execute", record)
    yield statements
    event.remove(engine, "before_cursor_execute", record)


# ============================================================================
# Tenant Fixtures
# ============================================================================


@pytest.fixture
def accounts(session: Session) -> tuple[Account, Account]:
    """Persisted tenants: Account#1 "Acme" and Account#2 "Globex"."""
    acme = Account(id=1, name="Acme", domain="acme.test", subdomain="acme")
    globex = Account(id=2, name="Globex", domain="globex.test", subdomain="globex")
    session.add_all([acme, globex])
    session.commit()
    return acme, globex


@pytest.fixture
def acme(accounts: tuple[Account, Account]) -> Account:
    return accounts[0]


@pytest.fixture
def globex(accounts: tuple[Account, Account]) -> Account:
    return accounts[1]

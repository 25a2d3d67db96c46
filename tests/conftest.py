"""Shared fixtures for the leadflow and scrape_service test suites.

Service tests run against a throwaway SQLite file through aiosqlite, so no
PostgreSQL server is needed.
"""

import os
import sys

import pytest
import pytest_asyncio

# Ensure src/ is on sys.path so imports work without an editable install
ROOT_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
SRC_DIR = os.path.join(ROOT_DIR, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)

from leadflow.models import (  # noqa: E402
    Company,
    DatabaseManager,
    Lead,
    User,
    create_test_engine,
    get_db_session,
)


def _reset_database_manager() -> None:
    DatabaseManager._engine = None
    DatabaseManager._session_factory = None


@pytest.fixture
def sqlite_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'leadflow-test.db'}"


@pytest_asyncio.fixture
async def db_engine(sqlite_url):
    """Fresh database with all tables, installed as the app-wide engine."""
    engine = create_test_engine(sqlite_url)
    DatabaseManager.use_engine(engine)
    await DatabaseManager.create_tables()
    yield engine
    await engine.dispose()
    _reset_database_manager()


@pytest_asyncio.fixture
async def session(db_engine):
    """A session committed when the test finishes."""
    async with get_db_session() as db_session:
        yield db_session


@pytest_asyncio.fixture
async def owner(session) -> User:
    user = User(id="user_owner", name="Ada Owner", email="ada@example.com")
    session.add(user)
    await session.flush()
    return user


@pytest_asyncio.fixture
async def company(session, owner) -> Company:
    company = Company(user_id=owner.id, name="Ada's Company")
    session.add(company)
    await session.flush()
    return company


@pytest_asyncio.fixture
async def lead(session, company) -> Lead:
    lead = Lead(company_id=company.id, url="https://acme.example.com")
    session.add(lead)
    await session.flush()
    return lead


@pytest.fixture
def sync_db(sqlite_url):
    """Install a SQLite engine for synchronous TestClient tests.

    The API lifespan creates the tables and disposes the engine.
    """
    DatabaseManager.use_engine(create_test_engine(sqlite_url))
    yield sqlite_url
    _reset_database_manager()


@pytest_asyncio.fixture
async def committed_lead(db_engine) -> str:
    """A pending lead committed up front, for code that opens its own sessions.

    Returns the lead id.
    """
    async with get_db_session() as db_session:
        user = User(id="user_worker", name="Wes Worker", email="wes@example.com")
        company = Company(user_id=user.id, name="Wes's Company")
        db_session.add_all([user, company])
        await db_session.flush()
        lead = Lead(company_id=company.id, url="https://www.acme-robotics.com/about")
        db_session.add(lead)
        await db_session.flush()
        lead_id = lead.id
    return lead_id

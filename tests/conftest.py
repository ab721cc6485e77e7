"""Test fixtures and configuration."""

import asyncio
import logging
import os
import sys
from uuid import uuid4

import pytest
import pytest_asyncio
import structlog
from httpx import ASGITransport, AsyncClient
from sqlalchemy import delete, event, text
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Set ENVIRONMENT for pydantic settings before the application is imported
os.environ["ENVIRONMENT"] = "testing"

from ledger_recon.logger import get_logger  # noqa: E402

logger = get_logger(__name__)


def normalize_url(url: str | None) -> str | None:
    """Normalize localhost to 127.0.0.1 for consistent database connections."""
    if url and "localhost" in url:
        return url.replace("localhost", "127.0.0.1")
    return url


def is_sqlite(url: str) -> bool:
    return make_url(url).get_backend_name() == "sqlite"


# --- Structlog Configuration for Tests ---
@pytest.fixture(autouse=True, scope="session")
def configure_structlog_for_tests():
    """Configure structlog for proper capsys capture in tests."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.format_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ]

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=structlog.dev.ConsoleRenderer(colors=False),
        foreign_pre_chain=processors[:-1],
    )

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG)

    yield

    structlog.reset_defaults()


@pytest.fixture(scope="session")
def test_database_url(tmp_path_factory) -> str:
    """PostgreSQL from DATABASE_URL when set, otherwise a throwaway SQLite file."""
    url = normalize_url(os.environ.get("DATABASE_URL"))
    if url:
        return url
    db_path = tmp_path_factory.mktemp("db") / "ledger_recon_test.db"
    return f"sqlite+aiosqlite:///{db_path}"


async def ensure_database(db_url: str) -> None:
    """Create the PostgreSQL test database if it does not exist yet."""
    url = make_url(db_url)
    db_name = url.database

    engine = create_async_engine(url.set(database="postgres"), isolation_level="AUTOCOMMIT")
    try:
        async with engine.connect() as conn:
            result = await conn.execute(
                text("SELECT 1 FROM pg_database WHERE datname = :name"), {"name": db_name}
            )
            if not result.scalar():
                await conn.execute(text(f'CREATE DATABASE "{db_name}"'))
    except SQLAlchemyError as e:
        logger.error(
            "Test database setup failed",
            database=db_name,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise RuntimeError(f"Cannot proceed without test database: {e}") from e
    finally:
        await engine.dispose()


@pytest_asyncio.fixture(scope="session", loop_scope="session")
async def db_engine(test_database_url):
    """Create the schema once per session; tests isolate via rollback (see db)."""
    from ledger_recon import models  # noqa: F401
    from ledger_recon.database import Base

    sqlite = is_sqlite(test_database_url)
    if not sqlite:
        await ensure_database(test_database_url)

    engine = create_async_engine(test_database_url, echo=False, poolclass=NullPool)

    if sqlite:

        @event.listens_for(engine.sync_engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    async with engine.begin() as conn:
        if sqlite:
            await conn.run_sync(Base.metadata.drop_all)
        else:
            await conn.execute(text("DROP SCHEMA public CASCADE"))
            await conn.execute(text("CREATE SCHEMA public"))
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    try:
        await asyncio.wait_for(engine.dispose(), timeout=10.0)
    except TimeoutError:
        logger.error("CRITICAL: Engine disposal timed out - connections may be leaked")


@pytest_asyncio.fixture(scope="function", autouse=True)
async def patch_database_connection(db_engine):
    """Point the application's get_db dependency at the test engine."""
    from ledger_recon import database

    test_maker = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    previous = database.set_test_session_maker(test_maker)
    yield
    database.set_test_session_maker(previous)


@pytest_asyncio.fixture(scope="function")
async def db(db_engine):
    """Session bound to an outer transaction that is rolled back after the test.

    Calls to ``db.commit()`` inside the test do not end the outer transaction,
    so nothing leaks between tests.
    """
    connection = await db_engine.connect()
    transaction = await connection.begin()
    session = AsyncSession(bind=connection, expire_on_commit=False)

    yield session

    await session.close()
    await transaction.rollback()
    await connection.close()


@pytest_asyncio.fixture(scope="function")
async def test_user(db_engine):
    """A committed user, visible to the sessions the API opens per request."""
    from ledger_recon.models import User

    async with AsyncSession(db_engine, expire_on_commit=False) as session:
        user = User(email=f"test-{uuid4()}@example.com", hashed_password="hashed")
        session.add(user)
        await session.commit()
        user_id = user.id

    yield user

    async with AsyncSession(db_engine, expire_on_commit=False) as session:
        try:
            await session.execute(delete(User).where(User.id == user_id))
            await session.commit()
        except SQLAlchemyError as e:
            logger.warning(
                "Test user cleanup failed",
                user_id=str(user_id),
                error=str(e),
                error_type=type(e).__name__,
            )


@pytest_asyncio.fixture(scope="function")
async def committed_session(db_engine):
    """Session that really commits, for seeding data the API must see."""
    async with AsyncSession(db_engine, expire_on_commit=False) as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(test_user):
    """Authenticated async test client."""
    from ledger_recon.main import app
    from ledger_recon.security import create_access_token

    token = create_access_token(data={"sub": str(test_user.id)})
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"Authorization": f"Bearer {token}"},
    ) as client_instance:
        yield client_instance


@pytest_asyncio.fixture(scope="function")
async def public_client():
    """Async test client without auth headers."""
    from ledger_recon.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client_instance:
        yield client_instance

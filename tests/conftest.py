"""Pytest configuration and fixtures"""

import os
import tempfile

# Set test environment variables BEFORE any imports
# Settings are read once, when jobqueue.core.config is first imported
os.environ["LOG_DIR"] = os.path.join(tempfile.gettempdir(), "jobqueue-test-logs")
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DB_CONNECT_RETRIES"] = "1"
os.environ["SMTP_HOST"] = ""
os.environ["UPLOAD_DIR"] = tempfile.gettempdir()

import pytest

from jobqueue.core.retry import RetryPolicy
from jobqueue.db import database
from jobqueue.db.database import init_database, close_database, create_tables
from jobqueue.repositories.job_repository import JobRepository


@pytest.fixture
async def db_engine(tmp_path):
    """File-backed SQLite queue, fresh for every test."""
    await close_database()
    await init_database(f"sqlite+aiosqlite:///{tmp_path / 'queue.db'}")
    await create_tables()
    yield database.engine
    await close_database()


@pytest.fixture
async def db_session(db_engine):
    async with database.SessionLocal() as session:
        yield session


@pytest.fixture
def repo():
    """Repository whose retries are claimable immediately."""
    return JobRepository(RetryPolicy(strategy="fixed", base_delay=0))

"""
Pytest configuration and fixtures for the archiver tests.

Every test gets its own SQLite database (through aiosqlite) and an in-memory
stand-in for the Discord adapter.
"""
import os
import tempfile

# Set test environment variables before ANY imports
os.environ["DB_URL"] = "sqlite+aiosqlite:///" + os.path.join(tempfile.gettempdir(), "archiver_test_default.db")
os.environ["DISCORD_TOKEN"] = ""
os.environ["BACKLOG_DELAY_MS"] = "0"
os.environ["ARCHIVE_DELAY_MS"] = "0"

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker

from archiver.controllers.archive_controller import Archiver
from archiver.database import init_models
from archiver.services.message_store import MessageStore
from fakes import FakeSource, make_engine


@pytest_asyncio.fixture
async def store(tmp_path):
    engine = make_engine(tmp_path / "archive.db")
    await init_models(engine)
    yield MessageStore(async_sessionmaker(bind=engine, expire_on_commit=False))
    await engine.dispose()


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def archiver(store, source):
    return Archiver(store, source)

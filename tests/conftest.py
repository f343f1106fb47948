"""Shared pytest fixtures for closuretree tests."""

import pytest

from closuretree.closure.store import ClosureStore
from closuretree.config import Settings
from closuretree.db.connection import Database
from closuretree.nodes.repository import SqliteNodeRepository
from closuretree.trees.service import TreeService


@pytest.fixture
def settings():
    return Settings(database_path=":memory:")


@pytest.fixture
async def db(settings):
    """In-memory database for tests."""
    database = await Database.connect(":memory:", settings)
    yield database
    await database.close()


@pytest.fixture
async def store(db):
    """ClosureStore backed by in-memory database."""
    return ClosureStore(db)


@pytest.fixture
async def nodes(db):
    """Node repository backed by in-memory database."""
    return SqliteNodeRepository(db)


@pytest.fixture
async def service(db):
    """TreeService wired to the in-memory database."""
    return TreeService(db)


@pytest.fixture
async def engine(service):
    return service.engine

"""Test fixtures using a file-backed SQLite database per test."""

import pytest
import pytest_asyncio

from chatline.config import Settings
from chatline.storage.database import Database
from chatline.storage.queries import ChatStore

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a throwaway SQLite file, with dummy credentials."""
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'chatline.db'}",
        GROQ_API_KEY="test-groq-key",
        FAL_KEY="test-fal-key",
        IMGUR_CLIENT_ID="test-imgur-client",
        _env_file=None,
    )


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def db(settings):
    """Database with all tables created."""
    database = Database(settings)
    await database.connect()
    await database.create_schema()
    yield database
    await database.disconnect()


@pytest.fixture
def store(db) -> ChatStore:
    return ChatStore(db)

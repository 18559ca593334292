"""
Pytest configuration and shared fixtures.

Test environment variables are set here before any groupbook import, and the
settings cache is cleared so they take effect. Every test gets its own app
and its own SQLite file.
"""

import os

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import insert, text

os.environ.setdefault("DATABASE_URL", "sqlite:///./groupbook-test.db")
os.environ.setdefault("SECRET_TOKEN", "test-secret")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from groupbook.config import Settings, get_settings  # noqa: E402
from groupbook.main import create_app  # noqa: E402

get_settings.cache_clear()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        DATABASE_URL=f"sqlite:///{tmp_path / 'groupbook.db'}",
        SECRET_TOKEN=os.environ["SECRET_TOKEN"],
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    """Test client with the lifespan running (schema created, pool open)."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers() -> dict:
    return {"Authorization": os.environ["SECRET_TOKEN"]}


@pytest.fixture
def count_rows(app):
    """Return a function that counts rows in a table straight from the database."""
    def _count(table: str) -> int:
        with app.state.store.engine.connect() as conn:
            return conn.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar()
    return _count


@pytest.fixture
def insert_rows(app):
    """
    Return a function that inserts rows directly, bypassing the API, so tests
    can control created_at.
    """
    def _insert(model, rows: list) -> None:
        with app.state.store.engine.begin() as conn:
            conn.execute(insert(model.__table__), rows)
    return _insert

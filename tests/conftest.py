"""Shared pytest fixtures for all tests.

Async services are driven with ``asyncio.run``. A redis-py client binds its
connections to the loop that first uses it, so every test builds its
registry from a fresh ``FakeAsyncRedis`` and runs a single event loop.
"""

from datetime import datetime, timezone

import fakeredis
import pytest

from bookshelf.services import ServiceRegistry


@pytest.fixture
def fake_server():
    """An in-process Redis server shared by every client of one test."""
    return fakeredis.FakeServer()


@pytest.fixture
def settings(tmp_path):
    return {
        'REDIS_URL': 'redis://fake:6379/0',
        'BOOKSHELF_KEY_PREFIX': 'test',
        'DATA_DIR': str(tmp_path / 'data'),
        'BOOKS_CACHE_DIR': str(tmp_path / 'data' / 'cache'),
        'BOOKS_PAGE_SIZE': 2,
        'BIN_RETENTION_DAYS': 30,
    }


@pytest.fixture
def make_registry(fake_server, settings):
    """Build a ServiceRegistry on a new client of the test's fake server."""
    def factory(**overrides):
        client = fakeredis.FakeAsyncRedis(server=fake_server, decode_responses=True)
        return ServiceRegistry({**settings, **overrides}, redis_client=client)
    return factory


@pytest.fixture
def registry(make_registry):
    return make_registry()


@pytest.fixture
def user_id() -> str:
    return 'user-1'


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)

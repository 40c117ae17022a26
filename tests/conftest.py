"""Shared fixtures: a throwaway SQLite database per test."""

import pytest_asyncio

from database.session import create_session_factory, init_db


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine, factory = create_session_factory(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield factory
    await engine.dispose()

import asyncio

import pytest

from db import connection as db_connection


class _FakePool:
    def __init__(self):
        self.terminated = False

    def terminate(self):
        self.terminated = True


@pytest.mark.asyncio
async def test_pool_from_another_loop_is_terminated_and_replaced(monkeypatch):
    stale = _FakePool()
    fresh = _FakePool()
    created = []

    async def fake_create_pool(**kwargs):
        created.append(kwargs)
        return fresh

    monkeypatch.setenv("DB_DSN", "postgresql://atlas@localhost/atlas")
    monkeypatch.setattr(db_connection.asyncpg, "create_pool", fake_create_pool)
    monkeypatch.setattr(db_connection, "_pool", stale)
    monkeypatch.setattr(db_connection, "_pool_loop", object())

    pool = await db_connection.get_db_connection_pool()

    assert pool is fresh
    assert stale.terminated is True
    assert db_connection._pool_loop is asyncio.get_running_loop()
    assert created[0]["dsn"] == "postgresql://atlas@localhost/atlas"

    # Same loop: the pool is reused
    assert await db_connection.get_db_connection_pool() is fresh
    assert len(created) == 1


@pytest.mark.asyncio
async def test_pool_lock_is_bound_to_the_running_loop(monkeypatch):
    monkeypatch.setattr(db_connection, "_pool_lock", asyncio.Lock())
    monkeypatch.setattr(db_connection, "_pool_lock_loop", object())

    loop = asyncio.get_running_loop()
    lock = db_connection._get_pool_lock(loop)

    assert db_connection._pool_lock_loop is loop
    assert db_connection._get_pool_lock(loop) is lock


@pytest.mark.asyncio
async def test_missing_dsn_raises_connection_error(monkeypatch):
    monkeypatch.delenv("DB_DSN", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setattr(db_connection, "_pool", None)
    monkeypatch.setattr(db_connection, "_pool_loop", None)

    with pytest.raises(ConnectionError):
        await db_connection.get_db_connection_pool()

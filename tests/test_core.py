import asyncio
import threading

import asyncpg
import pytest

from conftest import FakeConnection
from core import db, settings
from core.context import ActorContext, actor_scope, current_actor


def test_database_url_strips_sslmode(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@db:5432/app?sslmode=require&application_name=api")

    assert settings.database_url() == "postgresql://u:p@db:5432/app?application_name=api"


def test_database_url_is_required(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "  ")

    with pytest.raises(RuntimeError):
        settings.database_url()


@pytest.mark.parametrize(("raw", "expected"), [("", 3000), ("abc", 3000), ("-1", 3000), ("1500", 1500)])
def test_statement_timeout_setting_falls_back_on_bad_values(monkeypatch, raw, expected):
    monkeypatch.setenv("STATEMENT_TIMEOUT_MS", raw)

    assert settings.default_statement_timeout_ms() == expected


def test_worker_mode_is_explicit_configuration(monkeypatch):
    monkeypatch.delenv("WORKER_MODE", raising=False)
    assert settings.worker_mode() == "process"

    monkeypatch.setenv("WORKER_MODE", "THREAD")
    assert settings.worker_mode() == "thread"

    monkeypatch.setenv("WORKER_MODE", "fiber")
    assert settings.worker_mode() == "process"


def test_archive_flag(monkeypatch):
    monkeypatch.delenv("ARCHIVE_ENABLED", raising=False)
    assert settings.archive_enabled() is False

    monkeypatch.setenv("ARCHIVE_ENABLED", "yes")
    assert settings.archive_enabled() is True


def test_pool_requires_initialization():
    with pytest.raises(RuntimeError):
        db.pool()


def test_actor_timeout_preference():
    assert ActorContext(timeout_preference=900).statement_timeout_ms(3000) == 900
    assert ActorContext(timeout_preference=0).statement_timeout_ms(3000) == 3000
    assert ActorContext.anonymous("1.2.3.4").statement_timeout_ms(3000) == 3000


def test_apply_actor_timeout_uses_default_without_preference(monkeypatch):
    monkeypatch.setenv("STATEMENT_TIMEOUT_MS", "2500")
    conn = FakeConnection(statement_timeout="0")

    asyncio.run(db.apply_actor_timeout(conn, None))
    assert conn.statement_timeout == "2500"

    asyncio.run(db.apply_actor_timeout(conn, ActorContext(actor_id=1, timeout_preference=800)))
    assert conn.statement_timeout == "800"


def test_actor_scope_is_torn_down_and_not_shared_between_threads():
    outer = ActorContext(actor_id=1)
    inner = ActorContext(actor_id=2)
    seen_in_thread = []

    with actor_scope(outer):
        assert current_actor() is outer
        with actor_scope(inner):
            assert current_actor() is inner
        assert current_actor() is outer

        thread = threading.Thread(target=lambda: seen_in_thread.append(current_actor()))
        thread.start()
        thread.join()

    assert current_actor() is None
    assert seen_in_thread == [None]


def test_actor_scope_resets_after_error():
    with pytest.raises(RuntimeError):
        with actor_scope(ActorContext(actor_id=3)):
            raise RuntimeError("boom")

    assert current_actor() is None


def test_actor_copy_is_equal_but_distinct():
    actor = ActorContext(actor_id=5, origin_address="::1", timeout_preference=100)
    copy = actor.copy()

    assert copy == actor
    assert copy is not actor


class _FakePool:
    async def close(self):
        return None


def test_pool_has_no_client_side_command_timeout(monkeypatch):
    captured = {}

    async def create_pool(**kwargs):
        captured.update(kwargs)
        return _FakePool()

    monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@db:5432/app")
    monkeypatch.setenv("STATEMENT_TIMEOUT_MS", "1200")
    monkeypatch.setattr(asyncpg, "create_pool", create_pool)

    async def run():
        await db.init_pool()
        try:
            assert isinstance(db.pool(), _FakePool)
        finally:
            await db.close_pool()

    asyncio.run(run())

    # Postgres' statement_timeout is the only limit, so long actor limits and
    # without_timeout() work are not cut short by the client.
    assert captured["command_timeout"] is None
    assert captured["server_settings"] == {"statement_timeout": "1200"}


def test_worker_connection_is_standalone_without_command_timeout(monkeypatch):
    captured = {}
    conn = FakeConnection()

    async def connect(**kwargs):
        captured.update(kwargs)
        return conn

    monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@db:5432/app?sslmode=disable")
    monkeypatch.delenv("STATEMENT_TIMEOUT_MS", raising=False)
    monkeypatch.setattr(asyncpg, "connect", connect)

    assert asyncio.run(db.connect()) is conn
    assert captured == {
        "dsn": "postgresql://u:p@db:5432/app",
        "command_timeout": None,
        "server_settings": {"statement_timeout": "3000"},
    }

"""The maintenance commands end to end against a SQLite file."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest

from stablehand.core.app import Stablehand
from stablehand.core.cli import discover_app, main
from tests.tasks import NoopTask

pytestmark = pytest.mark.integration


@pytest.fixture
def app_locator(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> str:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(sys, 'path', list(sys.path))
    db_path = tmp_path / 'cli.db'
    path = tmp_path / 'cli_queue.py'
    path.write_text(
        'from stablehand import AppConfig, Stablehand, StoreConfig\n'
        f"app = Stablehand(AppConfig(store=StoreConfig(database_url='sqlite+aiosqlite:///{db_path}')))\n"
    )
    return f'{path}:app'


async def _enqueue(app: Stablehand, count: int) -> None:
    store = app.get_store()
    await store.ensure_schema_initialized()
    try:
        async with store.transaction() as session:
            for _ in range(count):
                await app.get_executor().enqueue(session, NoopTask())
    finally:
        await app.close()


def test_init_schema_then_empty_stats(
    app_locator: str, capsys: pytest.CaptureFixture[str]
) -> None:
    main(['init-schema', app_locator])
    assert 'ok: queue schema is ready' in capsys.readouterr().out

    main(['stats', app_locator])
    out = capsys.readouterr().out
    assert 'total      0' in out
    assert 'completed  0' in out


def test_run_once_drains_and_stats_reflect_it(
    app_locator: str, capsys: pytest.CaptureFixture[str]
) -> None:
    app, _ = discover_app(app_locator)
    asyncio.run(_enqueue(app, 2))

    main(['stats', app_locator])
    assert 'eligible   2' in capsys.readouterr().out

    main(['run-once', app_locator])
    out = capsys.readouterr().out
    assert 'runner: claimed=2 completed=2 failed=0 invalid=0 undecodable=0' in out
    assert 'hypervisor: reset=0' in out

    main(['stats', app_locator])
    out = capsys.readouterr().out
    assert 'completed  2' in out
    assert 'eligible   0' in out

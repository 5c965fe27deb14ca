"""Integration fixtures: a real store on a temporary SQLite file.

Set STABLEHAND_TEST_DATABASE_URL (e.g. in .env.test) to run the same tests
against PostgreSQL instead.
"""

from __future__ import annotations

import os
import random
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from sqlalchemy import delete, select

from stablehand.core.executor.executor import PersistentTaskExecutor
from stablehand.core.models.executor import ExecutorConfig
from stablehand.core.models.store import StoreConfig
from stablehand.core.models.task_pg import QueuedTask, QueuedTaskModel
from stablehand.core.store.task_store import TaskStore
from tests.tasks import EffectsBase, TaskEffect

START = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock under test control; optionally steps forward on each read."""

    def __init__(self, start: datetime = START, step: timedelta = timedelta(0)):
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return os.environ.get(
        'STABLEHAND_TEST_DATABASE_URL',
        f'sqlite+aiosqlite:///{tmp_path / "queue.db"}',
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def store(db_url: str) -> AsyncGenerator[TaskStore, None]:
    """TaskStore with the queue and the test effects tables, both empty."""
    task_store = TaskStore(StoreConfig(database_url=db_url), rng=random.Random(7))
    await task_store.ensure_schema_initialized()
    async with task_store.async_engine.begin() as conn:
        await conn.run_sync(EffectsBase.metadata.create_all)
        await conn.execute(delete(TaskEffect))
        await conn.execute(delete(QueuedTaskModel))
    yield task_store
    await task_store.close_async()


@pytest.fixture
def executor(store: TaskStore, clock: FakeClock) -> PersistentTaskExecutor:
    return PersistentTaskExecutor(store, ExecutorConfig(), clock=clock)


async def load_task(store: TaskStore, task_id: str) -> Optional[QueuedTask]:
    async with store.transaction() as session:
        return await store.find_by_id(session, task_id)


async def load_effects(store: TaskStore) -> list[tuple[str, str]]:
    async with store.transaction() as session:
        rows = (await session.execute(select(TaskEffect).order_by(TaskEffect.id))).scalars()
        return [(row.task_id, row.label) for row in rows]

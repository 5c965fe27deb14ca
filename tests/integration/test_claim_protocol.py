"""Integration tests for the claim and stall-reset protocols (bounded optimistic retry)."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Any, Collection, Optional

import pytest

from stablehand.core.executor.executor import PersistentTaskExecutor
from stablehand.core.models.executor import ExecutorConfig
from stablehand.core.models.task_pg import QueuedTask
from stablehand.core.store.task_store import TaskStore
from stablehand.core.types.result import is_err, is_ok
from tests.integration.conftest import START, FakeClock, load_task
from tests.tasks import NoopTask

pytestmark = pytest.mark.integration


async def _enqueue(executor: PersistentTaskExecutor, count: int = 1) -> list[str]:
    ids = []
    for _ in range(count):
        async with executor.store.transaction() as session:
            ids.append(await executor.enqueue(session, NoopTask()))
        if isinstance(executor.clock, FakeClock):
            executor.clock.advance(seconds=1)
    return ids


class TestTryLockTask:
    @pytest.mark.asyncio(loop_scope='function')
    async def test_claims_and_stamps_started(
        self, executor: PersistentTaskExecutor, clock: FakeClock
    ) -> None:
        [task_id] = await _enqueue(executor)
        clock.advance(seconds=1)

        claimed = await executor.try_lock_task()

        assert claimed is not None
        assert claimed.id == task_id
        assert claimed.started_stamp == clock.now
        assert claimed.version == 1
        stored = await load_task(executor.store, task_id)
        assert stored is not None
        assert stored.started_stamp == clock.now

    @pytest.mark.asyncio(loop_scope='function')
    async def test_nothing_eligible(self, executor: PersistentTaskExecutor) -> None:
        assert await executor.try_lock_task() is None

    @pytest.mark.asyncio(loop_scope='function')
    async def test_lost_race_retries_onto_next_record(
        self,
        executor: PersistentTaskExecutor,
        store: TaskStore,
        clock: FakeClock,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        first, second = await _enqueue(executor, 2)
        clock.advance(seconds=1)

        stale = await load_task(store, first)
        assert stale is not None
        # A competing worker claims `first` after our read
        rival = PersistentTaskExecutor(store, ExecutorConfig(), clock=clock)
        assert (await rival.try_lock_task()) is not None

        real_find = store.find_next_eligible
        calls: list[int] = []

        async def racing_find(
            session: Any, now: datetime, *, exclude_ids: Collection[str] = ()
        ) -> Optional[QueuedTask]:
            calls.append(1)
            if len(calls) == 1:
                return stale
            return await real_find(session, now, exclude_ids=exclude_ids)

        monkeypatch.setattr(store, 'find_next_eligible', racing_find)

        claimed = await executor.try_lock_task()

        assert claimed is not None
        assert claimed.id == second
        assert len(calls) == 2

    @pytest.mark.asyncio(loop_scope='function')
    async def test_gives_up_after_attempt_budget(
        self,
        executor: PersistentTaskExecutor,
        store: TaskStore,
        clock: FakeClock,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        [task_id] = await _enqueue(executor)
        clock.advance(seconds=1)
        stale = await load_task(store, task_id)
        assert stale is not None
        assert await executor.try_lock_task() is not None

        calls: list[int] = []

        async def always_stale(
            session: Any, now: datetime, *, exclude_ids: Collection[str] = ()
        ) -> Optional[QueuedTask]:
            calls.append(1)
            return stale

        monkeypatch.setattr(store, 'find_next_eligible', always_stale)

        assert await executor.try_lock_task() is None
        assert len(calls) == executor.config.lock_attempts == 3

    @pytest.mark.asyncio(loop_scope='function')
    async def test_single_attempt_reports_conflict(
        self, executor: PersistentTaskExecutor, store: TaskStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        [task_id] = await _enqueue(executor)
        stale = await load_task(store, task_id)
        assert stale is not None
        assert await executor.try_lock_task() is not None

        async def stale_find(
            session: Any, now: datetime, *, exclude_ids: Collection[str] = ()
        ) -> Optional[QueuedTask]:
            return stale

        monkeypatch.setattr(store, 'find_next_eligible', stale_find)

        result = await executor.obtain_locked_task()
        assert is_err(result)
        assert result.err_value.task_id == task_id

    @pytest.mark.asyncio(loop_scope='function')
    async def test_concurrent_claims_of_one_record(
        self, store: TaskStore, clock: FakeClock
    ) -> None:
        workers = [PersistentTaskExecutor(store, ExecutorConfig(), clock=clock) for _ in range(4)]
        [task_id] = await _enqueue(workers[0])
        clock.advance(seconds=1)

        results = await asyncio.gather(*(w.try_lock_task() for w in workers))

        winners = [r for r in results if r is not None]
        assert len(winners) == 1
        assert winners[0].id == task_id
        stored = await load_task(store, task_id)
        assert stored is not None
        assert stored.version == 1


class TestTryResetStalledTask:
    @pytest.mark.asyncio(loop_scope='function')
    async def test_resets_stalled_claim(
        self, executor: PersistentTaskExecutor, clock: FakeClock
    ) -> None:
        [task_id] = await _enqueue(executor)
        assert await executor.try_lock_task() is not None
        clock.advance(hours=2, seconds=1)

        assert await executor.try_reset_stalled_task() is True

        stored = await load_task(executor.store, task_id)
        assert stored is not None
        assert stored.started_stamp is None
        assert stored.completed_stamp is None
        assert stored.version == 2
        assert stored.is_eligible(clock.now)

    @pytest.mark.asyncio(loop_scope='function')
    async def test_young_claim_is_left_alone(
        self, executor: PersistentTaskExecutor, clock: FakeClock
    ) -> None:
        [task_id] = await _enqueue(executor)
        assert await executor.try_lock_task() is not None
        clock.advance(hours=1, minutes=59)

        assert await executor.try_reset_stalled_task() is False
        stored = await load_task(executor.store, task_id)
        assert stored is not None
        assert stored.started_stamp is not None

    @pytest.mark.asyncio(loop_scope='function')
    async def test_conflict_on_every_attempt_gives_up(
        self,
        executor: PersistentTaskExecutor,
        store: TaskStore,
        clock: FakeClock,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        [task_id] = await _enqueue(executor)
        assert await executor.try_lock_task() is not None
        clock.advance(hours=3)
        stalled = await load_task(store, task_id)
        assert stalled is not None
        stale = stalled.replace(version=0)

        async def stale_find(session: Any, now: datetime, threshold: timedelta) -> QueuedTask:
            return stale

        monkeypatch.setattr(store, 'find_random_stalled', stale_find)

        assert await executor.try_reset_stalled_task() is False
        result = await executor.reset_stalled_task()
        assert is_err(result)

    @pytest.mark.asyncio(loop_scope='function')
    async def test_reset_attempt_without_candidates(
        self, executor: PersistentTaskExecutor
    ) -> None:
        result = await executor.reset_stalled_task()
        assert is_ok(result)
        assert result.ok_value is None

    @pytest.mark.asyncio(loop_scope='function')
    async def test_custom_threshold(self, store: TaskStore, clock: FakeClock) -> None:
        executor = PersistentTaskExecutor(
            store,
            ExecutorConfig(runner_interval_ms=1_000, stall_threshold_ms=60_000),
            clock=clock,
        )
        [task_id] = await _enqueue(executor)
        assert await executor.try_lock_task() is not None
        clock.advance(seconds=61)

        assert await executor.try_reset_stalled_task() is True
        stored = await load_task(store, task_id)
        assert stored is not None
        assert stored.started_stamp is None


class TestHypervisor:
    @pytest.mark.asyncio(loop_scope='function')
    async def test_sweeps_until_none_left(
        self, executor: PersistentTaskExecutor, store: TaskStore, clock: FakeClock
    ) -> None:
        ids = await _enqueue(executor, 3)
        for _ in ids:
            assert await executor.try_lock_task() is not None
        clock.advance(hours=3)

        assert await executor.hypervisor() == 3

        for task_id in ids:
            stored = await load_task(store, task_id)
            assert stored is not None
            assert stored.started_stamp is None

        assert await executor.hypervisor() == 0

    @pytest.mark.asyncio(loop_scope='function')
    async def test_completed_tasks_are_never_reset(
        self, executor: PersistentTaskExecutor, clock: FakeClock
    ) -> None:
        await _enqueue(executor)
        summary = await executor.runner()
        assert summary.completed == 1
        clock.advance(days=1)

        assert await executor.hypervisor() == 0

# stablehand/core/executor/executor.py
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Collection, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from stablehand.core.codec.serde import JsonPayloadCodec, PayloadCodec, SerializationError
from stablehand.core.errors import ErrorCode, InvalidTaskError
from stablehand.core.executor.lifecycle import TaskRunEnvelope
from stablehand.core.logging import get_logger
from stablehand.core.models.executor import ExecutorConfig
from stablehand.core.models.task_pg import QueuedTask
from stablehand.core.store.result_types import StoreResult
from stablehand.core.store.task_store import TaskStore
from stablehand.core.task import BaseTask
from stablehand.core.types.result import Err, Ok
from stablehand.core.types.status import RunOutcome
from stablehand.core.utils.retry import with_optimistic_retry

logger = get_logger('executor')


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RunnerSummary:
    """What one runner drain did."""

    claimed: int = 0
    completed: int = 0
    failed: int = 0
    invalid: int = 0
    undecodable: int = 0

    def record(self, outcome: RunOutcome) -> None:
        match outcome:
            case RunOutcome.COMPLETED:
                self.completed += 1
            case RunOutcome.FAILED:
                self.failed += 1
            case RunOutcome.INVALID_STATE:
                self.invalid += 1
            case RunOutcome.UNDECODABLE:
                self.undecodable += 1

    def __str__(self) -> str:
        return (
            f'claimed={self.claimed} completed={self.completed} failed={self.failed} '
            f'invalid={self.invalid} undecodable={self.undecodable}'
        )


class PersistentTaskExecutor:
    """
    Enqueues task bodies and executes them from the queue table.

    Workers coordinate only through the table: claims and stall resets are
    compare-and-swap writes on the record's version, retried up to
    ``config.lock_attempts`` times with a fresh read each time. Losing every
    attempt means "no work this cycle", never an error.
    """

    def __init__(
        self,
        store: TaskStore,
        config: Optional[ExecutorConfig] = None,
        codec: Optional[PayloadCodec] = None,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.config = config or ExecutorConfig()
        self.codec: PayloadCodec = codec or JsonPayloadCodec()
        self.clock: Callable[[], datetime] = clock or utc_now

    # ----------------- Producer side -----------------

    async def enqueue(self, session: AsyncSession, task: Any) -> str:
        """
        Add ``task`` to the queue inside the caller's open transaction.

        The record becomes visible to workers when the caller commits.

        Returns:
            The id of the new queue record.

        Raises:
            InvalidTaskError: the session has no active transaction, ``task``
                is not a BaseTask, or its payload cannot be encoded.
        """
        if not session.in_transaction():
            raise InvalidTaskError(
                message='enqueue requires an active transaction',
                code=ErrorCode.TASK_NO_TRANSACTION,
                notes=['the task would be inserted outside any unit of work'],
                help_text=(
                    'call enqueue inside `async with session.begin():` '
                    'or `async with store.transaction() as session:`'
                ),
            )
        if not isinstance(task, BaseTask):
            raise InvalidTaskError(
                message=f'cannot enqueue {type(task).__name__}: not a task',
                code=ErrorCode.TASK_INVALID_BODY,
                help_text='subclass stablehand.BaseTask and implement run_in_transaction()',
            )
        try:
            payload = self.codec.encode(task)
        except SerializationError as e:
            raise InvalidTaskError(
                message=f'cannot serialize task {task.task_name}',
                code=ErrorCode.TASK_NOT_SERIALIZABLE,
                notes=[str(e)],
            ) from e

        record = await self.store.insert(
            session,
            payload=payload,
            trigger_stamp=task.trigger_stamp,
            now=self.clock(),
        )
        logger.debug(
            f'Enqueued {task.task_name} as {record.id} '
            f'(trigger={record.trigger_stamp.isoformat() if record.trigger_stamp else "now"})'
        )
        return record.id

    # ----------------- Runner -----------------

    async def runner(self) -> RunnerSummary:
        """
        Drain the queue: claim and execute eligible tasks until none is left.

        One failing task never stops the drain. A record freed after a failure
        is not claimed again in the same call; it waits for the next one.
        """
        summary = RunnerSummary()
        # only freed records become eligible again within this drain
        failed_ids: set[str] = set()
        while True:
            record = await self.try_lock_task(exclude_ids=failed_ids)
            if record is None:
                break
            summary.claimed += 1
            outcome = await self._execute(record)
            summary.record(outcome)
            if outcome is RunOutcome.FAILED:
                failed_ids.add(record.id)

        if summary.claimed:
            logger.info(f'Runner drain finished: {summary}')
        else:
            logger.debug('Runner found no eligible tasks')
        return summary

    async def _execute(self, record: QueuedTask) -> RunOutcome:
        try:
            task = self.codec.decode(record.payload)
        except SerializationError as e:
            logger.error(
                f'Cannot decode payload of task {record.id}; it stays started '
                f'until the hypervisor resets it: {e}'
            )
            return RunOutcome.UNDECODABLE

        task.queued_task_id = record.id
        task.trigger_stamp = record.trigger_stamp
        envelope = TaskRunEnvelope(self.store, task, record, clock=self.clock)
        return await envelope.run()

    async def try_lock_task(
        self, *, exclude_ids: Collection[str] = ()
    ) -> Optional[QueuedTask]:
        """Claim the next eligible record, or None if none could be obtained."""
        match await with_optimistic_retry(
            self.config.lock_attempts,
            lambda: self.obtain_locked_task(exclude_ids=exclude_ids),
        ):
            case Ok(task):
                return task
            case Err(exhausted):
                logger.debug(f'No task claimed this cycle: {exhausted.message}')
                return None

    async def obtain_locked_task(
        self, *, exclude_ids: Collection[str] = ()
    ) -> StoreResult[Optional[QueuedTask]]:
        """
        One claim attempt in its own transaction.

        Returns:
            Ok(claimed record), Ok(None) when nothing is eligible, or
            Err(VersionConflict) when another worker got there first.
        """
        now = self.clock()
        async with self.store.transaction() as session:
            candidate = await self.store.find_next_eligible(
                session, now, exclude_ids=exclude_ids
            )
            if candidate is None:
                return Ok(None)
            result = await self.store.update(session, candidate, started_stamp=now)

        if result.is_ok():
            logger.debug(f'Claimed task {candidate.id}')
        return result

    # ----------------- Hypervisor -----------------

    async def hypervisor(self) -> int:
        """
        Reset stalled records one at a time until none is left.

        Returns:
            How many records were reset.
        """
        reset = 0
        while await self.try_reset_stalled_task():
            reset += 1

        if reset:
            logger.info(f'Hypervisor reset {reset} stalled task(s)')
        else:
            logger.debug('Hypervisor found no stalled tasks')
        return reset

    async def try_reset_stalled_task(self) -> bool:
        """Reset one stalled record. False when none is left or every attempt lost."""
        match await with_optimistic_retry(
            self.config.lock_attempts, self.reset_stalled_task
        ):
            case Ok(task):
                return task is not None
            case Err(exhausted):
                logger.debug(f'Stall reset abandoned this cycle: {exhausted.message}')
                return False

    async def reset_stalled_task(self) -> StoreResult[Optional[QueuedTask]]:
        """
        One stall-reset attempt in its own transaction.

        Returns:
            Ok(reset record), Ok(None) when nothing is stalled, or
            Err(VersionConflict) when the record changed under us.
        """
        now = self.clock()
        async with self.store.transaction() as session:
            stalled = await self.store.find_random_stalled(
                session, now, self.config.stall_threshold
            )
            if stalled is None:
                return Ok(None)
            result = await self.store.update(session, stalled, started_stamp=None)

        if result.is_ok():
            logger.debug(
                f'Reset stalled task {stalled.id} (claimed at {stalled.started_stamp})'
            )
        return result

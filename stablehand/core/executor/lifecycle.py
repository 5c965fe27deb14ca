# stablehand/core/executor/lifecycle.py
from __future__ import annotations
from datetime import datetime
from typing import Callable, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from stablehand.core.errors import InconsistentTaskStateError
from stablehand.core.logging import get_logger
from stablehand.core.models.task_pg import QueuedTask
from stablehand.core.store.result_types import VersionConflict
from stablehand.core.store.task_store import TaskStore
from stablehand.core.task import BaseTask
from stablehand.core.types.result import Err, Ok
from stablehand.core.types.status import RunOutcome, RunPhase

logger = get_logger('lifecycle')


class CompletionConflictError(Exception):
    """The record changed between validation and the completion write."""

    def __init__(self, conflict: VersionConflict) -> None:
        self.conflict = conflict
        super().__init__(conflict.message)


class TaskRunEnvelope:
    """
    One execution attempt of one claimed record.

    Validation, the task body and the completion stamp share a single
    transaction: either all of it commits or none of it does.

    Phases: CLAIMED -> VALIDATING -> RUNNING -> COMPLETED, or ROLLED_BACK
    from any phase once validation has started.

    On a rolled-back run the record is freed (started stamp cleared) in a
    separate transaction so it can be claimed again right away, but only
    while it still carries this attempt's claim: once the hypervisor has
    reset it, or another worker has claimed it, it is not ours to free.
    Freeing is best-effort; if it fails the hypervisor recovers the record
    once its claim is stalled. A record that fails validation is left
    untouched.
    """

    def __init__(
        self,
        store: TaskStore,
        task: BaseTask,
        claim: QueuedTask,
        *,
        clock: Callable[[], datetime],
    ) -> None:
        self.store = store
        self.task = task
        self.claim = claim
        self.task_id = claim.id
        self.clock = clock
        self.phase = RunPhase.CLAIMED
        self.error: Optional[BaseException] = None

    def _enter(self, phase: RunPhase) -> None:
        logger.debug(f'Task {self.task_id}: {self.phase.value} -> {phase.value}')
        self.phase = phase

    async def run(self) -> RunOutcome:
        try:
            async with self.store.transaction() as session:
                self._enter(RunPhase.VALIDATING)
                record = await self._validate(session)

                self._enter(RunPhase.RUNNING)
                await self.task.run_in_transaction(session, self.task_id)

                await self._mark_completed(session, record)
        except InconsistentTaskStateError as e:
            self.error = e
            self._enter(RunPhase.ROLLED_BACK)
            logger.error(str(e))
            return RunOutcome.INVALID_STATE
        except Exception as e:
            self.error = e
            self._enter(RunPhase.ROLLED_BACK)
            logger.warning(
                f'Task {self.task_id} ({self.task.task_name}) failed and was rolled back: '
                f'{type(e).__name__}: {e}',
                exc_info=True,
            )
            await self._free()
            return RunOutcome.FAILED

        self._enter(RunPhase.COMPLETED)
        logger.debug(f'Task {self.task_id} ({self.task.task_name}) completed')
        return RunOutcome.COMPLETED

    async def _validate(self, session: AsyncSession) -> QueuedTask:
        record = await self.store.find_by_id(session, self.task_id)
        if record is None:
            raise InconsistentTaskStateError(self.task_id, 'no such record')
        if record.started_stamp is None:
            raise InconsistentTaskStateError(self.task_id, 'record is not claimed')
        if record.completed_stamp is not None:
            raise InconsistentTaskStateError(
                self.task_id, f'record already completed at {record.completed_stamp}'
            )
        return record

    async def _mark_completed(self, session: AsyncSession, record: QueuedTask) -> None:
        match await self.store.update(session, record, completed_stamp=self.clock()):
            case Ok(_):
                return
            case Err(conflict):
                raise CompletionConflictError(conflict)

    async def _free(self) -> None:
        try:
            async with self.store.transaction() as session:
                record = await self.store.find_by_id(session, self.task_id)
                if (
                    record is None
                    or record.started_stamp is None
                    or record.completed_stamp is not None
                ):
                    logger.debug(f'Task {self.task_id} needs no freeing')
                    return
                if (
                    record.version != self.claim.version
                    or record.started_stamp != self.claim.started_stamp
                ):
                    logger.warning(
                        f'Not freeing task {self.task_id}: it was reset or claimed again '
                        f'(version {self.claim.version} -> {record.version})'
                    )
                    return

                match await self.store.update(
                    session,
                    record,
                    expected_version=self.claim.version,
                    started_stamp=None,
                ):
                    case Ok(_):
                        logger.debug(f'Freed task {self.task_id}')
                    case Err(conflict):
                        logger.warning(
                            f'Could not free task {self.task_id}: {conflict.message}; '
                            'leaving it to the hypervisor'
                        )
        except Exception as e:
            logger.error(
                f'Failed to free task {self.task_id}, the hypervisor will reset it '
                f'after the stall threshold: {type(e).__name__}: {e}'
            )

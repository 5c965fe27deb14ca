# stablehand/core/task.py
from __future__ import annotations
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Optional, Self
from pydantic import BaseModel, ConfigDict, Field, field_validator

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


class BaseTask(BaseModel, ABC):
    """
    A durable unit of work.

    Subclasses declare the state they need as pydantic fields (it is what the
    payload codec persists) and implement ``run_in_transaction``. The engine
    calls it with the session whose transaction also validates and completes
    the queue record, so every write made through ``session`` commits or rolls
    back together with the completion stamp.

    Subclasses must live at module level in an importable module; workers
    rebuild them from ``module`` + ``qualname``.

    Bodies may run more than once (a stalled claim is reset while the first
    attempt may still be alive), so ``run_in_transaction`` should be safe to
    repeat.
    """

    model_config = ConfigDict(validate_assignment=True)

    trigger_stamp: Optional[datetime] = Field(
        default=None,
        exclude=True,
        description='Earliest time the task may run; None means as soon as possible',
    )
    queued_task_id: Optional[str] = Field(
        default=None,
        exclude=True,
        description='Id of the queue record this body is bound to during a run',
    )

    @field_validator('trigger_stamp')
    @classmethod
    def _normalize_trigger_stamp(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is None:
            return None
        # Naive values are taken to be UTC already
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @property
    def task_name(self) -> str:
        cls = type(self)
        return f'{cls.__module__}.{cls.__qualname__}'

    def schedule_at(self, when: datetime) -> Self:
        self.trigger_stamp = when
        return self

    def schedule_in(self, delay: timedelta, *, now: Optional[datetime] = None) -> Self:
        base = now if now is not None else datetime.now(timezone.utc)
        return self.schedule_at(base + delay)

    @abstractmethod
    async def run_in_transaction(self, session: AsyncSession, task_id: str) -> None:
        """Do the work. Raise to roll back and release the record for another run."""
        ...

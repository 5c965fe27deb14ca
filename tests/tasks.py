"""Task bodies used across the test suite.

They live at module level so the payload codec can import them back.
"""

from __future__ import annotations

from sqlalchemy import Integer, String
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from pydantic import ConfigDict

from stablehand.core.task import BaseTask


class EffectsBase(DeclarativeBase):
    pass


class TaskEffect(EffectsBase):
    """A business-side row written by task bodies, to observe commit/rollback."""

    __tablename__ = 'test_task_effect'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    task_id: Mapped[str] = mapped_column(String(36), nullable=False)
    label: Mapped[str] = mapped_column(String(64), nullable=False)


class RecordingTask(BaseTask):
    label: str

    async def run_in_transaction(self, session: AsyncSession, task_id: str) -> None:
        session.add(TaskEffect(task_id=task_id, label=self.label))
        await session.flush()


class FailingTask(BaseTask):
    label: str = 'doomed'

    async def run_in_transaction(self, session: AsyncSession, task_id: str) -> None:
        session.add(TaskEffect(task_id=task_id, label=self.label))
        await session.flush()
        raise RuntimeError(f'boom: {self.label}')


class NoopTask(BaseTask):
    async def run_in_transaction(self, session: AsyncSession, task_id: str) -> None:
        return None


class Opaque:
    pass


class OpaqueTask(BaseTask):
    """Holds a value JSON cannot represent."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    thing: Opaque

    async def run_in_transaction(self, session: AsyncSession, task_id: str) -> None:
        return None


class Outer:
    class NestedTask(BaseTask):
        payload: dict[str, int]

        async def run_in_transaction(self, session: AsyncSession, task_id: str) -> None:
            return None


class NotATask:
    label = 'plain object'

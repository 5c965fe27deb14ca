from __future__ import annotations
import dataclasses
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from sqlalchemy import (
    DateTime,
    Index,
    Integer,
    LargeBinary,
    String,
    TypeDecorator,
    text,
)
from sqlalchemy.engine import Dialect, RowMapping
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from stablehand.core.types.status import TaskState


class UTCDateTime(TypeDecorator[datetime]):
    """Timezone-aware UTC timestamps on every backend.

    PostgreSQL keeps the offset natively. SQLite stores naive text, so values
    are converted to UTC before binding and re-tagged as UTC when loaded.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(
        self, value: Optional[datetime], dialect: Dialect
    ) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == 'sqlite':
            return value.replace(tzinfo=None)
        return value

    def process_result_value(
        self, value: Optional[datetime], dialect: Dialect
    ) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for stablehand models"""

    pass


class QueuedTaskModel(Base):
    """
    SQLAlchemy model for one enqueued unit of work.

    - id: str # uuid4, generated by the producer side at enqueue time
    - creation_stamp: datetime # set once at insert, never null afterwards
    - trigger_stamp: datetime # earliest eligibility; NULL = run as soon as possible
    - started_stamp: datetime # set on claim; NULL = not currently claimed
    - completed_stamp: datetime # set in the same transaction as the task body's effects
    - payload: bytes # the frozen task body, produced by the payload codec
    - version: int # optimistic concurrency token, bumped on every update
    """

    __tablename__ = 'stablehand_task_queue'
    __table_args__ = (
        Index('idx_stablehand_task_queue_eligible', 'started_stamp', 'trigger_stamp'),
        Index('idx_stablehand_task_queue_completed', 'completed_stamp'),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    creation_stamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    trigger_stamp: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime, nullable=True
    )
    started_stamp: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime, nullable=True
    )
    completed_stamp: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime, nullable=True
    )
    payload: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text('0'),
    )


@dataclass(frozen=True, slots=True)
class QueuedTask:
    """Read model of a queue row, detached from any session.

    Mutations never happen on this object; the store's compare-and-swap
    update returns a fresh instance carrying the bumped version.
    """

    id: str
    creation_stamp: datetime
    trigger_stamp: Optional[datetime]
    started_stamp: Optional[datetime]
    completed_stamp: Optional[datetime]
    payload: bytes
    version: int

    @classmethod
    def from_row(cls, row: RowMapping) -> QueuedTask:
        return cls(
            id=row['id'],
            creation_stamp=row['creation_stamp'],
            trigger_stamp=row['trigger_stamp'],
            started_stamp=row['started_stamp'],
            completed_stamp=row['completed_stamp'],
            payload=bytes(row['payload']),
            version=row['version'],
        )

    @property
    def state(self) -> TaskState:
        if self.completed_stamp is not None:
            return TaskState.COMPLETED
        if self.started_stamp is not None:
            return TaskState.IN_FLIGHT
        return TaskState.QUEUED

    def is_eligible(self, now: datetime) -> bool:
        return self.state is TaskState.QUEUED and (
            self.trigger_stamp is None or self.trigger_stamp < now
        )

    def is_stalled(self, now: datetime, threshold: timedelta) -> bool:
        return (
            self.completed_stamp is None
            and self.started_stamp is not None
            and self.started_stamp < now - threshold
        )

    def replace(self, **changes: Any) -> QueuedTask:
        return dataclasses.replace(self, **changes)

    def __repr__(self) -> str:
        def _fmt(stamp: Optional[datetime]) -> Optional[str]:
            return stamp.strftime('%Y.%m.%d %H:%M:%S %Z') if stamp else None

        return (
            f'QueuedTask(id={self.id!r}, version={self.version}, '
            f'creation={_fmt(self.creation_stamp)}, trigger={_fmt(self.trigger_stamp)}, '
            f'started={_fmt(self.started_stamp)}, completed={_fmt(self.completed_stamp)})'
        )

# stablehand/core/store/task_store.py
from __future__ import annotations
import hashlib
import random
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Collection, Optional, cast
from sqlalchemy import Table, and_, case, func, insert, or_, select, text, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from stablehand.core.logging import get_logger
from stablehand.core.models.store import StoreConfig
from stablehand.core.models.task_pg import Base, QueuedTask, QueuedTaskModel
from stablehand.core.store.result_types import StoreResult, VersionConflict
from stablehand.core.types.result import Err, Ok
from stablehand.core.utils.url import mask_database_url

_TASKS = cast(Table, QueuedTaskModel.__table__)

# Columns a caller may change through update(); id, payload and the
# creation stamp are fixed at insert, version is owned by the store.
_MUTABLE_COLUMNS: frozenset[str] = frozenset(
    {'trigger_stamp', 'started_stamp', 'completed_stamp'}
)

SCHEMA_ADVISORY_LOCK_SQL = text('SELECT pg_advisory_xact_lock(CAST(:key AS BIGINT))')


@dataclass(frozen=True, slots=True)
class QueueStats:
    """Point-in-time counts of queue rows by state."""

    total: int
    queued: int
    eligible: int
    in_flight: int
    stalled: int
    completed: int


class TaskStore:
    """
    Persistence and query facade over the task queue table.

    Owns the async engine and session factory. Every query method takes the
    caller's ``AsyncSession`` so it runs inside the caller's transaction;
    the store never commits on its own.

    Mutations go through ``update()``, a row-level compare-and-swap on the
    ``version`` column. A lost race is returned as ``Err(VersionConflict)``
    and leaves the row untouched.
    """

    def __init__(self, config: StoreConfig, *, rng: Optional[random.Random] = None):
        self.config = config
        self.logger = get_logger('store')
        self.async_engine = create_async_engine(
            self.config.database_url, **self.config.engine_kwargs()
        )
        self.session_factory = async_sessionmaker(
            self.async_engine, expire_on_commit=False
        )
        self._rng = rng or random.Random()
        self._initialized = False

        self.logger.info(
            f'TaskStore initialized for {mask_database_url(self.config.database_url)}'
        )

    def _schema_advisory_key(self) -> int:
        """
        Compute a stable 64-bit advisory lock key for schema initialization.

        Uses the database URL as a basis so that different clusters do not
        contend on the same advisory lock key.
        """
        basis = self.config.database_url.encode('utf-8', errors='ignore')
        h = hashlib.sha256(b'stablehand-schema:' + basis).digest()
        return int.from_bytes(h[:8], byteorder='big', signed=True)

    async def ensure_schema_initialized(self) -> None:
        """
        Create the queue table and its indexes if missing.

        Safe to call multiple times and from multiple processes; on PostgreSQL
        concurrent DDL is serialized with a transaction-scoped advisory lock.
        """
        if self._initialized:
            return
        async with self.async_engine.begin() as conn:
            if conn.dialect.name == 'postgresql':
                await conn.execute(
                    SCHEMA_ADVISORY_LOCK_SQL, {'key': self._schema_advisory_key()}
                )
            await conn.run_sync(Base.metadata.create_all)
        self._initialized = True
        self.logger.debug('Queue schema ready')

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Open a session with a transaction that commits on exit, rolls back on error."""
        async with self.session_factory() as session, session.begin():
            yield session

    # ----------------- Queries -----------------

    async def insert(
        self,
        session: AsyncSession,
        *,
        payload: bytes,
        now: datetime,
        trigger_stamp: Optional[datetime] = None,
        task_id: Optional[str] = None,
    ) -> QueuedTask:
        """Add a new queued record; visible to others once the caller commits."""
        task = QueuedTask(
            id=task_id or str(uuid.uuid4()),
            creation_stamp=now,
            trigger_stamp=trigger_stamp,
            started_stamp=None,
            completed_stamp=None,
            payload=payload,
            version=0,
        )
        await session.execute(
            insert(_TASKS).values(
                id=task.id,
                creation_stamp=task.creation_stamp,
                trigger_stamp=task.trigger_stamp,
                started_stamp=None,
                completed_stamp=None,
                payload=task.payload,
                version=task.version,
            )
        )
        return task

    async def find_by_id(
        self, session: AsyncSession, task_id: str
    ) -> Optional[QueuedTask]:
        result = await session.execute(select(_TASKS).where(_TASKS.c.id == task_id))
        row = result.mappings().first()
        return QueuedTask.from_row(row) if row is not None else None

    async def find_next_eligible(
        self,
        session: AsyncSession,
        now: datetime,
        *,
        exclude_ids: Collection[str] = (),
    ) -> Optional[QueuedTask]:
        """
        The next candidate for execution, or None.

        Eligible means unclaimed, unfinished and past its trigger time.
        Ordered by version (least contended first) then creation (FIFO).
        The caller must still win the compare-and-swap to own it.
        ``exclude_ids`` skips records the caller has already tried.
        """
        stmt = select(_TASKS).where(
            _TASKS.c.started_stamp.is_(None),
            _TASKS.c.completed_stamp.is_(None),
            or_(_TASKS.c.trigger_stamp.is_(None), _TASKS.c.trigger_stamp < now),
        )
        if exclude_ids:
            stmt = stmt.where(_TASKS.c.id.not_in(list(exclude_ids)))
        stmt = stmt.order_by(
            _TASKS.c.version.asc(), _TASKS.c.creation_stamp.asc()
        ).limit(1)
        row = (await session.execute(stmt)).mappings().first()
        return QueuedTask.from_row(row) if row is not None else None

    async def find_random_stalled(
        self, session: AsyncSession, now: datetime, threshold: timedelta
    ) -> Optional[QueuedTask]:
        """
        One stalled record chosen uniformly at random, or None.

        Random rather than oldest-first so that workers sweeping at the same
        time spread over different rows instead of racing for one.
        """
        stmt = select(_TASKS).where(
            _TASKS.c.completed_stamp.is_(None),
            _TASKS.c.started_stamp < now - threshold,
        )
        # TODO: switch to a random-offset query if stalled sets grow large;
        # every qualifying row (payload included) is fetched here.
        rows = (await session.execute(stmt)).mappings().all()
        if not rows:
            return None
        return QueuedTask.from_row(self._rng.choice(rows))

    async def update(
        self,
        session: AsyncSession,
        task: QueuedTask,
        *,
        expected_version: Optional[int] = None,
        **changes: Any,
    ) -> StoreResult[QueuedTask]:
        """
        Compare-and-swap write of ``changes`` onto ``task``'s row.

        The row is written only if its version still equals
        ``expected_version`` (default: the version ``task`` was read with),
        and the version is bumped in the same statement.

        Returns:
            Ok(updated task) with the new version, or Err(VersionConflict)
            when the row was changed (or deleted) since it was read.
        """
        unknown = set(changes) - _MUTABLE_COLUMNS
        if unknown:
            raise ValueError(f'Cannot update columns: {sorted(unknown)}')

        expected = task.version if expected_version is None else expected_version
        stmt = (
            update(_TASKS)
            .where(_TASKS.c.id == task.id, _TASKS.c.version == expected)
            .values(version=expected + 1, **changes)
        )
        result = await session.execute(stmt)
        if result.rowcount != 1:
            return Err(VersionConflict(task_id=task.id, expected_version=expected))
        return Ok(task.replace(version=expected + 1, **changes))

    async def count_by_state(
        self, session: AsyncSession, now: datetime, threshold: timedelta
    ) -> QueueStats:
        unclaimed = and_(
            _TASKS.c.started_stamp.is_(None), _TASKS.c.completed_stamp.is_(None)
        )
        in_flight = and_(
            _TASKS.c.started_stamp.is_not(None), _TASKS.c.completed_stamp.is_(None)
        )
        stmt = select(
            func.count().label('total'),
            func.count(case((unclaimed, 1))).label('queued'),
            func.count(
                case(
                    (
                        and_(
                            unclaimed,
                            or_(
                                _TASKS.c.trigger_stamp.is_(None),
                                _TASKS.c.trigger_stamp < now,
                            ),
                        ),
                        1,
                    )
                )
            ).label('eligible'),
            func.count(case((in_flight, 1))).label('in_flight'),
            func.count(
                case((and_(in_flight, _TASKS.c.started_stamp < now - threshold), 1))
            ).label('stalled'),
            func.count(case((_TASKS.c.completed_stamp.is_not(None), 1))).label(
                'completed'
            ),
        ).select_from(_TASKS)
        row = (await session.execute(stmt)).mappings().one()
        return QueueStats(**{key: int(value or 0) for key, value in row.items()})

    async def close_async(self) -> None:
        """Dispose the engine and its pooled connections."""
        await self.async_engine.dispose()
        self.logger.info('TaskStore closed')

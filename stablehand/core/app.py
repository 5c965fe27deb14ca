# stablehand/core/app.py
from __future__ import annotations
import random
from datetime import datetime
from typing import Callable, Optional
from stablehand.core.codec.serde import PayloadCodec
from stablehand.core.errors import StablehandError
from stablehand.core.executor.executor import PersistentTaskExecutor
from stablehand.core.logging import get_logger
from stablehand.core.models.app import AppConfig
from stablehand.core.store.task_store import TaskStore


class Stablehand:
    """
    Application entry point: configuration plus lazily built store and executor.

    A module-level instance is what the CLI locates (``module:app``)::

        app = Stablehand(AppConfig(store=StoreConfig(database_url=...)))

        async with app.get_store().transaction() as session:
            await app.get_executor().enqueue(session, SendInvoice(order_id=42))
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        codec: Optional[PayloadCodec] = None,
        clock: Optional[Callable[[], datetime]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.config = config
        self.codec = codec
        self._clock = clock
        self._rng = rng
        self._store: Optional[TaskStore] = None
        self._executor: Optional[PersistentTaskExecutor] = None
        self.logger = get_logger('app')
        self.logger.debug(f'Stablehand configured: {config.log_config()}')

    def get_store(self) -> TaskStore:
        """Get the task store for this app, creating it on first use."""
        try:
            if self._store is None:
                self._store = TaskStore(self.config.store, rng=self._rng)
            return self._store
        except StablehandError:
            raise
        except Exception as e:
            raise ValueError(f'Failed to create task store: {e}') from e

    def get_executor(self) -> PersistentTaskExecutor:
        if self._executor is None:
            self._executor = PersistentTaskExecutor(
                self.get_store(),
                self.config.executor,
                self.codec,
                clock=self._clock,
            )
        return self._executor

    async def close(self) -> None:
        """Dispose the store's engine; the app can be reused afterwards."""
        if self._store is not None:
            await self._store.close_async()
        self._store = None
        self._executor = None

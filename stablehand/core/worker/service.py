# stablehand/core/worker/service.py
from __future__ import annotations
import asyncio
from typing import Awaitable, Callable, Optional
from stablehand.core.app import Stablehand
from stablehand.core.executor.executor import PersistentTaskExecutor
from stablehand.core.logging import get_logger
from stablehand.core.utils.db import is_transient_db_error

logger = get_logger('service')


class ExecutorService:
    """
    Long-running worker process: the runner and the hypervisor on timers.

    Both loops run as independent asyncio tasks against the app's store.
    Any number of services may run against the same database; they
    coordinate only through the queue table.
    """

    def __init__(self, app: Stablehand):
        self.app = app
        self.executor: Optional[PersistentTaskExecutor] = None
        self._stop = asyncio.Event()
        self._initialized = False

    async def start(self) -> None:
        """Create the schema if needed and build the executor."""
        if self._initialized:
            return

        store = self.app.get_store()
        await store.ensure_schema_initialized()
        self.executor = self.app.get_executor()
        self._initialized = True
        logger.info(f'Executor service started ({self.app.config.log_config()})')

    async def stop(self) -> None:
        """Clean shutdown of the service."""
        self._stop.set()
        await self.app.close()
        logger.info('Executor service stopped')

    def request_stop(self) -> None:
        """Request the loops to stop after their current cycle."""
        self._stop.set()

    async def run_forever(self) -> None:
        """Run both loops until a stop is requested."""
        try:
            await self.start()
            assert self.executor is not None
            executor = self.executor

            cfg = self.app.config.executor
            loops = [
                asyncio.create_task(
                    self._loop('runner', executor.runner, cfg.runner_interval_ms),
                    name='stablehand-runner',
                ),
                asyncio.create_task(
                    self._loop(
                        'hypervisor', executor.hypervisor, cfg.hypervisor_interval_ms
                    ),
                    name='stablehand-hypervisor',
                ),
            ]
            await asyncio.gather(*loops)
        finally:
            await self.stop()

    async def _loop(
        self,
        name: str,
        cycle: Callable[[], Awaitable[object]],
        interval_ms: int,
    ) -> None:
        logger.info(f'Starting {name} loop (interval={interval_ms / 1000:.1f}s)')
        while not self._stop.is_set():
            try:
                await cycle()
            except Exception as e:
                if is_transient_db_error(e):
                    logger.warning(
                        f'{name} cycle hit a transient database error, '
                        f'retrying next tick: {e}'
                    )
                else:
                    logger.error(f'Error in {name} loop: {e}', exc_info=True)

            # Wait for the interval or the stop signal
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval_ms / 1000)
                break
            except asyncio.TimeoutError:
                continue
        logger.info(f'{name} loop exited')

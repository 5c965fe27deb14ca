# stablehand/core/utils/retry.py
from __future__ import annotations
from typing import Awaitable, Callable, Optional, TypeVar
from stablehand.core.logging import get_logger
from stablehand.core.store.result_types import (
    LockAttemptsExhausted,
    StoreResult,
    VersionConflict,
)
from stablehand.core.types.result import Err, Ok, Result

logger = get_logger('retry')

T = TypeVar('T')


async def with_optimistic_retry(
    max_attempts: int,
    operation: Callable[[], Awaitable[StoreResult[T]]],
) -> Result[T, LockAttemptsExhausted]:
    """
    Run a read-then-write ``operation`` until it wins its compare-and-swap.

    Each call of ``operation`` must do a fresh read; retrying a write built
    from a stale read would lose the same race again. Exceptions raised by
    ``operation`` are not retried.

    Returns:
        Ok(value) from the first successful attempt, or
        Err(LockAttemptsExhausted) after ``max_attempts`` conflicts.
    """
    if max_attempts < 1:
        raise ValueError(f'max_attempts must be >= 1, got {max_attempts}')

    last_conflict: Optional[VersionConflict] = None
    for attempt in range(1, max_attempts + 1):
        match await operation():
            case Ok(value):
                return Ok(value)
            case Err(conflict):
                last_conflict = conflict
                logger.debug(
                    f'Optimistic lock conflict (attempt {attempt}/{max_attempts}): '
                    f'{conflict.message}'
                )

    return Err(LockAttemptsExhausted(attempts=max_attempts, last_conflict=last_conflict))

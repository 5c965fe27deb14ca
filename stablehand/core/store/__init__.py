from stablehand.core.store.result_types import (
    LockAttemptsExhausted,
    StoreResult,
    VersionConflict,
)
from stablehand.core.store.task_store import QueueStats, TaskStore

__all__ = [
    'LockAttemptsExhausted',
    'QueueStats',
    'StoreResult',
    'TaskStore',
    'VersionConflict',
]

"""Stablehand - a durable, database-backed task queue"""

# Install Rust-style error handler on import
from .core.errors import install_error_handler as _install_error_handler

_install_error_handler()

from .core.app import Stablehand
from .core.codec.serde import JsonPayloadCodec, PayloadCodec, SerializationError
from .core.errors import (
    ConfigurationError,
    ErrorCode,
    InconsistentTaskStateError,
    InvalidTaskError,
    StablehandError,
)
from .core.executor import PersistentTaskExecutor, RunnerSummary, TaskRunEnvelope
from .core.models.app import AppConfig
from .core.models.executor import ExecutorConfig
from .core.models.store import StoreConfig
from .core.models.task_pg import QueuedTask, QueuedTaskModel
from .core.store import (
    LockAttemptsExhausted,
    QueueStats,
    TaskStore,
    VersionConflict,
)
from .core.task import BaseTask
from .core.types.result import Err, Ok, Result, is_err, is_ok
from .core.types.status import RunOutcome, RunPhase, TaskState
from .core.utils.retry import with_optimistic_retry
from .core.worker import ExecutorService

__all__ = [
    # App
    'Stablehand',
    'AppConfig',
    'StoreConfig',
    'ExecutorConfig',
    # Tasks
    'BaseTask',
    'PayloadCodec',
    'JsonPayloadCodec',
    'SerializationError',
    # Engine
    'PersistentTaskExecutor',
    'RunnerSummary',
    'TaskRunEnvelope',
    'ExecutorService',
    'with_optimistic_retry',
    # Store
    'TaskStore',
    'QueueStats',
    'QueuedTask',
    'QueuedTaskModel',
    'VersionConflict',
    'LockAttemptsExhausted',
    # Status
    'TaskState',
    'RunPhase',
    'RunOutcome',
    # Results
    'Ok',
    'Err',
    'Result',
    'is_ok',
    'is_err',
    # Errors
    'StablehandError',
    'ConfigurationError',
    'InvalidTaskError',
    'InconsistentTaskStateError',
    'ErrorCode',
]

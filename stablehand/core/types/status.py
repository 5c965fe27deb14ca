# core/types/status.py
"""
Core enums describing where a queued task is in its lifecycle.
This module should not import from other application modules.
"""

from enum import Enum


class TaskState(Enum):
    """Queue-level state, derived from a record's started/completed stamps."""

    QUEUED = 'queued'  # Not claimed. Eligible once its trigger time has passed.

    IN_FLIGHT = 'in_flight'  # Claimed by a worker, not finished.
    # Becomes stalled once the claim outlives the stall threshold.

    COMPLETED = 'completed'  # The task body finished and its transaction committed.

    @property
    def is_terminal(self) -> bool:
        return self is TaskState.COMPLETED


class RunPhase(Enum):
    """Phases of one execution attempt inside the run envelope."""

    CLAIMED = 'claimed'
    VALIDATING = 'validating'
    RUNNING = 'running'
    COMPLETED = 'completed'
    ROLLED_BACK = 'rolled_back'


class RunOutcome(Enum):
    """How one execution attempt ended."""

    COMPLETED = 'completed'  # committed together with the completion stamp
    FAILED = 'failed'  # rolled back, record freed (best-effort)
    INVALID_STATE = 'invalid_state'  # record missing or not claimed; left as-is
    UNDECODABLE = 'undecodable'  # payload could not be decoded; left started

"""Typed outcomes for optimistic-concurrency writes.

Result propagation policy
-------------------------
* **Store layer** -- ``TaskStore.update`` returns ``StoreResult``. A lost
  compare-and-swap is an expected outcome under contention, so it is an
  ``Err(VersionConflict)``, never an exception. Database failures still raise.

* **Executor protocols** -- the claim and stall-reset protocols feed
  single-attempt ``StoreResult`` operations to ``with_optimistic_retry``,
  which retries on ``VersionConflict`` and returns
  ``Err(LockAttemptsExhausted)`` once the attempt budget is spent.

* **Scheduler-facing API** (``runner``/``hypervisor``) -- exhaustion is
  reported as "no work this cycle" and never surfaces as an error.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TypeAlias, TypeVar

from stablehand.core.types.result import Result


@dataclass(slots=True, frozen=True)
class VersionConflict:
    """A write expected ``expected_version`` but the row had moved on.

    Fields:
        task_id: the record whose write was rejected
        expected_version: the version the writer read before writing
    """

    task_id: str
    expected_version: int

    @property
    def message(self) -> str:
        return (
            f'task {self.task_id} was modified concurrently '
            f'(expected version {self.expected_version})'
        )


@dataclass(slots=True, frozen=True)
class LockAttemptsExhausted:
    """Every attempt of a retried operation lost its optimistic-lock race."""

    attempts: int
    last_conflict: VersionConflict | None = None

    @property
    def message(self) -> str:
        return f'gave up after {self.attempts} conflicting attempt(s)'


T = TypeVar('T')

StoreResult: TypeAlias = Result[T, VersionConflict]

# stablehand/core/models/executor.py
from __future__ import annotations
from datetime import timedelta
from typing import Annotated, Self
from pydantic import BaseModel, ConfigDict, Field, model_validator
from stablehand.core.defaults import (
    DEFAULT_HYPERVISOR_INTERVAL_MS,
    DEFAULT_LOCK_ATTEMPTS,
    DEFAULT_RUNNER_INTERVAL_MS,
    DEFAULT_STALL_THRESHOLD_MS,
)
from stablehand.core.errors import (
    ConfigurationError,
    ErrorCode,
    ValidationReport,
    raise_collected,
)


class ExecutorConfig(BaseModel):
    """
    Timing and contention settings for the persistent task executor.

    All time values are in milliseconds.

    Fields:
    - runner_interval_ms: How often the runner drains eligible tasks
    - hypervisor_interval_ms: How often the hypervisor sweeps for stalled tasks
    - stall_threshold_ms: Age of a claim after which an unfinished task is stalled
    - lock_attempts: Read-then-write attempts per claim / stall reset before yielding
    """

    model_config = ConfigDict(frozen=True)

    runner_interval_ms: Annotated[int, Field(ge=1_000, le=3_600_000)] = Field(
        default=DEFAULT_RUNNER_INTERVAL_MS,
        description='How often the runner drains eligible tasks (1s-1hr)',
    )
    hypervisor_interval_ms: Annotated[int, Field(ge=1_000, le=86_400_000)] = Field(
        default=DEFAULT_HYPERVISOR_INTERVAL_MS,
        description='How often the hypervisor resets stalled tasks (1s-24hr)',
    )
    stall_threshold_ms: Annotated[int, Field(ge=1_000, le=604_800_000)] = Field(
        default=DEFAULT_STALL_THRESHOLD_MS,
        description='Claim age after which an unfinished task is stalled (1s-7d)',
    )
    lock_attempts: Annotated[int, Field(ge=1, le=100)] = Field(
        default=DEFAULT_LOCK_ATTEMPTS,
        description='Attempts per claim or stall reset before giving up for this cycle',
    )

    @property
    def stall_threshold(self) -> timedelta:
        return timedelta(milliseconds=self.stall_threshold_ms)

    @model_validator(mode='after')
    def validate_stall_threshold(self) -> Self:
        """A claim must be allowed to outlive at least one runner cycle.

        Otherwise the hypervisor would requeue tasks that a healthy runner is
        still executing in its current drain.
        """
        report = ValidationReport('executor')

        if self.stall_threshold_ms <= self.runner_interval_ms:
            report.add(
                ConfigurationError(
                    message='stall_threshold_ms too low',
                    code=ErrorCode.CONFIG_INVALID_EXECUTOR,
                    notes=[
                        f'stall_threshold_ms={self.stall_threshold_ms}ms ({self.stall_threshold_ms/1000:.1f}s)',
                        f'runner_interval_ms={self.runner_interval_ms}ms ({self.runner_interval_ms/1000:.1f}s)',
                        'threshold must be greater than the runner interval',
                    ],
                    help_text=f'set stall_threshold_ms > {self.runner_interval_ms}ms',
                )
            )

        raise_collected(report)
        return self

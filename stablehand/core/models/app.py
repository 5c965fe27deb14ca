# stablehand/core/models/app.py
from pydantic import BaseModel, ConfigDict, Field
from stablehand.core.models.executor import ExecutorConfig
from stablehand.core.models.store import StoreConfig
from stablehand.core.utils.url import mask_database_url


class AppConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    store: StoreConfig
    executor: ExecutorConfig = Field(default_factory=ExecutorConfig)

    def log_config(self) -> str:
        """Human-readable, password-masked summary for startup logs."""
        return (
            f'store={mask_database_url(self.store.database_url)} '
            f'runner_interval={self.executor.runner_interval_ms}ms '
            f'hypervisor_interval={self.executor.hypervisor_interval_ms}ms '
            f'stall_threshold={self.executor.stall_threshold_ms}ms '
            f'lock_attempts={self.executor.lock_attempts}'
        )

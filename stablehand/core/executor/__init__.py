from stablehand.core.executor.executor import PersistentTaskExecutor, RunnerSummary
from stablehand.core.executor.lifecycle import TaskRunEnvelope

__all__ = ['PersistentTaskExecutor', 'RunnerSummary', 'TaskRunEnvelope']

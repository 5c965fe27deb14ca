from stablehand.core.worker.service import ExecutorService

__all__ = ['ExecutorService']

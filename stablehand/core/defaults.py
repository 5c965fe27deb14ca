"""Shared default constants for the stablehand library."""

# How often a worker drains the queue of eligible tasks.
DEFAULT_RUNNER_INTERVAL_MS: int = 60_000  # every minute

# How often a worker sweeps for stalled tasks.
DEFAULT_HYPERVISOR_INTERVAL_MS: int = 3_600_000  # every hour

# A claimed, unfinished task older than this is considered stalled and is
# reset to queued by the hypervisor. The worker running it is not stopped.
DEFAULT_STALL_THRESHOLD_MS: int = 7_200_000  # 2 hours

# Read-then-write attempts per claim or stall reset before yielding.
DEFAULT_LOCK_ATTEMPTS: int = 3

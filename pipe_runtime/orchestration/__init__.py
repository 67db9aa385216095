from pipe_runtime.orchestration.queue import ExecutionJob, ExecutionQueue, JobStatus
from pipe_runtime.orchestration.retry_policy import RetryDecision, RunRetryPolicy
from pipe_runtime.orchestration.sync import DEFAULT_SYNC_TIMEOUT_SECONDS, run_with_timeout

__all__ = [
    "DEFAULT_SYNC_TIMEOUT_SECONDS",
    "ExecutionJob",
    "ExecutionQueue",
    "JobStatus",
    "RetryDecision",
    "RunRetryPolicy",
    "run_with_timeout",
]

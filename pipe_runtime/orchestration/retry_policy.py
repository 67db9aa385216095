from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from pipe_runtime.engine.errors import (
    ExecutionTimeoutError,
    OperatorExecutionError,
    PipeExecutionError,
)


RetryAction = Literal["retry", "fail"]


@dataclass(slots=True)
class RetryDecision:
    action: RetryAction
    reason: str
    delay_seconds: float = 0.0


class RunRetryPolicy:
    """Decides whether a failed queued run is re-queued as a whole."""

    TRANSIENT_MARKERS = (
        "timed out",
        "timeout",
        "temporary",
        "connection reset",
        "503",
        "rate limit",
        "429",
        "network error",
    )

    def __init__(self, *, backoff_seconds: float = 2.0) -> None:
        self._backoff_seconds = max(0.0, float(backoff_seconds))

    def decide(self, error: BaseException, attempt: int, max_attempts: int) -> RetryDecision:
        if attempt >= max_attempts:
            return RetryDecision(action="fail", reason=f"Attempt {attempt}/{max_attempts} exhausted retries.")

        if isinstance(error, ExecutionTimeoutError):
            return self._retry(attempt, max_attempts, "Run exceeded its time limit.")

        if isinstance(error, OperatorExecutionError):
            if self._looks_transient(str(error).lower()):
                return self._retry(attempt, max_attempts, "Transient operator failure detected.")
            return RetryDecision(action="fail", reason="Operator failure is not transient.")

        if isinstance(error, PipeExecutionError):
            # Pre-flight failures give the same answer on every attempt.
            return RetryDecision(action="fail", reason=f"{error.kind} is not retryable.")

        if self._looks_transient(str(error).lower()):
            return self._retry(attempt, max_attempts, "Transient error detected.")
        return RetryDecision(action="fail", reason="No retry path matched the error.")

    def backoff_for(self, attempt: int) -> float:
        return self._backoff_seconds * (2 ** max(0, attempt - 1))

    def _retry(self, attempt: int, max_attempts: int, reason: str) -> RetryDecision:
        return RetryDecision(
            action="retry",
            reason=f"{reason} Retry {attempt + 1}/{max_attempts}.",
            delay_seconds=self.backoff_for(attempt),
        )

    def _looks_transient(self, text: str) -> bool:
        return any(marker in text for marker in self.TRANSIENT_MARKERS)

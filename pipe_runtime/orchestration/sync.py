from __future__ import annotations

import asyncio

from pipe_runtime.engine.errors import ExecutionTimeoutError
from pipe_runtime.engine.executor import PipeExecutor, PipeInput
from pipe_runtime.engine.models import ExecutionContext, ExecutionResult


DEFAULT_SYNC_TIMEOUT_SECONDS = 30.0


async def run_with_timeout(
    executor: PipeExecutor,
    definition: PipeInput,
    *,
    timeout_seconds: float = DEFAULT_SYNC_TIMEOUT_SECONDS,
    context: ExecutionContext | None = None,
    target_node_id: str | None = None,
) -> ExecutionResult:
    """Run a pipe for a caller that is waiting on the answer.

    The executor's own time limit is only checked between nodes; this guard also
    cancels a node that is still running when the deadline passes.
    """
    if target_node_id is not None:
        run = executor.execute_selected(definition, target_node_id, context)
    else:
        run = executor.execute_with_details(definition, context)

    try:
        return await asyncio.wait_for(run, timeout=timeout_seconds)
    except asyncio.TimeoutError as exc:
        raise ExecutionTimeoutError(
            f"Execution timeout: pipe did not finish within {timeout_seconds:g} seconds.",
            node_id=target_node_id,
        ) from exc

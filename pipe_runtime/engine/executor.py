from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from pipe_runtime.engine.catalog import SOURCE_CATEGORIES, OperatorCatalog
from pipe_runtime.engine.errors import (
    EmptyPipeError,
    ExecutionDiagnostics,
    ExecutionTimeoutError,
    MissingInputConnectionError,
    OperatorExecutionError,
    PipeExecutionError,
    TargetNodeNotFoundError,
    UnknownOperatorError,
)
from pipe_runtime.engine.graph import (
    build_dependency_graph,
    build_subgraph,
    find_upstream_nodes,
    first_incoming_sources,
    topological_sort,
)
from pipe_runtime.engine.hooks import PipeHookRegistry
from pipe_runtime.engine.models import (
    ExecutionContext,
    ExecutionResult,
    IntermediateResult,
    PipeDefinition,
    PipeEdge,
)
from pipe_runtime.engine.output_limiter import MAX_OUTPUT_SIZE, check_output_ceiling, enforce_output_limit


LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_EXECUTION_SECONDS = 5 * 60

# Types treated as sources even when the catalog does not know them.
LEGACY_SOURCE_TYPES = frozenset(
    {
        "fetch",
        "fetch-json",
        "fetch-csv",
        "fetch-rss",
        "fetch-page",
        "text-input",
        "number-input",
        "url-input",
        "date-input",
    }
)

PipeInput = PipeDefinition | Mapping[str, Any]


class PipeExecutor:
    """Runs pipe definitions node by node in dependency order."""

    def __init__(
        self,
        catalog: OperatorCatalog,
        *,
        hook_registry: PipeHookRegistry | None = None,
        max_execution_seconds: float = DEFAULT_MAX_EXECUTION_SECONDS,
        max_output_bytes: int = MAX_OUTPUT_SIZE,
        require_input_connections: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._catalog = catalog
        self._hooks = hook_registry or PipeHookRegistry()
        self._max_execution_seconds = float(max_execution_seconds)
        self._max_output_bytes = check_output_ceiling(int(max_output_bytes))
        self._require_input_connections = require_input_connections
        self._clock = clock

    @property
    def catalog(self) -> OperatorCatalog:
        return self._catalog

    @property
    def hooks(self) -> PipeHookRegistry:
        return self._hooks

    async def execute(self, definition: PipeInput, context: ExecutionContext | None = None) -> object:
        result = await self.execute_with_details(definition, context)
        return result.final_result

    async def execute_with_details(
        self,
        definition: PipeInput,
        context: ExecutionContext | None = None,
    ) -> ExecutionResult:
        started = self._clock()
        pipe = PipeDefinition.coerce(definition)
        if not pipe.nodes:
            raise EmptyPipeError("Pipe has no operators.")
        if self._require_input_connections:
            self._validate_operator_inputs(pipe)
        return await self._run_pipe(pipe, context or ExecutionContext(), started, target_node_id=None)

    async def execute_selected(
        self,
        definition: PipeInput,
        target_node_id: str,
        context: ExecutionContext | None = None,
    ) -> ExecutionResult:
        """Run ``target_node_id`` and everything upstream of it, nothing else."""
        started = self._clock()
        pipe = PipeDefinition.coerce(definition)
        if not pipe.nodes:
            raise EmptyPipeError("Pipe has no operators.")
        if target_node_id not in pipe.node_map():
            raise TargetNodeNotFoundError(
                f"Target node {target_node_id} not found in pipe definition.",
                node_id=target_node_id,
            )

        relevant = self.find_upstream_nodes(target_node_id, pipe.edges)
        relevant.add(target_node_id)
        subgraph = build_subgraph(pipe, relevant)
        LOGGER.debug(
            "Selective run for %s covers %d of %d nodes",
            target_node_id,
            len(subgraph.nodes),
            len(pipe.nodes),
        )

        self._validate_operator_inputs(subgraph)
        return await self._run_pipe(subgraph, context or ExecutionContext(), started, target_node_id=target_node_id)

    def find_upstream_nodes(self, target_node_id: str, edges: Iterable[PipeEdge]) -> set[str]:
        return find_upstream_nodes(target_node_id, edges)

    def is_source_operator(self, operator_type: str) -> bool:
        if operator_type in LEGACY_SOURCE_TYPES:
            return True
        return self._catalog.category_of(operator_type) in SOURCE_CATEGORIES

    def run(
        self,
        definition: PipeInput,
        *,
        context: ExecutionContext | None = None,
        target_node_id: str | None = None,
    ) -> ExecutionResult:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop and loop.is_running():
            raise RuntimeError(
                "PipeExecutor.run() cannot be called inside an active event loop. "
                "Use await execute_with_details()."
            )
        if target_node_id is not None:
            return asyncio.run(self.execute_selected(definition, target_node_id, context))
        return asyncio.run(self.execute_with_details(definition, context))

    def _validate_operator_inputs(self, definition: PipeDefinition) -> None:
        targets = {edge.target for edge in definition.edges}
        for node in definition.nodes:
            if self.is_source_operator(node.type) or node.id in targets:
                continue
            label = node.label or node.id
            raise MissingInputConnectionError(
                f'Operator "{label}" ({node.type}) has no input connection. '
                "Non-source operators require an upstream connection.",
                node_id=node.id,
                operator_type=node.type,
                label=label,
            )

    async def _run_pipe(
        self,
        definition: PipeDefinition,
        context: ExecutionContext,
        started: float,
        *,
        target_node_id: str | None,
    ) -> ExecutionResult:
        if not definition.nodes:
            raise EmptyPipeError("Pipe has no operators.")

        outputs: dict[str, object] = {}
        intermediate: dict[str, IntermediateResult] = {}
        executed: list[str] = []
        last_successful: object = None

        def diagnostics() -> ExecutionDiagnostics:
            return ExecutionDiagnostics(
                intermediate_results=dict(intermediate),
                execution_order=list(executed),
                total_execution_time_ms=self._elapsed_ms(started),
                last_successful_result=last_successful,
            )

        node_map = definition.node_map()
        input_sources = first_incoming_sources(definition.edges)
        order: list[str] = []

        try:
            order = topological_sort(build_dependency_graph(definition))
            await self._emit_hook(
                "before_run",
                {
                    "node_count": len(definition.nodes),
                    "execution_order": list(order),
                    "target_node_id": target_node_id,
                },
            )

            for node_id in order:
                node = node_map[node_id]

                elapsed_ms = self._elapsed_ms(started)
                if elapsed_ms > self._max_execution_seconds * 1000:
                    LOGGER.error(
                        "Pipe execution timed out before node %s after %d ms (%d nodes done)",
                        node_id,
                        elapsed_ms,
                        len(executed),
                    )
                    raise ExecutionTimeoutError(
                        "Execution timeout: pipe took too long to complete "
                        f"(exceeded {_describe_seconds(self._max_execution_seconds)}).",
                        node_id=node_id,
                        operator_type=node.type,
                        diagnostics=diagnostics(),
                    )

                operator = self._catalog.get(node.type)
                if operator is None:
                    raise UnknownOperatorError(
                        f"Unknown operator type: {node.type}",
                        node_id=node_id,
                        operator_type=node.type,
                        diagnostics=diagnostics(),
                    )

                source_id = input_sources.get(node_id)
                input_data = outputs.get(source_id) if source_id is not None else None

                await self._emit_hook(
                    "before_node",
                    {"node_id": node_id, "type": node.type, "label": node.display_label},
                )

                node_started = self._clock()
                try:
                    raw_output = await operator.execute(input_data, node.config, context)
                    limited = enforce_output_limit(raw_output, self._max_output_bytes)
                except Exception as exc:  # noqa: BLE001
                    message = str(exc) or exc.__class__.__name__
                    intermediate[node_id] = IntermediateResult(
                        node_id=node_id,
                        type=node.type,
                        label=node.display_label,
                        result=None,
                        execution_time_ms=self._elapsed_ms(node_started),
                        status="error",
                        error=message,
                    )
                    executed.append(node_id)
                    LOGGER.error("Operator %s (%s) failed: %s", node_id, node.type, message)
                    await self._emit_hook(
                        "after_node",
                        {"node_id": node_id, "type": node.type, "status": "error", "error": message},
                    )
                    raise OperatorExecutionError(
                        f"Operator {node_id} ({node.type}) failed: {message}",
                        node_id=node_id,
                        operator_type=node.type,
                        diagnostics=diagnostics(),
                    ) from exc

                if limited.truncated:
                    LOGGER.warning(
                        "Output of %s (%s) truncated from %d to %d bytes",
                        node_id,
                        node.type,
                        limited.original_size,
                        limited.final_size,
                    )

                outputs[node_id] = limited.output
                last_successful = limited.output
                node_ms = self._elapsed_ms(node_started)
                intermediate[node_id] = IntermediateResult(
                    node_id=node_id,
                    type=node.type,
                    label=node.display_label,
                    result=limited.output,
                    execution_time_ms=node_ms,
                    status="success",
                )
                executed.append(node_id)

                await self._emit_hook(
                    "after_node",
                    {
                        "node_id": node_id,
                        "type": node.type,
                        "status": "success",
                        "execution_time_ms": node_ms,
                        "truncated": limited.truncated,
                    },
                )
        except PipeExecutionError as exc:
            await self._emit_hook("on_error", {"error": exc.to_dict(), "node_id": exc.node_id})
            raise

        total_ms = self._elapsed_ms(started)
        result = ExecutionResult(
            final_result=outputs.get(order[-1]) if order else None,
            intermediate_results=intermediate,
            execution_order=executed,
            total_execution_time_ms=total_ms,
        )
        LOGGER.debug("Pipe run finished: %d nodes in %d ms", len(executed), total_ms)
        await self._emit_hook(
            "after_run",
            {"execution_order": list(executed), "total_execution_time_ms": total_ms},
        )
        return result

    def _elapsed_ms(self, since: float) -> int:
        return int(round((self._clock() - since) * 1000))

    async def _emit_hook(self, event: str, payload: dict[str, Any]) -> None:
        try:
            await self._hooks.emit(event, payload)
        except Exception:  # noqa: BLE001
            # Hooks should never break pipe execution.
            LOGGER.debug("Hook emission for %s failed", event, exc_info=True)


def _describe_seconds(seconds: float) -> str:
    if seconds >= 60 and seconds % 60 == 0:
        minutes = int(seconds // 60)
        return f"{minutes} minute" if minutes == 1 else f"{minutes} minutes"
    if float(seconds).is_integer():
        return f"{int(seconds)} seconds"
    return f"{seconds} seconds"

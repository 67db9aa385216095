from pipe_runtime.engine.catalog import (
    SOURCE_CATEGORIES,
    Operator,
    OperatorCatalog,
    OperatorCategory,
    ValidationResult,
)
from pipe_runtime.engine.errors import (
    CycleDetectedError,
    EmptyPipeError,
    ExecutionDiagnostics,
    ExecutionTimeoutError,
    MissingInputConnectionError,
    OperatorExecutionError,
    PipeExecutionError,
    StructuralError,
    TargetNodeNotFoundError,
    UnknownOperatorError,
)
from pipe_runtime.engine.executor import LEGACY_SOURCE_TYPES, PipeExecutor
from pipe_runtime.engine.graph import (
    build_adjacency,
    build_dependency_graph,
    build_subgraph,
    find_cycle,
    find_upstream_nodes,
    has_cycle,
    topological_sort,
)
from pipe_runtime.engine.hooks import PIPE_HOOK_EVENTS, HookInvocation, PipeHookRegistry
from pipe_runtime.engine.models import (
    ExecutionContext,
    ExecutionResult,
    IntermediateResult,
    PipeDefinition,
    PipeEdge,
    PipeNode,
    SecretResolver,
)
from pipe_runtime.engine.output_limiter import (
    MAX_OUTPUT_SIZE,
    MIN_OUTPUT_SIZE,
    OutputLimitResult,
    enforce_output_limit,
    exceeds_output_limit,
    measure_output_size,
)
from pipe_runtime.engine.validator import (
    PipeValidationError,
    PipeValidationIssue,
    validate_pipe_definition,
    validate_pipe_or_raise,
)

__all__ = [
    "CycleDetectedError",
    "EmptyPipeError",
    "ExecutionContext",
    "ExecutionDiagnostics",
    "ExecutionResult",
    "ExecutionTimeoutError",
    "HookInvocation",
    "IntermediateResult",
    "LEGACY_SOURCE_TYPES",
    "MAX_OUTPUT_SIZE",
    "MIN_OUTPUT_SIZE",
    "MissingInputConnectionError",
    "Operator",
    "OperatorCatalog",
    "OperatorCategory",
    "OperatorExecutionError",
    "OutputLimitResult",
    "PIPE_HOOK_EVENTS",
    "PipeDefinition",
    "PipeEdge",
    "PipeExecutionError",
    "PipeExecutor",
    "PipeHookRegistry",
    "PipeNode",
    "PipeValidationError",
    "PipeValidationIssue",
    "SOURCE_CATEGORIES",
    "SecretResolver",
    "StructuralError",
    "TargetNodeNotFoundError",
    "UnknownOperatorError",
    "ValidationResult",
    "build_adjacency",
    "build_dependency_graph",
    "build_subgraph",
    "enforce_output_limit",
    "exceeds_output_limit",
    "find_cycle",
    "find_upstream_nodes",
    "has_cycle",
    "measure_output_size",
    "topological_sort",
    "validate_pipe_definition",
    "validate_pipe_or_raise",
]

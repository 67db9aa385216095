from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar

if TYPE_CHECKING:
    from pipe_runtime.engine.models import IntermediateResult


@dataclass(slots=True)
class ExecutionDiagnostics:
    """Snapshot of a run at the moment it failed."""

    intermediate_results: dict[str, IntermediateResult] = field(default_factory=dict)
    execution_order: list[str] = field(default_factory=list)
    total_execution_time_ms: int = 0
    last_successful_result: object = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "intermediateResults": {
                node_id: item.to_dict() for node_id, item in self.intermediate_results.items()
            },
            "executionOrder": list(self.execution_order),
            "totalExecutionTime": self.total_execution_time_ms,
            "lastSuccessfulResult": self.last_successful_result,
        }


class PipeExecutionError(RuntimeError):
    """Base class for every error raised by the pipe engine."""

    kind: ClassVar[str] = "pipe_execution_error"
    http_status: ClassVar[int] = 400

    def __init__(
        self,
        message: str,
        *,
        node_id: str | None = None,
        operator_type: str | None = None,
        diagnostics: ExecutionDiagnostics | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.node_id = node_id
        self.operator_type = operator_type
        self.diagnostics = diagnostics

    @property
    def intermediate_results(self) -> dict[str, IntermediateResult]:
        if self.diagnostics is None:
            return {}
        return self.diagnostics.intermediate_results

    @property
    def execution_order(self) -> list[str]:
        if self.diagnostics is None:
            return []
        return self.diagnostics.execution_order

    @property
    def total_execution_time_ms(self) -> int | None:
        if self.diagnostics is None:
            return None
        return self.diagnostics.total_execution_time_ms

    @property
    def last_successful_result(self) -> object:
        if self.diagnostics is None:
            return None
        return self.diagnostics.last_successful_result

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"kind": self.kind, "error": self.message}
        if self.node_id is not None:
            payload["nodeId"] = self.node_id
        if self.operator_type is not None:
            payload["operatorType"] = self.operator_type
        if self.diagnostics is not None:
            payload.update(self.diagnostics.to_dict())
        return payload


class EmptyPipeError(PipeExecutionError):
    kind = "empty_pipe"


class StructuralError(PipeExecutionError):
    """Malformed pipe definition (missing collections, dangling references...)."""

    kind = "structural_error"


class CycleDetectedError(PipeExecutionError):
    kind = "cycle_detected"

    def __init__(self, message: str, *, cycle_path: list[str] | None = None) -> None:
        super().__init__(message)
        self.cycle_path = list(cycle_path or [])

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["cyclePath"] = list(self.cycle_path)
        return payload


class UnknownOperatorError(PipeExecutionError):
    kind = "unknown_operator"


class TargetNodeNotFoundError(PipeExecutionError):
    kind = "target_node_not_found"


class MissingInputConnectionError(PipeExecutionError):
    kind = "missing_input_connection"

    def __init__(self, message: str, *, node_id: str, operator_type: str, label: str) -> None:
        super().__init__(message, node_id=node_id, operator_type=operator_type)
        self.label = label


class OperatorExecutionError(PipeExecutionError):
    # Callers answer with a partial body rather than a client error.
    kind = "operator_execution_failure"
    http_status = 200


class ExecutionTimeoutError(PipeExecutionError):
    kind = "execution_timeout"
    http_status = 408

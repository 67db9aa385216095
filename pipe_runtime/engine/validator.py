"""Structural validation of raw pipe definitions.

Works on plain mappings as received from callers, so a malformed definition is
reported as a list of issues instead of failing on the first problem.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal

from pipe_runtime.engine.catalog import OperatorCatalog
from pipe_runtime.engine.errors import StructuralError
from pipe_runtime.engine.graph import find_cycle
from pipe_runtime.engine.models import PipeDefinition


MAX_OPERATORS = 50

IssueType = Literal[
    "invalid_structure",
    "operator_limit",
    "unknown_operator",
    "invalid_connection",
    "cycle_detected",
]


@dataclass(slots=True)
class PipeValidationIssue:
    type: IssueType
    message: str
    node_id: str | None = None
    edge_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type, "message": self.message}
        if self.node_id is not None:
            payload["nodeId"] = self.node_id
        if self.edge_id is not None:
            payload["edgeId"] = self.edge_id
        return payload


class PipeValidationError(StructuralError):
    """Raised when a pipe definition fails validation."""

    def __init__(self, issues: list[PipeValidationIssue]) -> None:
        rendered = "\n".join(f"- {issue.message}" for issue in issues)
        super().__init__(f"Pipe validation failed:\n{rendered}")
        self.issues = list(issues)

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["issues"] = [issue.to_dict() for issue in self.issues]
        return payload


def validate_pipe_definition(
    definition: PipeDefinition | Mapping[str, Any] | None,
    catalog: OperatorCatalog,
    *,
    max_operators: int = MAX_OPERATORS,
) -> list[PipeValidationIssue]:
    if isinstance(definition, PipeDefinition):
        definition = definition.to_dict()

    issues = _validate_structure(definition)
    if issues:
        return issues

    nodes = list(definition["nodes"])
    edges = list(definition["edges"])

    if len(nodes) > max_operators:
        issues.append(
            PipeValidationIssue(
                type="operator_limit",
                message=f"Maximum {max_operators} operators per pipe (found {len(nodes)}).",
            )
        )

    node_ids: list[str] = []
    for node in nodes:
        node_id = _text(node, "id")
        node_type = _text(node, "type")
        if not node_id or not node_type:
            issues.append(
                PipeValidationIssue(
                    type="invalid_structure",
                    message="Node is missing required fields (id or type).",
                    node_id=node_id,
                )
            )
            continue
        if node_id in node_ids:
            issues.append(
                PipeValidationIssue(
                    type="invalid_structure",
                    message=f"Duplicate node id '{node_id}'.",
                    node_id=node_id,
                )
            )
            continue
        node_ids.append(node_id)
        if not catalog.has(node_type):
            issues.append(
                PipeValidationIssue(
                    type="unknown_operator",
                    message=f"Unknown operator type: {node_type}",
                    node_id=node_id,
                )
            )

    known = set(node_ids)
    adjacency: dict[str, list[str]] = {node_id: [] for node_id in node_ids}
    for edge in edges:
        edge_id = _text(edge, "id")
        source = _text(edge, "source")
        target = _text(edge, "target")
        if not source or not target:
            issues.append(
                PipeValidationIssue(
                    type="invalid_structure",
                    message="Edge is missing source or target.",
                    edge_id=edge_id,
                )
            )
            continue
        if source not in known:
            issues.append(
                PipeValidationIssue(
                    type="invalid_connection",
                    message=f"Edge references non-existent source node: {source}",
                    edge_id=edge_id,
                )
            )
        if target not in known:
            issues.append(
                PipeValidationIssue(
                    type="invalid_connection",
                    message=f"Edge references non-existent target node: {target}",
                    edge_id=edge_id,
                )
            )
        if source in known:
            adjacency[source].append(target)

    cycle = find_cycle(adjacency)
    if cycle is not None:
        issues.append(
            PipeValidationIssue(
                type="cycle_detected",
                message=f"Circular dependency detected: {' -> '.join(cycle)}",
                node_id=cycle[0],
            )
        )

    return issues


def validate_pipe_or_raise(
    definition: PipeDefinition | Mapping[str, Any] | None,
    catalog: OperatorCatalog,
    *,
    max_operators: int = MAX_OPERATORS,
) -> None:
    issues = validate_pipe_definition(definition, catalog, max_operators=max_operators)
    if issues:
        raise PipeValidationError(issues)


def _validate_structure(definition: object) -> list[PipeValidationIssue]:
    if not isinstance(definition, Mapping):
        return [PipeValidationIssue(type="invalid_structure", message="Pipe definition is required.")]

    issues: list[PipeValidationIssue] = []
    if not isinstance(definition.get("nodes"), (list, tuple)):
        issues.append(
            PipeValidationIssue(type="invalid_structure", message="Pipe definition must have a nodes array.")
        )
    if not isinstance(definition.get("edges"), (list, tuple)):
        issues.append(
            PipeValidationIssue(type="invalid_structure", message="Pipe definition must have an edges array.")
        )
    return issues


def _text(payload: object, key: str) -> str | None:
    if not isinstance(payload, Mapping):
        return None
    value = payload.get(key)
    if isinstance(value, str) and value:
        return value
    return None

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Literal, Protocol

from pipe_runtime.engine.errors import StructuralError


NodeStatus = Literal["success", "error"]


class SecretResolver(Protocol):
    async def resolve(self, secret_id: str, user_id: str | None) -> str:
        ...


@dataclass(slots=True, frozen=True)
class PipeNode:
    id: str
    type: str
    label: str = ""
    config: Any = None

    @property
    def display_label(self) -> str:
        return self.label or self.type

    @classmethod
    def from_dict(cls, payload: object, *, index: int = 0) -> PipeNode:
        if not isinstance(payload, Mapping):
            raise StructuralError(f"nodes[{index}] must be an object.")

        node_id = payload.get("id")
        node_type = payload.get("type")
        if not isinstance(node_id, str) or not node_id or not isinstance(node_type, str) or not node_type:
            raise StructuralError(f"nodes[{index}] is missing required fields (id or type).")

        # Editor payloads nest label/config under "data".
        data = payload.get("data")
        source = data if isinstance(data, Mapping) else payload
        label = source.get("label")
        return cls(
            id=node_id,
            type=node_type,
            label=label if isinstance(label, str) else "",
            config=source.get("config"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "data": {"label": self.label, "config": self.config},
        }


@dataclass(slots=True, frozen=True)
class PipeEdge:
    id: str
    source: str
    target: str

    @classmethod
    def from_dict(cls, payload: object, *, index: int = 0) -> PipeEdge:
        if isinstance(payload, PipeEdge):
            return payload
        if not isinstance(payload, Mapping):
            raise StructuralError(f"edges[{index}] must be an object.")

        source = payload.get("source")
        target = payload.get("target")
        if not isinstance(source, str) or not source or not isinstance(target, str) or not target:
            raise StructuralError(f"edges[{index}] is missing source or target.")

        edge_id = payload.get("id")
        if not isinstance(edge_id, str) or not edge_id:
            edge_id = f"{source}->{target}"
        return cls(id=edge_id, source=source, target=target)

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "source": self.source, "target": self.target}


@dataclass(slots=True, frozen=True)
class PipeDefinition:
    nodes: tuple[PipeNode, ...] = ()
    edges: tuple[PipeEdge, ...] = ()

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                raise StructuralError(f"Duplicate node id '{node.id}'.")
            seen.add(node.id)

    @classmethod
    def from_dict(cls, payload: object) -> PipeDefinition:
        if not isinstance(payload, Mapping):
            raise StructuralError("Pipe definition is required.")

        raw_nodes = payload.get("nodes")
        raw_edges = payload.get("edges")
        if not isinstance(raw_nodes, (list, tuple)):
            raise StructuralError("Pipe definition must have a nodes array.")
        if not isinstance(raw_edges, (list, tuple)):
            raise StructuralError("Pipe definition must have an edges array.")

        nodes = [
            raw_node if isinstance(raw_node, PipeNode) else PipeNode.from_dict(raw_node, index=index)
            for index, raw_node in enumerate(raw_nodes)
        ]

        edges = [PipeEdge.from_dict(raw_edge, index=index) for index, raw_edge in enumerate(raw_edges)]
        return cls(nodes=tuple(nodes), edges=tuple(edges))

    @classmethod
    def coerce(cls, definition: PipeDefinition | Mapping[str, Any]) -> PipeDefinition:
        if isinstance(definition, PipeDefinition):
            return definition
        return cls.from_dict(definition)

    def node_ids(self) -> list[str]:
        return [node.id for node in self.nodes]

    def node_map(self) -> dict[str, PipeNode]:
        return {node.id: node for node in self.nodes}

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": [node.to_dict() for node in self.nodes],
            "edges": [edge.to_dict() for edge in self.edges],
        }


@dataclass(slots=True, frozen=True)
class ExecutionContext:
    secrets: SecretResolver | None = None
    user_id: str | None = None
    user_inputs: Mapping[str, Any] | None = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "user_inputs", MappingProxyType(dict(self.user_inputs or {})))


@dataclass(slots=True)
class IntermediateResult:
    node_id: str
    type: str
    label: str
    result: object
    execution_time_ms: int
    status: NodeStatus
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "nodeId": self.node_id,
            "type": self.type,
            "label": self.label,
            "result": self.result,
            "executionTime": self.execution_time_ms,
            "status": self.status,
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass(slots=True)
class ExecutionResult:
    final_result: object
    intermediate_results: dict[str, IntermediateResult]
    execution_order: list[str]
    total_execution_time_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "finalResult": self.final_result,
            "intermediateResults": {
                node_id: item.to_dict() for node_id, item in self.intermediate_results.items()
            },
            "executionOrder": list(self.execution_order),
            "totalExecutionTime": self.total_execution_time_ms,
        }

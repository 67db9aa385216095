from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Mapping, Sequence

from pipe_runtime.engine.errors import CycleDetectedError, StructuralError
from pipe_runtime.engine.models import PipeDefinition, PipeEdge


WHITE = 0
GRAY = 1
BLACK = 2


def build_dependency_graph(definition: PipeDefinition) -> dict[str, list[str]]:
    """Map every node id to the ids of its upstream nodes, in edge order."""
    dependencies: dict[str, list[str]] = {node.id: [] for node in definition.nodes}
    for edge in definition.edges:
        _check_edge(edge, dependencies)
        dependencies[edge.target].append(edge.source)
    return dependencies


def build_adjacency(definition: PipeDefinition) -> dict[str, list[str]]:
    """Map every node id to the ids of its downstream nodes, in edge order."""
    adjacency: dict[str, list[str]] = {node.id: [] for node in definition.nodes}
    for edge in definition.edges:
        _check_edge(edge, adjacency)
        adjacency[edge.source].append(edge.target)
    return adjacency


def invert(dependencies: Mapping[str, Sequence[str]]) -> dict[str, list[str]]:
    """Turn a dependency map into an adjacency map (and back)."""
    inverted: dict[str, list[str]] = {node_id: [] for node_id in dependencies}
    for node_id, upstream in dependencies.items():
        for source in upstream:
            inverted.setdefault(source, []).append(node_id)
    return inverted


def topological_sort(dependencies: Mapping[str, Sequence[str]]) -> list[str]:
    """Kahn's algorithm with a FIFO queue.

    Nodes become eligible in the order they reach zero in-degree; ties among the
    initial roots follow the insertion order of ``dependencies``. Raises
    ``CycleDetectedError`` instead of returning a partial order.
    """
    indegree: dict[str, int] = {node_id: len(upstream) for node_id, upstream in dependencies.items()}
    dependents = invert(dependencies)

    queue = deque(node_id for node_id, degree in indegree.items() if degree == 0)
    order: list[str] = []

    while queue:
        current = queue.popleft()
        order.append(current)
        for target in dependents.get(current, []):
            indegree[target] -= 1
            if indegree[target] == 0:
                queue.append(target)

    if len(order) != len(indegree):
        done = set(order)
        cycle = find_cycle(dependents) or [node_id for node_id in indegree if node_id not in done]
        raise CycleDetectedError(
            f"Cycle detected in pipe definition: {' -> '.join(cycle)}",
            cycle_path=cycle,
        )

    return order


def find_cycle(adjacency: Mapping[str, Sequence[str]]) -> list[str] | None:
    """Three-color DFS over ``adjacency`` using an explicit stack.

    Returns the first cycle found as a closed path (``[a, b, a]``) or ``None``.
    Neighbours that are not keys of ``adjacency`` are ignored.
    """
    color = {node_id: WHITE for node_id in adjacency}

    for root in adjacency:
        if color[root] != WHITE:
            continue

        color[root] = GRAY
        path = [root]
        stack = [(root, iter(adjacency.get(root, ())))]

        while stack:
            node_id, neighbours = stack[-1]
            descended = False
            for neighbour in neighbours:
                state = color.get(neighbour)
                if state is None or state == BLACK:
                    continue
                if state == GRAY:
                    start = path.index(neighbour)
                    return path[start:] + [neighbour]
                color[neighbour] = GRAY
                path.append(neighbour)
                stack.append((neighbour, iter(adjacency.get(neighbour, ()))))
                descended = True
                break

            if not descended:
                color[node_id] = BLACK
                path.pop()
                stack.pop()

    return None


def has_cycle(definition: PipeDefinition) -> bool:
    return find_cycle(build_adjacency(definition)) is not None


def find_upstream_nodes(target_node_id: str, edges: Iterable[PipeEdge]) -> set[str]:
    """Every node from which ``target_node_id`` can be reached, excluding the target."""
    incoming: dict[str, list[str]] = {}
    for edge in edges:
        incoming.setdefault(edge.target, []).append(edge.source)

    upstream: set[str] = set()
    visited = {target_node_id}
    queue = deque([target_node_id])

    while queue:
        current = queue.popleft()
        for source in incoming.get(current, []):
            if source in visited:
                continue
            visited.add(source)
            upstream.add(source)
            queue.append(source)

    return upstream


def build_subgraph(definition: PipeDefinition, relevant_ids: set[str]) -> PipeDefinition:
    return PipeDefinition(
        nodes=tuple(node for node in definition.nodes if node.id in relevant_ids),
        edges=tuple(
            edge
            for edge in definition.edges
            if edge.source in relevant_ids and edge.target in relevant_ids
        ),
    )


def first_incoming_sources(edges: Iterable[PipeEdge]) -> dict[str, str]:
    """Map each target to the source of the first edge pointing at it."""
    sources: dict[str, str] = {}
    for edge in edges:
        sources.setdefault(edge.target, edge.source)
    return sources


def _check_edge(edge: PipeEdge, known: Mapping[str, object]) -> None:
    if edge.source not in known:
        raise StructuralError(f"Edge '{edge.id}' references non-existent source node: {edge.source}")
    if edge.target not in known:
        raise StructuralError(f"Edge '{edge.id}' references non-existent target node: {edge.target}")

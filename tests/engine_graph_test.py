from __future__ import annotations

import unittest

from pipe_runtime.engine import (
    CycleDetectedError,
    PipeDefinition,
    PipeEdge,
    PipeNode,
    StructuralError,
    build_adjacency,
    build_dependency_graph,
    build_subgraph,
    find_cycle,
    find_upstream_nodes,
    has_cycle,
    topological_sort,
)


def pipe(node_ids: list[str], pairs: list[tuple[str, str]]) -> PipeDefinition:
    return PipeDefinition.from_dict(
        {
            "nodes": [{"id": node_id, "type": "pass"} for node_id in node_ids],
            "edges": [{"source": source, "target": target} for source, target in pairs],
        }
    )


class DefinitionParsingTests(unittest.TestCase):
    def test_editor_and_flat_node_shapes(self) -> None:
        definition = PipeDefinition.from_dict(
            {
                "nodes": [
                    {"id": "a", "type": "fetch-json", "data": {"label": "Feed", "config": {"url": "x"}}},
                    {"id": "b", "type": "sort", "label": "Order", "config": {"field": "f"}},
                ],
                "edges": [{"id": "e1", "source": "a", "target": "b"}],
            }
        )

        first, second = definition.nodes
        self.assertEqual((first.label, first.config), ("Feed", {"url": "x"}))
        self.assertEqual((second.label, second.config), ("Order", {"field": "f"}))
        self.assertEqual(definition.edges[0].id, "e1")

    def test_edge_id_defaults_to_endpoints(self) -> None:
        definition = pipe(["a", "b"], [("a", "b")])
        self.assertEqual(definition.edges[0].id, "a->b")

    def test_malformed_definitions(self) -> None:
        bad_payloads = [
            None,
            {"nodes": "nope", "edges": []},
            {"nodes": [], "edges": None},
            {"nodes": [{"id": "a"}], "edges": []},
            {"nodes": [{"id": "a", "type": "t"}, {"id": "a", "type": "t"}], "edges": []},
            {"nodes": [{"id": "a", "type": "t"}], "edges": [{"source": "a"}]},
        ]
        for payload in bad_payloads:
            with self.subTest(payload=payload):
                with self.assertRaises(StructuralError):
                    PipeDefinition.from_dict(payload)

    def test_direct_construction_rejects_duplicate_ids(self) -> None:
        nodes = (PipeNode(id="a", type="t"), PipeNode(id="b", type="t"), PipeNode(id="a", type="u"))
        with self.assertRaisesRegex(StructuralError, "Duplicate node id 'a'"):
            PipeDefinition(nodes=nodes, edges=(PipeEdge(id="e", source="a", target="b"),))
        self.assertEqual(PipeDefinition(nodes=nodes[:2]).node_ids(), ["a", "b"])

    def test_round_trip_through_wire_format(self) -> None:
        definition = pipe(["a", "b"], [("a", "b")])
        self.assertEqual(PipeDefinition.from_dict(definition.to_dict()), definition)


class GraphBuilderTests(unittest.TestCase):
    def test_isolated_nodes_are_seeded(self) -> None:
        definition = pipe(["a", "b", "c"], [("a", "b")])
        self.assertEqual(build_dependency_graph(definition), {"a": [], "b": ["a"], "c": []})
        self.assertEqual(build_adjacency(definition), {"a": ["b"], "b": [], "c": []})

    def test_dangling_edge_fails_fast(self) -> None:
        definition = pipe(["a"], [("a", "missing")])
        with self.assertRaises(StructuralError) as ctx:
            build_dependency_graph(definition)
        self.assertIn("missing", str(ctx.exception))


class TopologicalSortTests(unittest.TestCase):
    def test_roots_keep_insertion_order(self) -> None:
        definition = pipe(["c", "a", "b", "sink"], [("a", "sink"), ("b", "sink"), ("c", "sink")])
        self.assertEqual(topological_sort(build_dependency_graph(definition)), ["c", "a", "b", "sink"])

    def test_diamond(self) -> None:
        definition = pipe(["A", "B", "C", "D"], [("A", "B"), ("A", "C"), ("B", "D"), ("C", "D")])
        self.assertEqual(topological_sort(build_dependency_graph(definition)), ["A", "B", "C", "D"])

    def test_duplicate_edges_are_counted_per_occurrence(self) -> None:
        definition = pipe(["a", "b"], [("a", "b"), ("a", "b")])
        self.assertEqual(topological_sort(build_dependency_graph(definition)), ["a", "b"])

    def test_cycle_raises_with_path(self) -> None:
        definition = pipe(["x", "a", "b", "c"], [("x", "a"), ("a", "b"), ("b", "c"), ("c", "a")])
        with self.assertRaises(CycleDetectedError) as ctx:
            topological_sort(build_dependency_graph(definition))
        path = ctx.exception.cycle_path
        self.assertEqual(path[0], path[-1])
        self.assertEqual(set(path), {"a", "b", "c"})
        self.assertIn(" -> ", str(ctx.exception))


class CycleDetectorTests(unittest.TestCase):
    def test_acyclic(self) -> None:
        self.assertIsNone(find_cycle({"a": ["b"], "b": ["c"], "c": []}))
        self.assertFalse(has_cycle(pipe(["a", "b"], [("a", "b")])))

    def test_back_edge_is_reported_as_closed_path(self) -> None:
        self.assertEqual(find_cycle({"a": ["b"], "b": ["c"], "c": ["b"]}), ["b", "c", "b"])

    def test_cross_edge_into_finished_branch_is_not_a_cycle(self) -> None:
        self.assertIsNone(find_cycle({"a": ["b", "c"], "b": ["d"], "c": ["d"], "d": []}))

    def test_unknown_neighbours_are_ignored(self) -> None:
        self.assertIsNone(find_cycle({"a": ["ghost"]}))

    def test_deep_chain_does_not_recurse(self) -> None:
        size = 5000
        adjacency = {f"n{i}": [f"n{i + 1}"] for i in range(size)}
        adjacency[f"n{size}"] = []
        self.assertIsNone(find_cycle(adjacency))
        adjacency[f"n{size}"] = ["n0"]
        cycle = find_cycle(adjacency)
        self.assertIsNotNone(cycle)
        self.assertEqual(len(cycle), size + 2)


class UpstreamTraversalTests(unittest.TestCase):
    def setUp(self) -> None:
        self.definition = pipe(
            ["A", "B", "C", "D", "E"],
            [("A", "B"), ("A", "C"), ("B", "D"), ("C", "D"), ("E", "C")],
        )

    def test_transitive_ancestors(self) -> None:
        self.assertEqual(find_upstream_nodes("D", self.definition.edges), {"A", "B", "C", "E"})
        self.assertEqual(find_upstream_nodes("B", self.definition.edges), {"A"})
        self.assertEqual(find_upstream_nodes("A", self.definition.edges), set())

    def test_target_on_cycle_is_excluded(self) -> None:
        cyclic = pipe(["a", "b"], [("a", "b"), ("b", "a")])
        self.assertEqual(find_upstream_nodes("a", cyclic.edges), {"b"})

    def test_subgraph_keeps_order_and_internal_edges(self) -> None:
        subgraph = build_subgraph(self.definition, {"A", "C", "E"})
        self.assertEqual([node.id for node in subgraph.nodes], ["A", "C", "E"])
        self.assertEqual(
            [(edge.source, edge.target) for edge in subgraph.edges],
            [("A", "C"), ("E", "C")],
        )


if __name__ == "__main__":
    unittest.main()

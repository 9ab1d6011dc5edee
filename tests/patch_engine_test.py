from __future__ import annotations

import unittest

from flowpatch.graph import Edge, Node, Position, apply_patch
from flowpatch.graph.patch_engine import GraphPatchEngine


def _add(node_id: str, kind: str, label: str = "", **config) -> dict:
    return {"op": "ADD_NODE", "node": {"id": node_id, "kind": kind, "label": label, "config": config}}


def _link(source: str, target: str) -> dict:
    return {"op": "ADD_EDGE", "edge": {"source": source, "target": target}}


def _pairs(edges: list[Edge]) -> set[tuple[str, str]]:
    return {(edge.source, edge.target) for edge in edges}


def _build(*ops: dict) -> tuple[list[Node], list[Edge]]:
    result = apply_patch({"op": "BULK", "ops": list(ops)}, [], [])
    assert result.ok, result.issues
    return result.nodes, result.edges


class AddAndLinkTests(unittest.TestCase):
    def test_linear_build_lays_out_left_to_right(self) -> None:
        result = apply_patch(
            {
                "op": "BULK",
                "ops": [
                    _add("t", "trigger.webhook.inbound"),
                    _add("a", "action.email.send"),
                    _link("t", "a"),
                ],
            },
            [],
            [],
        )
        self.assertTrue(result.ok)
        self.assertEqual([node.id for node in result.nodes], ["t", "a"])
        self.assertEqual(result.nodes[0].position, Position(100.0, 100.0))
        self.assertEqual(result.nodes[1].position, Position(350.0, 100.0))
        self.assertEqual(_pairs(result.edges), {("t", "a")})
        self.assertEqual(result.issues, [])

    def test_placeholder_label_is_generated(self) -> None:
        nodes, _ = _build(_add("t", "trigger.webhook.inbound", "Untitled"))
        self.assertEqual(nodes[0].label, "Webhook")

    def test_bulk_applies_edges_after_nodes(self) -> None:
        result = apply_patch(
            {
                "op": "BULK",
                "ops": [
                    _link("t", "a"),
                    _add("a", "action.email.send"),
                    _add("t", "trigger.webhook.inbound"),
                ],
            },
            [],
            [],
        )
        self.assertTrue(result.ok)
        self.assertEqual(_pairs(result.edges), {("t", "a")})

    def test_edge_to_missing_node_is_rejected(self) -> None:
        nodes, edges = _build(_add("t", "trigger.webhook.inbound"))
        result = apply_patch(_link("t", "ghost"), nodes, edges)
        self.assertFalse(result.ok)
        self.assertIn("Target node ghost not found", result.errors)
        self.assertEqual(result.edges, [])

    def test_duplicate_node_and_edge_are_rejected(self) -> None:
        nodes, edges = _build(
            _add("t", "trigger.webhook.inbound"),
            _add("a", "action.email.send"),
            _link("t", "a"),
        )
        result = apply_patch(_add("a", "action.email.send"), nodes, edges)
        self.assertFalse(result.ok)
        self.assertIn("Node a already exists", result.errors)

        result = apply_patch(_link("t", "a"), nodes, edges)
        self.assertFalse(result.ok)
        self.assertIn("Edge t -> a already exists", result.errors)

    def test_edge_endpoint_may_name_a_kind(self) -> None:
        nodes, edges = _build(_add("t", "trigger.webhook.inbound"), _add("a", "action.email.send"))
        result = apply_patch({"op": "ADD_EDGE", "from": "trigger.webhook.inbound", "to": "a"}, nodes, edges)
        self.assertTrue(result.ok)
        self.assertEqual(_pairs(result.edges), {("t", "a")})

    def test_inputs_are_not_mutated(self) -> None:
        nodes, edges = _build(_add("t", "trigger.webhook.inbound"))
        before_nodes, before_edges = list(nodes), list(edges)
        apply_patch(_add("a", "action.email.send"), nodes, edges)
        self.assertEqual(nodes, before_nodes)
        self.assertEqual(edges, before_edges)


class RemoveTests(unittest.TestCase):
    def test_remove_stitches_predecessors_to_successors(self) -> None:
        nodes, edges = _build(
            _add("t", "trigger.webhook.inbound"),
            _add("f", "logic.filter"),
            _add("a", "action.email.send"),
            _link("t", "f"),
            _link("f", "a"),
        )
        result = apply_patch({"op": "REMOVE_NODE", "id": "f"}, nodes, edges)
        self.assertTrue(result.ok)
        self.assertEqual([node.id for node in result.nodes], ["t", "a"])
        self.assertEqual(_pairs(result.edges), {("t", "a")})

    def test_stitch_does_not_duplicate_existing_edge(self) -> None:
        nodes, edges = _build(
            _add("t", "trigger.webhook.inbound"),
            _add("f", "logic.filter"),
            _add("a", "action.email.send"),
            _link("t", "f"),
            _link("f", "a"),
            _link("t", "a"),
        )
        result = apply_patch({"op": "REMOVE_NODE", "id": "f"}, nodes, edges)
        self.assertEqual(len(result.edges), 1)

    def test_remove_unknown_node_keeps_graph(self) -> None:
        nodes, edges = _build(_add("t", "trigger.webhook.inbound"))
        result = apply_patch({"op": "REMOVE_NODE", "id": "ghost"}, nodes, edges)
        self.assertFalse(result.ok)
        self.assertIn("Node ghost not found", result.errors)
        self.assertEqual(result.nodes, nodes)

    def test_remove_edge(self) -> None:
        nodes, edges = _build(
            _add("t", "trigger.webhook.inbound"),
            _add("a", "action.email.send"),
            {"op": "ADD_EDGE", "edge": {"id": "e1", "source": "t", "target": "a"}},
        )
        result = apply_patch({"op": "REMOVE_EDGE", "id": "e1"}, nodes, edges)
        self.assertTrue(result.ok)
        self.assertEqual(result.edges, [])


class UpdateAndRewireTests(unittest.TestCase):
    def test_update_merges_config_and_accepts_explicit_label(self) -> None:
        nodes, edges = _build(_add("r", "action.facebook.reply", "My Reply", replyTemplate="Hi"))
        result = apply_patch(
            {"op": "UPDATE_NODE", "id": "r", "data": {"config": {"tone": "warm"}}},
            nodes,
            edges,
        )
        self.assertTrue(result.ok)
        self.assertEqual(result.nodes[0].config, {"replyTemplate": "Hi", "tone": "warm"})

        relabeled = apply_patch(
            {"op": "UPDATE_NODE", "id": "r", "data": {"label": "Thank-you reply"}},
            result.nodes,
            result.edges,
        )
        self.assertEqual(relabeled.nodes[0].label, "Thank-you reply")

    def test_update_unknown_node_is_an_error(self) -> None:
        result = apply_patch({"op": "UPDATE_NODE", "id": "ghost", "data": {}}, [], [])
        self.assertFalse(result.ok)
        self.assertIn("Node ghost not found", result.errors)

    def test_rewire_replaces_outgoing_edges(self) -> None:
        nodes, edges = _build(
            _add("t", "trigger.webhook.inbound"),
            _add("a", "action.email.send"),
            _add("b", "action.telegram.sendMessage"),
            _link("t", "a"),
        )
        result = apply_patch({"op": "REWIRE", "from": "t", "to": "b"}, nodes, edges)
        self.assertTrue(result.ok)
        self.assertEqual(_pairs(result.edges), {("t", "b")})

    def test_rewire_specific_edge_must_start_at_source(self) -> None:
        nodes, edges = _build(
            _add("t", "trigger.webhook.inbound"),
            _add("a", "action.email.send"),
            _add("b", "action.telegram.sendMessage"),
            {"op": "ADD_EDGE", "edge": {"id": "e1", "source": "t", "target": "a"}},
        )
        result = apply_patch({"op": "REWIRE", "from": "a", "to": "b", "edgeId": "e1"}, nodes, edges)
        self.assertFalse(result.ok)
        self.assertIn("Edge e1 does not start at node a", result.errors)


class MalformedPatchTests(unittest.TestCase):
    def test_malformed_bulk_items_become_warnings(self) -> None:
        result = apply_patch(
            {"op": "BULK", "ops": [{"node": {}}, {"op": "REMOVE_NODE"}, _add("t", "trigger.webhook.inbound")]},
            [],
            [],
        )
        self.assertTrue(result.ok)
        self.assertIn("Dropped operation 0: missing op", result.warnings)
        self.assertIn("Dropped operation 1: REMOVE_NODE without id", result.warnings)
        self.assertEqual([node.id for node in result.nodes], ["t"])

    def test_unknown_op_and_non_object_patch(self) -> None:
        result = apply_patch({"op": "EXPLODE"}, [], [])
        self.assertFalse(result.ok)
        self.assertIn("Unknown patch operation: 'EXPLODE'", result.errors)

        result = GraphPatchEngine().apply("not a patch", [], [])  # type: ignore[arg-type]
        self.assertFalse(result.ok)
        self.assertEqual(result.errors, ["Error applying patch: Patch must be an object with an 'op' field"])

    def test_bulk_without_ops_array(self) -> None:
        result = apply_patch({"op": "BULK", "ops": "nope"}, [], [])
        self.assertFalse(result.ok)
        self.assertIn("BULK operation missing ops array", result.errors)

    def test_bulk_sub_error_still_returns_best_effort_graph(self) -> None:
        result = apply_patch(
            {"op": "BULK", "ops": [_add("t", "trigger.webhook.inbound"), {"op": "REMOVE_NODE", "id": "ghost"}]},
            [],
            [],
        )
        self.assertFalse(result.ok)
        self.assertEqual([node.id for node in result.nodes], ["t"])

    def test_set_name_leaves_graph_untouched(self) -> None:
        nodes, edges = _build(_add("t", "trigger.webhook.inbound"))
        result = apply_patch({"op": "SET_NAME", "name": "Inbound"}, nodes, edges)
        self.assertTrue(result.ok)
        self.assertEqual(result.nodes, nodes)


if __name__ == "__main__":
    unittest.main()

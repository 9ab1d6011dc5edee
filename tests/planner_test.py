from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import unittest

from langchain_core.messages import AIMessage

from flowpatch.graph import Node, apply_patch
from flowpatch.graph.summary import EMPTY_SUMMARY, summarize_graph
from flowpatch.llm_client import LLMCallError
from flowpatch.planner import (
    LLMPlanner,
    RuleBasedPlanner,
    WorkflowPlanner,
    find_node_by_reference,
    normalize_ops,
)


def _existing() -> list[Node]:
    return [
        Node(id="n_trigger", kind="trigger.facebook.comment", label="Facebook Comment"),
        Node(id="n_reply", kind="action.facebook.reply", label="Reply to Comment"),
        Node(id="n_sheet", kind="action.sheets.appendRow", label="Save to Sheets"),
        Node(id="n_step", kind="action.email.send", label="Step A"),
    ]


def _tool_call(ops: list[dict]) -> AIMessage:
    return AIMessage(
        content="",
        tool_calls=[{"name": "update_workflow", "args": {"ops": ops}, "id": "call_1"}],
    )


@dataclass(slots=True)
class _DummyLLM:
    response: object
    calls: list[list[object]] = field(default_factory=list)

    @property
    def model_name(self) -> str:
        return "dummy"

    async def invoke(self, messages, tools=None, tool_choice=None):
        self.calls.append(list(messages))
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


class MatcherTests(unittest.TestCase):
    def test_strategies_in_priority_order(self) -> None:
        nodes = _existing()
        self.assertEqual(find_node_by_reference("n_reply", nodes).id, "n_reply")
        self.assertEqual(find_node_by_reference("sheets", nodes).id, "n_sheet")
        self.assertEqual(find_node_by_reference("the sheets step", nodes).id, "n_sheet")
        self.assertEqual(find_node_by_reference("email thing", nodes).id, "n_step")
        self.assertIsNone(find_node_by_reference("zzz", nodes))
        self.assertIsNone(find_node_by_reference("  ", nodes))

    def test_exact_match_beats_earlier_partial_match(self) -> None:
        nodes = [
            Node(id="a", kind="action.email.send", label="Send Email Copy"),
            Node(id="b", kind="action.email.send", label="Send Email"),
        ]
        self.assertEqual(find_node_by_reference("send email", nodes).id, "b")


class NormalizeTests(unittest.TestCase):
    def test_kind_like_ids_are_replaced_and_edges_follow(self) -> None:
        result = normalize_ops(
            [
                {"op": "ADD_NODE", "node": {"id": "action.email.send", "label": "Untitled"}},
                {"op": "ADD_EDGE", "edge": {"source": "n_trigger", "target": "action.email.send"}},
            ],
            _existing()[:1],
        )
        node = result.ops[0]["node"]
        self.assertEqual(node["kind"], "action.email.send")
        self.assertTrue(node["id"].startswith("node_"))
        self.assertEqual(node["label"], "Send Email")
        self.assertEqual(result.ops[1]["edge"], {"source": "n_trigger", "target": node["id"]})
        self.assertEqual(result.dropped, [])

    def test_flattened_add_node_is_restructured(self) -> None:
        result = normalize_ops([{"op": "add_node", "id": "n9", "kind": "action.telegram.sendMessage"}], [])
        self.assertEqual(result.ops[0]["op"], "ADD_NODE")
        self.assertEqual(result.ops[0]["node"]["id"], "n9")
        self.assertEqual(result.to_patch(), result.ops[0])

    def test_http_node_picks_up_platform_from_intent(self) -> None:
        result = normalize_ops(
            [{"op": "ADD_NODE", "node": {"kind": "action.http.request"}}],
            [],
            intent="post the update to facebook",
        )
        node = result.ops[0]["node"]
        self.assertEqual(node["config"], {"platform": "Facebook"})
        self.assertEqual(node["label"], "Facebook Post - API Call")

    def test_edge_to_missing_kind_is_dropped(self) -> None:
        result = normalize_ops(
            [{"op": "ADD_EDGE", "edge": {"source": "n_trigger", "target": "action.telegram.sendMessage"}}],
            _existing(),
        )
        self.assertEqual(result.ops, [])
        self.assertEqual(len(result.dropped), 1)

    def test_edge_endpoint_kind_resolves_to_existing_node(self) -> None:
        result = normalize_ops(
            [{"op": "REWIRE", "from": "trigger.facebook.comment", "to": "action.sheets.appendRow"}],
            _existing(),
        )
        self.assertEqual((result.ops[0]["from"], result.ops[0]["to"]), ("n_trigger", "n_sheet"))

    def test_fuzzy_remove_and_unmatched_remove(self) -> None:
        result = normalize_ops(
            [
                {"op": "REMOVE_NODE", "id": "the sheets step"},
                {"op": "REMOVE_NODE", "id": "zzz"},
            ],
            _existing(),
        )
        self.assertEqual(result.ops, [{"op": "REMOVE_NODE", "id": "n_sheet"}])
        self.assertEqual(result.dropped, ["REMOVE_NODE 'zzz': no matching node"])

    def test_nested_bulk_and_unknown_ops(self) -> None:
        result = normalize_ops(
            [
                {"op": "BULK", "ops": [{"op": "SET_NAME", "name": "Leads"}, {"op": "EXPLODE"}]},
                "junk",
            ],
            [],
        )
        self.assertEqual(result.ops, [{"op": "SET_NAME", "name": "Leads"}])
        self.assertEqual(result.dropped, ["op 1: unknown op 'EXPLODE'", "op 1: missing op"])


class RuleBasedPlannerTests(unittest.TestCase):
    def test_confirmation_is_a_no_op(self) -> None:
        self.assertEqual(RuleBasedPlanner().plan("Yes!", EMPTY_SUMMARY), {"op": "BULK", "ops": []})

    def test_builds_a_chain_on_an_empty_graph(self) -> None:
        patch = RuleBasedPlanner().plan(
            "When someone comments on Facebook, reply to them and save it to sheets",
            EMPTY_SUMMARY,
        )
        self.assertEqual(patch["op"], "BULK")
        kinds = [op["node"]["kind"] for op in patch["ops"] if op["op"] == "ADD_NODE"]
        self.assertEqual(
            kinds,
            ["trigger.facebook.comment", "action.facebook.reply", "action.sheets.appendRow"],
        )

        result = apply_patch(patch, [], [])
        self.assertTrue(result.ok)
        self.assertEqual(len(result.edges), 2)
        self.assertEqual([node.position.x for node in result.nodes], [100.0, 350.0, 600.0])

    def test_schedule_trigger(self) -> None:
        patch = RuleBasedPlanner().plan("every day send an email reminder", EMPTY_SUMMARY)
        kinds = [op["node"]["kind"] for op in patch["ops"] if op["op"] == "ADD_NODE"]
        self.assertEqual(kinds, ["trigger.scheduler.cron", "action.email.send"])
        self.assertEqual(patch["ops"][0]["node"]["config"], {"schedule": "0 0 * * *"})

    def test_add_appends_after_last_node(self) -> None:
        nodes = _existing()
        patch = RuleBasedPlanner().plan("add a telegram message", summarize_graph(nodes, []), nodes)
        self.assertEqual(patch["ops"][0]["node"]["kind"], "action.telegram.sendMessage")
        self.assertEqual(patch["ops"][1]["edge"]["source"], "n_step")

    def test_remove_by_name(self) -> None:
        nodes = _existing()
        patch = RuleBasedPlanner().plan("remove the reply node", summarize_graph(nodes, []), nodes)
        self.assertEqual(patch, {"op": "REMOVE_NODE", "id": "n_reply"})

    def test_change_updates_matching_node(self) -> None:
        nodes = _existing()
        patch = RuleBasedPlanner().plan("change the reply to Thanks a lot", summarize_graph(nodes, []), nodes)
        self.assertEqual(
            patch,
            {"op": "UPDATE_NODE", "id": "n_reply", "data": {"config": {"value": "Thanks a lot"}}},
        )

    def test_unrecognized_intent(self) -> None:
        nodes = _existing()
        self.assertEqual(
            RuleBasedPlanner().plan("make it better", summarize_graph(nodes, []), nodes),
            {"op": "BULK", "ops": []},
        )


class LLMPlannerTests(unittest.TestCase):
    def test_ops_from_tool_call(self) -> None:
        llm = _DummyLLM(_tool_call([{"op": "REMOVE_NODE", "id": "n_reply"}]))
        ops = asyncio.run(LLMPlanner(llm).propose_ops("drop the reply", "summary", _existing()))
        self.assertEqual(ops, [{"op": "REMOVE_NODE", "id": "n_reply"}])
        context = llm.calls[0][1].content
        self.assertIn('id="n_reply"', context)

    def test_ops_from_json_content(self) -> None:
        llm = _DummyLLM(AIMessage(content='Sure:\n```json\n{"op": "SET_NAME", "name": "Leads"}\n```'))
        ops = asyncio.run(LLMPlanner(llm).propose_ops("rename", "summary"))
        self.assertEqual(ops, [{"op": "SET_NAME", "name": "Leads"}])

    def test_tool_call_ops_as_json_string(self) -> None:
        message = AIMessage(
            content="",
            tool_calls=[
                {"name": "update_workflow", "args": {"ops": '[{"op": "REMOVE_NODE", "id": "x"}]'}, "id": "c"}
            ],
        )
        ops = asyncio.run(LLMPlanner(_DummyLLM(message)).propose_ops("x", "summary"))
        self.assertEqual(ops, [{"op": "REMOVE_NODE", "id": "x"}])

    def test_unparseable_reply(self) -> None:
        with self.assertRaises(LLMCallError):
            asyncio.run(LLMPlanner(_DummyLLM(AIMessage(content="I cannot help"))).propose_ops("x", "s"))


class WorkflowPlannerTests(unittest.TestCase):
    def test_llm_result_is_normalized(self) -> None:
        llm = _DummyLLM(_tool_call([{"op": "ADD_NODE", "node": {"id": "trigger.webhook.inbound"}}]))
        plan = asyncio.run(WorkflowPlanner(llm_client=llm).plan("start from a webhook", EMPTY_SUMMARY))
        self.assertEqual(plan.source, "llm")
        self.assertEqual(plan.patch["op"], "ADD_NODE")
        self.assertEqual(plan.patch["node"]["kind"], "trigger.webhook.inbound")
        self.assertTrue(plan.patch["node"]["id"].startswith("node_"))

    def test_llm_failure_falls_back_to_rules(self) -> None:
        llm = _DummyLLM(LLMCallError("offline"))
        plan = asyncio.run(WorkflowPlanner(llm_client=llm).plan("every day send an email", EMPTY_SUMMARY))
        self.assertEqual(plan.source, "fallback")
        self.assertEqual(plan.patch["op"], "BULK")
        self.assertEqual(len(llm.calls), 1)

    def test_llm_with_no_usable_ops_falls_back(self) -> None:
        llm = _DummyLLM(_tool_call([{"op": "REMOVE_NODE", "id": "zzz"}]))
        nodes = _existing()
        plan = asyncio.run(
            WorkflowPlanner(llm_client=llm).plan("remove the reply node", summarize_graph(nodes, []), nodes)
        )
        self.assertEqual(plan.source, "fallback")
        self.assertEqual(plan.patch, {"op": "REMOVE_NODE", "id": "n_reply"})
        self.assertIn("REMOVE_NODE 'zzz': no matching node", plan.dropped)

    def test_nothing_to_do(self) -> None:
        plan = WorkflowPlanner().plan_sync("ok", EMPTY_SUMMARY)
        self.assertEqual(plan.source, "empty")
        self.assertTrue(plan.is_empty)
        self.assertFalse(WorkflowPlanner().uses_llm)


if __name__ == "__main__":
    unittest.main()

from __future__ import annotations

import asyncio
import unittest

import httpx

from flowpatch.engine import (
    CredentialStore,
    ExecutionHooks,
    HandlerRegistry,
    HttpIntegration,
    NodeOutcome,
    SimulatedIntegrations,
    WorkflowExecutionError,
    WorkflowExecutor,
)
from flowpatch.graph import Edge, Node


ALL_CREDENTIALS = {"facebook": "fb", "sheets": "gs", "email": "mail", "telegram": "tg"}


def _node(node_id: str, kind: str, **config) -> Node:
    return Node(id=node_id, kind=kind, label=node_id.title(), config=config)


def _edges(*pairs: tuple[str, str]) -> list[Edge]:
    return [Edge(id=f"e_{source}_{target}", source=source, target=target) for source, target in pairs]


def _executor(credentials: dict | None = None, **kwargs) -> WorkflowExecutor:
    return WorkflowExecutor(
        credentials=CredentialStore(ALL_CREDENTIALS if credentials is None else credentials),
        integrations=SimulatedIntegrations(),
        **kwargs,
    )


class LinearExecutionTests(unittest.TestCase):
    def test_trigger_output_feeds_templates_downstream(self) -> None:
        nodes = [
            _node("t", "trigger.facebook.comment", match={"contains": "price"}),
            _node("r", "action.facebook.reply", replyTemplate="Hi {{author}}, re: {{text}}"),
        ]
        result = asyncio.run(_executor().execute(nodes, _edges(("t", "r")), {"text": "price?"}))

        self.assertTrue(result.success)
        self.assertEqual([item.node_id for item in result.results], ["t", "r"])
        self.assertEqual(result.results[0].output["text"], "price?")
        self.assertEqual(result.final_output["message"], "Hi John Doe, re: price?")
        self.assertEqual(result.final_output["replyId"], "reply_1")
        self.assertGreaterEqual(result.total_duration, 0.0)

    def test_dependency_order_with_insertion_tie_break(self) -> None:
        nodes = [
            _node("c", "action.sheets.appendRow", spreadsheetId="s1"),
            _node("b", "action.telegram.sendMessage", chatId=1),
            _node("a", "action.email.send", toExpr="ann@example.com"),
            _node("t", "trigger.webhook.inbound"),
        ]
        edges = _edges(("t", "a"), ("t", "b"), ("a", "c"), ("b", "c"))
        result = asyncio.run(_executor().execute(nodes, edges))
        self.assertTrue(result.success)
        self.assertEqual([item.node_id for item in result.results], ["t", "b", "a", "c"])

    def test_unreachable_nodes_do_not_run(self) -> None:
        nodes = [_node("t", "trigger.webhook.inbound"), _node("x", "action.email.send")]
        result = asyncio.run(_executor().execute(nodes, []))
        self.assertTrue(result.success)
        self.assertEqual([item.node_id for item in result.results], ["t"])

    def test_variables_are_visible_to_templates(self) -> None:
        nodes = [
            _node("t", "trigger.webhook.inbound"),
            _node("m", "action.telegram.sendMessage", message="Hello {{team}}"),
        ]
        result = asyncio.run(_executor().execute(nodes, _edges(("t", "m")), {}, {"team": "ops"}))
        self.assertEqual(result.final_output["message"], "Hello ops")

    def test_sync_run_wrapper(self) -> None:
        result = _executor().run([_node("t", "trigger.scheduler.cron", schedule="0 0 * * *")], [])
        self.assertTrue(result.success)
        self.assertEqual(result.final_output["cron"], "0 0 * * *")

    def test_sync_run_refuses_inside_event_loop(self) -> None:
        executor = _executor()

        async def _inside() -> None:
            executor.run([_node("t", "trigger.webhook.inbound")], [])

        with self.assertRaises(WorkflowExecutionError):
            asyncio.run(_inside())


class PlanFailureTests(unittest.TestCase):
    def test_empty_workflow(self) -> None:
        result = asyncio.run(_executor().execute([], []))
        self.assertFalse(result.success)
        self.assertEqual(result.error, "Workflow has no nodes")

    def test_missing_trigger(self) -> None:
        result = asyncio.run(_executor().execute([_node("a", "action.email.send")], []))
        self.assertFalse(result.success)
        self.assertEqual(result.error, "No trigger node found")
        self.assertEqual(result.results, [])

    def test_cycle(self) -> None:
        nodes = [
            _node("t", "trigger.webhook.inbound"),
            _node("a", "action.email.send"),
            _node("b", "action.telegram.sendMessage"),
        ]
        result = asyncio.run(_executor().execute(nodes, _edges(("t", "a"), ("a", "b"), ("b", "a"))))
        self.assertFalse(result.success)
        self.assertEqual(result.error, "Graph contains cycles reachable from the trigger")


class NodeFailureTests(unittest.TestCase):
    def test_missing_credentials_stop_the_run(self) -> None:
        nodes = [
            _node("t", "trigger.webhook.inbound"),
            _node("a", "action.email.send"),
            _node("b", "action.telegram.sendMessage"),
        ]
        result = asyncio.run(_executor({}).execute(nodes, _edges(("t", "a"), ("a", "b"))))

        self.assertFalse(result.success)
        self.assertEqual(len(result.results), 2)
        self.assertFalse(result.results[1].success)
        self.assertEqual(
            result.error,
            "Missing credentials for action.email.send. Please configure Email API Key.",
        )

    def test_missing_required_field(self) -> None:
        nodes = [_node("t", "trigger.webhook.inbound"), _node("s", "action.sheets.appendRow")]
        result = asyncio.run(_executor().execute(nodes, _edges(("t", "s"))))
        self.assertFalse(result.success)
        self.assertEqual(result.error, "missing field spreadsheetId for kind action.sheets.appendRow")

    def test_unsupported_kind(self) -> None:
        nodes = [_node("t", "trigger.webhook.inbound"), _node("x", "custom.thing")]
        result = asyncio.run(_executor().execute(nodes, _edges(("t", "x"))))
        self.assertFalse(result.success)
        self.assertEqual(result.error, "No handler registered for kind custom.thing")


class FilterTests(unittest.TestCase):
    def _nodes(self) -> list[Node]:
        return [
            _node("t", "trigger.webhook.inbound"),
            _node("f", "logic.filter", expression="{{text}} contains 'price'"),
            _node("r", "action.facebook.reply"),
        ]

    def test_failing_filter_halts_its_path(self) -> None:
        edges = _edges(("t", "f"), ("f", "r"))
        result = asyncio.run(_executor().execute(self._nodes(), edges, {"text": "hello"}))
        self.assertTrue(result.success)
        self.assertEqual([item.node_id for item in result.results], ["t", "f"])
        self.assertFalse(result.final_output["passed"])

    def test_passing_filter_continues(self) -> None:
        edges = _edges(("t", "f"), ("f", "r"))
        result = asyncio.run(_executor().execute(self._nodes(), edges, {"text": "what price?"}))
        self.assertTrue(result.success)
        self.assertEqual([item.node_id for item in result.results], ["t", "f", "r"])

    def test_node_with_another_live_parent_still_runs(self) -> None:
        edges = _edges(("t", "f"), ("f", "r"), ("t", "r"))
        result = asyncio.run(_executor().execute(self._nodes(), edges, {"text": "hello"}))
        self.assertEqual([item.node_id for item in result.results], ["t", "f", "r"])

    def test_bad_expression_fails_the_node(self) -> None:
        nodes = [_node("t", "trigger.webhook.inbound"), _node("f", "logic.filter", expression="count +")]
        result = asyncio.run(_executor().execute(nodes, _edges(("t", "f"))))
        self.assertFalse(result.success)
        self.assertTrue(result.error.startswith("Filter expression error:"))

    def test_field_filter_narrows_rows(self) -> None:
        nodes = [
            _node("t", "trigger.webhook.inbound", fanOut=False),
            _node("f", "logic.filter", field="status", expression="value == 'new'"),
        ]
        payload = {"rows": [{"status": "new"}, {"status": "old"}, {"name": "no status"}]}
        result = asyncio.run(_executor().execute(nodes, _edges(("t", "f")), payload))
        self.assertTrue(result.success)
        self.assertEqual(result.final_output["payload"]["rows"], [{"status": "new"}])


class FanOutTests(unittest.TestCase):
    def test_each_row_runs_downstream_and_failures_are_isolated(self) -> None:
        rows = [
            {"name": "Ann", "sheet": "s-ann"},
            {"name": "Bob", "sheet": ""},
            {"name": "Cid", "sheet": "s-cid"},
        ]
        nodes = [
            _node("t", "trigger.webhook.inbound"),
            _node("read", "action.sheets.readRows", spreadsheetId="source", sampleRows=rows),
            _node("save", "action.sheets.appendRow", spreadsheetId="{{sheet}}", map={"name": "{{name}}"}),
        ]
        edges = _edges(("t", "read"), ("read", "save"))
        result = asyncio.run(_executor().execute(nodes, edges))

        self.assertFalse(result.success)
        self.assertEqual(result.error, "1 of 3 items failed")
        self.assertEqual(
            [(item.node_label, item.success, item.item_index) for item in result.results],
            [
                ("T", True, None),
                ("Read", True, None),
                ("Save #1", True, 0),
                ("Save #2", False, 1),
                ("Save #3", True, 2),
            ],
        )
        self.assertEqual(result.results[3].error, "missing field spreadsheetId for kind action.sheets.appendRow")
        self.assertEqual(result.results[4].output["spreadsheetId"], "s-cid")
        self.assertEqual(result.results[4].output["data"], {"name": "Cid"})
        self.assertEqual(len(result.final_output), 3)
        self.assertIsNone(result.final_output[1])

    def test_scalar_items_are_wrapped(self) -> None:
        nodes = [
            _node("t", "trigger.webhook.inbound"),
            _node("m", "action.telegram.sendMessage", chatId=1, message="item {{value}} at {{_index}}"),
        ]
        result = asyncio.run(_executor().execute(nodes, _edges(("t", "m")), {"items": ["a", "b"]}))
        self.assertTrue(result.success)
        self.assertEqual([item["message"] for item in result.final_output], ["item a at 0", "item b at 1"])

    def test_empty_collection_runs_no_replicas(self) -> None:
        nodes = [_node("t", "trigger.webhook.inbound"), _node("m", "action.telegram.sendMessage")]
        result = asyncio.run(_executor().execute(nodes, _edges(("t", "m")), {"rows": []}))
        self.assertTrue(result.success)
        self.assertEqual([item.node_id for item in result.results], ["t"])
        self.assertEqual(result.final_output, [])

    def test_fan_out_can_be_disabled_per_node(self) -> None:
        nodes = [
            _node("t", "trigger.webhook.inbound", fanOut=False),
            _node("m", "action.telegram.sendMessage", chatId=1),
        ]
        result = asyncio.run(_executor().execute(nodes, _edges(("t", "m")), {"rows": [1, 2]}))
        self.assertEqual(len(result.results), 2)


class ExtensionTests(unittest.TestCase):
    def test_hooks_observe_nodes_and_errors(self) -> None:
        hooks = ExecutionHooks()
        events: list[tuple[str, object]] = []
        hooks.register("before_node", lambda context: events.append(("before", context["node_id"])))
        hooks.register("on_error", lambda context: events.append(("error", context["node_id"])))

        async def after_run(context: dict) -> None:
            events.append(("done", context["result"].success))

        hooks.register("after_run", after_run)
        hooks.register("after_run", lambda context: 1 / 0)

        nodes = [_node("t", "trigger.webhook.inbound"), _node("a", "action.email.send")]
        result = asyncio.run(_executor({}, hooks=hooks).execute(nodes, _edges(("t", "a"))))

        self.assertFalse(result.success)
        self.assertEqual(events, [("before", "t"), ("before", "a"), ("error", "a"), ("done", False)])

    def test_custom_registry_handler(self) -> None:
        async def trigger(node, config, context):
            return {"greeting": config["text"]}

        async def shout(node, config, context):
            return NodeOutcome(output=context.payload["greeting"].upper(), payload={"done": True})

        registry = HandlerRegistry()
        registry.register("trigger.", trigger)
        registry.register("logic.shout", shout)
        nodes = [_node("t", "trigger.custom.start", text="hi {{who}}"), _node("s", "logic.shout")]
        executor = WorkflowExecutor(registry=registry)
        result = asyncio.run(executor.execute(nodes, _edges(("t", "s")), {"who": "there"}))

        self.assertTrue(result.success)
        self.assertEqual(result.final_output, "HI THERE")

    def test_http_node_uses_transport(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(201, json={"id": request.url.path})

        http = HttpIntegration(transport=httpx.MockTransport(handler))
        nodes = [
            _node("t", "trigger.webhook.inbound"),
            _node("h", "action.http.request", url="https://api.example.com/leads/{{id}}", method="POST"),
        ]
        result = asyncio.run(_executor({}, http=http).execute(nodes, _edges(("t", "h")), {"id": 7}))

        self.assertTrue(result.success)
        self.assertEqual(result.final_output["status"], 201)
        self.assertEqual(result.final_output["data"], {"id": "/leads/7"})

    def test_http_node_requires_url(self) -> None:
        nodes = [_node("t", "trigger.webhook.inbound"), _node("h", "action.http.request")]
        result = asyncio.run(_executor({}).execute(nodes, _edges(("t", "h"))))
        self.assertEqual(result.error, "missing field url for kind action.http.request")


if __name__ == "__main__":
    unittest.main()

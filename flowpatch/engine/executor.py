from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from flowpatch.engine.context import ExecutionContext, NodeOutcome
from flowpatch.engine.credentials import CredentialProvider, CredentialStore
from flowpatch.engine.handlers import BuiltinHandlers, HandlerRegistry, collection_key
from flowpatch.engine.hooks import ExecutionHooks
from flowpatch.engine.integrations import HttpIntegration, IntegrationAdapter, SimulatedIntegrations
from flowpatch.engine.templates import resolve_value
from flowpatch.graph.models import Edge, Node
from flowpatch.graph.topology import build_adjacency, topological_order


LOGGER = logging.getLogger(__name__)


class WorkflowExecutionError(RuntimeError):
    """Raised when a workflow cannot be executed at all."""


@dataclass(slots=True)
class NodeExecutionResult:
    node_id: str
    node_label: str
    success: bool
    output: Any = None
    error: str | None = None
    duration: float = 0.0
    item_index: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodeId": self.node_id,
            "nodeLabel": self.node_label,
            "success": self.success,
            "output": self.output,
            "error": self.error,
            "duration": self.duration,
            "itemIndex": self.item_index,
        }


@dataclass(slots=True)
class WorkflowExecutionResult:
    success: bool
    results: list[NodeExecutionResult] = field(default_factory=list)
    final_output: Any = None
    total_duration: float = 0.0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "results": [result.to_dict() for result in self.results],
            "finalOutput": self.final_output,
            "totalDuration": self.total_duration,
            "error": self.error,
        }


@dataclass(slots=True)
class _Segment:
    """Outcome of running a slice of the plan with one context."""

    results: list[NodeExecutionResult] = field(default_factory=list)
    final_output: Any = None
    error: str | None = None


class WorkflowExecutor:
    """Runs a graph snapshot from its trigger in dependency order.

    Nodes run one at a time. When a node outputs a ``rows``/``items`` list the
    rest of the plan is replayed once per element with a cloned context.
    """

    def __init__(
        self,
        *,
        credentials: CredentialProvider | None = None,
        integrations: IntegrationAdapter | None = None,
        http: HttpIntegration | None = None,
        registry: HandlerRegistry | None = None,
        hooks: ExecutionHooks | None = None,
    ) -> None:
        self._hooks = hooks or ExecutionHooks()
        if registry is None:
            builtins = BuiltinHandlers(
                credentials=credentials or CredentialStore.from_env(),
                integrations=integrations or SimulatedIntegrations(),
                http=http or HttpIntegration(),
            )
            registry = builtins.install(HandlerRegistry())
        self._registry = registry

    @property
    def hooks(self) -> ExecutionHooks:
        return self._hooks

    @property
    def registry(self) -> HandlerRegistry:
        return self._registry

    def run(
        self,
        nodes: Sequence[Node],
        edges: Sequence[Edge],
        initial_payload: Any = None,
        variables: Mapping[str, Any] | None = None,
    ) -> WorkflowExecutionResult:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop and loop.is_running():
            raise WorkflowExecutionError(
                "WorkflowExecutor.run() cannot be called inside an active event loop. Use await execute()."
            )
        return asyncio.run(self.execute(nodes, edges, initial_payload, variables))

    async def execute(
        self,
        nodes: Sequence[Node],
        edges: Sequence[Edge],
        initial_payload: Any = None,
        variables: Mapping[str, Any] | None = None,
    ) -> WorkflowExecutionResult:
        started = time.perf_counter()
        context = ExecutionContext(
            payload=initial_payload if initial_payload is not None else {},
            variables=dict(variables or {}),
        )
        await self._emit_hook("before_run", {"node_count": len(nodes), "payload": context.payload})

        try:
            plan = self._plan(nodes, edges)
        except WorkflowExecutionError as exc:
            LOGGER.warning("Workflow cannot run: %s", exc)
            result = WorkflowExecutionResult(
                success=False,
                total_duration=time.perf_counter() - started,
                error=str(exc),
            )
            await self._emit_hook("on_error", {"error": str(exc), "node_id": None})
            await self._emit_hook("after_run", {"result": result})
            return result

        by_id = {node.id: node for node in nodes}
        predecessors = _predecessors(nodes, edges, set(plan))
        ordered = [by_id[node_id] for node_id in plan]

        segment = await self._run_segment(ordered, 0, context, predecessors, set(), fan_out=True)
        result = WorkflowExecutionResult(
            success=segment.error is None,
            results=segment.results,
            final_output=segment.final_output,
            total_duration=time.perf_counter() - started,
            error=segment.error,
        )
        await self._emit_hook("after_run", {"result": result})
        return result

    def _plan(self, nodes: Sequence[Node], edges: Sequence[Edge]) -> list[str]:
        if not nodes:
            raise WorkflowExecutionError("Workflow has no nodes")
        triggers = [node for node in nodes if node.role == "TRIGGER"]
        if not triggers:
            raise WorkflowExecutionError("No trigger node found")
        if len(triggers) > 1:
            LOGGER.warning(
                "Workflow has %s triggers; running from %s",
                len(triggers),
                triggers[0].id,
            )
        plan = topological_order(triggers[0].id, nodes, edges)
        if plan.has_cycle:
            raise WorkflowExecutionError("Graph contains cycles reachable from the trigger")
        return plan.order

    async def _run_segment(
        self,
        ordered: list[Node],
        start: int,
        context: ExecutionContext,
        predecessors: dict[str, set[str]],
        halted: set[str],
        *,
        fan_out: bool,
    ) -> _Segment:
        segment = _Segment()
        label_suffix = f" #{context.item_index + 1}" if context.item_index is not None else ""

        for position in range(start, len(ordered)):
            node = ordered[position]
            incoming = predecessors.get(node.id, set())
            if incoming and incoming <= halted:
                halted.add(node.id)
                LOGGER.debug("Skipping %s: every upstream path was halted", node.id)
                continue

            node_result, outcome = await self._execute_node(node, context, label_suffix)
            segment.results.append(node_result)
            if not node_result.success:
                segment.error = node_result.error
                return segment

            context.record(node.id, outcome.output, outcome.payload)
            segment.final_output = outcome.output
            if outcome.halt:
                halted.add(node.id)
                continue

            key = collection_key(outcome.output)
            remaining = position + 1 < len(ordered)
            if fan_out and key is not None and remaining and node.config.get("fanOut") is not False:
                items = list(outcome.output[key])
                await self._fan_out(ordered, position + 1, context, predecessors, halted, items, segment)
                return segment

        return segment

    async def _fan_out(
        self,
        ordered: list[Node],
        start: int,
        context: ExecutionContext,
        predecessors: dict[str, set[str]],
        halted: set[str],
        items: list[Any],
        segment: _Segment,
    ) -> None:
        LOGGER.info("Fanning out over %s items from %s", len(items), ordered[start - 1].id)
        failures = 0
        outputs: list[Any] = []
        for index, item in enumerate(items):
            payload = {**item, "_index": index} if isinstance(item, Mapping) else {"value": item, "_index": index}
            replica = await self._run_segment(
                ordered,
                start,
                context.clone(payload, item_index=index),
                predecessors,
                set(halted),
                fan_out=False,
            )
            segment.results.extend(replica.results)
            outputs.append(replica.final_output)
            if replica.error is not None:
                failures += 1
                LOGGER.warning("Item %s failed: %s", index + 1, replica.error)

        segment.final_output = outputs
        if failures:
            segment.error = f"{failures} of {len(items)} items failed"

    async def _execute_node(
        self,
        node: Node,
        context: ExecutionContext,
        label_suffix: str,
    ) -> tuple[NodeExecutionResult, NodeOutcome]:
        label = f"{node.label or node.id}{label_suffix}"
        hook_context = {"node_id": node.id, "kind": node.kind, "item_index": context.item_index}
        await self._emit_hook("before_node", {**hook_context, "payload": context.payload})

        started = time.perf_counter()
        try:
            handler = self._registry.resolve(node)
            config = resolve_value(node.config, *context.scopes())
            raw = await handler(node, config, context)
        except Exception as exc:  # noqa: BLE001
            message = str(exc) or exc.__class__.__name__
            LOGGER.warning("Node %s (%s) failed: %s", node.id, node.kind, message)
            result = NodeExecutionResult(
                node_id=node.id,
                node_label=label,
                success=False,
                error=message,
                duration=time.perf_counter() - started,
                item_index=context.item_index,
            )
            await self._emit_hook("on_error", {**hook_context, "error": message})
            await self._emit_hook("after_node", {**hook_context, "result": result})
            return result, NodeOutcome(output=None, payload=context.payload)

        outcome = raw if isinstance(raw, NodeOutcome) else NodeOutcome(output=raw, payload=raw)
        if outcome.payload is None:
            outcome.payload = context.payload
        result = NodeExecutionResult(
            node_id=node.id,
            node_label=label,
            success=True,
            output=outcome.output,
            duration=time.perf_counter() - started,
            item_index=context.item_index,
        )
        await self._emit_hook("after_node", {**hook_context, "result": result})
        return result, outcome

    async def _emit_hook(self, event: str, context: dict[str, Any]) -> None:
        try:
            await self._hooks.emit(event, context)
        except Exception:  # noqa: BLE001
            LOGGER.debug("Hook dispatch for %s failed", event, exc_info=True)


def _predecessors(nodes: Sequence[Node], edges: Sequence[Edge], planned: set[str]) -> dict[str, set[str]]:
    incoming: dict[str, set[str]] = {node.id: set() for node in nodes}
    for source, targets in build_adjacency(nodes, edges).items():
        for target in targets:
            if source in planned:
                incoming[target].add(source)
    return incoming

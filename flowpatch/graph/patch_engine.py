from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any, Callable

from flowpatch.graph.diagnostics import dedupe_messages
from flowpatch.graph.labeler import generate_node_label, is_placeholder_label, next_node_position
from flowpatch.graph.models import (
    DEFAULT_POSITION,
    Edge,
    Node,
    Position,
    looks_like_kind,
    new_edge_id,
)
from flowpatch.graph.validator import ValidationResult, validate_graph


LOGGER = logging.getLogger(__name__)

PATCH_OPS = {
    "ADD_NODE",
    "UPDATE_NODE",
    "REMOVE_NODE",
    "ADD_EDGE",
    "REMOVE_EDGE",
    "REWIRE",
    "SET_NAME",
    "BULK",
}

Validator = Callable[[Sequence[Node], Sequence[Edge]], ValidationResult]


class PatchError(ValueError):
    """Raised inside the engine when a single operation cannot be applied."""


@dataclass(slots=True)
class PatchResult:
    ok: bool
    nodes: list[Node]
    edges: list[Edge]
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def errors(self) -> list[str]:
        warning_set = set(self.warnings)
        return [issue for issue in self.issues if issue not in warning_set]


@dataclass(slots=True)
class _WorkingGraph:
    nodes: list[Node]
    edges: list[Edge]

    def node(self, node_id: str) -> Node | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def has_edge(self, source: str, target: str) -> bool:
        return any(edge.source == source and edge.target == target for edge in self.edges)

    def first_of_kind(self, kind: str) -> Node | None:
        for node in self.nodes:
            if node.kind == kind:
                return node
        return None


class GraphPatchEngine:
    """Applies graph patches without mutating the caller's collections.

    Every patch yields a new node list and edge list. Operation failures are
    collected as issues and make the result not ok, but the best-effort graph is
    still returned so callers can decide whether to keep it.
    """

    def __init__(self, validator: Validator = validate_graph) -> None:
        self._validator = validator

    def apply(
        self,
        patch: Mapping[str, Any],
        nodes: Sequence[Node],
        edges: Sequence[Edge],
    ) -> PatchResult:
        graph = _WorkingGraph(nodes=list(nodes), edges=list(edges))
        errors: list[str] = []
        dropped: list[str] = []

        try:
            self._apply_op(patch, graph, errors, dropped)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Patch application failed", exc_info=True)
            errors.append(f"Error applying patch: {exc}")

        validation = self._validator(graph.nodes, graph.edges)
        errors.extend(validation.errors)
        warnings = dedupe_messages(dropped + validation.warnings)
        errors = dedupe_messages(errors)

        return PatchResult(
            ok=not errors,
            nodes=graph.nodes,
            edges=graph.edges,
            issues=errors + warnings,
            warnings=warnings,
        )

    def _apply_op(
        self,
        patch: object,
        graph: _WorkingGraph,
        errors: list[str],
        dropped: list[str],
    ) -> None:
        if not isinstance(patch, Mapping):
            raise PatchError("Patch must be an object with an 'op' field")

        op = str(patch.get("op") or "").upper()
        if op == "BULK":
            self._apply_bulk(patch, graph, errors, dropped)
            return

        try:
            if op == "ADD_NODE":
                self._add_node(patch, graph)
            elif op == "UPDATE_NODE":
                self._update_node(patch, graph)
            elif op == "REMOVE_NODE":
                self._remove_node(patch, graph)
            elif op == "ADD_EDGE":
                self._add_edge(patch, graph)
            elif op == "REMOVE_EDGE":
                self._remove_edge(patch, graph)
            elif op == "REWIRE":
                self._rewire(patch, graph)
            elif op == "SET_NAME":
                # Workflow naming is owned by the session layer.
                return
            else:
                raise PatchError(f"Unknown patch operation: {patch.get('op')!r}")
        except PatchError as exc:
            errors.append(str(exc))

    def _apply_bulk(
        self,
        patch: Mapping[str, Any],
        graph: _WorkingGraph,
        errors: list[str],
        dropped: list[str],
    ) -> None:
        ops = patch.get("ops")
        if not isinstance(ops, list):
            errors.append("BULK operation missing ops array")
            return

        node_ops: list[Mapping[str, Any]] = []
        other_ops: list[Mapping[str, Any]] = []
        edge_ops: list[Mapping[str, Any]] = []
        for index, item in enumerate(ops):
            reason = _malformed_reason(item)
            if reason is not None:
                LOGGER.info("Dropping BULK op %s: %s", index, reason)
                dropped.append(f"Dropped operation {index}: {reason}")
                continue
            op = str(item["op"]).upper()
            if op == "ADD_NODE":
                node_ops.append(item)
            elif op == "ADD_EDGE":
                edge_ops.append(item)
            else:
                other_ops.append(item)

        for item in [*node_ops, *other_ops, *edge_ops]:
            self._apply_op(item, graph, errors, dropped)
            # Fatal structure checks run after each sub-step; advisories wait for the end.
            errors.extend(self._validator(graph.nodes, graph.edges).errors)

    def _add_node(self, patch: Mapping[str, Any], graph: _WorkingGraph) -> None:
        raw = patch.get("node")
        if not isinstance(raw, Mapping):
            raise PatchError("ADD_NODE operation missing node")

        node = Node.from_dict(raw)
        if not node.kind:
            raise PatchError("Node missing required kind")
        if not node.id:
            raise PatchError("Node missing required id")
        if graph.node(node.id) is not None:
            raise PatchError(f"Node {node.id} already exists")

        if is_placeholder_label(node.label):
            node = replace(node, label=generate_node_label(node.kind, node.config))

        explicit = Position.from_value(raw.get("position") or patch.get("position"))
        if (explicit is None or explicit == DEFAULT_POSITION) and graph.nodes:
            node = replace(node, position=next_node_position(graph.nodes))
        elif explicit is not None:
            node = replace(node, position=explicit)

        graph.nodes.append(node)

    def _update_node(self, patch: Mapping[str, Any], graph: _WorkingGraph) -> None:
        node_id = str(patch.get("id") or "")
        current = graph.node(node_id)
        if current is None:
            raise PatchError(f"Node {node_id} not found")

        data = patch.get("data") if isinstance(patch.get("data"), Mapping) else {}
        config = dict(current.config)
        for source in (data.get("config"), patch.get("config")):
            if isinstance(source, Mapping):
                config.update(source)

        kind = str(data.get("kind") or patch.get("kind") or current.kind)
        label = data.get("label", patch.get("label"))
        position = Position.from_value(data.get("position") or patch.get("position"))

        updated = replace(
            current,
            kind=kind,
            config=config,
            position=position or current.position,
        )
        if isinstance(label, str) and not is_placeholder_label(label):
            updated = replace(updated, label=label)
        elif config != current.config or kind != current.kind or is_placeholder_label(current.label):
            updated = replace(updated, label=generate_node_label(kind, config))

        graph.nodes = [updated if node.id == node_id else node for node in graph.nodes]

    def _remove_node(self, patch: Mapping[str, Any], graph: _WorkingGraph) -> None:
        node_id = str(patch.get("id") or "")
        if graph.node(node_id) is None:
            raise PatchError(f"Node {node_id} not found")

        incoming = [edge for edge in graph.edges if edge.target == node_id]
        outgoing = [edge for edge in graph.edges if edge.source == node_id]
        graph.nodes = [node for node in graph.nodes if node.id != node_id]
        graph.edges = [
            edge for edge in graph.edges if edge.source != node_id and edge.target != node_id
        ]

        for before in incoming:
            for after in outgoing:
                source, target = before.source, after.target
                if source == target or source == node_id or target == node_id:
                    continue
                if graph.has_edge(source, target):
                    continue
                graph.edges.append(Edge(id=new_edge_id(source, target), source=source, target=target))
                LOGGER.debug("Stitched %s -> %s across removed node %s", source, target, node_id)

    def _add_edge(self, patch: Mapping[str, Any], graph: _WorkingGraph) -> None:
        raw = patch.get("edge") if isinstance(patch.get("edge"), Mapping) else {}
        source = self._resolve_endpoint(raw.get("source") or patch.get("from"), graph)
        target = self._resolve_endpoint(raw.get("target") or patch.get("to"), graph)
        if not source or not target:
            raise PatchError("ADD_EDGE requires a source and a target")
        if graph.node(source) is None:
            raise PatchError(f"Source node {source} not found")
        if graph.node(target) is None:
            raise PatchError(f"Target node {target} not found")
        if graph.has_edge(source, target):
            raise PatchError(f"Edge {source} -> {target} already exists")

        edge_id = str(raw.get("id") or "").strip()
        if not edge_id or any(edge.id == edge_id for edge in graph.edges):
            edge_id = new_edge_id(source, target)
        graph.edges.append(Edge(id=edge_id, source=source, target=target))

    def _remove_edge(self, patch: Mapping[str, Any], graph: _WorkingGraph) -> None:
        edge_id = str(patch.get("id") or patch.get("edgeId") or "")
        if not any(edge.id == edge_id for edge in graph.edges):
            raise PatchError(f"Edge {edge_id} not found")
        graph.edges = [edge for edge in graph.edges if edge.id != edge_id]

    def _rewire(self, patch: Mapping[str, Any], graph: _WorkingGraph) -> None:
        source = self._resolve_endpoint(patch.get("from"), graph)
        target = self._resolve_endpoint(patch.get("to"), graph)
        if not source or not target:
            raise PatchError("REWIRE requires 'from' and 'to'")
        if graph.node(source) is None:
            raise PatchError(f"Source node {source} not found")
        if graph.node(target) is None:
            raise PatchError(f"Target node {target} not found")

        edge_id = patch.get("edgeId")
        if edge_id:
            match = next((edge for edge in graph.edges if edge.id == edge_id), None)
            if match is None:
                raise PatchError(f"Edge {edge_id} not found")
            if match.source != source:
                raise PatchError(f"Edge {edge_id} does not start at node {source}")
            graph.edges = [edge for edge in graph.edges if edge.id != edge_id]
        else:
            graph.edges = [edge for edge in graph.edges if edge.source != source]

        if not graph.has_edge(source, target):
            graph.edges.append(Edge(id=new_edge_id(source, target), source=source, target=target))

    def _resolve_endpoint(self, value: object, graph: _WorkingGraph) -> str:
        endpoint = str(value or "").strip()
        if endpoint and graph.node(endpoint) is None and looks_like_kind(endpoint):
            match = graph.first_of_kind(endpoint)
            if match is not None:
                return match.id
        return endpoint


def _malformed_reason(item: object) -> str | None:
    if not isinstance(item, Mapping) or not item.get("op"):
        return "missing op"
    op = str(item["op"]).upper()
    if op not in PATCH_OPS:
        return None
    if op in {"UPDATE_NODE", "REMOVE_NODE", "REMOVE_EDGE"} and not (item.get("id") or item.get("edgeId")):
        return f"{op} without id"
    if op == "ADD_NODE" and not isinstance(item.get("node"), Mapping):
        return "ADD_NODE without node"
    if op == "ADD_EDGE":
        edge = item.get("edge") if isinstance(item.get("edge"), Mapping) else {}
        if not (edge.get("source") or item.get("from")) or not (edge.get("target") or item.get("to")):
            return "ADD_EDGE without source/target"
    if op == "REWIRE" and not (item.get("from") and item.get("to")):
        return "REWIRE without from/to"
    return None


_DEFAULT_ENGINE = GraphPatchEngine()


def apply_patch(
    patch: Mapping[str, Any],
    nodes: Sequence[Node],
    edges: Sequence[Edge],
) -> PatchResult:
    return _DEFAULT_ENGINE.apply(patch, nodes, edges)

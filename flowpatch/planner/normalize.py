from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any

from flowpatch.graph.labeler import generate_node_label, is_placeholder_label
from flowpatch.graph.models import Node, looks_like_kind, new_node_id
from flowpatch.graph.patch_engine import PATCH_OPS
from flowpatch.planner.matcher import find_node_by_reference


LOGGER = logging.getLogger(__name__)

DEFAULT_NODE_KIND = "action.http.request"
HTTP_PLATFORM_HINTS = (
    (("facebook", "fb"), "Facebook"),
    (("instagram",), "Instagram"),
    (("twitter",), "Twitter"),
    (("linkedin",), "LinkedIn"),
)


@dataclass(slots=True)
class NormalizationResult:
    ops: list[dict[str, Any]] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)
    repairs: list[str] = field(default_factory=list)

    def to_patch(self) -> dict[str, Any]:
        if len(self.ops) == 1:
            return self.ops[0]
        return {"op": "BULK", "ops": list(self.ops)}


def normalize_ops(
    raw_ops: Sequence[object],
    existing_nodes: Sequence[Node],
    intent: str = "",
) -> NormalizationResult:
    """Repair planner output so it can be trusted by the patch engine.

    Flattened node payloads are restructured, kind-like ids are replaced,
    placeholder labels are regenerated, kind-valued edge endpoints are resolved
    to concrete ids, and references to unknown nodes are fuzzy matched or
    dropped.
    """
    result = NormalizationResult()
    flat = _flatten(raw_ops, result)

    batch_kinds: dict[str, list[str]] = {}
    staged: list[dict[str, Any]] = []
    for op in flat:
        name = op["op"]
        if name == "ADD_NODE":
            normalized = _normalize_add_node(op, intent, result)
            if normalized is None:
                continue
            node = normalized["node"]
            batch_kinds.setdefault(node["kind"], []).append(node["id"])
            staged.append(normalized)
        elif name == "ADD_EDGE":
            normalized = _normalize_add_edge(op, result)
            if normalized is not None:
                staged.append(normalized)
        else:
            staged.append(dict(op))

    existing_ids = {node.id for node in existing_nodes}
    known_ids = existing_ids | {node_id for ids in batch_kinds.values() for node_id in ids}

    for op in staged:
        name = op["op"]
        if name == "ADD_EDGE":
            edge = op["edge"]
            source = _resolve_endpoint(edge["source"], known_ids, batch_kinds, existing_nodes, result)
            target = _resolve_endpoint(edge["target"], known_ids, batch_kinds, existing_nodes, result)
            if source is None or target is None:
                result.dropped.append(f"ADD_EDGE {edge['source']} -> {edge['target']}: unresolved endpoint")
                continue
            op["edge"] = {**edge, "source": source, "target": target}
        elif name == "REWIRE":
            source = _resolve_endpoint(op.get("from"), known_ids, batch_kinds, existing_nodes, result)
            target = _resolve_endpoint(op.get("to"), known_ids, batch_kinds, existing_nodes, result)
            if source is None or target is None:
                result.dropped.append(f"REWIRE {op.get('from')} -> {op.get('to')}: unresolved endpoint")
                continue
            op["from"], op["to"] = source, target
        elif name in {"REMOVE_NODE", "UPDATE_NODE"}:
            reference = str(op.get("id") or "").strip()
            if reference not in known_ids:
                match = find_node_by_reference(reference, existing_nodes)
                if match is None:
                    LOGGER.warning("Dropping %s: could not match %r to any node", name, reference)
                    result.dropped.append(f"{name} {reference!r}: no matching node")
                    continue
                result.repairs.append(f"{name} {reference!r} matched to {match.id}")
                op["id"] = match.id
        result.ops.append(op)

    for message in result.repairs:
        LOGGER.debug("Normalized planner output: %s", message)
    return result


def _flatten(raw_ops: Sequence[object], result: NormalizationResult) -> list[dict[str, Any]]:
    flat: list[dict[str, Any]] = []
    for index, raw in enumerate(raw_ops):
        if not isinstance(raw, Mapping) or not raw.get("op"):
            result.dropped.append(f"op {index}: missing op")
            continue
        name = str(raw["op"]).upper()
        if name not in PATCH_OPS:
            result.dropped.append(f"op {index}: unknown op {raw['op']!r}")
            continue
        if name == "BULK":
            nested = raw.get("ops")
            if isinstance(nested, list):
                flat.extend(_flatten(nested, result))
            continue
        op = deepcopy(dict(raw))
        op["op"] = name
        flat.append(op)
    return flat


def _normalize_add_node(
    op: dict[str, Any],
    intent: str,
    result: NormalizationResult,
) -> dict[str, Any] | None:
    raw = op.get("node")
    if not isinstance(raw, Mapping):
        if not any(op.get(key) for key in ("id", "kind", "label", "data", "config")):
            result.dropped.append("ADD_NODE without node")
            return None
        result.repairs.append("ADD_NODE restructured from top-level fields")
        raw = {key: op[key] for key in ("id", "kind", "label", "data", "config", "position") if key in op}

    data = raw.get("data") if isinstance(raw.get("data"), Mapping) else {}
    raw_id = str(raw.get("id") or "").strip()
    kind = str(raw.get("kind") or data.get("kind") or "").strip()
    if not kind and looks_like_kind(raw_id):
        kind = raw_id
    if not kind:
        kind = DEFAULT_NODE_KIND
        result.repairs.append(f"ADD_NODE without kind defaulted to {kind}")

    node_id = raw_id
    if not node_id or node_id == kind or looks_like_kind(node_id):
        node_id = new_node_id()
        if raw_id:
            result.repairs.append(f"replaced kind-like id {raw_id!r} with {node_id}")

    config = raw.get("config")
    if not isinstance(config, Mapping):
        config = data.get("config")
    config = dict(config) if isinstance(config, Mapping) else {}

    label = raw.get("label")
    if label is None:
        label = data.get("label")
    relabel = is_placeholder_label(label)

    if kind == "action.http.request" and not (config.get("platform") or config.get("service")):
        platform = _platform_from_intent(intent)
        if platform:
            config["platform"] = platform
            relabel = True

    node: dict[str, Any] = {
        "id": node_id,
        "kind": kind,
        "label": generate_node_label(kind, config) if relabel else str(label),
        "config": config,
    }
    position = raw.get("position") or op.get("position")
    if position is not None:
        node["position"] = position
    return {"op": "ADD_NODE", "node": node}


def _normalize_add_edge(op: dict[str, Any], result: NormalizationResult) -> dict[str, Any] | None:
    edge = op.get("edge") if isinstance(op.get("edge"), Mapping) else {}
    source = str(edge.get("source") or op.get("from") or "").strip()
    target = str(edge.get("target") or op.get("to") or "").strip()
    if not source or not target:
        result.dropped.append("ADD_EDGE without source/target")
        return None
    normalized: dict[str, Any] = {"source": source, "target": target}
    if edge.get("id"):
        normalized["id"] = str(edge["id"])
    return {"op": "ADD_EDGE", "edge": normalized}


def _resolve_endpoint(
    value: object,
    known_ids: set[str],
    batch_kinds: dict[str, list[str]],
    existing_nodes: Sequence[Node],
    result: NormalizationResult,
) -> str | None:
    endpoint = str(value or "").strip()
    if not endpoint:
        return None
    if endpoint in known_ids:
        return endpoint
    if endpoint in batch_kinds:
        resolved = batch_kinds[endpoint][0]
        result.repairs.append(f"endpoint {endpoint!r} resolved to new node {resolved}")
        return resolved
    if looks_like_kind(endpoint):
        for node in existing_nodes:
            if node.kind == endpoint:
                result.repairs.append(f"endpoint {endpoint!r} resolved to existing node {node.id}")
                return node.id
        return None
    # Unknown non-kind ids are left for the patch engine to reject.
    return endpoint


def _platform_from_intent(intent: str) -> str | None:
    lower = intent.lower()
    for hints, platform in HTTP_PLATFORM_HINTS:
        if any(hint in lower for hint in hints):
            return platform
    return None

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from flowpatch.graph.models import Edge, Node


class GraphImportError(ValueError):
    """Raised when a serialized graph does not have the interchange shape."""


def export_graph(
    nodes: Sequence[Node],
    edges: Sequence[Edge],
    name: str | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "nodes": [node.to_dict() for node in nodes],
        "edges": [edge.to_dict() for edge in edges],
    }
    if name:
        payload["name"] = name
    return payload


def import_graph(payload: object) -> tuple[list[Node], list[Edge]]:
    if not isinstance(payload, Mapping):
        raise GraphImportError("Graph payload must be an object with 'nodes' and 'edges'.")

    raw_nodes = payload.get("nodes")
    raw_edges = payload.get("edges")
    if not isinstance(raw_nodes, list) or not isinstance(raw_edges, list):
        raise GraphImportError("Graph payload requires 'nodes' and 'edges' arrays.")

    nodes: list[Node] = []
    seen: set[str] = set()
    for index, item in enumerate(raw_nodes):
        if not isinstance(item, Mapping):
            raise GraphImportError(f"nodes[{index}] must be an object.")
        node = Node.from_dict(item)
        if not node.id or not node.kind:
            raise GraphImportError(f"nodes[{index}] requires 'id' and 'kind'.")
        if node.id in seen:
            raise GraphImportError(f"Duplicate node id '{node.id}'.")
        seen.add(node.id)
        nodes.append(node)

    edges: list[Edge] = []
    for index, item in enumerate(raw_edges):
        if not isinstance(item, Mapping):
            raise GraphImportError(f"edges[{index}] must be an object.")
        edge = Edge.from_dict(item)
        if not edge.source or not edge.target:
            raise GraphImportError(f"edges[{index}] requires 'source' and 'target'.")
        edges.append(edge)

    return nodes, edges


def load_graph_file(path: Path) -> tuple[list[Node], list[Edge], str | None]:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise GraphImportError(f"Invalid JSON in {path}: {exc}") from exc
    nodes, edges = import_graph(payload)
    name = payload.get("name") if isinstance(payload.get("name"), str) else None
    return nodes, edges, name


def save_graph_file(
    path: Path,
    nodes: Sequence[Node],
    edges: Sequence[Edge],
    name: str | None = None,
) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(export_graph(nodes, edges, name), indent=2, ensure_ascii=False),
        encoding="utf-8",
    )

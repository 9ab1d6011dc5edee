from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from flowpatch.graph.diagnostics import GraphIssue
from flowpatch.graph.models import Edge, Node
from flowpatch.graph.topology import build_adjacency, has_cycle


@dataclass(slots=True)
class ValidationResult:
    ok: bool
    diagnostics: list[GraphIssue]

    @property
    def errors(self) -> list[str]:
        return [item.message for item in self.diagnostics if item.severity == "error"]

    @property
    def warnings(self) -> list[str]:
        return [item.message for item in self.diagnostics if item.severity == "warning"]

    @property
    def issues(self) -> list[str]:
        return self.errors + self.warnings


def validate_graph(nodes: Sequence[Node], edges: Sequence[Edge]) -> ValidationResult:
    """Check structural and advisory invariants of a graph snapshot.

    Only dangling edges are fatal. Trigger count, missing actions, orphans,
    duplicate edges and cycles are reported as warnings so that a graph that is
    still being built is never blocked.
    """
    diagnostics: list[GraphIssue] = []
    node_ids = {node.id for node in nodes}

    for edge in edges:
        if edge.source not in node_ids:
            diagnostics.append(
                GraphIssue(
                    code="DANGLING_EDGE_SOURCE",
                    severity="error",
                    message=f"Edge {edge.id} references non-existent source node {edge.source}",
                    edge_id=edge.id,
                )
            )
        if edge.target not in node_ids:
            diagnostics.append(
                GraphIssue(
                    code="DANGLING_EDGE_TARGET",
                    severity="error",
                    message=f"Edge {edge.id} references non-existent target node {edge.target}",
                    edge_id=edge.id,
                )
            )

    triggers = [node for node in nodes if node.role == "TRIGGER"]
    if nodes and not triggers:
        diagnostics.append(
            GraphIssue(
                code="NO_TRIGGER",
                severity="warning",
                message="No trigger node found (workflow can still function)",
            )
        )
    elif len(triggers) > 1:
        diagnostics.append(
            GraphIssue(
                code="MULTIPLE_TRIGGERS",
                severity="warning",
                message=f"Multiple triggers found: {len(triggers)}",
            )
        )

    if len(nodes) > 1 and not any(node.role == "ACTION" for node in nodes):
        diagnostics.append(
            GraphIssue(
                code="NO_ACTIONS",
                severity="warning",
                message="No action nodes found (workflow may not perform any actions)",
            )
        )

    if len(nodes) > 1:
        connected: set[str] = set()
        for edge in edges:
            connected.add(edge.source)
            connected.add(edge.target)
        orphans = [node.id for node in nodes if node.role != "TRIGGER" and node.id not in connected]
        if orphans:
            diagnostics.append(
                GraphIssue(
                    code="ORPHANED_NODES",
                    severity="warning",
                    message=f"Orphaned nodes found: {', '.join(orphans)}",
                )
            )

    diagnostics.extend(_duplicate_edge_warnings(edges))

    if has_cycle(build_adjacency(nodes, edges)):
        diagnostics.append(
            GraphIssue(code="CYCLE_DETECTED", severity="warning", message="Graph contains cycles")
        )

    ok = not any(item.severity == "error" for item in diagnostics)
    return ValidationResult(ok=ok, diagnostics=diagnostics)


def _duplicate_edge_warnings(edges: Sequence[Edge]) -> list[GraphIssue]:
    warnings: list[GraphIssue] = []
    seen_ids: set[str] = set()
    seen_pairs: set[tuple[str, str]] = set()
    for edge in edges:
        if edge.id in seen_ids:
            warnings.append(
                GraphIssue(
                    code="DUPLICATE_EDGE_ID",
                    severity="warning",
                    message=f"Duplicate edge id {edge.id}",
                    edge_id=edge.id,
                )
            )
        pair = (edge.source, edge.target)
        if pair in seen_pairs:
            warnings.append(
                GraphIssue(
                    code="DUPLICATE_EDGE",
                    severity="warning",
                    message=f"Duplicate edge {edge.source} -> {edge.target}",
                    edge_id=edge.id,
                )
            )
        seen_ids.add(edge.id)
        seen_pairs.add(pair)
    return warnings

from flowpatch.graph.catalog import NODE_KINDS, NodeKindSpec, known_kinds
from flowpatch.graph.diagnostics import GraphIssue, render_issues
from flowpatch.graph.labeler import default_label, generate_node_label, next_node_position
from flowpatch.graph.models import Edge, Node, Position, Role, role_for_kind
from flowpatch.graph.patch_engine import GraphPatchEngine, PatchResult, apply_patch
from flowpatch.graph.serialization import (
    GraphImportError,
    export_graph,
    import_graph,
    load_graph_file,
    save_graph_file,
)
from flowpatch.graph.summary import render_node_table, summarize_graph
from flowpatch.graph.validator import ValidationResult, validate_graph

__all__ = [
    "Edge",
    "GraphImportError",
    "GraphIssue",
    "GraphPatchEngine",
    "NODE_KINDS",
    "Node",
    "NodeKindSpec",
    "PatchResult",
    "Position",
    "Role",
    "ValidationResult",
    "apply_patch",
    "default_label",
    "export_graph",
    "generate_node_label",
    "import_graph",
    "known_kinds",
    "load_graph_file",
    "next_node_position",
    "render_issues",
    "render_node_table",
    "role_for_kind",
    "save_graph_file",
    "summarize_graph",
    "validate_graph",
]

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from flowpatch.graph.models import Edge, Node
from flowpatch.graph.patch_engine import GraphPatchEngine, PatchResult
from flowpatch.graph.serialization import export_graph, import_graph
from flowpatch.graph.summary import summarize_graph, workflow_name
from flowpatch.graph.validator import ValidationResult, validate_graph


LOGGER = logging.getLogger(__name__)
DEFAULT_UNDO_LIMIT = 50


@dataclass(slots=True, frozen=True)
class GraphSnapshot:
    name: str | None
    nodes: tuple[Node, ...]
    edges: tuple[Edge, ...]


class WorkflowSession:
    """Current workflow plus undo/redo history.

    Snapshots are immutable tuples, so a caller holding an earlier snapshot is
    unaffected by later patches.
    """

    def __init__(
        self,
        engine: GraphPatchEngine | None = None,
        undo_limit: int = DEFAULT_UNDO_LIMIT,
    ) -> None:
        self._engine = engine or GraphPatchEngine()
        self._current = GraphSnapshot(name=None, nodes=(), edges=())
        self._undo: deque[GraphSnapshot] = deque(maxlen=max(1, undo_limit))
        self._redo: list[GraphSnapshot] = []

    @property
    def snapshot(self) -> GraphSnapshot:
        return self._current

    @property
    def nodes(self) -> list[Node]:
        return list(self._current.nodes)

    @property
    def edges(self) -> list[Edge]:
        return list(self._current.edges)

    @property
    def name(self) -> str:
        return self._current.name or workflow_name(self._current.nodes)

    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    def summary(self) -> str:
        return summarize_graph(self._current.nodes, self._current.edges)

    def validate(self) -> ValidationResult:
        return validate_graph(self._current.nodes, self._current.edges)

    def apply(self, patch: Mapping[str, Any]) -> PatchResult:
        result = self._engine.apply(patch, self._current.nodes, self._current.edges)
        if not result.ok:
            LOGGER.info("Patch rejected: %s", "; ".join(result.errors))
            return result

        name = _name_from_patch(patch)
        new_name = name if name is not None else self._current.name
        candidate = GraphSnapshot(name=new_name, nodes=tuple(result.nodes), edges=tuple(result.edges))
        if candidate != self._current:
            self._push(candidate)
        return result

    def rename(self, name: str) -> None:
        cleaned = name.strip() or None
        if cleaned == self._current.name:
            return
        self._push(GraphSnapshot(name=cleaned, nodes=self._current.nodes, edges=self._current.edges))

    def undo(self) -> bool:
        if not self._undo:
            return False
        self._redo.append(self._current)
        self._current = self._undo.pop()
        return True

    def redo(self) -> bool:
        if not self._redo:
            return False
        self._undo.append(self._current)
        self._current = self._redo.pop()
        return True

    def reset(self) -> None:
        self._push(GraphSnapshot(name=None, nodes=(), edges=()))

    def load(self, payload: Mapping[str, Any]) -> None:
        nodes, edges = import_graph(payload)
        name = payload.get("name") if isinstance(payload.get("name"), str) else None
        self._push(GraphSnapshot(name=name, nodes=tuple(nodes), edges=tuple(edges)))

    def export(self) -> dict[str, Any]:
        return export_graph(self._current.nodes, self._current.edges, self.name)

    def _push(self, snapshot: GraphSnapshot) -> None:
        self._undo.append(self._current)
        self._redo.clear()
        self._current = snapshot


def _name_from_patch(patch: Mapping[str, Any]) -> str | None:
    op = str(patch.get("op") or "").upper()
    if op == "SET_NAME":
        name = str(patch.get("name") or "").strip()
        return name or None
    if op == "BULK" and isinstance(patch.get("ops"), list):
        found: str | None = None
        for item in patch["ops"]:
            if isinstance(item, Mapping):
                nested = _name_from_patch(item)
                if nested is not None:
                    found = nested
        return found
    return None

from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class ExecutionContext:
    """State threaded from node to node during one run (or one fan-out replica)."""

    payload: Any = field(default_factory=dict)
    variables: dict[str, Any] = field(default_factory=dict)
    node_outputs: dict[str, Any] = field(default_factory=dict)
    item_index: int | None = None

    def scopes(self) -> tuple[object, ...]:
        """Lookup order for ``{{path}}`` templates and filter expressions."""
        return (
            self.payload,
            self.variables,
            self.node_outputs,
            {"payload": self.payload, "variables": self.variables, "nodes": self.node_outputs},
        )

    def record(self, node_id: str, output: Any, next_payload: Any) -> None:
        self.node_outputs[node_id] = output
        if isinstance(output, dict):
            self.variables.update(output)
        self.payload = next_payload

    def clone(self, payload: Any, item_index: int | None = None) -> ExecutionContext:
        return ExecutionContext(
            payload=deepcopy(payload),
            variables=deepcopy(self.variables),
            node_outputs=deepcopy(self.node_outputs),
            item_index=item_index,
        )


@dataclass(slots=True)
class NodeOutcome:
    """Handler return value when the next payload differs from the node output."""

    output: Any
    payload: Any
    halt: bool = False

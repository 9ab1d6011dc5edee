from __future__ import annotations

import re
import uuid
from collections.abc import Mapping
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Literal


Role = Literal["TRIGGER", "LOGIC", "AI", "ACTION"]

ROLE_BY_PREFIX: dict[str, Role] = {
    "trigger": "TRIGGER",
    "logic": "LOGIC",
    "ai": "AI",
    "action": "ACTION",
}
KIND_LIKE_RE = re.compile(r"^(trigger|logic|ai|action)\.[A-Za-z0-9_.]+$")


def role_for_kind(kind: str) -> Role:
    prefix = str(kind or "").split(".", 1)[0].strip().lower()
    return ROLE_BY_PREFIX.get(prefix, "ACTION")


def looks_like_kind(value: object) -> bool:
    return isinstance(value, str) and bool(KIND_LIKE_RE.match(value.strip()))


def new_node_id() -> str:
    return f"node_{uuid.uuid4().hex[:12]}"


def new_edge_id(source: str, target: str) -> str:
    return f"edge_{source}_{target}_{uuid.uuid4().hex[:6]}"


@dataclass(frozen=True, slots=True)
class Position:
    x: float = 100.0
    y: float = 100.0

    @classmethod
    def from_value(cls, value: object) -> Position | None:
        if isinstance(value, Position):
            return value
        if isinstance(value, Mapping):
            try:
                return cls(x=float(value.get("x", 0)), y=float(value.get("y", 0)))
            except (TypeError, ValueError):
                return None
        if isinstance(value, (list, tuple)) and len(value) == 2:
            try:
                return cls(x=float(value[0]), y=float(value[1]))
            except (TypeError, ValueError):
                return None
        return None

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y}


DEFAULT_POSITION = Position(100.0, 100.0)


@dataclass(frozen=True, slots=True)
class Node:
    """A single workflow step. Role is always derived from ``kind``."""

    id: str
    kind: str
    label: str = ""
    config: dict[str, Any] = field(default_factory=dict)
    position: Position = DEFAULT_POSITION

    @property
    def role(self) -> Role:
        return role_for_kind(self.kind)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Node:
        # Canvas exports nest kind/label/config under "data".
        data = payload.get("data")
        source: Mapping[str, Any] = data if isinstance(data, Mapping) else {}

        kind = payload.get("kind") or source.get("kind") or ""
        label = payload.get("label")
        if label is None:
            label = source.get("label", "")
        config = payload.get("config")
        if not isinstance(config, Mapping):
            config = source.get("config")
        position = Position.from_value(payload.get("position")) or DEFAULT_POSITION

        return cls(
            id=str(payload.get("id") or "").strip(),
            kind=str(kind).strip(),
            label=str(label or ""),
            config=deepcopy(dict(config)) if isinstance(config, Mapping) else {},
            position=position,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "role": self.role,
            "label": self.label,
            "config": deepcopy(self.config),
            "position": self.position.to_dict(),
        }


@dataclass(frozen=True, slots=True)
class Edge:
    id: str
    source: str
    target: str

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> Edge:
        source = str(payload.get("source") or payload.get("from") or "").strip()
        target = str(payload.get("target") or payload.get("to") or "").strip()
        edge_id = str(payload.get("id") or "").strip()
        if not edge_id and source and target:
            edge_id = new_edge_id(source, target)
        return cls(id=edge_id, source=source, target=target)

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "source": self.source, "target": self.target}


def node_index(nodes: list[Node] | tuple[Node, ...]) -> dict[str, Node]:
    return {node.id: node for node in nodes}

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from typing import Any

from flowpatch.graph.labeler import generate_node_label
from flowpatch.graph.models import Node, new_edge_id, new_node_id
from flowpatch.graph.summary import EMPTY_SUMMARY
from flowpatch.planner.matcher import find_node_by_reference


LOGGER = logging.getLogger(__name__)

CONFIRMATION_RE = re.compile(
    r"^(yes|yeah|yep|ok|okay|sure|alright|correct|right|that's right|exactly)[.!]*$",
    re.IGNORECASE,
)
REMOVE_RE = re.compile(
    r"(?:remove|delete)\s+(?:the\s+)?([a-z\s]+?)(?:\s+node|\s+step|$)",
    re.IGNORECASE,
)
CHANGE_RE = re.compile(
    r"(?:change|update)\s+(?:the\s+)?([a-z\s]+?)\s+(?:to|with)\s+[\"']?([^\"']+)[\"']?",
    re.IGNORECASE,
)

SCHEDULE_WORDS = ("schedule", "daily", "weekly", "every", "hour")
WEBHOOK_WORDS = ("webhook", "form", "submit")

# (kind, keywords, extra requirement, default config)
ACTION_RULES: tuple[tuple[str, tuple[str, ...], tuple[str, ...], dict[str, Any]], ...] = (
    ("action.facebook.reply", ("reply", "respond"), ("facebook",), {}),
    ("action.facebook.dm", ("dm", "direct message"), ("facebook",), {}),
    ("action.sheets.appendRow", ("sheet", "google", "save", "log", "spreadsheet"), (), {}),
    ("action.email.send", ("email", "mail", "remind", "alert", "notify"), (), {}),
    ("action.telegram.sendMessage", ("telegram", "sms"), (), {}),
    ("action.http.request", ("http", "api", "fetch", "collect", "get data"), (), {"method": "GET"}),
)

X_START = 100.0
X_STEP = 250.0
Y_ROW = 100.0


class RuleBasedPlanner:
    """Deterministic keyword planner used when no LLM planner is available."""

    def plan(
        self,
        intent: str,
        graph_summary: str,
        existing_nodes: Sequence[Node] = (),
    ) -> dict[str, Any]:
        text = intent.strip()
        lower = text.lower()

        if CONFIRMATION_RE.match(lower):
            return {"op": "BULK", "ops": []}

        is_empty = not existing_nodes and graph_summary.strip().startswith(EMPTY_SUMMARY)
        if is_empty:
            created = self._new_workflow(lower)
            if created:
                return _as_patch(created)

        ops: list[dict[str, Any]] = []
        if not existing_nodes and any(word in lower for word in ("daily", "schedule", "every")):
            schedule = "0 0 * * *" if "daily" in lower else "0 * * * *"
            ops.append(_add_node("trigger.scheduler.cron", {"schedule": schedule}, 0))

        if re.search(r"\badd\b", lower) and existing_nodes:
            ops.extend(self._append_action(lower, existing_nodes))

        if "remove" in lower or "delete" in lower:
            ops.extend(self._remove(text, existing_nodes))

        if "change" in lower or "update" in lower:
            ops.extend(self._update(text, existing_nodes))

        if not ops:
            LOGGER.info("Rule planner produced no operations for intent: %s", text)
        return _as_patch(ops)

    def _new_workflow(self, lower: str) -> list[dict[str, Any]]:
        chain: list[dict[str, Any]] = []
        trigger = _pick_trigger(lower)
        if trigger is not None:
            kind, config = trigger
            chain.append(_add_node(kind, config, len(chain)))

        for kind, keywords, required, config in ACTION_RULES:
            if _matches(lower, keywords, required):
                chain.append(_add_node(kind, dict(config), len(chain)))

        ops = list(chain)
        for before, after in zip(chain, chain[1:]):
            ops.append(_add_edge(before["node"]["id"], after["node"]["id"]))
        return ops

    def _append_action(self, lower: str, existing_nodes: Sequence[Node]) -> list[dict[str, Any]]:
        for kind, keywords, required, config in ACTION_RULES:
            if _matches(lower, keywords, required):
                op = _add_node(kind, dict(config), len(existing_nodes))
                last = existing_nodes[-1]
                return [op, _add_edge(last.id, op["node"]["id"])]
        return []

    def _remove(self, text: str, existing_nodes: Sequence[Node]) -> list[dict[str, Any]]:
        match = REMOVE_RE.search(text)
        name = match.group(1).strip() if match else ""
        if not name:
            words = text.lower().split()
            index = next((i for i, word in enumerate(words) if word in {"remove", "delete"}), -1)
            if 0 <= index < len(words) - 1:
                name = " ".join(w for w in words[index + 1 :] if w not in {"node", "step", "the"})

        if not name:
            if len(existing_nodes) > 1:
                return [{"op": "REMOVE_NODE", "id": existing_nodes[-1].id}]
            return []

        node = find_node_by_reference(name, existing_nodes)
        if node is None:
            LOGGER.warning("Rule planner could not match %r to any node", name)
            return []
        return [{"op": "REMOVE_NODE", "id": node.id}]

    def _update(self, text: str, existing_nodes: Sequence[Node]) -> list[dict[str, Any]]:
        match = CHANGE_RE.search(text)
        if not match:
            return []
        name = match.group(1).strip().lower()
        value = match.group(2).strip()

        node = next((item for item in existing_nodes if name in item.label.lower()), None)
        if node is not None:
            return [{"op": "UPDATE_NODE", "id": node.id, "data": {"config": {"value": value}}}]

        if "facebook" in name and "comment" in name:
            trigger = next(
                (item for item in existing_nodes if item.kind == "trigger.facebook.comment"),
                None,
            )
            if trigger is not None:
                return [
                    {
                        "op": "UPDATE_NODE",
                        "id": trigger.id,
                        "data": {"config": {"match": {"contains": value}}},
                    }
                ]
        return []


def _pick_trigger(lower: str) -> tuple[str, dict[str, Any]] | None:
    if "facebook" in lower and ("comment" in lower or "reply" in lower):
        return "trigger.facebook.comment", {}
    if any(word in lower for word in SCHEDULE_WORDS):
        return "trigger.scheduler.cron", {"schedule": _schedule_for(lower)}
    if any(word in lower for word in WEBHOOK_WORDS):
        return "trigger.webhook.inbound", {}
    return None


def _schedule_for(lower: str) -> str:
    if "daily" in lower or "day" in lower:
        return "0 0 * * *"
    if "hour" in lower:
        return "0 * * * *"
    if "weekly" in lower or "monday" in lower:
        return "0 0 * * 0"
    return "0 0 * * *"


def _matches(lower: str, keywords: tuple[str, ...], required: tuple[str, ...]) -> bool:
    if required and not all(word in lower for word in required):
        return False
    return any(re.search(rf"\b{re.escape(keyword)}", lower) for keyword in keywords)


def _add_node(kind: str, config: dict[str, Any], slot: int) -> dict[str, Any]:
    return {
        "op": "ADD_NODE",
        "node": {
            "id": new_node_id(),
            "kind": kind,
            "label": generate_node_label(kind, config),
            "config": config,
            "position": {"x": X_START + X_STEP * slot, "y": Y_ROW},
        },
    }


def _add_edge(source: str, target: str) -> dict[str, Any]:
    return {
        "op": "ADD_EDGE",
        "edge": {"id": new_edge_id(source, target), "source": source, "target": target},
    }


def _as_patch(ops: list[dict[str, Any]]) -> dict[str, Any]:
    if len(ops) == 1:
        return ops[0]
    return {"op": "BULK", "ops": ops}

from __future__ import annotations

from collections.abc import Sequence
from urllib.parse import urlparse

from flowpatch.graph.catalog import integration_for_kind
from flowpatch.graph.labeler import title_from_kind, truncate
from flowpatch.graph.models import Edge, Node
from flowpatch.graph.topology import build_adjacency, has_cycle, ordered_steps


EMPTY_SUMMARY = "Empty workflow (no nodes)"


def summarize_graph(nodes: Sequence[Node], edges: Sequence[Edge]) -> str:
    """Deterministic text rendering of a graph shared by both planners."""
    if not nodes:
        return EMPTY_SUMMARY

    trigger = next((node for node in nodes if node.role == "TRIGGER"), None)
    by_id = {node.id: node for node in nodes}
    steps = ordered_steps(nodes, edges, trigger.id if trigger else None)

    step_lines = [
        _format_step(by_id[node_id], index)
        for index, node_id in enumerate(steps, start=1)
        if node_id in by_id
    ]
    integrations = _integrations(nodes)
    issues = _issues(nodes, edges)

    lines = [
        f"Name: {workflow_name(nodes)}",
        f"Trigger: {_format_trigger(trigger) if trigger else 'No trigger'}",
        "Steps:",
    ]
    lines.extend(f"  {line}" for line in step_lines or ["No steps"])
    lines.append(f"Integrations: {', '.join(integrations) or 'None'}")
    if issues:
        lines.append(f"Issues: {', '.join(issues)}")
    return "\n".join(lines)


def workflow_name(nodes: Sequence[Node]) -> str:
    trigger = next((node for node in nodes if node.role == "TRIGGER"), None)
    actions = [node for node in nodes if node.role == "ACTION"][:2]
    if trigger and actions:
        action_names = " + ".join(title_from_kind(action.kind) for action in actions)
        return f"{title_from_kind(trigger.kind)} -> {action_names}"
    if trigger:
        return f"{title_from_kind(trigger.kind)} Workflow"
    return "New Workflow"


def render_node_table(nodes: Sequence[Node]) -> str:
    return "\n".join(
        f'  {index}. "{node.label or "Untitled"}" ({node.kind}, {node.role}): id="{node.id}"'
        for index, node in enumerate(nodes, start=1)
    )


def _format_trigger(node: Node) -> str:
    description = node.kind.removeprefix("trigger.")
    config = node.config
    if node.kind == "trigger.facebook.comment":
        match = config.get("match")
        contains = match.get("contains") if isinstance(match, dict) else match
        if contains:
            description += f'(match="{contains}")'
        if config.get("pageId"):
            description += f'(pageId="{config["pageId"]}")'
    elif node.kind == "trigger.scheduler.cron":
        schedule = config.get("schedule") or config.get("cron")
        if schedule:
            description += f'(schedule="{schedule}")'
    return description


def _format_step(node: Node, index: int) -> str:
    config = node.config
    text = f"{index}) {node.label or node.kind}"
    if node.kind == "action.facebook.reply" and config.get("replyTemplate"):
        text += f'(template="{truncate(str(config["replyTemplate"]), 20)}")'
    elif node.kind in {"action.facebook.dm", "action.telegram.sendMessage"} and config.get("message"):
        text += f'(message="{truncate(str(config["message"]), 20)}")'
    elif node.kind.startswith("action.sheets.") and config.get("range"):
        text += f'(range="{config["range"]}")'
    elif node.kind == "action.email.send" and config.get("subjectTpl"):
        text += f'(subject="{truncate(str(config["subjectTpl"]), 20)}")'
    elif node.kind == "action.http.request" and config.get("url"):
        host = urlparse(str(config["url"])).hostname
        if host:
            text += f'(url="{host}")'
    elif node.kind == "logic.filter" and config.get("expression"):
        text += f'(expression="{truncate(str(config["expression"]), 20)}")'
    return text


def _integrations(nodes: Sequence[Node]) -> list[str]:
    found: list[str] = []
    for node in nodes:
        integration = integration_for_kind(node.kind)
        if integration and integration not in found:
            found.append(integration)
    return found


def _issues(nodes: Sequence[Node], edges: Sequence[Edge]) -> list[str]:
    issues: list[str] = []
    triggers = [node for node in nodes if node.role == "TRIGGER"]
    if len(triggers) > 1:
        issues.append("Multiple triggers")
    elif not triggers:
        issues.append("No trigger node found")

    if not any(node.role == "ACTION" for node in nodes):
        issues.append("No action nodes found")

    node_ids = {node.id for node in nodes}
    dangling = [edge for edge in edges if edge.source not in node_ids or edge.target not in node_ids]
    if dangling:
        issues.append(f"{len(dangling)} dangling edge(s)")

    if has_cycle(build_adjacency(nodes, edges)):
        issues.append("Graph contains cycles")
    return issues

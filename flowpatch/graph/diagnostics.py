from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


IssueSeverity = Literal["error", "warning", "info"]


@dataclass(frozen=True, slots=True)
class GraphIssue:
    code: str
    severity: IssueSeverity
    message: str
    node_id: str | None = None
    edge_id: str | None = None

    @property
    def fatal(self) -> bool:
        return self.severity == "error"


def render_issue(issue: GraphIssue) -> str:
    location_bits: list[str] = []
    if issue.node_id:
        location_bits.append(f"node={issue.node_id}")
    if issue.edge_id:
        location_bits.append(f"edge={issue.edge_id}")

    location = f" ({', '.join(location_bits)})" if location_bits else ""
    return f"[{issue.severity.upper()}] {issue.code}: {issue.message}{location}"


def render_issues(issues: list[GraphIssue]) -> str:
    if not issues:
        return ""

    order = {"error": 0, "warning": 1, "info": 2}
    sorted_items = sorted(issues, key=lambda item: (order.get(item.severity, 9), item.code))
    return "\n".join(f"- {render_issue(item)}" for item in sorted_items)


def dedupe_messages(messages: list[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for message in messages:
        if message in seen:
            continue
        seen.add(message)
        result.append(message)
    return result

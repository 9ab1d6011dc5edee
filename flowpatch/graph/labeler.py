from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlparse

from flowpatch.graph.catalog import kind_spec
from flowpatch.graph.models import Node, Position


MAX_LABEL_LENGTH = 24
SEPARATOR = " - "
PLACEHOLDER_LABELS = {"", "untitled", "untitled node", "new node", "node"}
CAMEL_SPLIT_RE = re.compile(r"(?=[A-Z])")

# Platform detection for HTTP nodes: (host fragments, platform, POST task, GET task).
HTTP_PLATFORMS: tuple[tuple[tuple[str, ...], str, str, str], ...] = (
    (("facebook", "fb"), "FB", "Post", "Fetch"),
    (("instagram",), "Instagram", "Post", "Fetch"),
    (("twitter", "x.com"), "Twitter", "Tweet", "Fetch"),
    (("linkedin",), "LinkedIn", "Post", "Fetch"),
    (("sheets", "spreadsheets.google.com"), "Sheets", "Update", "Read"),
    (("slack",), "Slack", "Send", "Fetch"),
)
HOST_IN_PLATFORM = ("FB", "Instagram", "Twitter", "LinkedIn")


def truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 1] + "…"


def is_placeholder_label(label: object) -> bool:
    if not isinstance(label, str):
        return True
    return label.strip().lower() in PLACEHOLDER_LABELS


def default_label(kind: str) -> str:
    spec = kind_spec(kind)
    if spec is not None:
        return spec.default_label
    return title_from_kind(kind)


def generate_node_label(kind: str, config: Mapping[str, Any] | None = None) -> str:
    """Build a short human label from a node kind and its config.

    The result never exceeds ``MAX_LABEL_LENGTH`` characters and depends only on
    the inputs, so regenerating it is idempotent.
    """
    cfg: Mapping[str, Any] = config or {}
    if kind == "action.http.request":
        base, suffix = _http_label(cfg)
    else:
        base, suffix = _label_parts(kind, cfg)
    label = base + (f"{SEPARATOR}{suffix}" if suffix else "")
    return truncate(label, MAX_LABEL_LENGTH)


def next_node_position(nodes: list[Node] | tuple[Node, ...]) -> Position:
    """Append-only, left-to-right placement for a new node."""
    if not nodes:
        return Position(100.0, 100.0)
    rightmost = max(nodes, key=lambda node: node.position.x)
    candidate = Position(rightmost.position.x + 250.0, rightmost.position.y)
    occupied = any(
        abs(node.position.x - candidate.x) < 50 and abs(node.position.y - candidate.y) < 50
        for node in nodes
    )
    if occupied:
        return Position(candidate.x, candidate.y + 150.0)
    return candidate


def _label_parts(kind: str, cfg: Mapping[str, Any]) -> tuple[str, str]:
    if kind == "trigger.facebook.comment":
        match = cfg.get("match")
        contains = match.get("contains") if isinstance(match, Mapping) else match
        if contains:
            return "Facebook Comment", f'"{truncate(str(contains), 10)}"'
        return "Facebook Comment", "Monitor"

    if kind == "trigger.webhook.inbound":
        return "Webhook", ""

    if kind == "trigger.scheduler.cron":
        return "Scheduled Trigger", _schedule_name(cfg.get("schedule") or cfg.get("cron"))

    if kind == "logic.filter":
        expression = cfg.get("expression")
        return "Filter Data", truncate(str(expression), 10) if expression else "Condition"

    if kind == "ai.guard":
        prompt = cfg.get("prompt")
        if not prompt:
            return "AI Guard", ""
        return "AI Guard", "Classify" if "classify" in str(prompt).lower() else "Check"

    if kind == "ai.generate":
        prompt = cfg.get("prompt")
        return "AI Generate", truncate(str(prompt), 10) if prompt else "Content"

    if kind == "action.facebook.reply":
        template = cfg.get("replyTemplate")
        return "Reply to Comment", truncate(str(template), 10) if template else "Auto Reply"

    if kind in {"action.facebook.dm", "action.telegram.sendMessage"}:
        message = cfg.get("message")
        return default_label(kind), truncate(str(message), 10) if message else "Message"

    if kind in {"trigger.sheets.newRow", "trigger.sheets.update"}:
        sheet = cfg.get("sheetName")
        return default_label(kind), truncate(str(sheet), 10) if sheet else ""

    if kind == "action.email.send":
        if cfg.get("subjectTpl"):
            return "Send Email", truncate(str(cfg["subjectTpl"]), 12)
        if cfg.get("toExpr"):
            return "Send Email", "Notification"
        return "Send Email", ""

    if kind == "action.sheets.appendRow":
        sheet = _sheet_name(cfg.get("range"))
        return "Save to Sheets", sheet or "Log Data"

    if kind in {"action.sheets.readRows", "action.sheets.clearRange"}:
        return default_label(kind), _sheet_name(cfg.get("range"))

    if kind == "action.sheets.updateCell":
        cell = cfg.get("range")
        return "Update Cell", truncate(str(cell), 10) if cell else ""

    if kind.startswith("action.telegram."):
        for key in ("caption", "title", "firstName", "question"):
            if cfg.get(key):
                return default_label(kind), truncate(str(cfg[key]), 10)
        return default_label(kind), ""

    return default_label(kind), ""


def _schedule_name(schedule: object) -> str:
    if not schedule:
        return "Daily"
    text = str(schedule)
    if "0 0 * * *" in text:
        return "Daily"
    if "0 0 * * 0" in text:
        return "Weekly"
    if "0 * * * *" in text:
        return "Hourly"
    return "Custom"


def _sheet_name(value: object) -> str:
    if not value:
        return ""
    return str(value).split("!", 1)[0]


def _http_label(cfg: Mapping[str, Any]) -> tuple[str, str]:
    method = str(cfg.get("method") or "POST").upper()
    hinted = cfg.get("platform") or cfg.get("service")
    url = cfg.get("url")
    host = _hostname(url) if url else None

    if host is not None:
        platform, task = _platform_from_host(host, method)
    elif url and hinted:
        platform, task = str(hinted), method
    elif url:
        platform, task = method, "Request"
    elif hinted:
        platform, task = str(hinted), _default_task(method)
    else:
        platform, task = method, "Request"

    base = f"{platform} {task}" if platform and task else f"{method} Request"

    if not url:
        return base, "API Call"
    if any(tag in platform for tag in HOST_IN_PLATFORM):
        return base, ""
    if host is None:
        return base, "API"
    return base, truncate(host, 10)


def _platform_from_host(host: str, method: str) -> tuple[str, str]:
    for fragments, platform, post_task, get_task in HTTP_PLATFORMS:
        if any(fragment in host for fragment in fragments):
            if method == "POST":
                return platform, post_task
            if method == "GET":
                return platform, get_task
            return platform, method
    return truncate(host.split(".", 1)[0], 8), method


def _default_task(method: str) -> str:
    if method == "POST":
        return "Post"
    if method == "GET":
        return "Fetch"
    return method


def _hostname(url: object) -> str | None:
    try:
        parsed = urlparse(str(url))
    except ValueError:
        return None
    if not parsed.scheme or not parsed.hostname:
        return None
    return parsed.hostname.lower().replace("www.", "", 1)


def title_from_kind(kind: str) -> str:
    last = str(kind or "").split(".")[-1]
    parts = [part for part in CAMEL_SPLIT_RE.split(last) if part]
    return " ".join(part[:1].upper() + part[1:] for part in parts) or "Node"

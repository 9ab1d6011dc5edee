from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence

from flowpatch.graph.models import Node


LOGGER = logging.getLogger(__name__)

KIND_KEYWORDS = (
    "facebook",
    "sheets",
    "email",
    "telegram",
    "reply",
    "dm",
    "http",
    "webhook",
    "scheduler",
)
STOP_WORDS = {"the", "and", "node", "step", "from", "with", "that", "this", "please"}
WORD_RE = re.compile(r"[a-z0-9]+")

MatchStrategy = Callable[[str, Node], bool]


def extract_keywords(text: str) -> list[str]:
    words = WORD_RE.findall(text.lower())
    return [word for word in words if len(word) > 2 and word not in STOP_WORDS]


def _exact(search: str, node: Node) -> bool:
    return node.label.strip().lower() == search or node.id.lower() == search


def _label_substring(search: str, node: Node) -> bool:
    label = node.label.strip().lower()
    return bool(label) and (search in label or label in search)


def _word_overlap(search: str, node: Node) -> bool:
    search_words = extract_keywords(search)
    label_words = set(WORD_RE.findall(node.label.lower()))
    return any(word in label_words for word in search_words)


def _kind_keyword(search: str, node: Node) -> bool:
    kind = node.kind.lower()
    label = node.label.lower()
    return any(keyword in search and (keyword in kind or keyword in label) for keyword in KIND_KEYWORDS)


def _id_substring(search: str, node: Node) -> bool:
    node_id = node.id.lower()
    return search in node_id or node_id in search


STRATEGIES: tuple[tuple[str, MatchStrategy], ...] = (
    ("exact", _exact),
    ("label_substring", _label_substring),
    ("word_overlap", _word_overlap),
    ("kind_keyword", _kind_keyword),
    ("id_substring", _id_substring),
)


def find_node_by_reference(reference: str, nodes: Sequence[Node]) -> Node | None:
    """Resolve a free-text or invented node reference to an existing node.

    Strategies are tried in priority order over all nodes, so a weaker strategy
    never wins over a stronger match on a later node.
    """
    search = str(reference or "").strip().lower()
    if not search:
        return None

    for strategy_name, strategy in STRATEGIES:
        for node in nodes:
            if strategy(search, node):
                LOGGER.debug("Matched %r to node %s via %s", reference, node.id, strategy_name)
                return node
    return None

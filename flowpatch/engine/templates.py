from __future__ import annotations

import json
import re
from collections.abc import Mapping, Sequence
from typing import Any


TEMPLATE_VALUE_RE = re.compile(r"^\{\{([^{}]+)\}\}$")
TEMPLATE_INLINE_RE = re.compile(r"\{\{([^{}]+)\}\}")
INDEX_RE = re.compile(r"\[(\d+)\]")


class _Missing:
    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


def split_path(path: str) -> list[str]:
    """``rows[0].name`` and ``rows.0.name`` both become ``["rows", "0", "name"]``."""
    normalized = INDEX_RE.sub(r".\1", path.strip())
    return [part for part in normalized.split(".") if part]


def resolve_path(path: str, *scopes: object) -> Any:
    """Walk ``path`` through each scope in turn and return the first hit.

    Returns ``MISSING`` when no scope resolves the full path, so that a stored
    ``None`` can be told apart from an absent key.
    """
    parts = split_path(path)
    if not parts:
        return MISSING
    for scope in scopes:
        value = _walk(scope, parts)
        if value is not MISSING:
            return value
    return MISSING


def _walk(current: object, parts: Sequence[str]) -> Any:
    for part in parts:
        if isinstance(current, Mapping):
            if part not in current:
                return MISSING
            current = current[part]
            continue
        if isinstance(current, (list, tuple)) and part.isdigit():
            index = int(part)
            if index >= len(current):
                return MISSING
            current = current[index]
            continue
        return MISSING
    return current


def resolve_template(template: str, *scopes: object) -> str:
    """Replace every ``{{path}}`` in ``template``; unresolved placeholders stay verbatim."""

    def _replace(match: re.Match[str]) -> str:
        value = resolve_path(match.group(1), *scopes)
        if value is MISSING:
            return match.group(0)
        return stringify(value)

    return TEMPLATE_INLINE_RE.sub(_replace, template)


def resolve_value(value: object, *scopes: object) -> Any:
    if isinstance(value, str):
        match = TEMPLATE_VALUE_RE.fullmatch(value.strip())
        if match:
            resolved = resolve_path(match.group(1), *scopes)
            return value if resolved is MISSING else resolved
        if "{{" in value and "}}" in value:
            return resolve_template(value, *scopes)
        return value

    if isinstance(value, Mapping):
        return {key: resolve_value(item, *scopes) for key, item in value.items()}

    if isinstance(value, list):
        return [resolve_value(item, *scopes) for item in value]

    return value


def stringify(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)

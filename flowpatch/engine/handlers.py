from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from flowpatch.engine.context import ExecutionContext, NodeOutcome
from flowpatch.engine.credentials import CredentialProvider, ensure_credentials
from flowpatch.engine.expressions import ExpressionError, evaluate_expression
from flowpatch.engine.integrations import HttpIntegration, IntegrationAdapter
from flowpatch.graph.models import Node


LOGGER = logging.getLogger(__name__)

NodeHandler = Callable[[Node, dict[str, Any], ExecutionContext], Awaitable[Any]]

COLLECTION_KEYS = ("rows", "items")
REQUIRED_FIELDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("action.sheets.", ("spreadsheetId",)),
    ("action.http.request", ("url",)),
)


class NodeConfigError(ValueError):
    """Raised when a node's config lacks a field its handler needs."""

    def __init__(self, field_name: str, kind: str) -> None:
        super().__init__(f"missing field {field_name} for kind {kind}")
        self.field_name = field_name
        self.kind = kind


class UnsupportedNodeError(LookupError):
    """Raised when no handler is registered for a node kind."""


def require_fields(kind: str, config: Mapping[str, Any]) -> None:
    for prefix, fields in REQUIRED_FIELDS:
        if not kind.startswith(prefix):
            continue
        for field_name in fields:
            value = config.get(field_name)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise NodeConfigError(field_name, kind)


def collection_key(value: object) -> str | None:
    if not isinstance(value, Mapping):
        return None
    for key in COLLECTION_KEYS:
        if isinstance(value.get(key), list):
            return key
    return None


class HandlerRegistry:
    """Maps node kinds to async handlers.

    Lookup tries the exact kind, then the longest registered ``prefix.``, then
    a per-role fallback.
    """

    def __init__(self) -> None:
        self._by_kind: dict[str, NodeHandler] = {}
        self._by_prefix: dict[str, NodeHandler] = {}
        self._by_role: dict[str, NodeHandler] = {}

    def register(self, kind: str, handler: NodeHandler) -> None:
        if kind.endswith("."):
            self._by_prefix[kind] = handler
        else:
            self._by_kind[kind] = handler

    def register_role(self, role: str, handler: NodeHandler) -> None:
        self._by_role[role] = handler

    def resolve(self, node: Node) -> NodeHandler:
        handler = self._by_kind.get(node.kind)
        if handler is not None:
            return handler
        prefixes = [prefix for prefix in self._by_prefix if node.kind.startswith(prefix)]
        if prefixes:
            return self._by_prefix[max(prefixes, key=len)]
        handler = self._by_role.get(node.role)
        if handler is not None:
            return handler
        raise UnsupportedNodeError(f"No handler registered for kind {node.kind}")

    def kinds(self) -> list[str]:
        return sorted([*self._by_kind, *self._by_prefix])


class BuiltinHandlers:
    """Trigger, logic, AI and action behavior for the built-in node catalog."""

    def __init__(
        self,
        credentials: CredentialProvider,
        integrations: IntegrationAdapter,
        http: HttpIntegration,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._credentials = credentials
        self._integrations = integrations
        self._http = http
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def install(self, registry: HandlerRegistry) -> HandlerRegistry:
        registry.register("trigger.facebook.comment", self.facebook_comment_trigger)
        registry.register("trigger.webhook.inbound", self.webhook_trigger)
        registry.register("trigger.scheduler.cron", self.cron_trigger)
        registry.register("trigger.sheets.", self.sheets_trigger)
        registry.register("logic.filter", self.filter)
        registry.register("ai.", self.ai_stub)
        registry.register("action.http.request", self.http_request)
        registry.register("action.", self.integration_action)
        registry.register_role("LOGIC", self.passthrough)
        registry.register_role("AI", self.ai_stub)
        return registry

    async def facebook_comment_trigger(
        self, node: Node, config: dict[str, Any], context: ExecutionContext
    ) -> dict[str, Any]:
        match = config.get("match")
        contains = match.get("contains") if isinstance(match, Mapping) else match
        event = {
            "commentId": "mock_comment_123",
            "author": "John Doe",
            "text": f"Comment containing {contains}" if contains else "Test comment",
            "pageId": config.get("pageId") or "mock_page",
            "timestamp": self._now(),
        }
        if isinstance(context.payload, Mapping):
            event.update(context.payload)
        return event

    async def webhook_trigger(self, node: Node, config: dict[str, Any], context: ExecutionContext) -> Any:
        return context.payload

    async def cron_trigger(
        self, node: Node, config: dict[str, Any], context: ExecutionContext
    ) -> dict[str, Any]:
        return {
            "triggeredAt": self._now(),
            "cron": config.get("schedule") or config.get("cron") or "* * * * *",
        }

    async def sheets_trigger(
        self, node: Node, config: dict[str, Any], context: ExecutionContext
    ) -> dict[str, Any]:
        event: dict[str, Any] = {
            "spreadsheetId": config.get("spreadsheetId") or "mock_sheet",
            "sheetName": config.get("sheetName") or "Sheet1",
            "triggeredAt": self._now(),
        }
        if isinstance(context.payload, Mapping):
            event.update(context.payload)
        return event

    async def filter(self, node: Node, config: dict[str, Any], context: ExecutionContext) -> NodeOutcome:
        # Template placeholders are substituted by the evaluator itself.
        expression = str(node.config.get("expression") or "true")
        payload = context.payload
        scopes = context.scopes()

        try:
            field_name = config.get("field")
            key = collection_key(payload)
            if field_name and key is not None:
                kept = [
                    item
                    for item in payload[key]
                    if isinstance(item, Mapping)
                    and field_name in item
                    and evaluate_expression(expression, {"value": item[field_name], **item}, *scopes)
                ]
                payload = {**payload, key: kept}
                passed = bool(kept)
            else:
                passed = bool(evaluate_expression(expression, *scopes))
        except ExpressionError as exc:
            raise ExpressionError(f"Filter expression error: {exc}", expression) from exc

        if not passed:
            LOGGER.info("Filter %s did not pass; halting its path", node.id)
        return NodeOutcome(output={"passed": passed, "payload": payload}, payload=payload, halt=not passed)

    async def ai_stub(self, node: Node, config: dict[str, Any], context: ExecutionContext) -> dict[str, Any]:
        LOGGER.debug("AI step %s is stubbed (prompt=%r)", node.id, config.get("prompt", ""))
        return {"result": "AI processed successfully", "input": context.payload}

    async def passthrough(self, node: Node, config: dict[str, Any], context: ExecutionContext) -> Any:
        return context.payload

    async def http_request(
        self, node: Node, config: dict[str, Any], context: ExecutionContext
    ) -> dict[str, Any]:
        require_fields(node.kind, config)
        return await self._http.request(config)

    async def integration_action(
        self, node: Node, config: dict[str, Any], context: ExecutionContext
    ) -> dict[str, Any]:
        ensure_credentials(node.kind, self._credentials)
        require_fields(node.kind, config)
        return await self._integrations.call(node.kind, config, context.payload)

    def _now(self) -> str:
        return self._clock().isoformat()

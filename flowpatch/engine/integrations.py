from __future__ import annotations

import itertools
import logging
from collections.abc import Mapping
from copy import deepcopy
from typing import Any, Protocol

import httpx


LOGGER = logging.getLogger(__name__)

DEFAULT_RANGE = "Sheet1!A1"
SAMPLE_ROWS: tuple[dict[str, Any], ...] = (
    {"name": "Alice", "email": "alice@example.com", "status": "new"},
    {"name": "Bob", "email": "bob@example.com", "status": "contacted"},
    {"name": "Carol", "email": "carol@example.com", "status": "new"},
)


class IntegrationError(RuntimeError):
    """Raised when an integration call cannot be completed."""


class IntegrationAdapter(Protocol):
    async def call(self, kind: str, config: Mapping[str, Any], payload: Any) -> dict[str, Any]: ...


class SimulatedIntegrations:
    """Deterministic stand-ins for SaaS integrations.

    Ids are numbered per adapter instance, so two runs against fresh adapters
    produce identical outputs.
    """

    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def call(self, kind: str, config: Mapping[str, Any], payload: Any) -> dict[str, Any]:
        self.calls.append((kind, dict(config)))
        LOGGER.debug("Simulating %s", kind)

        if kind == "action.facebook.reply":
            return {
                "replyId": self._next_id("reply"),
                "message": str(config.get("replyTemplate") or "Thanks for your comment!"),
                "success": True,
            }

        if kind == "action.facebook.dm":
            return {
                "messageId": self._next_id("dm"),
                "message": str(config.get("message") or "Hello!"),
                "success": True,
            }

        if kind.startswith("action.telegram."):
            return self._telegram(kind, config, payload)

        if kind == "action.email.send":
            return {
                "emailId": self._next_id("email"),
                "to": str(config.get("toExpr") or _payload_field(payload, "email") or ""),
                "subject": str(config.get("subjectTpl") or "Notification"),
                "body": str(config.get("bodyTpl") or ""),
                "success": True,
            }

        if kind.startswith("action.sheets."):
            return self._sheets(kind, config)

        raise IntegrationError(f"Unknown action kind: {kind}")

    def _telegram(self, kind: str, config: Mapping[str, Any], payload: Any) -> dict[str, Any]:
        chat_id = config.get("chatId") or _payload_field(payload, "chatId")
        method = kind.rsplit(".", 1)[-1]
        if method == "getUpdates":
            return {"updates": [], "success": True}
        result: dict[str, Any] = {
            "messageId": self._next_id("tg"),
            "chatId": chat_id,
            "success": True,
        }
        if method == "sendMessage":
            result["message"] = str(config.get("message") or "Hello!")
        else:
            result["method"] = method
            result.update({key: value for key, value in config.items() if key != "chatId"})
        return result

    def _sheets(self, kind: str, config: Mapping[str, Any]) -> dict[str, Any]:
        spreadsheet_id = config.get("spreadsheetId")
        sheet_range = str(config.get("range") or DEFAULT_RANGE)

        if kind == "action.sheets.appendRow":
            mapping = config.get("map") if isinstance(config.get("map"), Mapping) else {}
            data = {key: value for key, value in mapping.items() if key and value not in (None, "")}
            return {
                "rowId": self._next_id("row"),
                "spreadsheetId": spreadsheet_id,
                "range": sheet_range,
                "data": data,
                "success": True,
            }

        if kind == "action.sheets.readRows":
            sample = config.get("sampleRows")
            rows = deepcopy(list(sample)) if isinstance(sample, list) else [dict(row) for row in SAMPLE_ROWS]
            return {
                "spreadsheetId": spreadsheet_id,
                "range": sheet_range,
                "rows": rows,
                "count": len(rows),
            }

        if kind == "action.sheets.updateCell":
            return {
                "spreadsheetId": spreadsheet_id,
                "range": sheet_range,
                "value": config.get("value"),
                "updated": True,
            }

        if kind == "action.sheets.clearRange":
            return {"spreadsheetId": spreadsheet_id, "range": sheet_range, "cleared": True}

        raise IntegrationError(f"Unknown action kind: {kind}")

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}_{next(self._counter)}"


class HttpIntegration:
    """Performs real HTTP requests for ``action.http.request`` nodes."""

    def __init__(
        self,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout_seconds = max(1.0, float(timeout_seconds))
        self._transport = transport

    async def request(self, config: Mapping[str, Any]) -> dict[str, Any]:
        method = str(config.get("method") or "POST").upper()
        url = str(config.get("url") or "")
        raw_headers = config.get("headers") if isinstance(config.get("headers"), Mapping) else {}
        headers = {"Content-Type": "application/json"}
        headers.update({str(key): str(value) for key, value in raw_headers.items()})
        body = config.get("body")

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.request(
                    method,
                    url,
                    headers=headers,
                    json=body if body not in (None, "") else None,
                )
        except httpx.HTTPError as exc:
            raise IntegrationError(f"HTTP request failed: {exc}") from exc

        try:
            data: Any = response.json()
        except ValueError:
            data = {"text": response.text}

        return {
            "status": response.status_code,
            "statusText": response.reason_phrase,
            "data": data,
            "success": response.is_success,
        }


def _payload_field(payload: Any, key: str) -> Any:
    if isinstance(payload, Mapping):
        return payload.get(key)
    return None

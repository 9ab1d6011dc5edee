from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from typing import Any

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage
from langchain_core.tools import BaseTool
from pydantic import BaseModel, Field

from flowpatch.graph.models import Node
from flowpatch.graph.summary import render_node_table
from flowpatch.llm_client import LLMCallError, LLMClient


LOGGER = logging.getLogger(__name__)
JSON_BLOCK_RE = re.compile(r"```(?:json)?\s*(\{[\s\S]*\})\s*```", re.IGNORECASE)
TOOL_NAME = "update_workflow"

SYSTEM_PROMPT = """You are a workflow planner. You receive the user's request and a short summary of the current workflow. Output a minimal patch that modifies the graph so it matches the request.

AVAILABLE NODE KINDS:
- Triggers: trigger.facebook.comment, trigger.webhook.inbound, trigger.scheduler.cron, trigger.sheets.newRow
- Actions:
  * action.facebook.reply (reply to Facebook comments)
  * action.facebook.dm (send Facebook direct messages)
  * action.telegram.sendMessage (send Telegram messages)
  * action.email.send (send emails)
  * action.sheets.appendRow (save rows to Google Sheets)
  * action.sheets.readRows (read rows from Google Sheets)
  * action.http.request (generic API calls, including posting to Facebook/Instagram/Twitter/LinkedIn and fetching data)
- Logic: logic.filter, ai.guard, ai.generate

RULES:
- To remove a node use REMOVE_NODE with the exact node id from the "Available nodes" list: {"op": "REMOVE_NODE", "id": "<id>"}
- Never invent node ids for existing nodes.
- Use BULK with an "ops" array for several changes.
- Prefer UPDATE_NODE and REWIRE over delete plus add.
- Keep exactly one trigger and never remove the only trigger.
- Keep a linear flow unless branching is requested.
- For HTTP requests put context in config, e.g. {"url": "...", "method": "POST", "platform": "Facebook"}.
- Respond only by calling the update_workflow tool."""


class UpdateWorkflowArgs(BaseModel):
    ops: list[dict[str, Any]] = Field(
        default_factory=list,
        description=(
            "Patch operations. Each item has an 'op' of ADD_NODE, UPDATE_NODE, REMOVE_NODE, "
            "ADD_EDGE, REMOVE_EDGE, REWIRE, SET_NAME or BULK plus its fields "
            "(node, id, data, edge, from, to, edgeId, name, ops)."
        ),
    )


class UpdateWorkflowTool(BaseTool):
    name: str = TOOL_NAME
    description: str = "Apply minimal changes to the existing workflow graph."
    args_schema: type[BaseModel] = UpdateWorkflowArgs

    def _run(self, ops: list[dict[str, Any]] | None = None) -> dict[str, Any]:
        return {"ops": list(ops or [])}

    async def _arun(self, ops: list[dict[str, Any]] | None = None) -> dict[str, Any]:
        return self._run(ops)


class LLMPlanner:
    """Asks a chat model for patch operations through the ``update_workflow`` tool."""

    def __init__(self, llm_client: LLMClient) -> None:
        self._llm_client = llm_client
        self._tool = UpdateWorkflowTool()

    @property
    def model_name(self) -> str:
        return self._llm_client.model_name

    async def propose_ops(
        self,
        intent: str,
        graph_summary: str,
        existing_nodes: Sequence[Node] = (),
    ) -> list[object]:
        context = f"Current workflow summary:\n{graph_summary}"
        if existing_nodes:
            context += (
                "\n\nAvailable nodes (use the exact id for REMOVE_NODE operations):\n"
                + render_node_table(existing_nodes)
            )
        messages = [
            SystemMessage(content=SYSTEM_PROMPT),
            AIMessage(content=context),
            HumanMessage(content=intent),
        ]

        response = await self._llm_client.invoke(
            messages,
            tools=[self._tool],
            tool_choice=TOOL_NAME,
        )
        ops = self._ops_from_tool_calls(response)
        if ops is not None:
            return ops

        payload = self._extract_json(self._message_content_to_text(response.content))
        if payload is None:
            raise LLMCallError("Model returned neither a tool call nor a JSON patch.")
        if isinstance(payload.get("ops"), list):
            return list(payload["ops"])
        if payload.get("op"):
            return [payload]
        raise LLMCallError("Model JSON did not contain patch operations.")

    def _ops_from_tool_calls(self, response: AIMessage) -> list[object] | None:
        for call in response.tool_calls:
            if call.get("name") != TOOL_NAME:
                continue
            args = call.get("args") or {}
            ops = args.get("ops")
            if isinstance(ops, str):
                try:
                    ops = json.loads(ops)
                except json.JSONDecodeError:
                    LOGGER.debug("Tool call ops were not valid JSON: %s", ops)
                    return None
            if isinstance(ops, list):
                return list(ops)
        return None

    def _extract_json(self, raw: str) -> dict[str, Any] | None:
        text = raw.strip()
        if not text:
            return None

        match = JSON_BLOCK_RE.search(text)
        if match:
            text = match.group(1).strip()

        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            start = text.find("{")
            end = text.rfind("}")
            if start == -1 or end == -1 or end <= start:
                return None
            try:
                payload = json.loads(text[start : end + 1])
            except json.JSONDecodeError:
                return None

        if not isinstance(payload, dict):
            return None
        return payload

    def _message_content_to_text(self, content: object) -> str:
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            parts: list[str] = []
            for item in content:
                if isinstance(item, str):
                    parts.append(item)
                elif isinstance(item, dict):
                    text = item.get("text")
                    if isinstance(text, str):
                        parts.append(text)
            return "\n".join(part for part in parts if part)
        return str(content)

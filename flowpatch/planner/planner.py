from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

from flowpatch.graph.models import Node
from flowpatch.llm_client import LLMClient
from flowpatch.planner.llm_planner import LLMPlanner
from flowpatch.planner.normalize import normalize_ops
from flowpatch.planner.rules import RuleBasedPlanner


LOGGER = logging.getLogger(__name__)

PlanSource = Literal["llm", "fallback", "empty"]


@dataclass(slots=True)
class PlanResult:
    patch: dict[str, Any]
    source: PlanSource
    dropped: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.patch.get("op") == "BULK" and not self.patch.get("ops")


class WorkflowPlanner:
    """Turns free-text intent into a normalized patch.

    The LLM strategy is tried first when a client is configured. Any failure,
    or an answer that normalizes to nothing, falls back to the rule planner.
    Both paths run through ``normalize_ops`` so the patch engine sees one shape.
    """

    def __init__(
        self,
        llm_client: LLMClient | None = None,
        rules: RuleBasedPlanner | None = None,
    ) -> None:
        self._llm = LLMPlanner(llm_client) if llm_client is not None else None
        self._rules = rules or RuleBasedPlanner()

    @property
    def uses_llm(self) -> bool:
        return self._llm is not None

    def plan_sync(
        self,
        intent: str,
        graph_summary: str,
        existing_nodes: Sequence[Node] = (),
    ) -> PlanResult:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return asyncio.run(self.plan(intent, graph_summary, existing_nodes))
        raise RuntimeError("plan_sync() cannot be called from a running event loop; use await plan().")

    async def plan(
        self,
        intent: str,
        graph_summary: str,
        existing_nodes: Sequence[Node] = (),
    ) -> PlanResult:
        dropped: list[str] = []

        if self._llm is not None:
            try:
                raw_ops = await self._llm.propose_ops(intent, graph_summary, existing_nodes)
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning("LLM planner failed, using rule fallback: %s", exc)
            else:
                normalized = normalize_ops(raw_ops, existing_nodes, intent)
                dropped.extend(normalized.dropped)
                if normalized.ops:
                    return PlanResult(patch=normalized.to_patch(), source="llm", dropped=dropped)
                LOGGER.info("LLM planner returned no usable operations, using rule fallback")

        rule_patch = self._rules.plan(intent, graph_summary, existing_nodes)
        normalized = normalize_ops(_ops_of(rule_patch), existing_nodes, intent)
        dropped.extend(normalized.dropped)
        for message in dropped:
            LOGGER.info("Planner dropped operation: %s", message)
        if not normalized.ops:
            return PlanResult(patch={"op": "BULK", "ops": []}, source="empty", dropped=dropped)
        return PlanResult(patch=normalized.to_patch(), source="fallback", dropped=dropped)


def _ops_of(patch: dict[str, Any]) -> list[object]:
    if patch.get("op") == "BULK":
        return list(patch.get("ops") or [])
    return [patch]

from __future__ import annotations

import inspect
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable


LOGGER = logging.getLogger(__name__)

HookCallback = Callable[[dict[str, Any]], object | Awaitable[object]]

HOOK_EVENTS = (
    "before_run",
    "after_run",
    "before_node",
    "after_node",
    "on_error",
)


@dataclass(slots=True)
class HookInvocation:
    event: str
    callback_name: str
    result: object | None
    error: str | None = None


class ExecutionHooks:
    """Lifecycle callbacks for workflow runs.

    A failing callback is logged and recorded on its invocation; it never
    interrupts the run or the remaining callbacks.
    """

    def __init__(self) -> None:
        self._callbacks: dict[str, list[HookCallback]] = defaultdict(list)

    def register(self, event: str, callback: HookCallback) -> None:
        if event not in HOOK_EVENTS:
            raise ValueError(f"Unknown hook event '{event}'. Expected one of: {', '.join(HOOK_EVENTS)}")
        self._callbacks[event].append(callback)

    def clear(self, event: str | None = None) -> None:
        if event is None:
            self._callbacks.clear()
            return
        self._callbacks.pop(event, None)

    def callbacks_for(self, event: str) -> list[HookCallback]:
        return list(self._callbacks.get(event, []))

    async def emit(self, event: str, context: dict[str, Any]) -> list[HookInvocation]:
        invocations: list[HookInvocation] = []
        for callback in self.callbacks_for(event):
            callback_name = str(getattr(callback, "__name__", callback.__class__.__name__))
            try:
                result = callback(context)
                if inspect.isawaitable(result):
                    result = await result
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning("Hook %s for %s failed: %s", callback_name, event, exc)
                invocations.append(
                    HookInvocation(event=event, callback_name=callback_name, result=None, error=str(exc))
                )
                continue
            invocations.append(HookInvocation(event=event, callback_name=callback_name, result=result))
        return invocations

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Protocol, Sequence

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage
from langchain_core.tools import BaseTool
from langchain_core.utils.function_calling import convert_to_openai_tool
from langchain_ollama import ChatOllama
from langchain_openai import ChatOpenAI

from flowpatch.settings import AppSettings


LOGGER = logging.getLogger(__name__)


class LLMCallError(RuntimeError):
    """Raised when the LLM call fails after retries."""


class LLMToolUnsupportedError(LLMCallError):
    """Raised when the configured model does not support tool calling."""


class LLMClient(Protocol):
    @property
    def model_name(self) -> str: ...

    async def invoke(
        self,
        messages: Sequence[BaseMessage],
        tools: Sequence[BaseTool] | None = None,
        tool_choice: str | None = None,
    ) -> AIMessage: ...


@dataclass(slots=True)
class OllamaLLMConfig:
    base_url: str
    model: str
    temperature: float = 0.1
    timeout_seconds: int = 90
    retry_attempts: int = 3
    retry_backoff_seconds: float = 1.5


@dataclass(slots=True)
class OpenAILLMConfig:
    api_key: str
    model: str
    base_url: str = "https://api.openai.com/v1"
    temperature: float = 0.1
    timeout_seconds: int = 90
    retry_attempts: int = 3
    retry_backoff_seconds: float = 1.5


class _RetryingChatClient:
    """Shared retry loop around a LangChain chat model."""

    def __init__(
        self,
        model: BaseChatModel,
        model_name: str,
        retry_attempts: int,
        retry_backoff_seconds: float,
    ) -> None:
        self._base_model = model
        self._model_name = model_name
        self._retry_attempts = max(1, retry_attempts)
        self._retry_backoff_seconds = retry_backoff_seconds

    @property
    def model_name(self) -> str:
        return self._model_name

    async def invoke(
        self,
        messages: Sequence[BaseMessage],
        tools: Sequence[BaseTool] | None = None,
        tool_choice: str | None = None,
    ) -> AIMessage:
        model = self._bind(tools, tool_choice)
        last_error: Exception | None = None

        for attempt in range(1, self._retry_attempts + 1):
            try:
                response = await model.ainvoke(list(messages))
                if not isinstance(response, AIMessage):
                    raise LLMCallError(
                        f"Unexpected response type from LLM: {type(response).__name__}"
                    )
                return response
            except Exception as exc:  # noqa: BLE001
                if tools and self._is_tool_unsupported_error(exc):
                    raise LLMToolUnsupportedError(str(exc)) from exc
                last_error = exc
                if attempt >= self._retry_attempts:
                    break
                delay = self._retry_backoff_seconds * attempt
                LOGGER.debug(
                    "LLM call attempt %s/%s failed (%s). Retrying in %.1fs",
                    attempt,
                    self._retry_attempts,
                    exc,
                    delay,
                )
                await asyncio.sleep(delay)

        raise LLMCallError(f"LLM call failed after retries: {last_error}")

    def _bind(self, tools: Sequence[BaseTool] | None, tool_choice: str | None) -> Any:
        if not tools:
            return self._base_model
        definitions = [convert_to_openai_tool(tool) for tool in tools]
        if tool_choice:
            return self._base_model.bind_tools(definitions, tool_choice=tool_choice)
        return self._base_model.bind_tools(definitions)

    def _is_tool_unsupported_error(self, exc: Exception) -> bool:
        text = str(exc).lower()
        return "does not support tools" in text or "tool calling is not supported" in text


class OllamaLLMClient(_RetryingChatClient):
    """LangChain LLM wrapper around Ollama chat API with retry controls."""

    def __init__(self, config: OllamaLLMConfig) -> None:
        super().__init__(
            ChatOllama(
                base_url=config.base_url,
                model=config.model,
                temperature=config.temperature,
                client_kwargs={"timeout": config.timeout_seconds},
            ),
            model_name=config.model,
            retry_attempts=config.retry_attempts,
            retry_backoff_seconds=config.retry_backoff_seconds,
        )


class OpenAILLMClient(_RetryingChatClient):
    """LangChain LLM wrapper around OpenAI chat API with retry controls."""

    def __init__(self, config: OpenAILLMConfig) -> None:
        super().__init__(
            ChatOpenAI(
                api_key=config.api_key,
                base_url=config.base_url,
                model=config.model,
                temperature=config.temperature,
                timeout=config.timeout_seconds,
                max_retries=0,
            ),
            model_name=config.model,
            retry_attempts=config.retry_attempts,
            retry_backoff_seconds=config.retry_backoff_seconds,
        )


def build_llm_client(settings: AppSettings) -> LLMClient | None:
    """Create the planner's LLM client, or ``None`` for the rule-based planner."""
    if settings.planner == "openai":
        if not settings.openai_api_key:
            LOGGER.warning("FLOWPATCH_PLANNER=openai but OPENAI_API_KEY is not set; using rules")
            return None
        return OpenAILLMClient(
            OpenAILLMConfig(
                api_key=settings.openai_api_key,
                model=settings.openai_model,
                base_url=settings.openai_base_url,
                temperature=settings.llm_temperature,
                timeout_seconds=settings.llm_request_timeout_seconds,
                retry_attempts=settings.llm_retry_attempts,
                retry_backoff_seconds=settings.llm_retry_backoff_seconds,
            )
        )
    if settings.planner == "ollama":
        return OllamaLLMClient(
            OllamaLLMConfig(
                base_url=settings.ollama_base_url,
                model=settings.ollama_model,
                temperature=settings.llm_temperature,
                timeout_seconds=settings.llm_request_timeout_seconds,
                retry_attempts=settings.llm_retry_attempts,
                retry_backoff_seconds=settings.llm_retry_backoff_seconds,
            )
        )
    return None

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv


PlannerBackend = Literal["openai", "ollama", "rules"]

DEFAULT_OLLAMA_BASE_URL = "http://localhost:11434"
DEFAULT_OLLAMA_MODEL = "llama3.1:8b"
DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_SQLITE_PATH = "data/flowpatch.db"
PLANNER_BACKENDS = ("openai", "ollama", "rules")


@dataclass(slots=True)
class AppSettings:
    planner: PlannerBackend = "rules"
    openai_api_key: str = ""
    openai_base_url: str = DEFAULT_OPENAI_BASE_URL
    openai_model: str = DEFAULT_OPENAI_MODEL
    ollama_base_url: str = DEFAULT_OLLAMA_BASE_URL
    ollama_model: str = DEFAULT_OLLAMA_MODEL
    llm_temperature: float = 0.1
    llm_request_timeout_seconds: int = 90
    llm_retry_attempts: int = 3
    llm_retry_backoff_seconds: float = 1.5
    http_timeout_seconds: float = 30.0
    sqlite_path: Path = Path(DEFAULT_SQLITE_PATH)
    undo_limit: int = 50


def _get_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _get_planner(openai_api_key: str) -> PlannerBackend:
    raw = os.getenv("FLOWPATCH_PLANNER", "").strip().lower()
    if raw in PLANNER_BACKENDS:
        return raw  # type: ignore[return-value]
    return "openai" if openai_api_key else "rules"


def load_settings() -> AppSettings:
    load_dotenv()

    openai_api_key = os.getenv("OPENAI_API_KEY", "")
    sqlite_path = Path(os.getenv("FLOWPATCH_SQLITE_PATH", DEFAULT_SQLITE_PATH)).expanduser()

    settings = AppSettings(
        planner=_get_planner(openai_api_key),
        openai_api_key=openai_api_key,
        openai_base_url=os.getenv("OPENAI_BASE_URL", DEFAULT_OPENAI_BASE_URL),
        openai_model=os.getenv("OPENAI_MODEL", DEFAULT_OPENAI_MODEL),
        ollama_base_url=os.getenv("OLLAMA_BASE_URL", DEFAULT_OLLAMA_BASE_URL),
        ollama_model=os.getenv("OLLAMA_MODEL", DEFAULT_OLLAMA_MODEL),
        llm_temperature=_get_float("LLM_TEMPERATURE", 0.1),
        llm_request_timeout_seconds=_get_int("LLM_REQUEST_TIMEOUT_SECONDS", 90),
        llm_retry_attempts=max(1, _get_int("LLM_RETRY_ATTEMPTS", 3)),
        llm_retry_backoff_seconds=_get_float("LLM_RETRY_BACKOFF_SECONDS", 1.5),
        http_timeout_seconds=_get_float("HTTP_TIMEOUT_SECONDS", 30.0),
        sqlite_path=sqlite_path,
        undo_limit=max(1, _get_int("FLOWPATCH_UNDO_LIMIT", 50)),
    )

    settings.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
    return settings

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Protocol


class MissingCredentialsError(RuntimeError):
    """Raised when an action node needs credentials that are not configured."""

    def __init__(self, kind: str, type_name: str) -> None:
        super().__init__(f"Missing credentials for {kind}. Please configure {type_name}.")
        self.kind = kind
        self.type_name = type_name


# (kind fragment, credential key, human readable type, environment variable)
CREDENTIAL_TYPES: tuple[tuple[str, str, str, str], ...] = (
    ("facebook", "facebook", "Facebook API Key", "FACEBOOK_API_KEY"),
    ("telegram", "telegram", "Telegram Bot Token", "TELEGRAM_BOT_TOKEN"),
    ("email", "email", "Email API Key", "EMAIL_API_KEY"),
    ("sheets", "sheets", "Google Sheets API Key", "GOOGLE_SHEETS_API_KEY"),
    ("api", "api", "API Key", "API_KEY"),
)
NO_CREDENTIAL_KINDS = {"action.http.request"}


class CredentialProvider(Protocol):
    def requires(self, kind: str) -> bool: ...

    def has(self, kind: str) -> bool: ...

    def type_name(self, kind: str) -> str: ...

    def get(self, kind: str) -> str | None: ...


@dataclass(slots=True, frozen=True)
class CredentialStatus:
    kind: str
    required: bool
    configured: bool
    type_name: str

    @property
    def ok(self) -> bool:
        return not self.required or self.configured


def credential_key(kind: str) -> str | None:
    if kind in NO_CREDENTIAL_KINDS or not kind.startswith("action."):
        return None
    lowered = kind.lower()
    for fragment, key, _type_name, _env in CREDENTIAL_TYPES:
        if fragment in lowered:
            return key
    return None


class CredentialStore:
    """In-memory credential lookup keyed by integration (facebook, telegram, ...)."""

    def __init__(self, secrets: Mapping[str, str] | None = None) -> None:
        self._secrets: dict[str, str] = {
            key: value for key, value in (secrets or {}).items() if value
        }

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> CredentialStore:
        source = os.environ if environ is None else environ
        secrets = {
            key: source.get(env_name, "")
            for _fragment, key, _type_name, env_name in CREDENTIAL_TYPES
        }
        return cls(secrets)

    def set(self, key: str, value: str) -> None:
        if value:
            self._secrets[key] = value
        else:
            self._secrets.pop(key, None)

    def requires(self, kind: str) -> bool:
        return credential_key(kind) is not None

    def has(self, kind: str) -> bool:
        key = credential_key(kind)
        return key is None or key in self._secrets

    def type_name(self, kind: str) -> str:
        key = credential_key(kind)
        for _fragment, candidate, type_name, _env in CREDENTIAL_TYPES:
            if candidate == key:
                return type_name
        return "API Key"

    def get(self, kind: str) -> str | None:
        key = credential_key(kind)
        return self._secrets.get(key) if key else None

    def configured(self) -> list[str]:
        return sorted(self._secrets)


def check_node_credentials(kind: str, provider: CredentialProvider) -> CredentialStatus:
    required = provider.requires(kind)
    return CredentialStatus(
        kind=kind,
        required=required,
        configured=provider.has(kind) if required else True,
        type_name=provider.type_name(kind),
    )


def ensure_credentials(kind: str, provider: CredentialProvider) -> None:
    status = check_node_credentials(kind, provider)
    if not status.ok:
        raise MissingCredentialsError(kind, status.type_name)

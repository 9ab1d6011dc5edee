from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class NodeKindSpec:
    kind: str
    default_label: str
    integration: str | None = None
    description: str = ""


_SPECS: tuple[NodeKindSpec, ...] = (
    NodeKindSpec("trigger.facebook.comment", "Facebook Comment", "Facebook", "New comment on a page"),
    NodeKindSpec("trigger.webhook.inbound", "Webhook", None, "Inbound HTTP webhook"),
    NodeKindSpec("trigger.scheduler.cron", "Scheduled Trigger", None, "Cron schedule"),
    NodeKindSpec("trigger.sheets.newRow", "Sheets: New Row", "Google Sheets", "Row appended to a sheet"),
    NodeKindSpec("trigger.sheets.update", "Sheets: Update", "Google Sheets", "Sheet cell changed"),
    NodeKindSpec("logic.filter", "Filter Data", None, "Continue only when an expression holds"),
    NodeKindSpec("ai.guard", "AI Guard", None, "Classify or check content"),
    NodeKindSpec("ai.generate", "AI Generate", None, "Generate text"),
    NodeKindSpec("action.facebook.reply", "Reply to Comment", "Facebook", "Reply to the triggering comment"),
    NodeKindSpec("action.facebook.dm", "Send Facebook DM", "Facebook", "Direct message a user"),
    NodeKindSpec("action.telegram.sendMessage", "Send Telegram", "Telegram"),
    NodeKindSpec("action.telegram.sendPhoto", "Telegram Photo", "Telegram"),
    NodeKindSpec("action.telegram.sendDocument", "Telegram Document", "Telegram"),
    NodeKindSpec("action.telegram.sendLocation", "Telegram Location", "Telegram"),
    NodeKindSpec("action.telegram.sendPoll", "Telegram Poll", "Telegram"),
    NodeKindSpec("action.telegram.editMessage", "Edit Telegram", "Telegram"),
    NodeKindSpec("action.telegram.deleteMessage", "Delete Telegram", "Telegram"),
    NodeKindSpec("action.telegram.sendVideo", "Telegram Video", "Telegram"),
    NodeKindSpec("action.telegram.sendAudio", "Telegram Audio", "Telegram"),
    NodeKindSpec("action.telegram.sendSticker", "Telegram Sticker", "Telegram"),
    NodeKindSpec("action.telegram.sendVenue", "Telegram Venue", "Telegram"),
    NodeKindSpec("action.telegram.sendContact", "Telegram Contact", "Telegram"),
    NodeKindSpec("action.telegram.getUpdates", "Get Telegram Updates", "Telegram"),
    NodeKindSpec("action.email.send", "Send Email", "Email", "Send an email"),
    NodeKindSpec("action.sheets.appendRow", "Save to Sheets", "Google Sheets", "Append a row"),
    NodeKindSpec("action.sheets.readRows", "Read Sheets", "Google Sheets", "Read rows from a range"),
    NodeKindSpec("action.sheets.updateCell", "Update Cell", "Google Sheets", "Write a single cell"),
    NodeKindSpec("action.sheets.clearRange", "Clear Sheets", "Google Sheets", "Clear a range"),
    NodeKindSpec("action.http.request", "HTTP Request", "HTTP", "Generic API call"),
)

NODE_KINDS: dict[str, NodeKindSpec] = {spec.kind: spec for spec in _SPECS}


def known_kinds() -> list[str]:
    return [spec.kind for spec in _SPECS]


def kind_spec(kind: str) -> NodeKindSpec | None:
    return NODE_KINDS.get(kind)


def integration_for_kind(kind: str) -> str | None:
    spec = NODE_KINDS.get(kind)
    return spec.integration if spec else None

"""Gateway data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict


class BotType(str, Enum):
    """Dify interaction mode of an application."""

    CHAT = "Chat"
    COMPLETION = "Completion"
    WORKFLOW = "Workflow"


@dataclass
class AppConfig:
    """Registered Dify application, read-only to the gateway."""

    id: int
    name: str
    dify_api_url: str
    dify_api_key: str = field(repr=False)
    generated_api_key: str | None
    bot_type: str = BotType.CHAT.value
    input_variable: str | None = None
    output_variable: str | None = None
    model_name: str | None = None
    is_enabled: bool = True
    description: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> AppConfig:
        return cls(
            id=int(row["id"]),
            name=row["name"],
            dify_api_url=row["dify_api_url"],
            dify_api_key=row["dify_api_key"],
            generated_api_key=row.get("generated_api_key"),
            bot_type=row.get("bot_type") or BotType.CHAT.value,
            input_variable=row.get("input_variable") or None,
            output_variable=row.get("output_variable") or None,
            model_name=row.get("model_name") or None,
            is_enabled=bool(row.get("is_enabled", True)),
            description=row.get("description"),
        )


class ChatMessage(BaseModel):
    role: str
    content: str | list[dict[str, Any]] | None = None

    model_config = ConfigDict(extra="allow")

    def text(self) -> str:
        """Flatten string or content-part message bodies into plain text."""
        if self.content is None:
            return ""
        if isinstance(self.content, str):
            return self.content
        parts = [
            str(part.get("text", ""))
            for part in self.content
            if isinstance(part, dict) and part.get("type", "text") == "text"
        ]
        return "\n".join(part for part in parts if part)


class ChatCompletionRequest(BaseModel):
    model: str | None = None
    messages: list[ChatMessage]
    stream: bool = False

    model_config = ConfigDict(extra="allow")

    def last_user_text(self) -> str | None:
        """Text of the last ``user`` message; earlier turns are never forwarded."""
        for message in reversed(self.messages):
            if message.role == "user":
                return message.text()
        return None


@dataclass
class NormalizedResponse:
    """Answer text and token usage extracted from a blocking backend reply."""

    text: str
    usage: dict[str, int]


@dataclass
class CallLogEntry:
    """One gateway call, as handed to the call log store."""

    api_key: str
    app_name: str
    method: str
    endpoint: str
    request_body: str
    response_body: str | None = None
    status_code: int = 200
    response_time: int = 0
    error_message: str | None = None

"""Core types for the LLM subsystem."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from typing import Union

ROLE_SYSTEM = "system"
ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_TOOL = "tool"

ROLES = (ROLE_SYSTEM, ROLE_USER, ROLE_ASSISTANT, ROLE_TOOL)


@dataclass
class TextPart:
    """A plain-text segment of a multimodal message."""

    text: str
    type: str = "text"


@dataclass
class ImagePart:
    """A base64-encoded image segment of a multimodal message."""

    data: str
    media_type: str = "image/png"
    type: str = "image"

    @property
    def data_url(self) -> str:
        return f"data:{self.media_type};base64,{self.data}"


ContentPart = Union[TextPart, ImagePart]
Content = Union[str, list]


@dataclass
class ToolCall:
    """
    A tool call requested by the model.

    *arguments* is the raw JSON text as it arrived on the wire.  While a
    response is streaming it may be incomplete; once the owning response is
    marked complete it always parses as JSON.  When the model produced
    arguments that could not be parsed, the original text and the error are
    kept in *raw_arguments* / *parse_error* and *arguments* is reset to
    ``"{}"``.
    """

    id: str
    name: str
    arguments: str = ""
    parse_error: str | None = None
    raw_arguments: str | None = None

    def parsed_arguments(self) -> dict:
        """Return the arguments as a dict (``{}`` for empty or non-object JSON)."""
        value = json.loads(self.arguments or "{}")
        return value if isinstance(value, dict) else {}

    def to_dict(self) -> dict:
        d: dict = {"id": self.id, "name": self.name, "arguments": self.arguments}
        if self.parse_error:
            d["parse_error"] = self.parse_error
        return d

    @classmethod
    def from_dict(cls, data: dict) -> ToolCall:
        return cls(
            id=data.get("id", ""),
            name=data.get("name", ""),
            arguments=data.get("arguments", ""),
            parse_error=data.get("parse_error"),
        )


@dataclass
class Message:
    """
    A single provider-agnostic message in a conversation.

    *content* is either a string or an ordered list of ``TextPart`` /
    ``ImagePart`` objects.  *message_id* is a stable identity used by the
    persistence layer: saving a message with the same id again replaces the
    earlier content rather than appending a duplicate.
    """

    role: str  # "system", "user", "assistant", "tool"
    content: Content = ""
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None
    tool_name: str | None = None
    message_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def text(self) -> str:
        """The textual content, with image parts dropped."""
        if isinstance(self.content, str):
            return self.content
        return "".join(p.text for p in self.content if isinstance(p, TextPart))

    @property
    def parts(self) -> list[ContentPart]:
        """The content normalised to a list of parts."""
        if isinstance(self.content, str):
            return [TextPart(self.content)] if self.content else []
        return list(self.content)

    def content_to_json(self) -> str:
        if isinstance(self.content, str):
            return json.dumps(self.content)
        return json.dumps(
            [
                {"type": "text", "text": p.text}
                if isinstance(p, TextPart)
                else {"type": "image", "data": p.data, "media_type": p.media_type}
                for p in self.content
            ]
        )

    @staticmethod
    def content_from_json(raw: str) -> Content:
        value = json.loads(raw)
        if isinstance(value, str):
            return value
        parts: list[ContentPart] = []
        for item in value:
            if item.get("type") == "image":
                parts.append(
                    ImagePart(data=item["data"], media_type=item.get("media_type", "image/png"))
                )
            else:
                parts.append(TextPart(item.get("text", "")))
        return parts


@dataclass
class ToolDeclaration:
    """A tool the model may call: name, description and JSON schema."""

    name: str
    description: str = ""
    parameters: dict = field(default_factory=lambda: {"type": "object", "properties": {}})


@dataclass
class UnifiedRequest:
    """The provider-agnostic request an adapter converts to its wire format."""

    model: str
    messages: list[Message]
    tools: list[ToolDeclaration] = field(default_factory=list)
    stream: bool = True
    max_tokens: int = 4096


@dataclass
class Usage:
    """Token usage in the common shape.  Missing counts are 0, never None."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_counts(
        cls,
        prompt: int | None = None,
        completion: int | None = None,
        total: int | None = None,
    ) -> Usage:
        p = _count(prompt)
        c = _count(completion)
        t = _count(total) if isinstance(total, (int, float)) else p + c
        return cls(prompt_tokens=p, completion_tokens=c, total_tokens=t)

    def to_dict(self) -> dict:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }


@dataclass
class ThinkingSettings:
    """Per-provider extended-thinking switches."""

    anthropic_enabled: bool = False
    anthropic_budget: int = 8192
    google_enabled: bool = True
    google_budget: int = 8192


@dataclass
class ConnectionSettings:
    """What the adapters see of the configured connection."""

    api_url: str
    model: str = ""
    api_key: str = ""
    max_tokens: int = 4096
    thinking: ThinkingSettings = field(default_factory=ThinkingSettings)

    @property
    def base_url(self) -> str:
        return self.api_url.rstrip("/")


def _count(value: object) -> int:
    # Providers occasionally send null or garbage counts.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return int(value)

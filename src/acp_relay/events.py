"""Stream event payloads broadcast by a session transport."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, TypeAlias


@dataclass(frozen=True)
class TextBlock:
    """Streamed agent text."""

    text: str
    type: Literal["text"] = "text"


@dataclass(frozen=True)
class ToolUseBlock:
    """Announcement that the agent invoked a tool."""

    name: str
    type: Literal["tool_use"] = "tool_use"


ContentBlock: TypeAlias = TextBlock | ToolUseBlock


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int | None = None
    cache_creation_input_tokens: int | None = None
    cache_read_input_tokens: int | None = None
    output_tokens: int | None = None


@dataclass(frozen=True)
class ToolResponseStats:
    """Execution statistics reported when a (sub-)agent tool call finishes."""

    status: str | None = None
    agent_id: str | None = None
    total_duration_ms: int | None = None
    total_tokens: int | None = None
    total_tool_use_count: int | None = None
    usage: TokenUsage | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ToolResponseStats":
        """Build stats from a camelCase tool response payload (Claude-style `toolResponse`)."""

        usage_raw = payload.get("usage")
        usage = None
        if isinstance(usage_raw, Mapping):
            usage = TokenUsage(
                input_tokens=_as_int(usage_raw.get("input_tokens")),
                cache_creation_input_tokens=_as_int(usage_raw.get("cache_creation_input_tokens")),
                cache_read_input_tokens=_as_int(usage_raw.get("cache_read_input_tokens")),
                output_tokens=_as_int(usage_raw.get("output_tokens")),
            )
        status = payload.get("status")
        agent_id = payload.get("agentId")
        return cls(
            status=status if isinstance(status, str) else None,
            agent_id=agent_id if isinstance(agent_id, str) else None,
            total_duration_ms=_as_int(payload.get("totalDurationMs")),
            total_tokens=_as_int(payload.get("totalTokens")),
            total_tool_use_count=_as_int(payload.get("totalToolUseCount")),
            usage=usage,
        )


@dataclass(frozen=True)
class SessionUpdateEvent:
    """One streamed update for a protocol session."""

    agent_name: str
    session_id: str
    content: tuple[ContentBlock, ...] = field(default_factory=tuple)
    is_complete: bool = False
    tool_response_stats: ToolResponseStats | None = None


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    return None


__all__ = [
    "ContentBlock",
    "SessionUpdateEvent",
    "TextBlock",
    "TokenUsage",
    "ToolResponseStats",
    "ToolUseBlock",
]

"""Progress payloads and request/response models shared with the host UI.

Everything the UI receives is a pydantic model serialized with camelCase
aliases (`update.model_dump(by_alias=True, exclude_none=True)`), matching the
shape the renderer already consumes for native agent sessions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

StepType = Literal["thinking", "tool_call", "completion"]
StepStatus = Literal["in_progress", "completed", "error"]
MessageRole = Literal["user", "assistant", "tool"]


class _UIModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class ExecutionStats(_UIModel):
    """Duration and token accounting for a finished tool or sub-agent run."""

    model_config = ConfigDict(frozen=True)

    duration_ms: int | None = None
    total_tokens: int | None = None
    tool_use_count: int | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    cache_hit_tokens: int | None = None


class ProgressStep(_UIModel):
    """One immutable entry in a progress stream."""

    model_config = ConfigDict(frozen=True)

    id: str
    type: StepType
    title: str
    description: str | None = None
    status: StepStatus
    timestamp: int = Field(..., description="Creation time in epoch milliseconds.")
    streaming_text_snapshot: str | None = Field(
        None,
        description="Full accumulated agent text at the time the step was created.",
    )
    execution_stats: ExecutionStats | None = None
    subagent_id: str | None = None


class StreamingContent(_UIModel):
    text: str
    is_streaming: bool


class ConversationMessage(_UIModel):
    role: MessageRole
    content: str
    timestamp: int | None = None


class ModeOption(_UIModel):
    id: str
    name: str
    description: str | None = None


class AgentSessionInfo(_UIModel):
    """Descriptive snapshot of the agent and its current session settings."""

    agent_name: str | None = None
    agent_title: str | None = None
    agent_version: str | None = None
    current_model: str | None = None
    current_mode: str | None = None
    available_models: list[ModeOption] = Field(default_factory=list)
    available_modes: list[ModeOption] = Field(default_factory=list)


class ProgressUpdate(_UIModel):
    """Snapshot of one request's in-flight or final state."""

    session_id: str
    conversation_id: str | None = None
    current_iteration: int = 1
    max_iterations: int = 1
    steps: list[ProgressStep]
    is_complete: bool
    final_content: str | None = None
    streaming_content: StreamingContent | None = None
    conversation_history: list[ConversationMessage] = Field(default_factory=list)
    agent_session_info: AgentSessionInfo | None = Field(None, alias="acpSessionInfo")


class PromptResult(BaseModel):
    """Outcome of one `send_prompt` call on a transport."""

    success: bool
    response: str | None = None
    stop_reason: str | None = None
    error: str | None = None


class TranscriptResult(BaseModel):
    """Outcome returned to callers of `TranscriptRouter.process_transcript`."""

    success: bool
    response: str | None = None
    session_id: str | None = None
    stop_reason: str | None = None
    error: str | None = None


ProgressCallback = Callable[[ProgressUpdate], Awaitable[None] | None]


@dataclass(frozen=True)
class TranscriptOptions:
    """Per-request routing options.

    `session_id` is the host UI session that owns progress display and tool
    approvals for this request. Without `agent_name` the router uses its
    configured default agent.
    """

    conversation_id: str
    session_id: str
    agent_name: str | None = None
    force_new_session: bool = False
    on_progress: ProgressCallback | None = None


__all__ = [
    "AgentSessionInfo",
    "ConversationMessage",
    "ExecutionStats",
    "MessageRole",
    "ModeOption",
    "ProgressCallback",
    "ProgressStep",
    "ProgressUpdate",
    "PromptResult",
    "StepStatus",
    "StepType",
    "StreamingContent",
    "TranscriptOptions",
    "TranscriptResult",
]

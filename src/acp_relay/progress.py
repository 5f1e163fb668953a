"""Fold streamed session updates into progress steps.

`aggregate_event` is the pure core: given the text accumulated so far and one
event, it returns the new accumulated text and the steps that event produces.
`ProgressAggregator` wraps it with the per-request state (accumulated text and
step id counter) the router needs.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass

from acp_relay.config import DEFAULT_DESCRIPTION_LIMIT
from acp_relay.events import SessionUpdateEvent, TextBlock, ToolResponseStats, ToolUseBlock
from acp_relay.log_utils import log_chunks_enabled, log_event
from acp_relay.models import ExecutionStats, ProgressStep, StepStatus, StepType, StreamingContent
from acp_relay.session_registry import now_ms

logger = logging.getLogger(__name__)

AGENT_RESPONSE_TITLE = "Agent response"
TOOL_COMPLETED_TITLE = "Tool completed"


class StepIdGenerator:
    """Per-request step id source; ids are unique and increase with each call."""

    def __init__(self) -> None:
        self._counter = itertools.count(1)

    def __call__(self, prefix: str) -> str:
        return f"{prefix}-{now_ms()}-{next(self._counter)}"


def truncate_description(text: str, limit: int = DEFAULT_DESCRIPTION_LIMIT) -> str:
    if len(text) > limit:
        return text[:limit] + "..."
    return text


def execution_stats_from(stats: ToolResponseStats) -> ExecutionStats:
    usage = stats.usage
    return ExecutionStats(
        duration_ms=stats.total_duration_ms,
        total_tokens=stats.total_tokens,
        tool_use_count=stats.total_tool_use_count,
        input_tokens=usage.input_tokens if usage else None,
        output_tokens=usage.output_tokens if usage else None,
        cache_hit_tokens=usage.cache_read_input_tokens if usage else None,
    )


def aggregate_event(
    accumulated_text: str,
    event: SessionUpdateEvent,
    next_id: StepIdGenerator,
    *,
    description_limit: int = DEFAULT_DESCRIPTION_LIMIT,
) -> tuple[str, list[ProgressStep]]:
    """Return `(new_accumulated_text, steps)` for one event."""

    text = accumulated_text
    steps: list[ProgressStep] = []
    stats = event.tool_response_stats
    status: StepStatus = "completed" if event.is_complete else "in_progress"

    for block in event.content:
        if isinstance(block, TextBlock) and block.text:
            text += block.text
            steps.append(
                ProgressStep(
                    id=next_id("acp-text"),
                    type="thinking",
                    title=AGENT_RESPONSE_TITLE,
                    description=truncate_description(block.text, description_limit),
                    status=status,
                    timestamp=now_ms(),
                    streaming_text_snapshot=text,
                )
            )
        elif isinstance(block, ToolUseBlock) and block.name:
            steps.append(
                ProgressStep(
                    id=next_id("acp-tool"),
                    type="tool_call",
                    title=f"Tool: {block.name}",
                    status="in_progress",
                    timestamp=now_ms(),
                    execution_stats=execution_stats_from(stats) if stats else None,
                    subagent_id=stats.agent_id if stats else None,
                )
            )

    # A stats-only event is a tool completion notification.
    if stats is not None and not steps:
        steps.append(
            ProgressStep(
                id=next_id("acp-tool-result"),
                type="tool_call",
                title=TOOL_COMPLETED_TITLE,
                status="completed",
                timestamp=now_ms(),
                execution_stats=execution_stats_from(stats),
                subagent_id=stats.agent_id,
            )
        )

    if not steps:
        steps.append(
            ProgressStep(
                id=next_id("acp-streaming"),
                type="thinking",
                title=AGENT_RESPONSE_TITLE,
                status="in_progress",
                timestamp=now_ms(),
                streaming_text_snapshot=text,
            )
        )

    return text, steps


@dataclass(frozen=True)
class AggregatedProgress:
    steps: list[ProgressStep]
    streaming_content: StreamingContent
    is_complete: bool


class ProgressAggregator:
    """Per-request accumulator over `aggregate_event`."""

    def __init__(self, *, description_limit: int = DEFAULT_DESCRIPTION_LIMIT) -> None:
        self.next_id = StepIdGenerator()
        self._text = ""
        self._description_limit = description_limit

    @property
    def accumulated_text(self) -> str:
        return self._text

    def apply(self, event: SessionUpdateEvent) -> AggregatedProgress:
        self._text, steps = aggregate_event(
            self._text,
            event,
            self.next_id,
            description_limit=self._description_limit,
        )
        if log_chunks_enabled():
            log_event(
                logger,
                "relay.progress.chunk",
                level=logging.DEBUG,
                session_id=event.session_id,
                steps=[step.type for step in steps],
                text_len=len(self._text),
            )
        return AggregatedProgress(
            steps=steps,
            streaming_content=StreamingContent(text=self._text, is_streaming=not event.is_complete),
            is_complete=event.is_complete,
        )

    def step(
        self,
        prefix: str,
        *,
        type: StepType,
        title: str,
        status: StepStatus,
        description: str | None = None,
        streaming_text_snapshot: str | None = None,
    ) -> ProgressStep:
        """Build a router-authored step (sending, completion, error) with a fresh id."""
        return ProgressStep(
            id=self.next_id(prefix),
            type=type,
            title=title,
            description=description,
            status=status,
            timestamp=now_ms(),
            streaming_text_snapshot=streaming_text_snapshot,
        )


__all__ = [
    "AGENT_RESPONSE_TITLE",
    "AggregatedProgress",
    "ProgressAggregator",
    "StepIdGenerator",
    "TOOL_COMPLETED_TITLE",
    "aggregate_event",
    "execution_stats_from",
    "truncate_description",
]

from __future__ import annotations

import asyncio
from typing import Callable

from acp_relay.broadcast import SessionUpdateChannel, Subscription
from acp_relay.events import SessionUpdateEvent, TextBlock, ToolUseBlock
from acp_relay.models import AgentSessionInfo, ProgressUpdate, PromptResult


class RecordingChannel(SessionUpdateChannel):
    """Channel that counts subscribe/unsubscribe calls for lifecycle assertions."""

    def __init__(self) -> None:
        super().__init__()
        self.subscribed_count = 0
        self.released_count = 0

    def subscribe(self, name, listener, *, session_id=None) -> Subscription:
        self.subscribed_count += 1
        return super().subscribe(name, listener, session_id=session_id)

    def unsubscribe(self, subscription: Subscription) -> bool:
        removed = super().unsubscribe(subscription)
        if removed:
            self.released_count += 1
        return removed


class FakeTransport:
    """In-process transport that replays scripted events while a prompt is outstanding."""

    def __init__(
        self,
        *,
        session_ids: list[str | None] | None = None,
        stream: list[SessionUpdateEvent] | None = None,
        result: PromptResult | None = None,
        error: Exception | None = None,
        info: AgentSessionInfo | None = None,
    ) -> None:
        self.events = RecordingChannel()
        self.created: list[tuple[str, bool]] = []
        self.prompts: list[tuple[str, str, str]] = []
        self._session_ids = list(session_ids if session_ids is not None else ["s1"])
        self.stream = list(stream or [])
        self.result = result or PromptResult(success=True, response="done", stop_reason="end_turn")
        self.error = error
        self.info = info
        self.before_result: Callable[[str], None] | None = None

    async def create_or_reuse_session(self, agent_name: str, force_new: bool) -> str | None:
        self.created.append((agent_name, force_new))
        return self._session_ids.pop(0) if self._session_ids else None

    async def send_prompt(self, agent_name: str, session_id: str, transcript: str) -> PromptResult:
        self.prompts.append((agent_name, session_id, transcript))
        for event in self.stream:
            self.events.publish(event)
            await asyncio.sleep(0)
        if self.before_result is not None:
            self.before_result(session_id)
        if self.error is not None:
            raise self.error
        return self.result

    def agent_session_info(self, agent_name: str) -> AgentSessionInfo | None:
        return self.info


def text_event(session_id: str, text: str, *, complete: bool = False, agent: str = "claude") -> SessionUpdateEvent:
    return SessionUpdateEvent(
        agent_name=agent,
        session_id=session_id,
        content=(TextBlock(text),),
        is_complete=complete,
    )


def tool_event(session_id: str, name: str, *, agent: str = "claude") -> SessionUpdateEvent:
    return SessionUpdateEvent(agent_name=agent, session_id=session_id, content=(ToolUseBlock(name),))


class UpdateCollector:
    def __init__(self) -> None:
        self.updates: list[ProgressUpdate] = []

    def __call__(self, update: ProgressUpdate) -> None:
        self.updates.append(update)

    @property
    def terminal(self) -> list[ProgressUpdate]:
        return [update for update in self.updates if update.is_complete]

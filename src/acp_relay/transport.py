"""Session transports: the protocol seen by the router and an ACP SDK implementation.

`AcpSessionTransport` sits on top of already-connected `acp` client connections
(the SDK owns JSON-RPC framing; the host spawns agent processes and calls
`attach`). Each attached agent gets a `RelayClient`, which turns the agent's
`session/update` notifications into `SessionUpdateEvent`s on the transport's
shared channel and routes `session/request_permission` calls to the UI session
that owns the protocol session.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Protocol

from acp import Client, RequestError, RequestPermissionResponse, text_block
from acp.schema import (
    AgentMessageChunk,
    AllowedOutcome,
    CurrentModeUpdate,
    DeniedOutcome,
    PermissionOption,
    SessionNotification,
    TextContentBlock,
    ToolCallProgress,
    ToolCallStart,
)

from acp_relay.broadcast import SessionUpdateChannel
from acp_relay.events import SessionUpdateEvent, TextBlock, ToolResponseStats, ToolUseBlock
from acp_relay.log_utils import log_chunks_enabled, log_context, log_event
from acp_relay.models import AgentSessionInfo, ModeOption, PromptResult
from acp_relay.session_registry import SessionRegistry

logger = logging.getLogger(__name__)


class SessionTransport(Protocol):
    events: SessionUpdateChannel

    async def create_or_reuse_session(self, agent_name: str, force_new: bool) -> str | None: ...

    async def send_prompt(self, agent_name: str, session_id: str, transcript: str) -> PromptResult: ...

    def agent_session_info(self, agent_name: str) -> AgentSessionInfo | None: ...


@dataclass(frozen=True)
class PermissionRequest:
    """A tool-approval prompt resolved to the UI session that should answer it."""

    ui_session_id: str
    session_id: str
    agent_name: str
    tool_call: Any
    options: list[PermissionOption]


# Returns the chosen option id, or None to cancel the request.
PermissionHandler = Callable[[PermissionRequest], Awaitable[str | None]]


@dataclass
class _AgentState:
    conn: Any
    agent_info: Any | None = None
    session_id: str | None = None
    current_model: str | None = None
    current_mode: str | None = None
    available_models: list[ModeOption] = field(default_factory=list)
    available_modes: list[ModeOption] = field(default_factory=list)
    # Text streamed for sessions with a prompt in flight.
    responses: dict[str, list[str]] = field(default_factory=dict)


class RelayClient(Client):
    """ACP client side for one agent, forwarding updates to the relay channel."""

    def __init__(self, transport: "AcpSessionTransport", agent_name: str) -> None:
        self._transport = transport
        self._agent_name = agent_name

    async def request_permission(
        self,
        options: list[PermissionOption],
        session_id: str,
        tool_call: Any,
        **_: Any,
    ) -> RequestPermissionResponse:
        return await self._transport.handle_permission(self._agent_name, session_id, tool_call, options)

    async def session_update(self, session_id: str, update: SessionNotification | Any, **_: Any) -> None:
        update = update.update if isinstance(update, SessionNotification) else update
        self._transport.handle_update(self._agent_name, session_id, update)

    async def write_text_file(self, *args: Any, **kwargs: Any):  # type: ignore[override]
        raise RequestError.method_not_found("fs/write_text_file")

    async def read_text_file(self, *args: Any, **kwargs: Any):  # type: ignore[override]
        raise RequestError.method_not_found("fs/read_text_file")

    async def create_terminal(self, *args: Any, **kwargs: Any):  # type: ignore[override]
        raise RequestError.method_not_found("terminal/create")

    async def terminal_output(self, *args: Any, **kwargs: Any):  # type: ignore[override]
        raise RequestError.method_not_found("terminal/output")

    async def release_terminal(self, *args: Any, **kwargs: Any):  # type: ignore[override]
        raise RequestError.method_not_found("terminal/release")

    async def wait_for_terminal_exit(self, *args: Any, **kwargs: Any):  # type: ignore[override]
        raise RequestError.method_not_found("terminal/wait_for_exit")

    async def kill_terminal(self, *args: Any, **kwargs: Any):  # type: ignore[override]
        raise RequestError.method_not_found("terminal/kill")

    async def ext_method(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        raise RequestError.method_not_found(method)

    async def ext_notification(self, method: str, params: dict[str, Any]) -> None:
        return None

    def on_connect(self, *_: Any, **__: Any) -> None:
        return None


class AcpSessionTransport:
    """`SessionTransport` over connected ACP agents, keyed by agent name."""

    def __init__(
        self,
        registry: SessionRegistry,
        *,
        cwd: Path | None = None,
        permission_handler: PermissionHandler | None = None,
        channel: SessionUpdateChannel | None = None,
    ) -> None:
        self.events = channel or SessionUpdateChannel()
        self._registry = registry
        self._cwd = cwd or Path.cwd()
        self._permission_handler = permission_handler
        self._agents: dict[str, _AgentState] = {}

    def client_for(self, agent_name: str) -> RelayClient:
        """Client implementation to pass to `acp.core.connect_to_agent` for `agent_name`."""
        return RelayClient(self, agent_name)

    def attach(self, agent_name: str, conn: Any, init_response: Any | None = None) -> None:
        self._agents[agent_name] = _AgentState(
            conn=conn,
            agent_info=getattr(init_response, "agent_info", None),
        )
        log_event(logger, "relay.transport.attached", agent=agent_name)

    def detach(self, agent_name: str) -> None:
        if self._agents.pop(agent_name, None) is not None:
            log_event(logger, "relay.transport.detached", agent=agent_name)

    def set_permission_handler(self, handler: PermissionHandler | None) -> None:
        self._permission_handler = handler

    async def create_or_reuse_session(self, agent_name: str, force_new: bool) -> str | None:
        state = self._agents.get(agent_name)
        if state is None:
            log_event(logger, "relay.transport.unknown_agent", level=logging.WARNING, agent=agent_name)
            return None
        if state.session_id and not force_new:
            return state.session_id
        try:
            response = await state.conn.new_session(cwd=str(self._cwd), mcp_servers=[])
        except Exception as exc:
            log_event(
                logger,
                "relay.transport.new_session_failed",
                level=logging.WARNING,
                agent=agent_name,
                error=str(exc),
            )
            return None
        session_id = getattr(response, "session_id", None)
        if not session_id:
            return None
        state.session_id = session_id
        _capture_session_settings(state, response)
        log_event(logger, "relay.transport.session_created", agent=agent_name, session_id=session_id)
        return session_id

    async def send_prompt(self, agent_name: str, session_id: str, transcript: str) -> PromptResult:
        state = self._agents.get(agent_name)
        if state is None:
            return PromptResult(success=False, error=f"Agent {agent_name} is not connected")
        # Streamed chunks carry only the session id, so one turn per session at a time.
        if session_id in state.responses:
            log_event(logger, "relay.transport.prompt_busy", level=logging.WARNING, agent=agent_name, session_id=session_id)
            return PromptResult(success=False, error=f"A prompt is already in progress for session {session_id}")
        collected: list[str] = []
        state.responses[session_id] = collected
        try:
            with log_context(agent=agent_name, session_id=session_id):
                log_event(logger, "relay.transport.prompt", chars=len(transcript))
                response = await state.conn.prompt(prompt=[text_block(transcript)], session_id=session_id)
        except RequestError as exc:
            return PromptResult(success=False, response="".join(collected) or None, error=str(exc))
        finally:
            state.responses.pop(session_id, None)
        return PromptResult(
            success=True,
            response="".join(collected) or None,
            stop_reason=getattr(response, "stop_reason", None),
        )

    def agent_session_info(self, agent_name: str) -> AgentSessionInfo | None:
        state = self._agents.get(agent_name)
        if state is None:
            return None
        info = state.agent_info
        return AgentSessionInfo(
            agent_name=getattr(info, "name", None),
            agent_title=getattr(info, "title", None),
            agent_version=getattr(info, "version", None),
            current_model=state.current_model,
            current_mode=state.current_mode,
            available_models=list(state.available_models),
            available_modes=list(state.available_modes),
        )

    def handle_update(self, agent_name: str, session_id: str, update: Any) -> None:
        """Translate one ACP session update and publish it on the channel."""

        state = self._agents.get(agent_name)
        if isinstance(update, CurrentModeUpdate):
            if state is not None:
                state.current_mode = update.current_mode_id
            return

        event: SessionUpdateEvent | None = None
        if isinstance(update, AgentMessageChunk):
            content = update.content
            if isinstance(content, TextContentBlock) and content.text:
                if state is not None and session_id in state.responses:
                    state.responses[session_id].append(content.text)
                event = SessionUpdateEvent(
                    agent_name=agent_name,
                    session_id=session_id,
                    content=(TextBlock(content.text),),
                )
        elif isinstance(update, ToolCallStart):
            event = SessionUpdateEvent(
                agent_name=agent_name,
                session_id=session_id,
                content=(ToolUseBlock(_tool_name(update)),),
            )
        elif isinstance(update, ToolCallProgress) and update.status == "completed":
            stats = _tool_response_stats(update)
            if stats is not None:
                event = SessionUpdateEvent(
                    agent_name=agent_name,
                    session_id=session_id,
                    tool_response_stats=stats,
                )

        if event is None:
            return
        if log_chunks_enabled():
            log_event(
                logger,
                "relay.transport.update",
                level=logging.DEBUG,
                agent=agent_name,
                session_id=session_id,
                kind=type(update).__name__,
            )
        self.events.publish(event)

    async def handle_permission(
        self,
        agent_name: str,
        session_id: str,
        tool_call: Any,
        options: list[PermissionOption],
    ) -> RequestPermissionResponse:
        """Ask the owning UI session to approve a tool call; cancel when nobody can answer."""

        ui_session_id = self._registry.ui_session_for(session_id)
        title = getattr(tool_call, "title", None) or getattr(tool_call, "tool_call_id", "")
        with log_context(agent=agent_name, session_id=session_id, ui_session_id=ui_session_id):
            if ui_session_id is None or self._permission_handler is None:
                log_event(logger, "relay.permission.unroutable", level=logging.WARNING, tool=title)
                return RequestPermissionResponse(outcome=DeniedOutcome(outcome="cancelled"))
            request = PermissionRequest(
                ui_session_id=ui_session_id,
                session_id=session_id,
                agent_name=agent_name,
                tool_call=tool_call,
                options=list(options),
            )
            log_event(logger, "relay.permission.request", tool=title)
            try:
                option_id = await self._permission_handler(request)
            except Exception as exc:
                log_event(logger, "relay.permission.error", level=logging.WARNING, tool=title, error=str(exc))
                return RequestPermissionResponse(outcome=DeniedOutcome(outcome="cancelled"))
            if option_id is None:
                log_event(logger, "relay.permission.cancelled", tool=title)
                return RequestPermissionResponse(outcome=DeniedOutcome(outcome="cancelled"))
            log_event(logger, "relay.permission.response", tool=title, selection=option_id)
            return RequestPermissionResponse(outcome=AllowedOutcome(option_id=option_id, outcome="selected"))


def _claude_meta(update: Any) -> dict[str, Any]:
    meta = getattr(update, "field_meta", None) or {}
    claude = meta.get("claudeCode") if isinstance(meta, dict) else None
    return claude if isinstance(claude, dict) else {}


def _tool_name(update: ToolCallStart) -> str:
    name = _claude_meta(update).get("toolName")
    if isinstance(name, str) and name:
        return name
    return update.title or update.tool_call_id


def _tool_response_stats(update: ToolCallProgress) -> ToolResponseStats | None:
    payload = _claude_meta(update).get("toolResponse")
    if not isinstance(payload, dict):
        return None
    if not any(key in payload for key in ("totalDurationMs", "totalTokens", "totalToolUseCount", "usage")):
        return None
    return ToolResponseStats.from_payload(payload)


def _capture_session_settings(state: _AgentState, response: Any) -> None:
    models = getattr(response, "models", None)
    if models is not None:
        state.current_model = getattr(models, "current_model_id", None)
        state.available_models = [
            ModeOption(
                id=model.model_id,
                name=model.name,
                description=getattr(model, "description", None),
            )
            for model in getattr(models, "available_models", None) or []
        ]
    modes = getattr(response, "modes", None)
    if modes is not None:
        state.current_mode = getattr(modes, "current_mode_id", None)
        state.available_modes = [
            ModeOption(id=mode.id, name=mode.name, description=getattr(mode, "description", None))
            for mode in getattr(modes, "available_modes", None) or []
        ]


__all__ = [
    "AcpSessionTransport",
    "PermissionHandler",
    "PermissionRequest",
    "RelayClient",
    "SessionTransport",
]

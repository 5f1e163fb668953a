"""Route transcripts to ACP agents and turn their streams into progress updates.

One `process_transcript` call walks IDLE -> RESOLVING -> STREAMING ->
FINALIZING -> DONE, or ends in ERROR from any non-idle state. The only
suspension points are session creation, the prompt send and progress
emission; everything else runs synchronously on the event loop.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import replace
from enum import Enum

from acp_relay.config import RelayConfig, load_config
from acp_relay.events import SessionUpdateEvent
from acp_relay.history import ConversationHistoryLoader, JsonConversationLoader, NullHistoryLoader, load_history
from acp_relay.log_utils import configure_logging, log_context, log_event
from acp_relay.models import (
    AgentSessionInfo,
    ConversationMessage,
    ProgressStep,
    ProgressUpdate,
    PromptResult,
    StreamingContent,
    TranscriptOptions,
    TranscriptResult,
)
from acp_relay.progress import ProgressAggregator
from acp_relay.session_registry import SessionRegistry, now_ms
from acp_relay.sink import ProgressSink
from acp_relay.transport import AcpSessionTransport, PermissionHandler, SessionTransport

logger = logging.getLogger(__name__)


class RelayError(Exception):
    """Base error for relay failures surfaced to callers."""


class SessionEstablishmentError(RelayError):
    """The transport could not provide a session identifier."""


class RouterState(str, Enum):
    IDLE = "idle"
    RESOLVING = "resolving"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    DONE = "done"
    ERROR = "error"


def resolve_final_response(response: str | None, accumulated_text: str) -> str | None:
    """Transport response first, then streamed text, else nothing."""
    if response:
        return response
    if accumulated_text:
        return accumulated_text
    return None


class TranscriptRouter:
    """Session orchestrator between the host UI and ACP agents."""

    def __init__(
        self,
        transport: SessionTransport,
        *,
        registry: SessionRegistry | None = None,
        sink: ProgressSink | None = None,
        history_loader: ConversationHistoryLoader | None = None,
        config: RelayConfig | None = None,
    ) -> None:
        self.transport = transport
        self.registry = registry or SessionRegistry()
        self.sink = sink or ProgressSink()
        self.history_loader = history_loader or NullHistoryLoader()
        self.config = config or RelayConfig()

    async def process_transcript(self, transcript: str, options: TranscriptOptions) -> TranscriptResult:
        if not options.agent_name:
            options = replace(options, agent_name=self.config.default_agent)
        with log_context(
            conversation_id=options.conversation_id,
            ui_session_id=options.session_id,
            agent=options.agent_name,
        ):
            log_event(
                logger,
                "relay.transcript.start",
                chars=len(transcript),
                force_new=options.force_new_session,
            )
            history = await load_history(self.history_loader, options.conversation_id)
            run = _TranscriptRun(self, options, history)
            try:
                run.transition(RouterState.RESOLVING)
                session_id = await self._resolve_session(options)
                with log_context(session_id=session_id):
                    with self.transport.events.subscribed(
                        f"transcript:{options.session_id}",
                        run.on_event,
                        session_id=session_id,
                    ):
                        run.transition(RouterState.STREAMING)
                        await run.emit(
                            [
                                run.aggregator.step(
                                    "acp-thinking",
                                    type="thinking",
                                    title=f"Sending to {options.agent_name}...",
                                    status="in_progress",
                                )
                            ],
                            is_complete=False,
                        )
                        result = await self.transport.send_prompt(options.agent_name, session_id, transcript)
                    run.transition(RouterState.FINALIZING)
                    return await run.finish(result, session_id)
            except Exception as exc:
                return await run.fail(exc)

    def start_new_session(self, conversation_id: str) -> None:
        """Forget the conversation's session so the next transcript starts fresh.

        A prompt already in flight on the old session is not interrupted.
        """
        self.registry.clear(conversation_id)
        log_event(logger, "relay.session.reset", conversation_id=conversation_id)

    def ui_session_for(self, protocol_session_id: str) -> str | None:
        return self.registry.ui_session_for(protocol_session_id)

    async def _resolve_session(self, options: TranscriptOptions) -> str:
        existing = None if options.force_new_session else self.registry.get(options.conversation_id)
        if existing is not None and existing.agent_name == options.agent_name:
            session_id = existing.session_id
            self.registry.touch(options.conversation_id)
            log_event(logger, "relay.session.reused", session_id=session_id)
        else:
            session_id = await self.transport.create_or_reuse_session(options.agent_name, True)
            if not session_id:
                raise SessionEstablishmentError(f"Failed to create session with agent {options.agent_name}")
            self.registry.set(options.conversation_id, session_id, options.agent_name)
            log_event(logger, "relay.session.created", session_id=session_id)
        # Tool approvals must reach whichever UI session used this protocol session last.
        self.registry.map_protocol_session_to_ui_session(session_id, options.session_id)
        return session_id


class _TranscriptRun:
    """Mutable state for one `process_transcript` call."""

    def __init__(
        self,
        router: TranscriptRouter,
        options: TranscriptOptions,
        history: list[ConversationMessage],
    ) -> None:
        self._router = router
        self._options = options
        self.history = history
        self.aggregator = ProgressAggregator(description_limit=router.config.description_limit)
        self.state = RouterState.IDLE
        self._tail: asyncio.Future[None] | None = None

    def transition(self, state: RouterState) -> None:
        log_event(
            logger,
            "relay.transcript.state",
            level=logging.DEBUG,
            previous=self.state.value,
            state=state.value,
        )
        self.state = state

    def on_event(self, event: SessionUpdateEvent) -> None:
        """Channel listener: aggregate synchronously, emit in the background."""
        progress = self.aggregator.apply(event)
        # Only the final update marks the request complete; per-chunk completion
        # is carried by step status and `streaming_content.is_streaming`.
        update = self._build_update(
            progress.steps,
            is_complete=False,
            streaming_content=progress.streaming_content,
        )
        previous = self._tail
        self._tail = asyncio.ensure_future(self._emit_after(previous, update))
        self._tail.add_done_callback(_log_emit_failure)

    async def emit(
        self,
        steps: list[ProgressStep],
        *,
        is_complete: bool,
        final_content: str | None = None,
        streaming_content: StreamingContent | None = None,
    ) -> None:
        """Emit after any background updates so ordering follows creation order."""
        update = self._build_update(
            steps,
            is_complete=is_complete,
            final_content=final_content,
            streaming_content=streaming_content,
        )
        await self._emit_after(self._tail, update)

    async def finish(self, result: PromptResult, session_id: str) -> TranscriptResult:
        final_response = resolve_final_response(result.response, self.aggregator.accumulated_text)
        if final_response:
            self.history.append(ConversationMessage(role="assistant", content=final_response, timestamp=now_ms()))
        await self.emit(
            [
                self.aggregator.step(
                    "acp-complete",
                    type="completion",
                    title="Response complete" if result.success else "Request failed",
                    description=result.error,
                    status="completed" if result.success else "error",
                    streaming_text_snapshot=final_response,
                )
            ],
            is_complete=True,
            final_content=final_response,
            streaming_content=StreamingContent(text=final_response or "", is_streaming=False),
        )
        self.transition(RouterState.DONE)
        log_event(
            logger,
            "relay.transcript.completed",
            success=result.success,
            stop_reason=result.stop_reason,
            response_chars=len(final_response or ""),
        )
        return TranscriptResult(
            success=result.success,
            response=final_response,
            session_id=session_id,
            stop_reason=result.stop_reason,
            error=result.error,
        )

    async def fail(self, exc: Exception) -> TranscriptResult:
        message = str(exc) or type(exc).__name__
        self.transition(RouterState.ERROR)
        log_event(logger, "relay.transcript.failed", level=logging.ERROR, error=message)
        await self.emit(
            [
                self.aggregator.step(
                    "acp-error",
                    type="completion",
                    title="Error",
                    description=message,
                    status="error",
                )
            ],
            is_complete=True,
            streaming_content=StreamingContent(text=self.aggregator.accumulated_text, is_streaming=False),
        )
        return TranscriptResult(success=False, error=message)

    def _build_update(
        self,
        steps: list[ProgressStep],
        *,
        is_complete: bool,
        final_content: str | None = None,
        streaming_content: StreamingContent | None = None,
    ) -> ProgressUpdate:
        return ProgressUpdate(
            session_id=self._options.session_id,
            conversation_id=self._options.conversation_id,
            steps=steps,
            is_complete=is_complete,
            final_content=final_content,
            streaming_content=streaming_content,
            conversation_history=list(self.history),
            agent_session_info=self._session_info(),
        )

    def _session_info(self) -> AgentSessionInfo | None:
        try:
            return self._router.transport.agent_session_info(self._options.agent_name)
        except Exception as exc:
            log_event(logger, "relay.transport.session_info_failed", level=logging.WARNING, error=str(exc))
            return None

    async def _emit_after(self, previous: asyncio.Future[None] | None, update: ProgressUpdate) -> None:
        if previous is not None:
            with contextlib.suppress(Exception):
                await previous
        await self._router.sink.emit(update, self._options.on_progress)


def _log_emit_failure(task: asyncio.Future[None]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        log_event(logger, "relay.progress.emit_failed", level=logging.WARNING, error=str(exc))


def create_router(
    config: RelayConfig | None = None,
    *,
    permission_handler: PermissionHandler | None = None,
    sink: ProgressSink | None = None,
) -> TranscriptRouter:
    """Wire a router to an `AcpSessionTransport` and JSON history using `config`.

    Relay logging is configured from `config` as well. Agents are attached
    afterwards through `router.transport.attach(...)`.
    """
    config = config or load_config()
    configure_logging(config)
    registry = SessionRegistry()
    transport = AcpSessionTransport(registry, cwd=config.session_cwd, permission_handler=permission_handler)
    history_loader = JsonConversationLoader(config.history_dir) if config.history_dir else None
    return TranscriptRouter(
        transport,
        registry=registry,
        sink=sink,
        history_loader=history_loader,
        config=config,
    )


__all__ = [
    "RelayError",
    "RouterState",
    "SessionEstablishmentError",
    "TranscriptRouter",
    "create_router",
    "resolve_final_response",
]

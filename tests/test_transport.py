from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from acp import RequestError, text_block
from acp.helpers import session_notification, update_agent_message
from acp.schema import AllowedOutcome, CurrentModeUpdate, DeniedOutcome, PermissionOption, ToolCallProgress, ToolCallStart

from acp_relay.events import SessionUpdateEvent, TextBlock, ToolUseBlock
from acp_relay.session_registry import SessionRegistry
from acp_relay.transport import AcpSessionTransport, PermissionRequest


def _session_response(session_id: str = "s1") -> SimpleNamespace:
    return SimpleNamespace(
        session_id=session_id,
        models=SimpleNamespace(
            current_model_id="sonnet",
            available_models=[SimpleNamespace(model_id="sonnet", name="Sonnet", description=None)],
        ),
        modes=SimpleNamespace(
            current_mode_id="default",
            available_modes=[
                SimpleNamespace(id="default", name="Default", description="Ask before edits"),
                SimpleNamespace(id="plan", name="Plan", description=None),
            ],
        ),
    )


def _transport(registry: SessionRegistry, **kwargs) -> tuple[AcpSessionTransport, AsyncMock]:
    conn = AsyncMock()
    conn.new_session.return_value = _session_response()
    transport = AcpSessionTransport(registry, **kwargs)
    transport.attach(
        "claude-code",
        conn,
        SimpleNamespace(agent_info=SimpleNamespace(name="claude-code", title="Claude Code", version="1.0")),
    )
    return transport, conn


def _collect(transport: AcpSessionTransport) -> list[SessionUpdateEvent]:
    received: list[SessionUpdateEvent] = []
    transport.events.subscribe("test", received.append)
    return received


def _options() -> list[PermissionOption]:
    return [
        PermissionOption(option_id="allow", name="Allow", kind="allow_once"),
        PermissionOption(option_id="reject", name="Reject", kind="reject_once"),
    ]


@pytest.mark.asyncio
async def test_create_session_captures_models_and_modes(registry: SessionRegistry) -> None:
    transport, conn = _transport(registry)

    session_id = await transport.create_or_reuse_session("claude-code", False)

    assert session_id == "s1"
    assert conn.new_session.await_count == 1
    info = transport.agent_session_info("claude-code")
    assert info is not None
    assert info.agent_title == "Claude Code"
    assert info.current_model == "sonnet"
    assert info.current_mode == "default"
    assert [mode.id for mode in info.available_modes] == ["default", "plan"]


@pytest.mark.asyncio
async def test_create_session_reuses_unless_forced(registry: SessionRegistry) -> None:
    transport, conn = _transport(registry)

    await transport.create_or_reuse_session("claude-code", False)
    await transport.create_or_reuse_session("claude-code", False)
    assert conn.new_session.await_count == 1

    conn.new_session.return_value = _session_response("s2")
    assert await transport.create_or_reuse_session("claude-code", True) == "s2"
    assert conn.new_session.await_count == 2


@pytest.mark.asyncio
async def test_create_session_failures_return_none(registry: SessionRegistry) -> None:
    transport, conn = _transport(registry)

    assert await transport.create_or_reuse_session("unknown", True) is None
    assert transport.agent_session_info("unknown") is None

    conn.new_session.side_effect = ConnectionError("agent exited")
    assert await transport.create_or_reuse_session("claude-code", True) is None


def test_agent_text_is_published(registry: SessionRegistry) -> None:
    transport, _ = _transport(registry)
    received = _collect(transport)

    transport.handle_update("claude-code", "s1", update_agent_message(text_block("Hi")))

    assert received == [
        SessionUpdateEvent(agent_name="claude-code", session_id="s1", content=(TextBlock("Hi"),)),
    ]


def test_tool_start_prefers_claude_tool_name(registry: SessionRegistry) -> None:
    transport, _ = _transport(registry)
    received = _collect(transport)
    start = ToolCallStart(session_update="tool_call", tool_call_id="tc1", title="Read src/app.py")

    transport.handle_update("claude-code", "s1", start)
    transport.handle_update(
        "claude-code",
        "s1",
        start.model_copy(update={"field_meta": {"claudeCode": {"toolName": "Read"}}}),
    )

    assert [event.content for event in received] == [
        (ToolUseBlock("Read src/app.py"),),
        (ToolUseBlock("Read"),),
    ]


def test_completed_tool_response_becomes_stats_event(registry: SessionRegistry) -> None:
    transport, _ = _transport(registry)
    received = _collect(transport)
    progress = ToolCallProgress(session_update="tool_call_update", tool_call_id="tc1", status="completed")
    payload = {
        "status": "completed",
        "agentId": "sub-1",
        "totalDurationMs": 1200,
        "totalTokens": 300,
        "totalToolUseCount": 4,
        "usage": {"input_tokens": 200, "output_tokens": 100, "cache_read_input_tokens": 50},
    }

    transport.handle_update("claude-code", "s1", progress)
    transport.handle_update(
        "claude-code",
        "s1",
        progress.model_copy(update={"field_meta": {"claudeCode": {"toolResponse": payload}}}),
    )
    transport.handle_update(
        "claude-code",
        "s1",
        progress.model_copy(
            update={"status": "in_progress", "field_meta": {"claudeCode": {"toolResponse": payload}}}
        ),
    )

    assert len(received) == 1
    stats = received[0].tool_response_stats
    assert stats is not None
    assert stats.agent_id == "sub-1"
    assert stats.total_duration_ms == 1200
    assert stats.total_tool_use_count == 4
    assert stats.usage is not None
    assert stats.usage.cache_read_input_tokens == 50


@pytest.mark.asyncio
async def test_mode_update_changes_session_info(registry: SessionRegistry) -> None:
    transport, _ = _transport(registry)
    received = _collect(transport)
    await transport.create_or_reuse_session("claude-code", True)

    transport.handle_update(
        "claude-code",
        "s1",
        CurrentModeUpdate(session_update="current_mode_update", current_mode_id="plan"),
    )

    assert received == []
    info = transport.agent_session_info("claude-code")
    assert info is not None and info.current_mode == "plan"


@pytest.mark.asyncio
async def test_send_prompt_collects_streamed_text(registry: SessionRegistry) -> None:
    transport, conn = _transport(registry)
    received = _collect(transport)

    async def _prompt(*, prompt, session_id):
        transport.handle_update("claude-code", session_id, update_agent_message(text_block("Hello ")))
        transport.handle_update("claude-code", session_id, update_agent_message(text_block("world")))
        return SimpleNamespace(stop_reason="end_turn")

    conn.prompt.side_effect = _prompt

    result = await transport.send_prompt("claude-code", "s1", "hi")

    assert result.success is True
    assert result.response == "Hello world"
    assert result.stop_reason == "end_turn"
    assert len(received) == 2
    sent = conn.prompt.await_args.kwargs
    assert sent["session_id"] == "s1"
    assert sent["prompt"][0].text == "hi"


@pytest.mark.asyncio
async def test_send_prompt_request_error_becomes_failed_result(registry: SessionRegistry) -> None:
    transport, conn = _transport(registry)

    async def _prompt(*, prompt, session_id):
        transport.handle_update("claude-code", session_id, update_agent_message(text_block("partial")))
        raise RequestError.internal_error({"error": "model overloaded"})

    conn.prompt.side_effect = _prompt

    result = await transport.send_prompt("claude-code", "s1", "hi")

    assert result.success is False
    assert result.response == "partial"
    assert result.error


@pytest.mark.asyncio
async def test_send_prompt_other_errors_propagate(registry: SessionRegistry) -> None:
    transport, conn = _transport(registry)
    conn.prompt.side_effect = BrokenPipeError("agent gone")

    with pytest.raises(BrokenPipeError):
        await transport.send_prompt("claude-code", "s1", "hi")

    missing = await transport.send_prompt("other", "s1", "hi")
    assert missing.success is False
    assert missing.error == "Agent other is not connected"


@pytest.mark.asyncio
async def test_permission_without_mapping_is_cancelled(registry: SessionRegistry) -> None:
    handler = AsyncMock(return_value="allow")
    transport, _ = _transport(registry, permission_handler=handler)

    response = await transport.handle_permission("claude-code", "s1", SimpleNamespace(title="Bash"), _options())

    assert isinstance(response.outcome, DeniedOutcome)
    handler.assert_not_awaited()


@pytest.mark.asyncio
async def test_permission_without_handler_is_cancelled(registry: SessionRegistry) -> None:
    registry.map_protocol_session_to_ui_session("s1", "ui-1")
    transport, _ = _transport(registry)

    response = await transport.handle_permission("claude-code", "s1", SimpleNamespace(title="Bash"), _options())

    assert isinstance(response.outcome, DeniedOutcome)


@pytest.mark.asyncio
async def test_permission_routes_to_owning_ui_session(registry: SessionRegistry) -> None:
    registry.map_protocol_session_to_ui_session("s1", "ui-7")
    handler = AsyncMock(return_value="allow")
    transport, _ = _transport(registry, permission_handler=handler)
    tool_call = SimpleNamespace(title="Bash", tool_call_id="tc1")

    response = await transport.handle_permission("claude-code", "s1", tool_call, _options())

    assert isinstance(response.outcome, AllowedOutcome)
    assert response.outcome.option_id == "allow"
    request: PermissionRequest = handler.await_args.args[0]
    assert request.ui_session_id == "ui-7"
    assert request.session_id == "s1"
    assert request.agent_name == "claude-code"
    assert [option.option_id for option in request.options] == ["allow", "reject"]


@pytest.mark.asyncio
async def test_permission_handler_decline_or_failure_cancels(registry: SessionRegistry) -> None:
    registry.map_protocol_session_to_ui_session("s1", "ui-1")
    transport, _ = _transport(registry, permission_handler=AsyncMock(return_value=None))

    declined = await transport.handle_permission("claude-code", "s1", SimpleNamespace(title="Bash"), _options())
    assert isinstance(declined.outcome, DeniedOutcome)

    transport.set_permission_handler(AsyncMock(side_effect=RuntimeError("ui closed")))
    failed = await transport.handle_permission("claude-code", "s1", SimpleNamespace(title="Bash"), _options())
    assert isinstance(failed.outcome, DeniedOutcome)


@pytest.mark.asyncio
async def test_relay_client_forwards_notifications(registry: SessionRegistry) -> None:
    transport, _ = _transport(registry)
    received = _collect(transport)
    client = transport.client_for("claude-code")

    await client.session_update("s1", session_notification("s1", update_agent_message(text_block("a"))))
    await client.session_update("s1", update_agent_message(text_block("b")))

    assert [event.content for event in received] == [(TextBlock("a"),), (TextBlock("b"),)]

    with pytest.raises(RequestError):
        await client.read_text_file(path="/etc/hosts", session_id="s1")


def test_detach_forgets_agent(registry: SessionRegistry) -> None:
    transport, _ = _transport(registry)

    transport.detach("claude-code")
    transport.detach("claude-code")

    assert transport.agent_session_info("claude-code") is None


@pytest.mark.asyncio
async def test_overlapping_prompt_on_same_session_is_rejected(registry: SessionRegistry) -> None:
    transport, conn = _transport(registry)
    release = asyncio.Event()

    async def _prompt(*, prompt, session_id):
        transport.handle_update("claude-code", session_id, update_agent_message(text_block("first-1 ")))
        await release.wait()
        transport.handle_update("claude-code", session_id, update_agent_message(text_block("first-2")))
        return SimpleNamespace(stop_reason="end_turn")

    conn.prompt.side_effect = _prompt

    first = asyncio.ensure_future(transport.send_prompt("claude-code", "s1", "one"))
    await asyncio.sleep(0)
    second = await transport.send_prompt("claude-code", "s1", "two")
    release.set()
    first_result = await first

    assert second.success is False
    assert second.error == "A prompt is already in progress for session s1"
    assert conn.prompt.await_count == 1
    assert first_result.success is True
    assert first_result.response == "first-1 first-2"

    conn.prompt.side_effect = None
    conn.prompt.return_value = SimpleNamespace(stop_reason="end_turn")
    after = await transport.send_prompt("claude-code", "s1", "three")
    assert after.success is True

"""In-memory mapping between host conversations and ACP sessions.

Two tables live here: conversation id -> active protocol session (so follow-up
turns keep the agent's context), and protocol session id -> host UI session id
(so tool-approval prompts raised by the agent reach the UI surface that owns
the session).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace

from acp_relay.log_utils import log_event

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Session:
    conversation_id: str
    agent_name: str
    session_id: str
    created_at: int
    last_touched_at: int


class SessionRegistry:
    """Conversation -> session store plus the reverse UI-session mapping."""

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._ui_sessions: dict[str, str] = {}

    def get(self, conversation_id: str) -> Session | None:
        return self._sessions.get(conversation_id)

    def set(self, conversation_id: str, session_id: str, agent_name: str) -> Session:
        """Record `session_id` as the active session, replacing any prior entry."""
        now = now_ms()
        previous = self._sessions.get(conversation_id)
        session = Session(
            conversation_id=conversation_id,
            agent_name=agent_name,
            session_id=session_id,
            created_at=now,
            last_touched_at=now,
        )
        self._sessions[conversation_id] = session
        log_event(
            logger,
            "relay.registry.set",
            conversation_id=conversation_id,
            session_id=session_id,
            agent=agent_name,
            replaced=previous.session_id if previous else None,
        )
        return session

    def touch(self, conversation_id: str) -> None:
        session = self._sessions.get(conversation_id)
        if session is None:
            return
        self._sessions[conversation_id] = replace(session, last_touched_at=now_ms())

    def clear(self, conversation_id: str) -> None:
        session = self._sessions.pop(conversation_id, None)
        if session is not None:
            log_event(
                logger,
                "relay.registry.cleared",
                conversation_id=conversation_id,
                session_id=session.session_id,
            )

    def clear_all(self) -> int:
        """Drop every session and UI mapping; used when agents restart or the host shuts down."""
        count = len(self._sessions)
        self._sessions.clear()
        self._ui_sessions.clear()
        log_event(logger, "relay.registry.cleared_all", count=count)
        return count

    def all_sessions(self) -> dict[str, Session]:
        return dict(self._sessions)

    def map_protocol_session_to_ui_session(self, protocol_session_id: str, ui_session_id: str) -> None:
        self._ui_sessions[protocol_session_id] = ui_session_id
        log_event(
            logger,
            "relay.registry.mapped",
            session_id=protocol_session_id,
            ui_session_id=ui_session_id,
        )

    def ui_session_for(self, protocol_session_id: str) -> str | None:
        return self._ui_sessions.get(protocol_session_id)

    def clear_session_mapping(self, protocol_session_id: str) -> None:
        if self._ui_sessions.pop(protocol_session_id, None) is not None:
            log_event(logger, "relay.registry.unmapped", session_id=protocol_session_id)


__all__ = ["Session", "SessionRegistry", "now_ms"]

"""Read-only access to host conversation history for progress display."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from acp_relay.log_utils import log_event
from acp_relay.models import ConversationMessage

logger = logging.getLogger(__name__)


class ConversationHistoryLoader(Protocol):
    async def load(self, conversation_id: str) -> list[ConversationMessage]: ...


@dataclass
class NullHistoryLoader:
    async def load(self, conversation_id: str) -> list[ConversationMessage]:
        _ = conversation_id
        return []


@dataclass
class JsonConversationLoader:
    """Load `<root>/<conversation_id>.json` files written by the host.

    Only `messages[].role/content/timestamp` are read; other keys are ignored.
    A missing file means a new conversation and yields an empty history.
    """

    root: Path

    def conversation_path(self, conversation_id: str) -> Path:
        return self.root / f"{conversation_id}.json"

    async def load(self, conversation_id: str) -> list[ConversationMessage]:
        path = self.conversation_path(conversation_id)
        if not path.exists():
            return []
        payload = json.loads(path.read_text(encoding="utf-8"))
        messages = payload.get("messages", []) if isinstance(payload, dict) else []
        return [ConversationMessage.model_validate(message) for message in messages]


async def load_history(loader: ConversationHistoryLoader, conversation_id: str) -> list[ConversationMessage]:
    """Load history, degrading to an empty list when the loader fails."""
    try:
        return list(await loader.load(conversation_id))
    except Exception as exc:
        log_event(
            logger,
            "relay.history.load_failed",
            level=logging.WARNING,
            conversation_id=conversation_id,
            error=str(exc),
        )
        return []


__all__ = ["ConversationHistoryLoader", "JsonConversationLoader", "NullHistoryLoader", "load_history"]

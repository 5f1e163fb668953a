"""Best-effort delivery of progress updates to the UI and per-request callbacks."""

from __future__ import annotations

import inspect
import logging
from typing import Awaitable, Callable

from acp_relay.log_utils import log_event
from acp_relay.models import ProgressCallback, ProgressUpdate

logger = logging.getLogger(__name__)

ProgressListener = Callable[[ProgressUpdate], Awaitable[None] | None]


class ProgressSink:
    """Process-wide emission channel for progress updates.

    Hosts register listeners (for example, a function that forwards updates to
    renderer windows). Every failure is logged and absorbed so a broken UI
    listener cannot mask the agent's result.
    """

    def __init__(self) -> None:
        self._listeners: list[ProgressListener] = []

    def add_listener(self, listener: ProgressListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ProgressListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def emit(self, update: ProgressUpdate, callback: ProgressCallback | None = None) -> None:
        for listener in list(self._listeners):
            await _deliver(listener, update, target="listener")
        if callback is not None:
            await _deliver(callback, update, target="callback")


async def _deliver(target_fn: ProgressListener, update: ProgressUpdate, *, target: str) -> None:
    try:
        result = target_fn(update)
        if inspect.isawaitable(result):
            await result
    except Exception as exc:
        log_event(
            logger,
            "relay.progress.emit_failed",
            level=logging.WARNING,
            target=target,
            ui_session_id=update.session_id,
            complete=update.is_complete,
            error=str(exc),
        )


__all__ = ["ProgressListener", "ProgressSink"]

"""Shared broadcast channel for streamed session updates.

One channel exists per transport and carries events for every protocol
session that transport serves. Subscribers filter by session id themselves
(`subscribed(..., session_id=...)` does it for them).
"""

from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterator

from acp_relay.events import SessionUpdateEvent
from acp_relay.log_utils import log_event

logger = logging.getLogger(__name__)

SessionUpdateListener = Callable[[SessionUpdateEvent], None]


@dataclass(eq=False)
class Subscription:
    """Handle for one registered listener; `close()` removes it at most once."""

    name: str
    listener: SessionUpdateListener
    channel: "SessionUpdateChannel" = field(repr=False)
    session_id: str | None = None
    active: bool = True

    def matches(self, event: SessionUpdateEvent) -> bool:
        return self.session_id is None or event.session_id == self.session_id

    def close(self) -> None:
        self.channel.unsubscribe(self)


class SessionUpdateChannel:
    def __init__(self, topic: str = "session_update") -> None:
        self.topic = topic
        self._subscriptions: list[Subscription] = []

    def __len__(self) -> int:
        return len(self._subscriptions)

    def subscribe(
        self,
        name: str,
        listener: SessionUpdateListener,
        *,
        session_id: str | None = None,
    ) -> Subscription:
        """Register `listener`; when `session_id` is given, other sessions' events are skipped."""
        subscription = Subscription(name=name, listener=listener, channel=self, session_id=session_id)
        self._subscriptions.append(subscription)
        log_event(
            logger,
            "relay.channel.subscribed",
            level=logging.DEBUG,
            topic=self.topic,
            name=name,
            session_id=session_id,
            listeners=len(self._subscriptions),
        )
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        """Remove a subscription; returns False when it was already removed."""
        if not subscription.active:
            return False
        subscription.active = False
        with contextlib.suppress(ValueError):
            self._subscriptions.remove(subscription)
        log_event(
            logger,
            "relay.channel.unsubscribed",
            level=logging.DEBUG,
            topic=self.topic,
            name=subscription.name,
            session_id=subscription.session_id,
            listeners=len(self._subscriptions),
        )
        return True

    @contextlib.contextmanager
    def subscribed(
        self,
        name: str,
        listener: SessionUpdateListener,
        *,
        session_id: str | None = None,
    ) -> Iterator[Subscription]:
        """Scope a subscription to a block; it is released on every exit path."""
        subscription = self.subscribe(name, listener, session_id=session_id)
        try:
            yield subscription
        finally:
            subscription.close()

    def publish(self, event: SessionUpdateEvent) -> int:
        """Deliver `event` to matching listeners and return how many received it.

        A failing listener is logged and skipped; it never prevents delivery to
        the remaining listeners or reaches the publisher.
        """

        delivered = 0
        for subscription in list(self._subscriptions):
            if not subscription.active or not subscription.matches(event):
                continue
            delivered += 1
            try:
                subscription.listener(event)
            except Exception as exc:
                log_event(
                    logger,
                    "relay.channel.listener_error",
                    level=logging.WARNING,
                    topic=self.topic,
                    name=subscription.name,
                    session_id=event.session_id,
                    error=str(exc),
                )
        return delivered


__all__ = ["SessionUpdateChannel", "SessionUpdateListener", "Subscription"]

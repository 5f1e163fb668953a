"""Structured logging for the relay.

Modules log through `log_event(logger, "relay.<area>.<what>", **fields)`.
Identifiers for the current request (conversation, UI session, agent,
protocol session) are set once with `log_context` and attached to every event
logged inside the block, including events from background emission tasks,
which inherit the context of the request that created them.

`configure_logging` only touches the `acp_relay` logger tree, so hosts keep
control of the root logger.
"""

from __future__ import annotations

import contextlib
import contextvars
import json
import logging
from logging.handlers import RotatingFileHandler
from typing import TYPE_CHECKING, Any, Iterator

if TYPE_CHECKING:
    from acp_relay.config import RelayConfig

RELAY_LOGGER = "acp_relay"
LOG_MAX_BYTES = 5_000_000
LOG_BACKUPS = 3

_REQUEST_FIELDS: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar("acp_relay_request_fields", default={})
_LOG_CHUNKS_ENABLED = False


def log_event(logger: logging.Logger, event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    """Log `event` with keyword fields and the active request context."""

    logger.log(level, event, extra={"event_fields": fields, "request_fields": dict(_REQUEST_FIELDS.get())})


@contextlib.contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Attach request identifiers to events logged within the block; None values are skipped."""

    merged = {**_REQUEST_FIELDS.get(), **{k: v for k, v in fields.items() if v is not None}}
    token = _REQUEST_FIELDS.set(merged)
    try:
        yield
    finally:
        _REQUEST_FIELDS.reset(token)


def log_chunks_enabled() -> bool:
    """Per-chunk stream events are logged only when `log_chunks` is configured."""

    return _LOG_CHUNKS_ENABLED


class RelayFormatter(logging.Formatter):
    """One line per event: `time level logger event key=value ...` or a JSON object."""

    def __init__(self, *, json_lines: bool = False) -> None:
        super().__init__("%(asctime)s %(levelname)s %(name)s %(message)s")
        self.json_lines = json_lines

    def format(self, record: logging.LogRecord) -> str:
        fields = {
            **getattr(record, "request_fields", {}),
            **{k: v for k, v in getattr(record, "event_fields", {}).items() if v is not None},
        }
        if self.json_lines:
            payload: dict[str, Any] = {
                "ts": self.formatTime(record, self.datefmt),
                "level": record.levelname,
                "logger": record.name,
                "event": record.getMessage(),
                **fields,
            }
            if record.exc_info:
                payload["exc"] = self.formatException(record.exc_info)
            return json.dumps(payload, ensure_ascii=True, default=str)
        line = super().format(record)
        if fields:
            line += " " + " ".join(f"{key}={_render(value)}" for key, value in sorted(fields.items()))
        return line


def _render(value: Any) -> str:
    if isinstance(value, str):
        return json.dumps(value) if not value or any(ch.isspace() or ch in '="' for ch in value) else value
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)


def configure_logging(config: RelayConfig) -> list[logging.Handler]:
    """Apply `config`'s log settings to the `acp_relay` logger and return the handlers installed.

    Handlers from a previous call are closed and replaced.
    """

    global _LOG_CHUNKS_ENABLED
    relay_logger = logging.getLogger(RELAY_LOGGER)
    for handler in [h for h in relay_logger.handlers if getattr(h, "_acp_relay", False)]:
        relay_logger.removeHandler(handler)
        handler.close()

    relay_logger.setLevel(config.log_level)
    _LOG_CHUNKS_ENABLED = config.log_chunks

    handlers: list[logging.Handler] = []
    if config.log_file is not None:
        config.log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(config.log_file, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8")
        )
    if config.log_stderr:
        handlers.append(logging.StreamHandler())

    formatter = RelayFormatter(json_lines=config.log_json)
    for handler in handlers:
        handler.setFormatter(formatter)
        handler._acp_relay = True  # type: ignore[attr-defined]
        relay_logger.addHandler(handler)
    return handlers


__all__ = [
    "RELAY_LOGGER",
    "RelayFormatter",
    "configure_logging",
    "log_chunks_enabled",
    "log_context",
    "log_event",
]
